"""Health checks for the deployment toolchain.

Each check covers one service the deployer depends on and reports a
``HealthStatus``. ``HealthChecker.check_all`` runs every selected check in a
worker thread with its own timeout; a check that raises or times out is
reported UNHEALTHY, so ``check_all`` never raises.

Example:
    >>> checker = HealthChecker(config, platform=VTEXClient(), git=git, gate=gate)  # doctest: +SKIP
    >>> results = checker.check_all()  # doctest: +SKIP
    >>> overall_state(results)  # doctest: +SKIP
    <HealthState.HEALTHY: 'healthy'>
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from vtex_deploy.errors import ConfigurationError
from vtex_deploy.schemas.deploy import Environment
from vtex_deploy.telemetry.sanitization import sanitize_error_message
from vtex_deploy.telemetry.tracing import create_span

if TYPE_CHECKING:
    from vtex_deploy.contracts import PlatformClient, ValidationGate, VersionControl
    from vtex_deploy.schemas.config import DeployerConfig

logger = structlog.get_logger(__name__)

DEFAULT_HEALTH_CHECK_TIMEOUT: float = 30.0

HEALTH_SERVICES = ("config", "vtex", "git", "manifest")


class HealthState(str, Enum):
    """Health of one service.

    Attributes:
        HEALTHY: Service is fully usable for deployments.
        DEGRADED: Service works but something needs attention.
        UNHEALTHY: Deployments relying on the service will fail.
    """

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthState.HEALTHY: 0, HealthState.DEGRADED: 1, HealthState.UNHEALTHY: 2}


class HealthStatus(BaseModel):
    """Result of one health check.

    Examples:
        >>> HealthStatus(service="git", state=HealthState.DEGRADED).state.value
        'degraded'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    service: str = Field(..., min_length=1, description="Checked service")
    state: HealthState = Field(..., description="Health state")
    message: str = Field(default="", description="Human-readable summary")
    details: dict[str, Any] = Field(default_factory=dict, description="Diagnostic data")


def overall_state(results: Iterable[HealthStatus]) -> HealthState:
    """Worst state among ``results`` (HEALTHY when empty)."""
    return max(
        (status.state for status in results),
        key=_SEVERITY.__getitem__,
        default=HealthState.HEALTHY,
    )


class HealthChecker:
    """Checks the configuration, the VTEX toolbelt, the git working copy and the manifest.

    Args:
        config: Deployer configuration.
        platform: Platform control client.
        git: Version control working copy.
        gate: Project validation gates (manifest access).
    """

    def __init__(
        self,
        config: DeployerConfig,
        *,
        platform: PlatformClient,
        git: VersionControl,
        gate: ValidationGate,
    ) -> None:
        self.config = config
        self._platform = platform
        self._git = git
        self._gate = gate
        self._checks: dict[str, Callable[[], HealthStatus]] = {
            "config": self.check_config,
            "vtex": self.check_vtex,
            "git": self.check_git,
            "manifest": self.check_manifest,
        }

    def check_config(self) -> HealthStatus:
        environments = self.config.environments
        problems: list[str] = []
        missing = [
            env.value
            for env in (Environment.QA, Environment.PRODUCTION)
            if env not in environments
        ]
        if missing:
            problems.append(f"Missing environment configuration: {', '.join(missing)}")
        for env, env_config in sorted(environments.items(), key=lambda item: item[0].value):
            try:
                env_config.resolve_auth_token()
            except ConfigurationError:
                problems.append(f"No auth token for {env.value} ({env_config.auth_token_env})")

        details = {
            env.value: {"account": env_config.account, "workspace": env_config.workspace}
            for env, env_config in environments.items()
        }
        if problems:
            return HealthStatus(
                service="config",
                state=HealthState.DEGRADED,
                message="; ".join(problems),
                details=details,
            )
        return HealthStatus(
            service="config",
            state=HealthState.HEALTHY,
            message="Configuration is valid",
            details=details,
        )

    def check_vtex(self) -> HealthStatus:
        self._platform.validate_cli()
        details: dict[str, Any] = {"cli_available": True}
        try:
            apps = self._platform.list_installed_apps()
        except Exception as e:
            message = sanitize_error_message(str(e))
            details["apps_error"] = message
            return HealthStatus(
                service="vtex",
                state=HealthState.DEGRADED,
                message=f"VTEX CLI available but listing apps failed: {message}",
                details=details,
            )
        details["installed_apps"] = len(apps)
        return HealthStatus(
            service="vtex",
            state=HealthState.HEALTHY,
            message="VTEX CLI is operational",
            details=details,
        )

    def check_git(self) -> HealthStatus:
        details: dict[str, Any] = {
            "branch": self._git.get_current_branch(),
            "clean": self._git.is_clean(),
            "latest_tag": self._git.get_latest_tag(),
        }
        if not details["clean"]:
            return HealthStatus(
                service="git",
                state=HealthState.DEGRADED,
                message="Working tree has uncommitted changes",
                details=details,
            )
        return HealthStatus(
            service="git",
            state=HealthState.HEALTHY,
            message="Git working copy is clean",
            details=details,
        )

    def check_manifest(self) -> HealthStatus:
        manifest = self._gate.get_manifest()
        return HealthStatus(
            service="manifest",
            state=HealthState.HEALTHY,
            message=f"Manifest found for {manifest.name}@{manifest.version}",
            details={"vendor": manifest.vendor, "name": manifest.name, "version": manifest.version},
        )

    def check_all(
        self,
        services: Iterable[str] | None = None,
        timeout: float = DEFAULT_HEALTH_CHECK_TIMEOUT,
    ) -> dict[str, HealthStatus]:
        """Run the selected checks (all of them by default), in order.

        Raises:
            ValueError: If a service name is unknown.
        """
        selected = list(services) if services is not None else list(HEALTH_SERVICES)
        unknown = [name for name in selected if name not in self._checks]
        if unknown:
            raise ValueError(f"Unknown health check service: {', '.join(unknown)}")

        logger.debug("health_check_all_started", services=selected, timeout_per_check=timeout)
        results: dict[str, HealthStatus] = {}
        with create_span("vtex_deploy.health", attributes={"health.services": ",".join(selected)}):
            for name in selected:
                results[name] = self._run_check(name, timeout)

        unhealthy = [
            name for name, status in results.items() if status.state == HealthState.UNHEALTHY
        ]
        logger.info(
            "health_check_all_completed",
            total=len(results),
            unhealthy=unhealthy,
            state=overall_state(results.values()).value,
        )
        return results

    def _run_check(self, name: str, timeout: float) -> HealthStatus:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"health-{name}")
        try:
            future = executor.submit(self._checks[name])
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning("health_check_timeout", service=name, timeout=timeout)
            return HealthStatus(
                service=name,
                state=HealthState.UNHEALTHY,
                message=f"Health check timed out after {timeout}s",
            )
        except Exception as e:
            message = sanitize_error_message(str(e))
            logger.error("health_check_error", service=name, error=message)
            return HealthStatus(
                service=name,
                state=HealthState.UNHEALTHY,
                message=message,
                details={"exception_type": type(e).__name__},
            )
        finally:
            # a hung check keeps its thread; the report does not wait for it
            executor.shutdown(wait=False)


__all__: list[str] = [
    "DEFAULT_HEALTH_CHECK_TIMEOUT",
    "HEALTH_SERVICES",
    "HealthChecker",
    "HealthState",
    "HealthStatus",
    "overall_state",
]
