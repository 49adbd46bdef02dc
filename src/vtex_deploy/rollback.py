"""Rollback of an installed app to a previously registered version.

A rollback authenticates against the environment's account, selects the
workspace, reads the installed version for the audit trail, checks that
the target is a registered version of the app, records a backup marker,
installs the target and verifies it. Every invocation produces exactly one
``RollbackRecord`` and one rollback notification, successful or not.

Standalone rollbacks take the (account, workspace) lease themselves; an
auto-rollback passes the failed deployment's id as ``lease_owner`` so it
re-enters the lease that deployment already holds.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog

from vtex_deploy.errors import (
    DeployError,
    ErrorKind,
    NoPreviousVersionError,
    RollbackFailedError,
    VersionNotFoundError,
)
from vtex_deploy.lease import WorkspaceLeaseManager
from vtex_deploy.notifications import send_rollback
from vtex_deploy.schemas.deploy import Environment, RollbackRecord, VersionBackup
from vtex_deploy.telemetry.sanitization import sanitize_error_message
from vtex_deploy.telemetry.tracing import create_span
from vtex_deploy.verification import (
    app_reference,
    current_installed_version,
    verify_installation,
)

if TYPE_CHECKING:
    from vtex_deploy.contracts import NotificationSink, PlatformClient, ValidationGate
    from vtex_deploy.ledger import DeploymentLedger
    from vtex_deploy.schemas.config import DeployerConfig, RollbackOptions

logger = structlog.get_logger(__name__)


def _stamp(message: str) -> str:
    return f"{datetime.now(timezone.utc).isoformat()}: {message}"


class RollbackManager:
    """Validates and executes reversion to a registered app version.

    Example:
        >>> manager = RollbackManager(config, platform=client, gate=gate, ledger=ledger,
        ...                           notifier=sink)  # doctest: +SKIP
        >>> record = manager.rollback("1.3.0", Environment.PRODUCTION)  # doctest: +SKIP
        >>> record.success  # doctest: +SKIP
        True
    """

    def __init__(
        self,
        config: DeployerConfig,
        *,
        platform: PlatformClient,
        gate: ValidationGate,
        ledger: DeploymentLedger,
        notifier: NotificationSink,
        leases: WorkspaceLeaseManager | None = None,
    ) -> None:
        self._config = config
        self._platform = platform
        self._gate = gate
        self._ledger = ledger
        self._notifier = notifier
        self._leases = leases or WorkspaceLeaseManager()
        self._log = logger.bind(
            environments=sorted(env.value for env in config.environments),
        )

    def previous_version(self, app_name: str) -> str:
        """Second most recent registered version of ``app_name``.

        Requires an authenticated platform session.

        Raises:
            NoPreviousVersionError: If fewer than two versions are registered.
        """
        versions = self._platform.get_app_versions(app_name)
        if len(versions) < 2:
            raise NoPreviousVersionError(app_name, versions)
        return versions[1]

    def resolve_rollback_target(self, options: RollbackOptions) -> str | None:
        """Explicit target for ``options``.

        Returns ``options.version`` when given, else the version deployed by
        ``options.deployment_id``. None means the previous registered version,
        which can only be read after authenticating.

        Raises:
            DeploymentNotFoundError: If ``deployment_id`` is unknown.
            RollbackFailedError: If that deployment never resolved a version.
        """
        if options.version:
            return options.version
        if options.deployment_id:
            record = self._ledger.get_status(options.deployment_id)
            if record.version is None:
                raise RollbackFailedError(
                    options.deployment_id,
                    "deployment has no resolved version",
                )
            return record.version
        return None

    def rollback_with_options(self, options: RollbackOptions) -> RollbackRecord:
        """Run a standalone rollback described by ``options``."""
        target = self.resolve_rollback_target(options)
        self._log.info(
            "rollback_requested",
            environment=options.environment.value,
            target_version=target,
            deployment_id=options.deployment_id,
        )
        return self.rollback(
            target,
            options.environment,
            workspace=options.workspace,
            reason=options.reason,
        )

    def rollback(
        self,
        target_version: str | None,
        environment: Environment,
        *,
        workspace: str | None = None,
        reason: str | None = None,
        deployment_id: str | None = None,
        lease_owner: str | None = None,
    ) -> RollbackRecord:
        """Roll ``environment`` back to ``target_version``.

        Args:
            target_version: Version to install; None selects the previous
                registered version.
            environment: Environment to roll back.
            workspace: Workspace override (environment's workspace if None).
            reason: Free-text reason recorded with the rollback.
            deployment_id: Deployment that triggered an auto-rollback.
            lease_owner: Owner of an already-held lease to re-enter.

        Returns:
            RollbackRecord with success=True.

        Raises:
            VersionNotFoundError: If the target is not a registered version.
            DeployError: Any other failure, after the failure record was
                produced and notified.
        """
        rollback_id = uuid4()
        started = time.monotonic()
        logs: list[str] = []
        previous: str | None = None
        target = target_version
        target_workspace = workspace

        with create_span(
            "vtex_deploy.rollback",
            attributes={
                "rollback.id": str(rollback_id),
                "rollback.environment": environment.value,
                "rollback.target_version": target_version,
                "deploy.id": deployment_id,
            },
        ) as span:
            span_context = span.get_span_context()
            trace_id = format(span_context.trace_id, "032x") if span_context.is_valid else None

            self._log.info(
                "rollback_started",
                rollback_id=str(rollback_id),
                environment=environment.value,
                target_version=target_version,
                deployment_id=deployment_id,
                reason=reason,
            )

            try:
                env_config = self._config.environment(environment)
                target_workspace = workspace or env_config.workspace
                owner = lease_owner or f"rollback_{rollback_id.hex[:8]}"

                with self._leases.hold(
                    env_config.account,
                    target_workspace,
                    owner,
                    timeout=self._config.deployment.lease_timeout_seconds,
                ):
                    self._platform.authenticate(env_config.resolve_auth_token())
                    self._platform.use_workspace(target_workspace)
                    logs.append(_stamp(f"Switched to workspace: {target_workspace}"))

                    app_name = self._gate.get_manifest().name
                    previous = current_installed_version(self._platform, app_name)
                    logs.append(_stamp(f"Current version: {previous or 'none'}"))

                    if target is None:
                        target = self.previous_version(app_name)
                        logs.append(_stamp(f"Selected previous version: {target}"))
                    self._validate_target(app_name, target)

                    self._record_backup(previous, environment, target_workspace)

                    self._platform.install_app(app_reference(app_name, target))
                    verify_installation(self._platform, app_name, target)
                    logs.append(_stamp(f"Rollback from {previous or 'none'} to {target}"))
            except Exception as e:
                message = str(e)
                logs.append(_stamp(f"Rollback failed: {message}"))
                record = RollbackRecord(
                    rollback_id=rollback_id,
                    success=False,
                    previous_version=previous,
                    current_version=target or "unknown",
                    rollback_time=datetime.now(timezone.utc),
                    duration_ms=int((time.monotonic() - started) * 1000),
                    affected_workspaces=[target_workspace] if target_workspace else [],
                    environment=environment,
                    reason=reason,
                    deployment_id=deployment_id,
                    logs=logs,
                    error=message,
                    error_kind=e.kind if isinstance(e, DeployError) else ErrorKind.ROLLBACK,
                    trace_id=trace_id,
                )
                send_rollback(self._notifier, record)
                self._log.error(
                    "rollback_failed",
                    rollback_id=str(rollback_id),
                    environment=environment.value,
                    target_version=target,
                    error=sanitize_error_message(message),
                    error_kind=record.error_kind.value if record.error_kind else None,
                )
                raise

            record = RollbackRecord(
                rollback_id=rollback_id,
                success=True,
                previous_version=previous,
                current_version=target,
                rollback_time=datetime.now(timezone.utc),
                duration_ms=int((time.monotonic() - started) * 1000),
                affected_workspaces=[target_workspace],
                environment=environment,
                reason=reason,
                deployment_id=deployment_id,
                logs=logs,
                trace_id=trace_id,
            )
            send_rollback(self._notifier, record)
            self._log.info(
                "rollback_completed",
                rollback_id=str(rollback_id),
                environment=environment.value,
                previous_version=previous,
                current_version=target,
                duration_ms=record.duration_ms,
            )
            return record

    def _validate_target(self, app_name: str, target: str) -> None:
        available = self._platform.get_app_versions(app_name)
        if target not in available:
            raise VersionNotFoundError(target, available)

    def _record_backup(
        self,
        version: str | None,
        environment: Environment,
        workspace: str,
    ) -> None:
        backup = VersionBackup(version=version, environment=environment, workspace=workspace)
        try:
            self._ledger.record_backup(backup)
        except Exception as e:
            self._log.warning(
                "version_backup_failed",
                version=version,
                environment=environment.value,
                error=sanitize_error_message(str(e)),
            )
            return
        self._log.info("version_backup_recorded", version=version, environment=environment.value)


__all__: list[str] = ["RollbackManager"]
