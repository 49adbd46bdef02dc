"""Protocols for the collaborators the orchestrator drives.

The orchestrator never talks to git, the VTEX CLI, test runners or
notification transports directly. It consumes these protocols; concrete
adapters live in ``vtex_deploy.adapters`` and ``vtex_deploy.notifications``.

All methods are blocking from the orchestrator's point of view. Failures
are signalled by raising; gate outcomes are returned as ``GateResult``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from vtex_deploy.schemas.deploy import (
    AppManifest,
    DeploymentRecord,
    GateResult,
    InstalledApp,
    ReleaseTag,
    RollbackRecord,
    TestScope,
)


@runtime_checkable
class ValidationGate(Protocol):
    """Protocol for project validation gates.

    Each gate returns a GateResult with a pass/fail/warn status and the
    list of issue messages; only unexpected errors are raised.
    """

    def get_manifest(self) -> AppManifest:
        """Read the app manifest (name and base version)."""
        ...

    def validate_manifest(self) -> GateResult: ...

    def check_dependencies(self) -> GateResult: ...

    def security_scan(self) -> GateResult: ...

    def run_tests(self, scope: TestScope) -> GateResult:
        """Run the test suite selected by ``scope``."""
        ...

    def validate_production_readiness(self) -> GateResult: ...

    def check_security_compliance(self) -> GateResult: ...


@runtime_checkable
class PlatformClient(Protocol):
    """Protocol for the platform control plane.

    Example:
        >>> class FakePlatform:
        ...     def authenticate(self, token: str) -> None:
        ...         pass
        ...     def use_workspace(self, name: str) -> None:
        ...         pass
    """

    def validate_cli(self) -> None:
        """Raise if the platform CLI is unavailable."""
        ...

    def validate_account(self, account: str) -> None:
        """Raise if ``account`` is not reachable with the current login."""
        ...

    def validate_workspace(self, name: str) -> None:
        """Ensure workspace ``name`` exists, creating it when absent."""
        ...

    def authenticate(self, token: str) -> None: ...

    def use_workspace(self, name: str) -> None: ...

    def release(self, version: str, tag: ReleaseTag) -> None: ...

    def install_app(self, reference: str) -> None:
        """Install ``<app>@<version>`` into the current workspace."""
        ...

    def list_installed_apps(self) -> list[InstalledApp]: ...

    def get_app_versions(self, name: str) -> list[str]:
        """Registered versions of ``name``, most recent first."""
        ...


@runtime_checkable
class VersionControl(Protocol):
    """Protocol for the project's version control working copy."""

    def is_clean(self) -> bool: ...

    def get_current_branch(self) -> str: ...

    def switch_branch(self, name: str) -> None: ...

    def get_latest_tag(self) -> str | None:
        """Most recent tag, or None when the repository has no tags."""
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Protocol for deployment notifications.

    Delivery is best-effort: callers catch and log anything raised here,
    and a failure never changes a deployment's outcome.
    """

    def send_deployment_notification(self, record: DeploymentRecord) -> None: ...

    def send_rollback_notification(self, record: RollbackRecord) -> None: ...


__all__: list[str] = [
    "NotificationSink",
    "PlatformClient",
    "ValidationGate",
    "VersionControl",
]
