"""Deployment exception hierarchy for vtex-deploy.

All exceptions raised by the orchestration core inherit from DeployError.
Each class carries an ErrorKind tag so callers branch on the kind of
failure instead of inspecting message text.

Exception Hierarchy:
    DeployError (base)
    ├── ValidationFailedError       # A validation gate blocked the deployment
    ├── AuthenticationFailedError   # Platform authentication failed
    ├── ReleaseFailedError          # Registering a release failed
    ├── InstallFailedError          # Installing an app reference failed
    ├── VerificationFailedError     # Installed state diverges from expectation
    ├── RollbackFailedError         # Reverting to a previous version failed
    ├── VersionNotFoundError        # Target version is not registered
    ├── NoPreviousVersionError      # Nothing earlier to roll back to
    ├── DeploymentNotFoundError     # Unknown deployment id
    ├── StepTimeoutError            # A step exceeded its time budget
    ├── DeploymentCancelledError    # Cancellation was requested
    ├── LeaseUnavailableError       # Workspace lease could not be acquired
    ├── InvalidTransitionError      # Non-monotonic status transition
    ├── PlatformCommandError        # Platform CLI invocation failed
    ├── VersionControlError         # git invocation failed
    └── ConfigurationError          # Configuration missing or invalid

Exit Codes:
    0 - Success
    1 - Any deployment, rollback or query failure (DeployError)
    2 - Usage error (handled by click)

Example:
    >>> from vtex_deploy.errors import ErrorKind, VersionNotFoundError
    >>> err = VersionNotFoundError("1.0.0", available=["1.1.0"])
    >>> err.kind is ErrorKind.VERSION_NOT_FOUND
    True
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Kind tag attached to every deployment failure.

    Examples:
        >>> ErrorKind.INSTALL.value
        'install'
    """

    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    RELEASE = "release"
    INSTALL = "install"
    VERIFICATION = "verification"
    ROLLBACK = "rollback"
    VERSION_NOT_FOUND = "version_not_found"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    LEASE_UNAVAILABLE = "lease_unavailable"
    INVALID_TRANSITION = "invalid_transition"
    PLATFORM = "platform"
    VERSION_CONTROL = "version_control"
    CONFIGURATION = "configuration"


class DeployError(Exception):
    """Base exception for all vtex-deploy errors.

    Attributes:
        kind: Error kind tag used by callers to branch on failure type.
        exit_code: CLI exit code for this error type (default: 1).
    """

    kind: ErrorKind = ErrorKind.PLATFORM
    exit_code: int = 1


class ValidationFailedError(DeployError):
    """Raised when a validation gate blocks the deployment.

    Attributes:
        gate: Name of the gate that failed (e.g., "manifest", "clean_tree").
        issues: Issue messages reported by the gate.
        overridable: Whether the caller's force flag could have bypassed it.

    Example:
        >>> raise ValidationFailedError("manifest", ["Missing vendor"], overridable=False)
        Traceback (most recent call last):
            ...
        ValidationFailedError: Validation gate 'manifest' failed: Missing vendor
    """

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        gate: str,
        issues: list[str] | None = None,
        *,
        overridable: bool = True,
    ) -> None:
        self.gate = gate
        self.issues = list(issues or [])
        self.overridable = overridable

        msg = f"Validation gate '{gate}' failed"
        if self.issues:
            msg += ": " + "; ".join(self.issues)
        if overridable:
            msg += ". Use --force to override."
        super().__init__(msg)


class AuthenticationFailedError(DeployError):
    """Raised when authentication against the platform account fails.

    Authentication failures are fatal and never retried.
    """

    kind = ErrorKind.AUTHENTICATION

    def __init__(self, account: str, reason: str) -> None:
        self.account = account
        self.reason = reason
        super().__init__(f"Authentication failed for account {account}: {reason}")


class ReleaseFailedError(DeployError):
    """Raised when a release cannot be registered with the platform."""

    kind = ErrorKind.RELEASE

    def __init__(self, version: str, reason: str) -> None:
        self.version = version
        self.reason = reason
        super().__init__(f"Failed to create release {version}: {reason}")


class InstallFailedError(DeployError):
    """Raised when installing an app reference fails.

    Fatal per attempt; there is no built-in retry policy.
    """

    kind = ErrorKind.INSTALL

    def __init__(self, reference: str, reason: str) -> None:
        self.reference = reference
        self.reason = reason
        super().__init__(f"Failed to install app {reference}: {reason}")


class VerificationFailedError(DeployError):
    """Raised when the installed state does not match the expected release.

    Example:
        >>> raise VerificationFailedError("vendor.store", "1.0.0", "not found in installed apps")
        Traceback (most recent call last):
            ...
        VerificationFailedError: App vendor.store@1.0.0 not found in installed apps
    """

    kind = ErrorKind.VERIFICATION

    def __init__(self, app: str, version: str, reason: str) -> None:
        self.app = app
        self.version = version
        self.reason = reason
        super().__init__(f"App {app}@{version} {reason}")


class RollbackFailedError(DeployError):
    """Raised when a rollback cannot complete."""

    kind = ErrorKind.ROLLBACK

    def __init__(self, target_version: str, reason: str) -> None:
        self.target_version = target_version
        self.reason = reason
        super().__init__(f"Rollback to {target_version} failed: {reason}")


class VersionNotFoundError(DeployError):
    """Raised when a rollback target is not a registered version of the app.

    Attributes:
        version: The requested version.
        available: Versions registered with the platform (most recent first).
    """

    kind = ErrorKind.VERSION_NOT_FOUND

    def __init__(self, version: str, available: list[str] | None = None) -> None:
        self.version = version
        self.available = list(available or [])

        msg = f"Version {version} not found in available versions"
        if self.available:
            preview = ", ".join(self.available[:5])
            if len(self.available) > 5:
                preview += f" (and {len(self.available) - 5} more)"
            msg += f": {preview}"
        super().__init__(msg)


class NoPreviousVersionError(DeployError):
    """Raised when an app has no earlier registered version to roll back to."""

    kind = ErrorKind.VERSION_NOT_FOUND

    def __init__(self, app: str, available: list[str] | None = None) -> None:
        self.app = app
        self.available = list(available or [])
        super().__init__("No previous version available for rollback")


class DeploymentNotFoundError(DeployError):
    """Raised when a deployment id is not present in the ledger."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, deployment_id: str) -> None:
        self.deployment_id = deployment_id
        super().__init__(f"Deployment {deployment_id} not found")


class StepTimeoutError(DeployError):
    """Raised when a deployment step exceeds its time budget."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, step: str, timeout_seconds: float) -> None:
        self.step = step
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Step '{step}' timed out after {timeout_seconds:g} seconds"
        )


class DeploymentCancelledError(DeployError):
    """Raised when cancellation is observed between two steps."""

    kind = ErrorKind.CANCELLED

    def __init__(self, deployment_id: str, before_step: str | None = None) -> None:
        self.deployment_id = deployment_id
        self.before_step = before_step
        msg = f"Deployment {deployment_id} was cancelled"
        if before_step:
            msg += f" before step '{before_step}'"
        super().__init__(msg)


class LeaseUnavailableError(DeployError):
    """Raised when the (account, workspace) lease is held by another run."""

    kind = ErrorKind.LEASE_UNAVAILABLE

    def __init__(
        self,
        account: str,
        workspace: str,
        holder: str | None,
        timeout_seconds: float,
    ) -> None:
        self.account = account
        self.workspace = workspace
        self.holder = holder
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Workspace {account}/{workspace} is leased by {holder or 'another deployment'}; "
            f"gave up after {timeout_seconds:g} seconds"
        )


class InvalidTransitionError(DeployError):
    """Raised when a deployment status would move backwards."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid status transition: {from_status} -> {to_status}")


class PlatformCommandError(DeployError):
    """Raised when a platform CLI invocation fails or times out."""

    kind = ErrorKind.PLATFORM

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"VTEX CLI error running '{command}': {reason}")


class VersionControlError(DeployError):
    """Raised when a git invocation fails."""

    kind = ErrorKind.VERSION_CONTROL

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"git {command} failed: {reason}")


class ConfigurationError(DeployError):
    """Raised when configuration is missing or invalid."""

    kind = ErrorKind.CONFIGURATION


__all__: list[str] = [
    "AuthenticationFailedError",
    "ConfigurationError",
    "DeployError",
    "DeploymentCancelledError",
    "DeploymentNotFoundError",
    "ErrorKind",
    "InstallFailedError",
    "InvalidTransitionError",
    "LeaseUnavailableError",
    "NoPreviousVersionError",
    "PlatformCommandError",
    "ReleaseFailedError",
    "RollbackFailedError",
    "StepTimeoutError",
    "ValidationFailedError",
    "VerificationFailedError",
    "VersionControlError",
    "VersionNotFoundError",
]
