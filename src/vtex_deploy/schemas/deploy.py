"""Deployment lifecycle schemas.

This module defines Pydantic v2 schemas for the records produced while an
app release moves through the QA and production paths: the per-deployment
record with its append-only audit log, rollback records, backup markers and
the results returned by validation gates.

Key Components:
    Environment: Closed set of deployment environments
    DeployStatus: Deployment record status (monotonic)
    ReleaseTag: Release channel (beta, stable)
    TestScope: Test suite selector for validation gates
    GateStatus: Gate execution result status
    GateResult: Individual gate execution result
    AppManifest: App identity read from the project manifest
    InstalledApp: App entry reported installed by the platform
    DeploymentRecord: Mutable per-deployment record owned by one run
    RollbackRecord: Immutable record of one rollback invocation
    VersionBackup: Audit marker written before a rollback installs
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from vtex_deploy.errors import ErrorKind, InvalidTransitionError

logger = structlog.get_logger(__name__)


# =============================================================================
# Enums
# =============================================================================


class Environment(str, Enum):
    """Deployment environments.

    Examples:
        >>> Environment("qa")
        <Environment.QA: 'qa'>
    """

    DEVELOPMENT = "development"
    QA = "qa"
    PRODUCTION = "production"


class DeployStatus(str, Enum):
    """Deployment record status.

    Transitions are monotonic: PENDING -> IN_PROGRESS -> one of the
    terminal states, never backward.

    Attributes:
        PENDING: Record created, nothing executed yet.
        IN_PROGRESS: Steps are executing.
        SUCCESS: All steps completed.
        FAILED: A step failed (terminal).
        CANCELLED: Cancellation was observed between steps (terminal).
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is allowed from this status."""
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {DeployStatus.SUCCESS, DeployStatus.FAILED, DeployStatus.CANCELLED}
)

_STATUS_RANK: dict[DeployStatus, int] = {
    DeployStatus.PENDING: 0,
    DeployStatus.IN_PROGRESS: 1,
    DeployStatus.SUCCESS: 2,
    DeployStatus.FAILED: 2,
    DeployStatus.CANCELLED: 2,
}


class ReleaseTag(str, Enum):
    """Release channel used when registering a version with the platform."""

    BETA = "beta"
    STABLE = "stable"


class TestScope(str, Enum):
    """Test suite selector passed to ``ValidationGate.run_tests``."""

    __test__ = False

    UNIT = "unit"
    INTEGRATION = "integration"
    ALL = "all"
    SMOKE = "smoke"


class GateStatus(str, Enum):
    """Gate execution result status.

    Attributes:
        PASSED: Gate validation succeeded.
        FAILED: Gate validation failed.
        SKIPPED: Gate not configured for this project.
        WARNING: Gate passed with warnings.

    Examples:
        >>> GateStatus.WARNING.value
        'warning'
    """

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WARNING = "warning"


# =============================================================================
# Pydantic Models
# =============================================================================


class GateResult(BaseModel):
    """Individual gate execution result.

    Attributes:
        gate: Name of the gate that was executed.
        status: Execution result status (passed, failed, skipped, warning).
        issues: Issue messages reported by the gate.
        duration_ms: Execution time in milliseconds.
        details: Gate-specific output data.

    Examples:
        >>> result = GateResult(gate="manifest", status=GateStatus.PASSED)
        >>> result.blocking
        False
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    gate: str = Field(
        ...,
        min_length=1,
        description="Gate that was executed",
    )
    status: GateStatus = Field(
        ...,
        description="Execution result status",
    )
    issues: list[str] = Field(
        default_factory=list,
        description="Issue messages reported by the gate",
    )
    duration_ms: int = Field(
        default=0,
        ge=0,
        description="Execution time in milliseconds",
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Gate-specific output data",
    )

    @property
    def blocking(self) -> bool:
        """Whether the gate result is FAILED."""
        return self.status == GateStatus.FAILED


class AppManifest(BaseModel):
    """App identity read from the project manifest.

    Missing name resolves to ``unknown`` and missing version to ``0.1.0``.

    Examples:
        >>> AppManifest.model_validate({"vendor": "acme"}).version
        '0.1.0'
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    vendor: str = Field(default="", description="App vendor")
    name: str = Field(default="unknown", description="App name")
    version: str = Field(default="0.1.0", description="Manifest version")
    dependencies: dict[str, str] = Field(
        default_factory=dict, description="Declared app dependencies"
    )

    @model_validator(mode="before")
    @classmethod
    def _fill_blank_identity(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("name"):
                data["name"] = "unknown"
            if not data.get("version"):
                data["version"] = "0.1.0"
        return data


class InstalledApp(BaseModel):
    """App entry reported installed in the current workspace."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(..., description="App name")
    version: str = Field(..., description="Installed version")
    status: str = Field(
        default="installed",
        description="installed, installing, failed or uninstalling",
    )


class DeploymentRecord(BaseModel):
    """Per-deployment record, mutated only by the run that owns it.

    The audit log is append-only; ``end_time`` is set exactly when the
    status becomes terminal. Readers receive deep copies through the
    ledger, never the live object.

    Attributes:
        id: Unique deployment identifier (``deploy_<ms>_<hex8>``).
        environment: Target environment.
        status: Current status.
        version: Version resolved during execution (None until resolved).
        workspace: Workspace the deployment targets.
        account: Platform account the deployment targets.
        app_name: App being deployed, once known.
        start_time: Creation time (UTC).
        end_time: Terminal transition time (UTC).
        logs: Timestamped audit lines, ``"<iso>: <message>"``.
        error: Message of the error that failed the deployment.
        error_kind: Kind of that error.
        rollback_version: Version auto-rollback targeted, when it ran.
        trace_id: OpenTelemetry trace ID of the deployment span.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str = Field(..., min_length=1, description="Unique deployment identifier")
    environment: Environment = Field(..., description="Target environment")
    status: DeployStatus = Field(
        default=DeployStatus.PENDING, description="Current status"
    )
    version: str | None = Field(default=None, description="Resolved version")
    workspace: str = Field(..., min_length=1, description="Target workspace")
    account: str | None = Field(default=None, description="Target account")
    app_name: str | None = Field(default=None, description="App being deployed")
    start_time: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation time (UTC)",
    )
    end_time: datetime | None = Field(
        default=None, description="Terminal transition time (UTC)"
    )
    logs: list[str] = Field(default_factory=list, description="Audit log lines")
    error: str | None = Field(default=None, description="Failure message")
    error_kind: ErrorKind | None = Field(default=None, description="Failure kind")
    rollback_version: str | None = Field(
        default=None, description="Version targeted by auto-rollback"
    )
    trace_id: str | None = Field(
        default=None, description="OpenTelemetry trace ID for correlation"
    )

    @model_validator(mode="after")
    def _check_end_time(self) -> DeploymentRecord:
        if self.status.is_terminal != (self.end_time is not None):
            raise ValueError("end_time must be set if and only if status is terminal")
        return self

    def transition(self, status: DeployStatus, *, at: datetime | None = None) -> None:
        """Move to ``status``, stamping ``end_time`` on terminal states.

        Raises:
            InvalidTransitionError: If the transition is not forward.
        """
        if self.status.is_terminal or _STATUS_RANK[status] <= _STATUS_RANK[self.status]:
            raise InvalidTransitionError(self.status.value, status.value)

        # status and end_time change together to keep the validator satisfied
        end_time = (at or datetime.now(timezone.utc)) if status.is_terminal else None
        object.__setattr__(self, "end_time", end_time)
        self.status = status

    def append_log(self, message: str, *, at: datetime | None = None) -> str | None:
        """Append a timestamped line to the audit log and return it.

        The log is closed once the record is terminal: a line arriving later
        (for example from a step that outlived its timeout) is dropped and
        None is returned.
        """
        if self.status.is_terminal:
            logger.warning(
                "deployment_log_dropped",
                deployment_id=self.id,
                status=self.status.value,
                message=message,
            )
            return None
        stamp = (at or datetime.now(timezone.utc)).isoformat()
        line = f"{stamp}: {message}"
        self.logs.append(line)
        logger.info("deployment_log", deployment_id=self.id, message=message)
        return line

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_ms(self) -> int:
        """Elapsed milliseconds, up to now for running deployments."""
        end = self.end_time or datetime.now(timezone.utc)
        return max(0, int((end - self.start_time).total_seconds() * 1000))


class RollbackRecord(BaseModel):
    """Record of one rollback invocation; never mutated after creation.

    Attributes:
        rollback_id: Unique rollback identifier.
        success: Whether the target version ended up installed.
        previous_version: Version installed before the rollback, if known.
        current_version: Target version of the rollback.
        rollback_time: Completion time (UTC).
        duration_ms: Elapsed time in milliseconds.
        affected_workspaces: Workspaces touched by the rollback.
        environment: Environment rolled back.
        reason: Free-text reason supplied by the caller.
        deployment_id: Deployment that triggered an auto-rollback.
        logs: Audit lines collected during the rollback.
        error: Failure message when unsuccessful.
        error_kind: Failure kind when unsuccessful.
        trace_id: OpenTelemetry trace ID of the rollback span.

    Examples:
        >>> from uuid import uuid4
        >>> record = RollbackRecord(
        ...     rollback_id=uuid4(),
        ...     success=True,
        ...     previous_version="1.2.0",
        ...     current_version="1.1.0",
        ...     rollback_time=datetime.now(timezone.utc),
        ...     duration_ms=1200,
        ...     affected_workspaces=["prodtest"],
        ...     environment=Environment.PRODUCTION,
        ... )
        >>> record.success
        True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rollback_id: UUID = Field(..., description="Unique rollback identifier")
    success: bool = Field(..., description="Whether the rollback succeeded")
    previous_version: str | None = Field(
        default=None, description="Version installed before the rollback"
    )
    current_version: str = Field(..., description="Target version")
    rollback_time: datetime = Field(..., description="Completion time (UTC)")
    duration_ms: int = Field(..., ge=0, description="Elapsed milliseconds")
    affected_workspaces: list[str] = Field(
        default_factory=list, description="Workspaces touched"
    )
    environment: Environment = Field(..., description="Environment rolled back")
    reason: str | None = Field(default=None, description="Caller-supplied reason")
    deployment_id: str | None = Field(
        default=None, description="Deployment that triggered an auto-rollback"
    )
    logs: list[str] = Field(default_factory=list, description="Audit lines")
    error: str | None = Field(default=None, description="Failure message")
    error_kind: ErrorKind | None = Field(default=None, description="Failure kind")
    trace_id: str | None = Field(
        default=None, description="OpenTelemetry trace ID for correlation"
    )


class VersionBackup(BaseModel):
    """Audit marker recorded before a rollback replaces the installed version."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str | None = Field(..., description="Version being replaced")
    environment: Environment = Field(..., description="Environment")
    workspace: str = Field(..., description="Workspace")
    recorded_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the marker was recorded (UTC)",
    )


__all__: list[str] = [
    "AppManifest",
    "DeployStatus",
    "DeploymentRecord",
    "Environment",
    "GateResult",
    "GateStatus",
    "InstalledApp",
    "ReleaseTag",
    "RollbackRecord",
    "TestScope",
    "VersionBackup",
]
