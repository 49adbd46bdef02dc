"""Pydantic schemas for deployment records and configuration."""

from __future__ import annotations

from vtex_deploy.schemas.config import (
    DeployerConfig,
    EnvironmentConfig,
    ProductionDeployOptions,
    QADeployOptions,
    RollbackOptions,
    WebhookConfig,
)
from vtex_deploy.schemas.deploy import (
    AppManifest,
    DeploymentRecord,
    DeployStatus,
    Environment,
    GateResult,
    GateStatus,
    InstalledApp,
    ReleaseTag,
    RollbackRecord,
    TestScope,
    VersionBackup,
)

__all__: list[str] = [
    "AppManifest",
    "DeployStatus",
    "DeployerConfig",
    "DeploymentRecord",
    "Environment",
    "EnvironmentConfig",
    "GateResult",
    "GateStatus",
    "InstalledApp",
    "ProductionDeployOptions",
    "QADeployOptions",
    "ReleaseTag",
    "RollbackOptions",
    "RollbackRecord",
    "TestScope",
    "VersionBackup",
    "WebhookConfig",
]
