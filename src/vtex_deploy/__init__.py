"""vtex-deploy: deployment orchestration for VTEX IO apps.

Sequences QA and production releases against the VTEX platform, enforces
environment-specific validation gates, keeps an auditable record of every
deployment and rolls failed production releases back automatically.

Example:
    >>> from vtex_deploy import DeploymentOrchestrator, QADeployOptions
    >>> from vtex_deploy.adapters import GitVersionControl, ProjectValidationGate, VTEXClient
    >>> from vtex_deploy.config import load_config
    >>> config = load_config("vtex-deploy.yaml")  # doctest: +SKIP
    >>> orchestrator = DeploymentOrchestrator(
    ...     config,
    ...     platform=VTEXClient(),
    ...     git=GitVersionControl(),
    ...     gate=ProjectValidationGate(config.gates),
    ... )  # doctest: +SKIP
    >>> orchestrator.deploy_to_qa(QADeployOptions(skip_tests=True))  # doctest: +SKIP
"""

from __future__ import annotations

from vtex_deploy.errors import DeployError, ErrorKind
from vtex_deploy.ledger import DeploymentLedger, InMemoryDeploymentStore
from vtex_deploy.lease import WorkspaceLeaseManager
from vtex_deploy.orchestrator import DeploymentOrchestrator
from vtex_deploy.rollback import RollbackManager
from vtex_deploy.schemas import (
    DeployerConfig,
    DeploymentRecord,
    DeployStatus,
    Environment,
    ProductionDeployOptions,
    QADeployOptions,
    RollbackOptions,
    RollbackRecord,
)
from vtex_deploy.steps import CancellationToken

__version__ = "0.1.0"

__all__: list[str] = [
    "CancellationToken",
    "DeployError",
    "DeployStatus",
    "DeployerConfig",
    "DeploymentLedger",
    "DeploymentOrchestrator",
    "DeploymentRecord",
    "Environment",
    "ErrorKind",
    "InMemoryDeploymentStore",
    "ProductionDeployOptions",
    "QADeployOptions",
    "RollbackManager",
    "RollbackOptions",
    "RollbackRecord",
    "WorkspaceLeaseManager",
    "__version__",
]
