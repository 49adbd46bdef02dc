"""Unit tests for validation and health checks run outside a deployment."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from vtex_deploy.errors import ValidationFailedError
from vtex_deploy.health import HealthState
from vtex_deploy.ledger import DeploymentLedger
from vtex_deploy.orchestrator import VALIDATION_CHECKS, DeploymentOrchestrator
from vtex_deploy.schemas.deploy import Environment, GateResult, GateStatus, TestScope


class TestValidateProject:
    @pytest.mark.requirement("validate")
    def test_default_checks(self, orchestrator: DeploymentOrchestrator, gate: MagicMock) -> None:
        results = orchestrator.validate_project()

        assert [r.gate for r in results] == [
            "validate_manifest",
            "check_dependencies",
            "security_scan",
        ]
        gate.validate_production_readiness.assert_not_called()
        gate.run_tests.assert_not_called()

    @pytest.mark.requirement("validate")
    def test_every_check(self, orchestrator: DeploymentOrchestrator, gate: MagicMock) -> None:
        results = orchestrator.validate_project(VALIDATION_CHECKS)

        assert len(results) == len(VALIDATION_CHECKS)
        assert results[-1].gate == "tests.unit"
        gate.run_tests.assert_called_once_with(TestScope.UNIT)
        gate.check_security_compliance.assert_called_once()

    @pytest.mark.requirement("validate")
    def test_failed_gate_reported_not_raised(
        self, orchestrator: DeploymentOrchestrator, gate: MagicMock
    ) -> None:
        gate.check_dependencies.return_value = GateResult(
            gate="dependencies",
            status=GateStatus.FAILED,
            issues=["Invalid version range for vtex.store: latest"],
        )

        results = orchestrator.validate_project(["manifest", "dependencies"])

        assert [r.status for r in results] == [GateStatus.PASSED, GateStatus.FAILED]
        assert results[1].issues == ["Invalid version range for vtex.store: latest"]

    @pytest.mark.requirement("validate")
    def test_raising_gate_becomes_failed_result(
        self, orchestrator: DeploymentOrchestrator, gate: MagicMock
    ) -> None:
        gate.validate_manifest.side_effect = ValidationFailedError(
            "manifest", ["Failed to read manifest.json"], overridable=False
        )
        gate.security_scan.side_effect = RuntimeError("scanner crashed password=hunter2")

        results = orchestrator.validate_project()

        assert results[0] == GateResult(
            gate="manifest", status=GateStatus.FAILED, issues=["Failed to read manifest.json"]
        )
        assert results[2].gate == "security"
        assert results[2].status == GateStatus.FAILED
        assert "hunter2" not in results[2].issues[0]
        assert results[1].status == GateStatus.PASSED

    @pytest.mark.requirement("validate")
    def test_unknown_check(self, orchestrator: DeploymentOrchestrator, gate: MagicMock) -> None:
        with pytest.raises(ValueError, match="Unknown validation check: lint"):
            orchestrator.validate_project(["manifest", "lint"])

        gate.validate_manifest.assert_not_called()

    @pytest.mark.requirement("validate")
    def test_no_deployment_recorded(
        self, orchestrator: DeploymentOrchestrator, ledger: DeploymentLedger
    ) -> None:
        orchestrator.validate_project(VALIDATION_CHECKS)

        assert ledger.get_history(Environment.QA, 10) == []
        assert ledger.get_history(Environment.PRODUCTION, 10) == []


class TestCheckHealth:
    @pytest.mark.requirement("health")
    def test_uses_orchestrator_adapters(
        self, orchestrator: DeploymentOrchestrator, platform: MagicMock, git: MagicMock
    ) -> None:
        git.is_clean.return_value = False

        results = orchestrator.check_health(["vtex", "git"], timeout=5)

        assert results["vtex"].state == HealthState.HEALTHY
        assert results["git"].state == HealthState.DEGRADED
        platform.validate_cli.assert_called_once()
