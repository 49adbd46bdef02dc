"""Unit tests for RollbackManager."""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from vtex_deploy.errors import (
    ConfigurationError,
    DeploymentNotFoundError,
    ErrorKind,
    LeaseUnavailableError,
    NoPreviousVersionError,
    RollbackFailedError,
    VerificationFailedError,
    VersionNotFoundError,
)
from vtex_deploy.ledger import DeploymentLedger
from vtex_deploy.lease import WorkspaceLeaseManager
from vtex_deploy.orchestrator import DeploymentOrchestrator
from vtex_deploy.rollback import RollbackManager
from vtex_deploy.schemas.config import DeployerConfig, RollbackOptions
from vtex_deploy.schemas.deploy import (
    DeploymentRecord,
    Environment,
    InstalledApp,
)


@pytest.fixture
def manager(
    config: DeployerConfig,
    platform: MagicMock,
    gate: MagicMock,
    ledger: DeploymentLedger,
    notifier: MagicMock,
    leases: WorkspaceLeaseManager,
) -> RollbackManager:
    return RollbackManager(
        config,
        platform=platform,
        gate=gate,
        ledger=ledger,
        notifier=notifier,
        leases=leases,
    )


class TestRollback:
    @pytest.mark.requirement("rollback")
    def test_rollback_to_explicit_version(
        self,
        manager: RollbackManager,
        platform: MagicMock,
        notifier: MagicMock,
    ) -> None:
        record = manager.rollback("1.2.0", Environment.QA, reason="Checkout regression")

        assert record.success is True
        assert record.previous_version == "1.3.0"
        assert record.current_version == "1.2.0"
        assert record.affected_workspaces == ["qa"]
        assert record.environment == Environment.QA
        assert record.reason == "Checkout regression"
        assert record.error is None
        platform.authenticate.assert_called_once_with("qa-token")
        platform.use_workspace.assert_called_once_with("qa")
        platform.install_app.assert_called_once_with("store-theme@1.2.0")
        assert platform.installed["store-theme"] == "1.2.0"
        notifier.send_rollback_notification.assert_called_once_with(record)

    @pytest.mark.requirement("rollback")
    def test_records_backup_of_replaced_version(
        self, manager: RollbackManager, ledger: DeploymentLedger
    ) -> None:
        manager.rollback("1.2.0", Environment.PRODUCTION)

        backups = ledger.store.list_backups()
        assert len(backups) == 1
        assert backups[0].version == "1.3.0"
        assert backups[0].environment == Environment.PRODUCTION
        assert backups[0].workspace == "master"

    @pytest.mark.requirement("rollback")
    def test_defaults_to_previous_registered_version(
        self, manager: RollbackManager, platform: MagicMock
    ) -> None:
        record = manager.rollback(None, Environment.QA)

        assert record.current_version == "1.2.0"
        assert any("Selected previous version: 1.2.0" in line for line in record.logs)
        platform.install_app.assert_called_once_with("store-theme@1.2.0")

    @pytest.mark.requirement("rollback")
    def test_workspace_override(self, manager: RollbackManager, platform: MagicMock) -> None:
        record = manager.rollback("1.2.0", Environment.PRODUCTION, workspace="prodtest")

        assert record.affected_workspaces == ["prodtest"]
        platform.use_workspace.assert_called_once_with("prodtest")

    @pytest.mark.requirement("rollback")
    def test_version_not_found_leaves_ledger_unmodified(
        self,
        manager: RollbackManager,
        platform: MagicMock,
        ledger: DeploymentLedger,
        notifier: MagicMock,
    ) -> None:
        with pytest.raises(VersionNotFoundError, match="Version 9.9.9 not found") as exc_info:
            manager.rollback("9.9.9", Environment.QA)

        assert exc_info.value.available == ["1.3.0", "1.2.0", "1.1.0"]
        assert ledger.store.list_records() == []
        assert ledger.store.list_backups() == []
        platform.install_app.assert_not_called()

        failure = notifier.send_rollback_notification.call_args.args[0]
        assert failure.success is False
        assert failure.current_version == "9.9.9"
        assert failure.error_kind == ErrorKind.VERSION_NOT_FOUND

    @pytest.mark.requirement("rollback")
    def test_no_previous_version(
        self,
        config: DeployerConfig,
        platform_factory: Callable[..., MagicMock],
        gate: MagicMock,
        ledger: DeploymentLedger,
        notifier: MagicMock,
    ) -> None:
        platform = platform_factory(versions=["1.3.0"])
        manager = RollbackManager(
            config, platform=platform, gate=gate, ledger=ledger, notifier=notifier
        )

        with pytest.raises(NoPreviousVersionError):
            manager.rollback(None, Environment.QA)

        failure = notifier.send_rollback_notification.call_args.args[0]
        assert failure.current_version == "unknown"

    @pytest.mark.requirement("rollback")
    def test_verification_failure_is_reported(
        self,
        manager: RollbackManager,
        platform: MagicMock,
        notifier: MagicMock,
    ) -> None:
        platform.list_installed_apps.side_effect = lambda: [
            InstalledApp(name="store-theme", version="1.3.0")
        ]

        with pytest.raises(VerificationFailedError):
            manager.rollback("1.2.0", Environment.QA)

        failure = notifier.send_rollback_notification.call_args.args[0]
        assert failure.success is False
        assert failure.previous_version == "1.3.0"
        assert failure.error_kind == ErrorKind.VERIFICATION
        assert any("Rollback failed:" in line for line in failure.logs)

    @pytest.mark.requirement("rollback")
    def test_backup_store_failure_is_ignored(
        self,
        config: DeployerConfig,
        platform: MagicMock,
        gate: MagicMock,
        notifier: MagicMock,
    ) -> None:
        store = MagicMock()
        store.save_backup.side_effect = OSError("disk full")
        manager = RollbackManager(
            config,
            platform=platform,
            gate=gate,
            ledger=DeploymentLedger(store),
            notifier=notifier,
        )

        record = manager.rollback("1.2.0", Environment.QA)

        assert record.success is True
        store.save_backup.assert_called_once()

    @pytest.mark.requirement("rollback")
    def test_unconfigured_environment(
        self, manager: RollbackManager, notifier: MagicMock
    ) -> None:
        with pytest.raises(ConfigurationError):
            manager.rollback("1.2.0", Environment.DEVELOPMENT)

        failure = notifier.send_rollback_notification.call_args.args[0]
        assert failure.error_kind == ErrorKind.CONFIGURATION
        assert failure.affected_workspaces == []


class TestRollbackLease:
    @pytest.mark.requirement("lease")
    def test_standalone_rollback_waits_for_busy_workspace(
        self,
        manager: RollbackManager,
        leases: WorkspaceLeaseManager,
        platform: MagicMock,
    ) -> None:
        leases.acquire("mystore", "qa", "deploy_running")

        with pytest.raises(LeaseUnavailableError):
            manager.rollback("1.2.0", Environment.QA)

        platform.authenticate.assert_not_called()

    @pytest.mark.requirement("lease")
    def test_reenters_lease_of_owner(
        self, manager: RollbackManager, leases: WorkspaceLeaseManager
    ) -> None:
        leases.acquire("mystore", "qa", "deploy_failed")

        record = manager.rollback("1.2.0", Environment.QA, lease_owner="deploy_failed")

        assert record.success is True
        assert leases.holder("mystore", "qa").owner == "deploy_failed"

    @pytest.mark.requirement("lease")
    def test_lease_released_afterwards(
        self, manager: RollbackManager, leases: WorkspaceLeaseManager
    ) -> None:
        manager.rollback("1.2.0", Environment.QA)

        assert leases.holder("mystore", "qa") is None


class TestResolveRollbackTarget:
    @pytest.mark.requirement("rollback-target")
    def test_explicit_version_wins(self, manager: RollbackManager) -> None:
        options = RollbackOptions(version="1.1.0", deployment_id="deploy_1_abcdef12")

        assert manager.resolve_rollback_target(options) == "1.1.0"

    @pytest.mark.requirement("rollback-target")
    def test_version_of_deployment(
        self, manager: RollbackManager, ledger: DeploymentLedger
    ) -> None:
        ledger.record(
            DeploymentRecord(
                id="deploy_1_abcdef12",
                environment=Environment.PRODUCTION,
                workspace="prodtest",
                version="1.2.0",
            )
        )

        target = manager.resolve_rollback_target(
            RollbackOptions(environment=Environment.PRODUCTION, deployment_id="deploy_1_abcdef12")
        )

        assert target == "1.2.0"

    @pytest.mark.requirement("rollback-target")
    def test_unknown_deployment(self, manager: RollbackManager) -> None:
        with pytest.raises(DeploymentNotFoundError):
            manager.resolve_rollback_target(RollbackOptions(deployment_id="deploy_missing"))

    @pytest.mark.requirement("rollback-target")
    def test_deployment_without_version(
        self, manager: RollbackManager, ledger: DeploymentLedger
    ) -> None:
        ledger.record(
            DeploymentRecord(id="deploy_2_abcdef12", environment=Environment.QA, workspace="qa")
        )

        with pytest.raises(RollbackFailedError, match="no resolved version"):
            manager.resolve_rollback_target(RollbackOptions(deployment_id="deploy_2_abcdef12"))

    @pytest.mark.requirement("rollback-target")
    def test_previous_version_when_unspecified(self, manager: RollbackManager) -> None:
        assert manager.resolve_rollback_target(RollbackOptions()) is None


class TestRollbackWithOptions:
    @pytest.mark.requirement("rollback")
    def test_orchestrator_delegates(
        self,
        orchestrator: DeploymentOrchestrator,
        platform: MagicMock,
    ) -> None:
        record = orchestrator.rollback(
            RollbackOptions(
                environment=Environment.PRODUCTION,
                version="1.1.0",
                workspace="prodtest",
                reason="Emergency revert",
            )
        )

        assert record.current_version == "1.1.0"
        assert record.reason == "Emergency revert"
        assert record.affected_workspaces == ["prodtest"]
        platform.authenticate.assert_called_once_with("prod-token")

    @pytest.mark.requirement("rollback")
    def test_rolls_back_to_version_of_deployment(
        self,
        orchestrator: DeploymentOrchestrator,
        platform: MagicMock,
    ) -> None:
        deployed = orchestrator.deploy_to_qa()
        orchestrator.deploy_to_qa()

        record = orchestrator.rollback(RollbackOptions(deployment_id=deployed.id))

        assert record.current_version == deployed.version
        assert platform.installed["store-theme"] == deployed.version
