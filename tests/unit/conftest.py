"""Unit test fixtures shared by all vtex-deploy unit tests.

Boundary contracts are MagicMock fakes. The platform fake is stateful:
``release`` registers a version, ``install_app`` changes the installed
version, and the query methods read that state back, so verification and
rollback behave as they would against a real workspace.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock

import pytest
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from vtex_deploy.ledger import DeploymentLedger
from vtex_deploy.lease import WorkspaceLeaseManager
from vtex_deploy.orchestrator import DeploymentOrchestrator
from vtex_deploy.schemas.config import DeployerConfig
from vtex_deploy.schemas.deploy import (
    AppManifest,
    GateResult,
    GateStatus,
    InstalledApp,
    TestScope,
)
from vtex_deploy.telemetry.tracing import reset_tracer, set_tracer

APP_NAME = "store-theme"

GATE_METHODS = (
    "validate_manifest",
    "check_dependencies",
    "security_scan",
    "validate_production_readiness",
    "check_security_compliance",
)


def make_platform(
    versions: list[str] | None = None,
    installed: dict[str, str] | None = None,
) -> MagicMock:
    """Stateful PlatformClient fake.

    Attributes set on the mock:
        versions: Registered versions of APP_NAME, most recent first.
        installed: App name to installed version.
    """
    platform = MagicMock(name="platform")
    platform.versions = list(versions if versions is not None else ["1.3.0", "1.2.0", "1.1.0"])
    platform.installed = dict(installed if installed is not None else {APP_NAME: "1.3.0"})

    def release(version: str, tag: object) -> None:
        platform.versions.insert(0, version)

    def install_app(reference: str) -> None:
        name, _, version = reference.rpartition("@")
        platform.installed[name] = version

    platform.release.side_effect = release
    platform.install_app.side_effect = install_app
    platform.list_installed_apps.side_effect = lambda: [
        InstalledApp(name=name, version=version) for name, version in platform.installed.items()
    ]
    platform.get_app_versions.side_effect = lambda name: list(platform.versions)
    return platform


def make_gate(manifest_version: str = "1.4.0") -> MagicMock:
    """ValidationGate fake where every gate passes."""
    gate = MagicMock(name="gate")
    gate.get_manifest.return_value = AppManifest(
        vendor="mystore", name=APP_NAME, version=manifest_version
    )
    for method in GATE_METHODS:
        getattr(gate, method).return_value = GateResult(gate=method, status=GateStatus.PASSED)

    def run_tests(scope: TestScope) -> GateResult:
        return GateResult(gate=f"tests.{scope.value}", status=GateStatus.PASSED)

    gate.run_tests.side_effect = run_tests
    return gate


def make_git(
    branch: str = "main", clean: bool = True, latest_tag: str | None = "v1.3.0"
) -> MagicMock:
    git = MagicMock(name="git")
    git.is_clean.return_value = clean
    git.get_current_branch.return_value = branch
    git.get_latest_tag.return_value = latest_tag
    return git


def make_config(
    *,
    deployment: dict[str, Any] | None = None,
    qa: dict[str, Any] | None = None,
    production: dict[str, Any] | None = None,
) -> DeployerConfig:
    """Config with QA and production on one account and explicit tokens.

    Keyword dicts are merged over the defaults of their section.
    """
    return DeployerConfig.model_validate(
        {
            "environments": {
                "qa": {
                    "account": "mystore",
                    "workspace": "qa",
                    "auth_token": "qa-token",
                    **(qa or {}),
                },
                "production": {
                    "account": "mystore",
                    "workspace": "master",
                    "verification_workspace": "prodtest",
                    "auth_token": "prod-token",
                    **(production or {}),
                },
            },
            "deployment": {
                "lease_timeout_seconds": 0.2,
                "timed_out_step_wait_seconds": 5,
                **(deployment or {}),
            },
        }
    )


@pytest.fixture
def config_factory() -> Callable[..., DeployerConfig]:
    return make_config


@pytest.fixture
def platform_factory() -> Callable[..., MagicMock]:
    return make_platform


@pytest.fixture
def config() -> DeployerConfig:
    return make_config()


@pytest.fixture
def platform() -> MagicMock:
    return make_platform()


@pytest.fixture
def gate() -> MagicMock:
    return make_gate()


@pytest.fixture
def git() -> MagicMock:
    return make_git()


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(name="notifier")


@pytest.fixture
def ledger() -> DeploymentLedger:
    return DeploymentLedger()


@pytest.fixture
def leases() -> WorkspaceLeaseManager:
    return WorkspaceLeaseManager()


@pytest.fixture
def orchestrator(
    config: DeployerConfig,
    platform: MagicMock,
    git: MagicMock,
    gate: MagicMock,
    ledger: DeploymentLedger,
    notifier: MagicMock,
    leases: WorkspaceLeaseManager,
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(
        config,
        platform=platform,
        git=git,
        gate=gate,
        ledger=ledger,
        notifier=notifier,
        leases=leases,
    )


@pytest.fixture(autouse=True)
def _reset_tracer() -> Generator[None, None, None]:
    """Drop any tracer cached by a previous test."""
    reset_tracer()
    yield
    reset_tracer()


@pytest.fixture
def tracer_with_exporter() -> Generator[tuple[TracerProvider, InMemorySpanExporter], None, None]:
    """Route vtex-deploy spans to an in-memory exporter."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider(resource=Resource.create({}))
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    set_tracer(provider.get_tracer("vtex_deploy"))

    yield provider, exporter

    exporter.clear()
