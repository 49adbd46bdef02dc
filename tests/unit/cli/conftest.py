"""CLI test fixtures.

Commands receive their orchestrator through ``ctx.obj["orchestrator"]``, so
no config file or VTEX toolbelt is touched.
"""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from vtex_deploy.orchestrator import DeploymentOrchestrator
from vtex_deploy.schemas.config import DeployerConfig


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def mock_orchestrator(config: DeployerConfig) -> MagicMock:
    """Orchestrator double carrying a real configuration."""
    orchestrator = MagicMock(spec=DeploymentOrchestrator)
    orchestrator.config = config
    orchestrator.rollback_manager = MagicMock()
    return orchestrator


@pytest.fixture
def extract_json() -> Any:
    """Parse the first JSON object in CLI output that may contain log lines."""

    def extract(output: str) -> Any:
        start = output.find("{")
        if start == -1:
            return json.loads(output)
        decoded, _ = json.JSONDecoder().raw_decode(output[start:])
        return decoded

    return extract
