"""Unit tests for YAML configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from vtex_deploy.config import load_config
from vtex_deploy.errors import ConfigurationError, ErrorKind
from vtex_deploy.schemas.config import DeployerConfig
from vtex_deploy.schemas.deploy import Environment

VALID_CONFIG = """\
environments:
  qa:
    account: mystore
    workspace: qa
  production:
    account: mystore
    workspace: master
    verification_workspace: prodtest
    timeout_seconds: 1800
deployment:
  rollback_on_failure: true
  lease_timeout_seconds: 5
git:
  production_branch: release
gates:
  commands:
    unit: npm test
notifications:
  webhooks:
    - url: https://hooks.example.com/deploys
      events: [deploy]
logging:
  level: debug
"""


class TestLoadConfig:
    @pytest.mark.requirement("config")
    def test_loads_valid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "vtex-deploy.yaml"
        path.write_text(VALID_CONFIG)

        config = load_config(path)

        production = config.environment(Environment.PRODUCTION)
        assert production.workspace == "master"
        assert production.budget_seconds(Environment.PRODUCTION) == 1800
        assert config.deployment.lease_timeout_seconds == 5
        assert config.git.production_branch == "release"
        assert config.gates.commands == {"unit": "npm test"}
        assert config.notifications.webhooks[0].events == ["deploy"]
        assert config.logging.level == "DEBUG"

    @pytest.mark.requirement("config")
    def test_missing_file_yields_defaults(self, tmp_path: Path) -> None:
        assert load_config(tmp_path / "absent.yaml") == DeployerConfig()

    @pytest.mark.requirement("config")
    def test_empty_file_yields_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "vtex-deploy.yaml"
        path.write_text("")

        assert load_config(path) == DeployerConfig()

    @pytest.mark.requirement("config")
    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "vtex-deploy.yaml"
        path.write_text("environments: [qa\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML") as exc_info:
            load_config(path)

        assert exc_info.value.kind == ErrorKind.CONFIGURATION

    @pytest.mark.requirement("config")
    def test_non_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "vtex-deploy.yaml"
        path.write_text("- qa\n- production\n")

        with pytest.raises(ConfigurationError, match="must contain a mapping, got list"):
            load_config(path)

    @pytest.mark.requirement("config")
    @pytest.mark.parametrize(
        "content",
        [
            "environments:\n  staging:\n    account: mystore\n",
            "environments:\n  qa:\n    account: mystore\n    region: us\n",
            "gates:\n  commands:\n    lint: ruff check\n",
            "logging:\n  level: LOUD\n",
        ],
    )
    def test_schema_errors(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "vtex-deploy.yaml"
        path.write_text(content)

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_config(path)

    @pytest.mark.requirement("config")
    def test_unconfigured_environment(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "absent.yaml")

        with pytest.raises(ConfigurationError, match="'qa' is not configured"):
            config.environment(Environment.QA)


class TestAuthToken:
    @pytest.mark.requirement("config")
    def test_token_from_environment_variable(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "vtex-deploy.yaml"
        path.write_text("environments:\n  qa:\n    account: mystore\n    auth_token_env: QA_TOKEN\n")
        monkeypatch.setenv("QA_TOKEN", "from-env")

        assert load_config(path).environment(Environment.QA).resolve_auth_token() == "from-env"

    @pytest.mark.requirement("config")
    def test_missing_token(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "vtex-deploy.yaml"
        path.write_text("environments:\n  qa:\n    account: mystore\n")
        monkeypatch.delenv("VTEX_AUTH_TOKEN", raising=False)

        with pytest.raises(ConfigurationError, match="VTEX_AUTH_TOKEN"):
            load_config(path).environment(Environment.QA).resolve_auth_token()
