"""Unit tests for VTEXClient.

The ``vtex`` toolbelt is never executed; ``subprocess.run`` is patched and
returns canned CompletedProcess objects.
"""

from __future__ import annotations

import json
import subprocess
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from vtex_deploy.adapters.vtex import VTEXClient
from vtex_deploy.errors import (
    AuthenticationFailedError,
    InstallFailedError,
    PlatformCommandError,
    ReleaseFailedError,
)
from vtex_deploy.schemas.deploy import InstalledApp, ReleaseTag

RUN = "vtex_deploy.adapters.vtex.subprocess.run"


def _completed(
    stdout: Any = "", *, stderr: str = "", returncode: int = 0
) -> subprocess.CompletedProcess[str]:
    if not isinstance(stdout, str):
        stdout = json.dumps(stdout)
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def mock_run() -> Generator[MagicMock, None, None]:
    with patch(RUN) as run:
        run.return_value = _completed()
        yield run


def _commands(mock_run: MagicMock) -> list[list[str]]:
    return [c.args[0] for c in mock_run.call_args_list]


class TestRun:
    @pytest.mark.requirement("vtex-client")
    def test_invocation(self, mock_run: MagicMock) -> None:
        VTEXClient(command_timeout=12).use_workspace("qa")

        mock_run.assert_called_once()
        assert mock_run.call_args.args[0] == ["vtex", "use", "qa"]
        assert mock_run.call_args.kwargs["timeout"] == 12
        assert mock_run.call_args.kwargs["capture_output"] is True

    @pytest.mark.requirement("vtex-client")
    def test_token_passed_through_environment(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed({"account": "mystore"})
        client = VTEXClient()

        client.authenticate("s3cret")

        command = mock_run.call_args.args[0]
        assert "s3cret" not in command
        assert mock_run.call_args.kwargs["env"]["VTEX_AUTH_TOKEN"] == "s3cret"
        assert client.current_account == "mystore"
        assert client.is_authenticated is True

    @pytest.mark.requirement("vtex-client")
    def test_missing_executable(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError()

        with pytest.raises(PlatformCommandError, match="vtex not found in PATH"):
            VTEXClient().use_workspace("qa")

    @pytest.mark.requirement("vtex-client")
    def test_command_timeout(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="vtex", timeout=30)

        with pytest.raises(PlatformCommandError, match="timed out after 30 seconds"):
            VTEXClient(command_timeout=30).use_workspace("qa")

    @pytest.mark.requirement("vtex-client")
    def test_failure_output_is_sanitized(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(stderr="denied for token=abc123", returncode=1)

        with pytest.raises(PlatformCommandError) as exc_info:
            VTEXClient().use_workspace("qa")

        assert "abc123" not in str(exc_info.value)

    @pytest.mark.requirement("vtex-client")
    def test_failure_without_output(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(returncode=3)

        with pytest.raises(PlatformCommandError, match="exit code 3"):
            VTEXClient().use_workspace("qa")

    @pytest.mark.requirement("vtex-client")
    def test_invalid_json(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed("not json")

        with pytest.raises(PlatformCommandError, match="invalid JSON output"):
            VTEXClient().list_installed_apps()


class TestPrerequisites:
    @pytest.mark.requirement("vtex-client")
    def test_validate_cli(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError()

        with pytest.raises(PlatformCommandError, match="VTEX CLI is not installed"):
            VTEXClient().validate_cli()

    @pytest.mark.requirement("vtex-client")
    def test_validate_account_switches(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = [_completed(), _completed({"account": "mystore"})]
        client = VTEXClient()

        client.validate_account("mystore")

        assert _commands(mock_run) == [["vtex", "switch", "mystore"], ["vtex", "whoami"]]
        assert client.current_account == "mystore"

    @pytest.mark.requirement("vtex-client")
    def test_validate_account_mismatch(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = [_completed(), _completed({"account": "otherstore"})]

        with pytest.raises(PlatformCommandError, match="expected mystore, got otherstore"):
            VTEXClient().validate_account("mystore")

    @pytest.mark.requirement("vtex-client")
    def test_validate_workspace_exists(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed([{"name": "master"}, {"name": "qa"}])

        VTEXClient().validate_workspace("qa")

        assert _commands(mock_run) == [["vtex", "workspace", "list", "--json"]]

    @pytest.mark.requirement("vtex-client")
    def test_validate_workspace_creates_missing(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = [_completed([{"name": "master"}]), _completed()]

        VTEXClient().validate_workspace("qa")

        assert _commands(mock_run)[-1] == ["vtex", "workspace", "create", "qa"]


class TestSession:
    @pytest.mark.requirement("vtex-client")
    def test_authentication_failure(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(stderr="invalid credentials", returncode=1)
        client = VTEXClient()

        with pytest.raises(AuthenticationFailedError, match="invalid credentials") as exc_info:
            client.authenticate("bad-token")

        assert exc_info.value.account == "unknown"
        assert client.is_authenticated is False

    @pytest.mark.requirement("vtex-client")
    def test_use_workspace(self, mock_run: MagicMock) -> None:
        client = VTEXClient()

        client.use_workspace("prodtest")

        assert client.current_workspace == "prodtest"


class TestReleasesAndApps:
    @pytest.mark.requirement("vtex-client")
    @pytest.mark.parametrize(
        ("tag", "command"),
        [
            (ReleaseTag.BETA, ["vtex", "release", "1.4.0"]),
            (ReleaseTag.STABLE, ["vtex", "release", "1.4.0", "--stable"]),
        ],
    )
    def test_release(self, mock_run: MagicMock, tag: ReleaseTag, command: list[str]) -> None:
        VTEXClient().release("1.4.0", tag)

        assert mock_run.call_args.args[0] == command

    @pytest.mark.requirement("vtex-client")
    def test_release_failure(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(stderr="version already exists", returncode=1)

        with pytest.raises(ReleaseFailedError, match="version already exists"):
            VTEXClient().release("1.4.0", ReleaseTag.STABLE)

    @pytest.mark.requirement("vtex-client")
    def test_install_uses_install_timeout(self, mock_run: MagicMock) -> None:
        VTEXClient(install_timeout=900).install_app("store-theme@1.4.0")

        assert mock_run.call_args.args[0] == ["vtex", "install", "store-theme@1.4.0"]
        assert mock_run.call_args.kwargs["timeout"] == 900

    @pytest.mark.requirement("vtex-client")
    def test_install_failure(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(stderr="Installation failed", returncode=1)

        with pytest.raises(InstallFailedError) as exc_info:
            VTEXClient().install_app("store-theme@1.4.0")

        assert exc_info.value.reference == "store-theme@1.4.0"

    @pytest.mark.requirement("vtex-client")
    def test_list_installed_apps(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(
            [
                {"name": "store-theme", "version": "1.4.0", "status": "installed"},
                {"name": "vtex.store", "version": "2.0.0", "status": None},
            ]
        )

        apps = VTEXClient().list_installed_apps()

        assert apps == [
            InstalledApp(name="store-theme", version="1.4.0"),
            InstalledApp(name="vtex.store", version="2.0.0"),
        ]

    @pytest.mark.requirement("vtex-client")
    def test_get_app_versions_sorted_naturally(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(
            [{"version": "1.2.0"}, {"version": "1.10.0"}, {"version": "1.9.1"}, {"other": 1}]
        )

        versions = VTEXClient().get_app_versions("store-theme")

        assert versions == ["1.10.0", "1.9.1", "1.2.0"]
        assert mock_run.call_args.args[0] == ["vtex", "list", "store-theme", "--json"]


class TestSpans:
    @pytest.mark.requirement("tracing")
    def test_install_span_wraps_command_span(
        self,
        mock_run: MagicMock,
        tracer_with_exporter: tuple[TracerProvider, InMemorySpanExporter],
    ) -> None:
        _, exporter = tracer_with_exporter
        client = VTEXClient()
        client.current_account = "mystore"
        client.current_workspace = "prodtest"

        client.install_app("store-theme@1.4.0")

        command, install = exporter.get_finished_spans()
        assert install.name == "vtex_deploy.vtex.install"
        assert install.attributes["vtex.app"] == "store-theme@1.4.0"
        assert install.attributes["vtex.workspace"] == "prodtest"
        assert command.name == "vtex_deploy.vtex.command"
        assert command.parent.span_id == install.context.span_id

    @pytest.mark.requirement("tracing")
    def test_release_span_records_failure(
        self,
        mock_run: MagicMock,
        tracer_with_exporter: tuple[TracerProvider, InMemorySpanExporter],
    ) -> None:
        _, exporter = tracer_with_exporter
        mock_run.return_value = _completed(stderr="version already exists", returncode=1)

        with pytest.raises(ReleaseFailedError):
            VTEXClient().release("1.4.0", ReleaseTag.STABLE)

        release = exporter.get_finished_spans()[-1]
        assert release.name == "vtex_deploy.vtex.release"
        assert release.attributes["vtex.version"] == "1.4.0"
        assert release.attributes["vtex.tag"] == "stable"
        assert release.status.status_code == StatusCode.ERROR
        assert release.attributes["exception.type"] == "ReleaseFailedError"

    @pytest.mark.requirement("tracing")
    def test_authenticate_span_omits_token(
        self,
        mock_run: MagicMock,
        tracer_with_exporter: tuple[TracerProvider, InMemorySpanExporter],
    ) -> None:
        _, exporter = tracer_with_exporter
        mock_run.return_value = _completed({"account": "mystore"})

        VTEXClient().authenticate("s3cret")

        spans = exporter.get_finished_spans()
        assert [span.name for span in spans] == [
            "vtex_deploy.vtex.command",
            "vtex_deploy.vtex.authenticate",
        ]
        for span in spans:
            assert "s3cret" not in [str(value) for value in span.attributes.values()]
