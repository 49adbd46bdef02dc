"""PlatformClient over the ``vtex`` command line toolbelt.

Every call runs one ``vtex`` subprocess inside its own span, nested under an
operation span for the session, release and install methods. The auth token
is handed to the toolbelt through the ``VTEX_AUTH_TOKEN`` environment
variable, never on the command line, and CLI output is sanitized before it
is placed in an error.
"""

from __future__ import annotations

import json
import os
import re
import subprocess
from typing import Any

import structlog

from vtex_deploy.errors import (
    AuthenticationFailedError,
    InstallFailedError,
    PlatformCommandError,
    ReleaseFailedError,
)
from vtex_deploy.schemas.config import DEFAULT_AUTH_TOKEN_ENV
from vtex_deploy.schemas.deploy import InstalledApp, ReleaseTag
from vtex_deploy.telemetry.sanitization import sanitize_error_message
from vtex_deploy.telemetry.tracing import create_span, traced

DEFAULT_COMMAND_TIMEOUT_SECONDS = 30
INSTALL_TIMEOUT_SECONDS = 600

logger = structlog.get_logger(__name__)


def _natural_key(version: str) -> list[Any]:
    # str, int, str, int, ... so positions always compare like with like
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", version)]


class VTEXClient:
    """Drive the VTEX IO toolbelt.

    Args:
        executable: Toolbelt executable name or path.
        command_timeout: Timeout for ordinary commands in seconds.
        install_timeout: Timeout for ``vtex install`` in seconds.

    Example:
        >>> client = VTEXClient()
        >>> client.authenticate(os.environ["VTEX_AUTH_TOKEN"])  # doctest: +SKIP
        >>> client.use_workspace("qa")  # doctest: +SKIP
    """

    def __init__(
        self,
        executable: str = "vtex",
        *,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        install_timeout: float = INSTALL_TIMEOUT_SECONDS,
    ) -> None:
        self.executable = executable
        self.command_timeout = command_timeout
        self.install_timeout = install_timeout
        self.current_account: str | None = None
        self.current_workspace: str | None = None
        self._auth_token: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self._auth_token is not None and self.current_account is not None

    def _run(self, *args: str, timeout: float | None = None) -> str:
        command = [self.executable, *args]
        display = " ".join(command)
        timeout = timeout if timeout is not None else self.command_timeout
        env = dict(os.environ)
        if self._auth_token is not None:
            env[DEFAULT_AUTH_TOKEN_ENV] = self._auth_token

        with create_span(
            "vtex_deploy.vtex.command",
            attributes={
                "vtex.command": args[0] if args else "",
                "vtex.account": self.current_account,
                "vtex.workspace": self.current_workspace,
                "timeout_seconds": timeout,
            },
        ) as span:
            logger.debug("vtex_command_started", command=display)
            try:
                result = subprocess.run(
                    command,
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                    env=env,
                )
            except FileNotFoundError as e:
                raise PlatformCommandError(display, f"{self.executable} not found in PATH") from e
            except subprocess.TimeoutExpired as e:
                raise PlatformCommandError(display, f"timed out after {timeout} seconds") from e

            span.set_attribute("vtex.exit_code", result.returncode)
            if result.returncode != 0:
                output = (result.stderr or result.stdout or "").strip()
                reason = sanitize_error_message(output) or f"exit code {result.returncode}"
                logger.warning(
                    "vtex_command_failed",
                    command=display,
                    exit_code=result.returncode,
                    error=reason,
                )
                raise PlatformCommandError(display, reason)

            logger.debug("vtex_command_completed", command=display, stdout=result.stdout[:200])
            return result.stdout

    def _run_json(self, *args: str, timeout: float | None = None) -> Any:
        output = self._run(*args, timeout=timeout)
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise PlatformCommandError(
                " ".join([self.executable, *args]), f"invalid JSON output: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Prerequisites
    # ------------------------------------------------------------------

    def validate_cli(self) -> None:
        try:
            self._run("--version")
        except PlatformCommandError as e:
            raise PlatformCommandError(
                e.command, "VTEX CLI is not installed or not available in PATH"
            ) from e
        logger.info("vtex_cli_validated")

    def validate_account(self, account: str) -> None:
        if self.current_account != account:
            self._run("switch", account)
            self.current_account = account
        info = self._run_json("whoami")
        actual = info.get("account") if isinstance(info, dict) else None
        if actual != account:
            raise PlatformCommandError(
                f"{self.executable} whoami",
                f"Account mismatch: expected {account}, got {actual}",
            )
        logger.info("vtex_account_validated", account=account)

    @traced(
        name="vtex_deploy.vtex.validate_workspace",
        attributes_fn=lambda self, name: {
            "vtex.account": self.current_account,
            "vtex.workspace": name,
        },
    )
    def validate_workspace(self, name: str) -> None:
        """Ensure workspace ``name`` exists, creating it when absent."""
        workspaces = self._run_json("workspace", "list", "--json")
        if any(isinstance(ws, dict) and ws.get("name") == name for ws in workspaces or []):
            logger.info("vtex_workspace_validated", workspace=name)
            return
        logger.info("vtex_workspace_missing", workspace=name)
        self._run("workspace", "create", name)
        logger.info("vtex_workspace_created", workspace=name)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @traced(name="vtex_deploy.vtex.authenticate")
    def authenticate(self, token: str) -> None:
        self._auth_token = token
        try:
            info = self._run_json("whoami")
        except PlatformCommandError as e:
            self._auth_token = None
            raise AuthenticationFailedError(self.current_account or "unknown", e.reason) from e
        if isinstance(info, dict) and info.get("account"):
            self.current_account = info["account"]
        logger.info("vtex_authenticated", account=self.current_account)

    @traced(
        name="vtex_deploy.vtex.use_workspace",
        attributes_fn=lambda self, name: {
            "vtex.account": self.current_account,
            "vtex.workspace": name,
        },
    )
    def use_workspace(self, name: str) -> None:
        self._run("use", name)
        self.current_workspace = name
        logger.info("vtex_workspace_selected", workspace=name)

    # ------------------------------------------------------------------
    # Releases and apps
    # ------------------------------------------------------------------

    @traced(
        name="vtex_deploy.vtex.release",
        attributes_fn=lambda self, version, tag: {"vtex.version": version, "vtex.tag": tag.value},
    )
    def release(self, version: str, tag: ReleaseTag) -> None:
        args = ["release", version]
        if tag == ReleaseTag.STABLE:
            args.append("--stable")
        try:
            self._run(*args)
        except PlatformCommandError as e:
            raise ReleaseFailedError(version, e.reason) from e
        logger.info("vtex_release_created", version=version, tag=tag.value)

    @traced(
        name="vtex_deploy.vtex.install",
        attributes_fn=lambda self, reference: {
            "vtex.app": reference,
            "vtex.account": self.current_account,
            "vtex.workspace": self.current_workspace,
        },
    )
    def install_app(self, reference: str) -> None:
        try:
            self._run("install", reference, timeout=self.install_timeout)
        except PlatformCommandError as e:
            raise InstallFailedError(reference, e.reason) from e
        logger.info("vtex_app_installed", reference=reference)

    def list_installed_apps(self) -> list[InstalledApp]:
        apps = self._run_json("list", "--json")
        return [
            InstalledApp.model_validate({k: v for k, v in app.items() if v is not None})
            for app in apps or []
            if isinstance(app, dict)
        ]

    def get_app_versions(self, name: str) -> list[str]:
        """Registered versions of ``name``, most recent first."""
        entries = self._run_json("list", name, "--json")
        versions = [
            str(entry["version"])
            for entry in entries or []
            if isinstance(entry, dict) and entry.get("version")
        ]
        return sorted(versions, key=_natural_key, reverse=True)


__all__: list[str] = [
    "DEFAULT_COMMAND_TIMEOUT_SECONDS",
    "INSTALL_TIMEOUT_SECONDS",
    "VTEXClient",
]
