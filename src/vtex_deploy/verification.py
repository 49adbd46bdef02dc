"""Checks that the platform reports the expected app version installed."""

from __future__ import annotations

from typing import TYPE_CHECKING

from vtex_deploy.errors import VerificationFailedError

if TYPE_CHECKING:
    from vtex_deploy.contracts import PlatformClient

INSTALLED_STATUS = "installed"


def app_reference(app_name: str, version: str) -> str:
    """Install reference ``<app>@<version>``."""
    return f"{app_name}@{version}"


def verify_installation(platform: PlatformClient, app_name: str, version: str) -> None:
    """Require ``app_name`` at ``version`` with status ``installed``.

    Raises:
        VerificationFailedError: If the app is missing or not healthy.
    """
    installed = platform.list_installed_apps()
    target = next(
        (app for app in installed if app.name == app_name and app.version == version),
        None,
    )
    if target is None:
        raise VerificationFailedError(app_name, version, "not found in installed apps")
    if target.status != INSTALLED_STATUS:
        raise VerificationFailedError(
            app_name, version, f"installation failed: {target.status}"
        )


def current_installed_version(platform: PlatformClient, app_name: str) -> str | None:
    """Version of ``app_name`` installed in the current workspace, if any."""
    for app in platform.list_installed_apps():
        if app.name == app_name:
            return app.version
    return None


__all__: list[str] = [
    "INSTALLED_STATUS",
    "app_reference",
    "current_installed_version",
    "verify_installation",
]
