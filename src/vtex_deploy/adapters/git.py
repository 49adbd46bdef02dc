"""VersionControl over the ``git`` command line."""

from __future__ import annotations

import subprocess
from pathlib import Path

import structlog

from vtex_deploy.errors import VersionControlError
from vtex_deploy.telemetry.sanitization import sanitize_error_message
from vtex_deploy.telemetry.tracing import traced

GIT_TIMEOUT_SECONDS = 60

logger = structlog.get_logger(__name__)


class GitVersionControl:
    """Working copy rooted at ``project_dir``.

    Example:
        >>> git = GitVersionControl(".")
        >>> git.get_current_branch()  # doctest: +SKIP
        'main'
    """

    def __init__(self, project_dir: Path | str = ".") -> None:
        self.project_dir = Path(project_dir)

    def _git(self, *args: str) -> str:
        display = " ".join(args)
        try:
            result = subprocess.run(
                ["git", *args],
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT_SECONDS,
                cwd=self.project_dir,
            )
        except FileNotFoundError as e:
            raise VersionControlError(display, "git not found in PATH") from e
        except subprocess.TimeoutExpired as e:
            raise VersionControlError(display, f"timed out after {GIT_TIMEOUT_SECONDS} seconds") from e

        if result.returncode != 0:
            reason = sanitize_error_message(result.stderr.strip()) or f"exit code {result.returncode}"
            raise VersionControlError(display, reason)
        return result.stdout.strip()

    def is_clean(self) -> bool:
        """Whether the working tree has no uncommitted changes."""
        return self._git("status", "--porcelain") == ""

    def get_current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD")

    @traced(
        name="vtex_deploy.git.switch_branch",
        attributes_fn=lambda self, name: {"git.branch": name},
    )
    def switch_branch(self, name: str) -> None:
        self._git("checkout", name)
        logger.info("git_branch_switched", branch=name)

    def get_latest_tag(self) -> str | None:
        """Most recent tag reachable from HEAD, or None when there is none."""
        try:
            tag = self._git("describe", "--tags", "--abbrev=0")
        except VersionControlError as e:
            logger.debug("git_no_tags", reason=e.reason)
            return None
        return tag or None


__all__: list[str] = ["GIT_TIMEOUT_SECONDS", "GitVersionControl"]
