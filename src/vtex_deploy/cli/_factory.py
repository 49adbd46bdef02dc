"""Shared factory for DeploymentOrchestrator construction in CLI commands.

Commands call ``get_orchestrator(ctx)``; an orchestrator already placed in
``ctx.obj["orchestrator"]`` is reused, so every command in one process
shares the same ledger.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from vtex_deploy.orchestrator import DeploymentOrchestrator


def create_orchestrator(
    config_path: Path | str | None,
    *,
    project_dir: Path | str = ".",
    notifications: bool = True,
) -> DeploymentOrchestrator:
    """Build an orchestrator wired to the real VTEX, git and gate adapters.

    Args:
        config_path: YAML config path (``vtex-deploy.yaml`` if None).
        project_dir: App project root.
        notifications: Whether to build configured notification sinks;
            the process log sink is always used.

    Raises:
        ConfigurationError: If the config file is invalid.
    """
    from vtex_deploy.adapters.gates import ProjectValidationGate
    from vtex_deploy.adapters.git import GitVersionControl
    from vtex_deploy.adapters.vtex import VTEXClient
    from vtex_deploy.config import load_config
    from vtex_deploy.notifications import LoggingNotificationSink, build_notification_sink
    from vtex_deploy.orchestrator import DeploymentOrchestrator
    from vtex_deploy.telemetry.logging import configure_logging

    config = load_config(config_path)
    configure_logging(config.logging.level, config.logging.json_output)

    notifier = (
        build_notification_sink(config.notifications)
        if notifications
        else LoggingNotificationSink()
    )
    return DeploymentOrchestrator(
        config,
        platform=VTEXClient(),
        git=GitVersionControl(project_dir),
        gate=ProjectValidationGate(config.gates, project_dir),
        notifier=notifier,
    )


def get_orchestrator(ctx: click.Context, *, notifications: bool = True) -> DeploymentOrchestrator:
    """Orchestrator for this CLI invocation, created on first use."""
    obj = ctx.ensure_object(dict)
    orchestrator = obj.get("orchestrator")
    if orchestrator is None:
        orchestrator = create_orchestrator(
            obj.get("config_path"),
            project_dir=obj.get("project_dir", "."),
            notifications=notifications,
        )
        obj["orchestrator"] = orchestrator
    return orchestrator


__all__: list[str] = ["create_orchestrator", "get_orchestrator"]
