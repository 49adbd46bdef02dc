"""Rollback command implementation.

Reinstalls a previously registered app version. The target is ``--version``
when given, else the version deployed by ``--deployment-id``, else the
previous registered version of the app.

Example:
    $ vtex-deploy rollback --environment qa
    $ vtex-deploy rollback --environment production --version 1.3.0 --reason "Checkout regression"
    $ vtex-deploy rollback -e production --emergency --output json
"""

from __future__ import annotations

import click

from vtex_deploy.cli._factory import get_orchestrator
from vtex_deploy.cli.utils import (
    OUTPUT_FORMATS,
    ExitCode,
    error_exit,
    fail,
    format_rollback,
    info,
    success,
    warn,
)
from vtex_deploy.schemas.config import RollbackOptions
from vtex_deploy.schemas.deploy import Environment

PRODUCTION_ROLLBACK_CONFIRMATION = "ROLLBACK PRODUCTION"


@click.command(
    name="rollback",
    help="Rollback an environment to a previous app version.",
    epilog=f"""
Examples:
    $ vtex-deploy rollback --environment qa --version 1.3.0
    $ vtex-deploy rollback --environment production --deployment-id deploy_1717171717171_ab12cd34

Production rollbacks require typing '{PRODUCTION_ROLLBACK_CONFIRMATION}' unless
--auto-approve or --emergency is given.
""",
)
@click.option(
    "--environment",
    "-e",
    type=click.Choice([e.value for e in Environment], case_sensitive=False),
    default=Environment.QA.value,
    show_default=True,
    help="Environment to rollback.",
)
@click.option("--version", "-v", "version", default=None, help="Version to rollback to.")
@click.option(
    "--deployment-id", "-d", default=None, help="Rollback to the version of this deployment."
)
@click.option("--workspace", "-w", default=None, help="Workspace override.")
@click.option("--reason", "-r", default=None, help="Reason recorded with the rollback.")
@click.option(
    "--force", "-f", is_flag=True, default=False, help="Force rollback without confirmation."
)
@click.option(
    "--emergency", is_flag=True, default=False, help="Emergency rollback (fast track)."
)
@click.option("--auto-approve", is_flag=True, default=False, help="Skip confirmation prompts.")
@click.option(
    "--notifications/--no-notifications",
    default=True,
    show_default=True,
    help="Send configured notifications.",
)
@click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def rollback_command(
    ctx: click.Context,
    environment: str,
    version: str | None,
    deployment_id: str | None,
    workspace: str | None,
    reason: str | None,
    force: bool,
    emergency: bool,
    auto_approve: bool,
    notifications: bool,
    output: str,
) -> None:
    """Rollback ``environment`` to a previous version."""
    env = Environment(environment.lower())
    options = RollbackOptions(
        environment=env,
        version=version,
        deployment_id=deployment_id,
        workspace=workspace,
        reason=reason,
    )

    try:
        orchestrator = get_orchestrator(ctx, notifications=notifications)
        target = orchestrator.rollback_manager.resolve_rollback_target(options)
    except Exception as e:
        fail(e, output, "Rollback")

    info(f"Rolling back {env.value} to {target or 'the previous version'}")
    if emergency:
        warn("Emergency rollback")

    if env == Environment.PRODUCTION:
        if not (auto_approve or emergency):
            typed = click.prompt(
                f"Type '{PRODUCTION_ROLLBACK_CONFIRMATION}' to confirm",
                default="",
                show_default=False,
                err=True,
            )
            if typed.strip() != PRODUCTION_ROLLBACK_CONFIRMATION:
                error_exit("Rollback cancelled", exit_code=ExitCode.GENERAL_ERROR)
    elif not (auto_approve or force or emergency):
        if not click.confirm("Proceed with the rollback?", default=False, err=True):
            error_exit("Rollback cancelled", exit_code=ExitCode.GENERAL_ERROR)

    try:
        record = orchestrator.rollback(options)
    except Exception as e:
        fail(e, output, "Rollback")

    click.echo(format_rollback(record, output))
    if output == "table":
        success(f"Successfully rolled back {env.value} to {record.current_version}")


__all__: list[str] = ["PRODUCTION_ROLLBACK_CONFIRMATION", "rollback_command"]
