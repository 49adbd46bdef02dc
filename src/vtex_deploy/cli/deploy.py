"""Deployment commands: ``deploy:qa`` and ``deploy:prod``.

Example:
    $ vtex-deploy deploy:qa --branch feature/cart --skip-tests
    $ vtex-deploy deploy:prod --version 1.4.0
    $ vtex-deploy deploy:prod --version 1.4.1 --emergency --auto-approve --output json
"""

from __future__ import annotations

import signal
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click

from vtex_deploy.cli._factory import get_orchestrator
from vtex_deploy.cli.utils import (
    OUTPUT_FORMATS,
    ExitCode,
    error_exit,
    fail,
    format_record,
    info,
    success,
    warn,
)
from vtex_deploy.schemas.config import ProductionDeployOptions, QADeployOptions
from vtex_deploy.schemas.deploy import Environment
from vtex_deploy.steps import CancellationToken

PRODUCTION_CONFIRMATION = "DEPLOY TO PRODUCTION"

_output_option = click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)


@contextmanager
def cancel_on_interrupt() -> Iterator[CancellationToken]:
    """Turn Ctrl-C into a cancellation request checked between steps."""
    token = CancellationToken()

    def _handler(signum: int, frame: Any) -> None:
        if token.cancelled:
            raise KeyboardInterrupt
        info("Cancellation requested; stopping after the current step (Ctrl-C again to abort)")
        token.cancel()

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # not in the main thread
        yield token
        return
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


@click.command(
    name="deploy:qa",
    help="Deploy the current app to the QA workspace.",
    epilog="""
Examples:
    $ vtex-deploy deploy:qa
    $ vtex-deploy deploy:qa --branch develop --workspace qa2 --skip-tests
""",
)
@click.option("--branch", "-b", default=None, help="Source branch to deploy from.")
@click.option("--workspace", "-w", default=None, help="Target VTEX workspace.")
@click.option("--skip-tests", "-s", is_flag=True, default=False, help="Skip unit tests.")
@click.option(
    "--force", "-f", is_flag=True, default=False, help="Deploy even if validation fails."
)
@click.option(
    "--notifications/--no-notifications",
    default=True,
    show_default=True,
    help="Send configured notifications.",
)
@click.option("--auto-approve", is_flag=True, default=False, help="Skip confirmation prompts.")
@_output_option
@click.pass_context
def deploy_qa_command(
    ctx: click.Context,
    branch: str | None,
    workspace: str | None,
    skip_tests: bool,
    force: bool,
    notifications: bool,
    auto_approve: bool,
    output: str,
) -> None:
    """Deploy to QA: validate, release a beta version, install and verify."""
    options = QADeployOptions(
        branch=branch,
        workspace=workspace,
        skip_tests=skip_tests,
        force=force,
    )
    try:
        orchestrator = get_orchestrator(ctx, notifications=notifications)
        env_config = orchestrator.config.environment(Environment.QA)
    except Exception as e:
        fail(e, output, "QA deployment")

    info("QA Deployment Configuration:")
    info(f"  Account:    {env_config.account}")
    info(f"  Workspace:  {workspace or env_config.workspace}")
    info(f"  Branch:     {branch or 'current'}")
    info(f"  Skip Tests: {'Yes' if skip_tests else 'No'}")

    if not auto_approve and not click.confirm(
        "Do you want to proceed with the QA deployment?", default=True, err=True
    ):
        error_exit("QA deployment cancelled by user", exit_code=ExitCode.GENERAL_ERROR)

    with cancel_on_interrupt() as token:
        try:
            record = orchestrator.deploy_to_qa(options, cancel_token=token)
        except Exception as e:
            fail(e, output, "QA deployment")

    click.echo(format_record(record, output))
    if output == "table":
        success("QA deployment completed successfully")


@click.command(
    name="deploy:prod",
    help="Release a stable version and verify it before production.",
    epilog=f"""
Examples:
    $ vtex-deploy deploy:prod --version 1.4.0
    $ vtex-deploy deploy:prod --auto-approve --output json

Without --auto-approve you must type '{PRODUCTION_CONFIRMATION}' to proceed.
""",
)
@click.option("--version", "-v", "version", default=None, help="Version to deploy.")
@click.option("--branch", "-b", default=None, help="Source branch (default: configured).")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    default=False,
    help="Accept gate warnings and an unclean working tree.",
)
@click.option(
    "--skip-tests",
    "-s",
    is_flag=True,
    default=False,
    help="Skip the full test suite (honored only with --emergency).",
)
@click.option(
    "--emergency",
    is_flag=True,
    default=False,
    help="Emergency mode: bypass failed readiness and compliance checks.",
)
@click.option(
    "--notifications/--no-notifications",
    default=True,
    show_default=True,
    help="Send configured notifications.",
)
@click.option("--auto-approve", is_flag=True, default=False, help="Skip confirmation prompts.")
@_output_option
@click.pass_context
def deploy_prod_command(
    ctx: click.Context,
    version: str | None,
    branch: str | None,
    force: bool,
    skip_tests: bool,
    emergency: bool,
    notifications: bool,
    auto_approve: bool,
    output: str,
) -> None:
    """Deploy to production with auto-rollback on failure."""
    try:
        orchestrator = get_orchestrator(ctx, notifications=notifications)
        env_config = orchestrator.config.environment(Environment.PRODUCTION)
        if version is None:
            suggested = orchestrator.suggest_production_version()
            if auto_approve:
                version = suggested
            else:
                version = click.prompt("Enter production version", default=suggested, err=True)
        options = ProductionDeployOptions(
            version=version,
            branch=branch,
            force=force,
            skip_tests=skip_tests,
            emergency=emergency,
        )
    except Exception as e:
        fail(e, output, "Production deployment")

    info("PRODUCTION DEPLOYMENT CONFIGURATION:")
    info(f"  Account:        {env_config.account}")
    info(f"  Workspace:      {env_config.verification_workspace}")
    info(f"  Version:        {options.version}")
    info(f"  Branch:         {branch or orchestrator.config.git.production_branch}")
    info(f"  Skip Tests:     {'YES' if skip_tests and emergency else 'No'}")
    info(f"  Emergency Mode: {'YES' if emergency else 'No'}")

    if emergency:
        warn("Emergency mode: failed readiness and compliance checks will be bypassed")
    if skip_tests and not emergency:
        warn("--skip-tests is ignored without --emergency")

    if auto_approve:
        warn("Auto-approve is enabled for production deployment")
    else:
        typed = click.prompt(
            f"Type '{PRODUCTION_CONFIRMATION}' to confirm",
            default="",
            show_default=False,
            err=True,
        )
        if typed.strip() != PRODUCTION_CONFIRMATION:
            error_exit("Production deployment cancelled", exit_code=ExitCode.GENERAL_ERROR)

    with cancel_on_interrupt() as token:
        try:
            record = orchestrator.deploy_to_production(options, cancel_token=token)
        except Exception as e:
            if output == "table":
                _report_rollback(orchestrator)
            fail(e, output, "Production deployment")

    click.echo(format_record(record, output))
    if output == "table":
        success("Production deployment completed successfully")
        info("Monitor the application closely for the next 30 minutes.")


def _report_rollback(orchestrator: Any) -> None:
    history = orchestrator.get_deployment_history(Environment.PRODUCTION, 1)
    if history and history[0].rollback_version:
        warn(f"Auto-rollback targeted version {history[0].rollback_version}")


__all__: list[str] = [
    "PRODUCTION_CONFIRMATION",
    "cancel_on_interrupt",
    "deploy_prod_command",
    "deploy_qa_command",
]
