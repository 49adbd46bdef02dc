"""Read views over the deployment ledger: ``status`` and ``history``.

Example:
    $ vtex-deploy status deploy_1717171717171_ab12cd34
    $ vtex-deploy history --environment production --limit 5 --output json
"""

from __future__ import annotations

import click

from vtex_deploy.cli._factory import get_orchestrator
from vtex_deploy.cli.utils import OUTPUT_FORMATS, fail, format_record, format_records
from vtex_deploy.schemas.deploy import Environment

_output_option = click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)


@click.command(name="status", help="Show the status of a deployment.")
@click.argument("deployment_id")
@_output_option
@click.pass_context
def status_command(ctx: click.Context, deployment_id: str, output: str) -> None:
    """Show one deployment record with its audit log."""
    try:
        record = get_orchestrator(ctx).get_deploy_status(deployment_id)
    except Exception as e:
        fail(e, output, "Status")
    click.echo(format_record(record, output))


@click.command(name="history", help="List recent deployments, newest first.")
@click.option(
    "--environment",
    "-e",
    type=click.Choice([e.value for e in Environment], case_sensitive=False),
    default=Environment.QA.value,
    show_default=True,
    help="Environment to list.",
)
@click.option(
    "--limit",
    "-n",
    type=click.IntRange(min=0),
    default=None,
    help="Number of records (default: configured history limit).",
)
@_output_option
@click.pass_context
def history_command(
    ctx: click.Context,
    environment: str,
    limit: int | None,
    output: str,
) -> None:
    """List deployments for one environment."""
    try:
        records = get_orchestrator(ctx).get_deployment_history(
            Environment(environment.lower()), limit
        )
    except Exception as e:
        fail(e, output, "History")
    click.echo(format_records(records, output))


__all__: list[str] = ["history_command", "status_command"]
