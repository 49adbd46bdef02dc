"""Standalone readiness commands: ``validate`` and ``health``.

Neither command creates a deployment record. Both exit 1 when something
would block a deployment: a failed gate for ``validate``, an unhealthy
service for ``health``.

Example:
    $ vtex-deploy validate
    $ vtex-deploy validate --check production --check compliance --output json
    $ vtex-deploy health --service vtex --timeout 10
"""

from __future__ import annotations

import json
import sys
from collections.abc import Sequence

import click

from vtex_deploy.cli._factory import get_orchestrator
from vtex_deploy.cli.utils import OUTPUT_FORMATS, ExitCode, fail
from vtex_deploy.health import (
    DEFAULT_HEALTH_CHECK_TIMEOUT,
    HEALTH_SERVICES,
    HealthState,
    HealthStatus,
    overall_state,
)
from vtex_deploy.orchestrator import VALIDATION_CHECKS
from vtex_deploy.schemas.deploy import GateResult, GateStatus

_output_option = click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)


def format_gate_results(results: Sequence[GateResult], output_format: str) -> str:
    """Render validation results with a pass/warn/fail summary."""
    summary = {status.value: 0 for status in GateStatus}
    for result in results:
        summary[result.status.value] += 1
    valid = summary[GateStatus.FAILED.value] == 0

    if output_format == "json":
        return json.dumps(
            {
                "valid": valid,
                "summary": {"total": len(results), **summary},
                "results": [r.model_dump(mode="json") for r in results],
            },
            indent=2,
        )

    header = f"{'CHECK':<24} {'STATUS':<10} DURATION"
    lines = [header, "-" * len(header)]
    for r in results:
        lines.append(f"{r.gate:<24} {r.status.value:<10} {r.duration_ms}ms")
        lines.extend(f"    - {issue}" for issue in r.issues)
    lines.append("")
    lines.append(
        f"{len(results)} checks: {summary['passed']} passed, {summary['warning']} warnings, "
        f"{summary['failed']} failed, {summary['skipped']} skipped"
    )
    lines.append("Project is ready to deploy" if valid else "Project is NOT ready to deploy")
    return "\n".join(lines)


def format_health(results: dict[str, HealthStatus], output_format: str) -> str:
    """Render health results with the overall state."""
    state = overall_state(results.values())
    if output_format == "json":
        return json.dumps(
            {
                "state": state.value,
                "services": {name: s.model_dump(mode="json") for name, s in results.items()},
            },
            indent=2,
        )

    header = f"{'SERVICE':<12} {'STATE':<10} MESSAGE"
    lines = [header, "-" * len(header)]
    for name, status in results.items():
        lines.append(f"{name:<12} {status.state.value:<10} {status.message}")
    lines.append("")
    lines.append(f"Overall: {state.value}")
    return "\n".join(lines)


@click.command(
    name="validate",
    help="Run validation gates without deploying.",
    epilog="""
Checks default to manifest, dependencies and security.

Examples:
    $ vtex-deploy validate
    $ vtex-deploy validate --all
    $ vtex-deploy validate -c production -c compliance --output json
""",
)
@click.option(
    "--check",
    "-c",
    "checks",
    type=click.Choice(VALIDATION_CHECKS, case_sensitive=False),
    multiple=True,
    help="Check to run (repeatable).",
)
@click.option("--all", "run_all", is_flag=True, default=False, help="Run every check.")
@_output_option
@click.pass_context
def validate_command(
    ctx: click.Context,
    checks: tuple[str, ...],
    run_all: bool,
    output: str,
) -> None:
    """Run the selected gates and report the results."""
    if run_all and checks:
        raise click.UsageError("--all cannot be combined with --check")
    selected: Sequence[str] | None = None
    if run_all:
        selected = VALIDATION_CHECKS
    elif checks:
        selected = [check.lower() for check in checks]

    try:
        results = get_orchestrator(ctx, notifications=False).validate_project(selected)
    except Exception as e:
        fail(e, output, "Validation")

    click.echo(format_gate_results(results, output))
    if any(r.status == GateStatus.FAILED for r in results):
        sys.exit(ExitCode.GENERAL_ERROR)


@click.command(name="health", help="Check the deployment toolchain and project health.")
@click.option(
    "--service",
    "-s",
    "services",
    type=click.Choice(HEALTH_SERVICES, case_sensitive=False),
    multiple=True,
    help="Service to check (repeatable; default: all).",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=DEFAULT_HEALTH_CHECK_TIMEOUT,
    show_default=True,
    help="Per-check timeout in seconds.",
)
@_output_option
@click.pass_context
def health_command(
    ctx: click.Context,
    services: tuple[str, ...],
    timeout: float,
    output: str,
) -> None:
    """Run health checks; unhealthy services exit 1, degraded ones do not."""
    selected = [service.lower() for service in services] or None
    try:
        results = get_orchestrator(ctx, notifications=False).check_health(selected, timeout)
    except Exception as e:
        fail(e, output, "Health check")

    click.echo(format_health(results, output))
    if overall_state(results.values()) == HealthState.UNHEALTHY:
        sys.exit(ExitCode.GENERAL_ERROR)


__all__: list[str] = [
    "format_gate_results",
    "format_health",
    "health_command",
    "validate_command",
]
