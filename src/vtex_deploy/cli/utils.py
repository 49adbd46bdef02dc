"""CLI utility functions and output formatting.

This module provides shared utilities for the vtex-deploy CLI, including:
- Exit code constants
- Output helpers for consistent stderr/stdout usage
- Table and JSON renderings of deployment and rollback records

Errors and progress go to stderr so ``--output json`` keeps stdout
machine-readable.

Example:
    from vtex_deploy.cli.utils import error_exit, ExitCode

    if not confirmed:
        error_exit("Deployment aborted", exit_code=ExitCode.GENERAL_ERROR)
"""

from __future__ import annotations

import json
import sys
from collections.abc import Sequence
from enum import IntEnum
from typing import TYPE_CHECKING

import click
import structlog

from vtex_deploy.errors import DeployError
from vtex_deploy.telemetry.sanitization import sanitize_error_message

if TYPE_CHECKING:
    from typing import NoReturn

    from vtex_deploy.schemas.deploy import DeploymentRecord, RollbackRecord

logger = structlog.get_logger(__name__)

OUTPUT_FORMATS = ("table", "json")


class ExitCode(IntEnum):
    """Exit codes for CLI commands."""

    SUCCESS = 0
    """Command completed successfully."""

    GENERAL_ERROR = 1
    """Deployment, rollback or query failure."""

    USAGE_ERROR = 2
    """Invalid usage (bad arguments, missing required options)."""


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Example:
        error("Deployment failed", deployment_id="deploy_1_abcd1234")
        # Output: Error: Deployment failed (deployment_id=deploy_1_abcd1234)
    """
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Error: {message} ({context_str})"
    else:
        full_message = f"Error: {message}"

    click.echo(full_message, err=True)


def error_exit(
    message: str,
    exit_code: ExitCode = ExitCode.GENERAL_ERROR,
    **context: str | int | bool | None,
) -> NoReturn:
    """Print an error message to stderr and exit with ``exit_code``."""
    error(message, **context)
    sys.exit(exit_code)


def warn(message: str, **context: str | int | bool | None) -> None:
    """Print a warning message to stderr."""
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Warning: {message} ({context_str})"
    else:
        full_message = f"Warning: {message}"

    click.echo(full_message, err=True)


def success(message: str) -> None:
    """Print a success message to stdout."""
    click.echo(message)


def info(message: str) -> None:
    """Print an informational message to stderr."""
    click.echo(message, err=True)


def exit_code_for(exc: Exception) -> int:
    """CLI exit code for an exception (DeployError.exit_code, else 1)."""
    if isinstance(exc, DeployError):
        return exc.exit_code
    return ExitCode.GENERAL_ERROR


def fail(exc: Exception, output: str, action: str) -> NoReturn:
    """Report ``exc`` in the requested format and exit non-zero."""
    exit_code = exit_code_for(exc)
    message = sanitize_error_message(str(exc))
    logger.error(
        "command_failed",
        action=action,
        error_type=type(exc).__name__,
        error_summary=message[:200],
    )
    if output == "json":
        payload: dict[str, object] = {"error": message, "exit_code": exit_code}
        kind = getattr(exc, "kind", None)
        if kind is not None:
            payload["error_kind"] = kind.value
        click.echo(json.dumps(payload))
    else:
        error(f"{action} failed: {message}")
    sys.exit(exit_code)


def format_record(record: DeploymentRecord, output_format: str, *, show_logs: bool = True) -> str:
    """Render a deployment record for CLI output."""
    if output_format == "json":
        return record.model_dump_json(indent=2)

    lines = [
        "",
        f"Deployment ID:    {record.id}",
        f"Environment:      {record.environment.value}",
        f"Status:           {record.status.value}",
        f"Version:          {record.version or 'N/A'}",
        f"Workspace:        {record.workspace}",
        f"Started At:       {record.start_time.isoformat()}",
        f"Ended At:         {record.end_time.isoformat() if record.end_time else 'N/A'}",
        f"Duration:         {record.duration_ms}ms",
    ]
    if record.error:
        lines.append(f"Error:            {sanitize_error_message(record.error)}")
    if record.rollback_version:
        lines.append(f"Rollback Version: {record.rollback_version}")
    if record.trace_id:
        lines.append(f"Trace ID:         {record.trace_id}")
    if show_logs and record.logs:
        lines.append("")
        lines.append("Logs:")
        lines.extend(f"  - {line}" for line in record.logs)
    lines.append("")
    return "\n".join(lines)


def format_records(records: Sequence[DeploymentRecord], output_format: str) -> str:
    """Render deployment history as a table or JSON array."""
    if output_format == "json":
        return json.dumps([r.model_dump(mode="json") for r in records], indent=2)

    if not records:
        return "No deployments found"
    header = f"{'ID':<32} {'STATUS':<12} {'VERSION':<28} {'WORKSPACE':<14} STARTED"
    lines = [header, "-" * len(header)]
    for r in records:
        lines.append(
            f"{r.id:<32} {r.status.value:<12} {(r.version or '-'):<28} "
            f"{r.workspace:<14} {r.start_time.isoformat()}"
        )
    return "\n".join(lines)


def format_rollback(record: RollbackRecord, output_format: str) -> str:
    """Render a rollback record for CLI output."""
    if output_format == "json":
        return record.model_dump_json(indent=2)

    lines = [
        "",
        f"Rollback ID:      {record.rollback_id}",
        f"Environment:      {record.environment.value}",
        f"Previous Version: {record.previous_version or 'unknown'}",
        f"Current Version:  {record.current_version}",
        f"Workspaces:       {', '.join(record.affected_workspaces)}",
        f"Reason:           {record.reason or 'N/A'}",
        f"Rolled Back At:   {record.rollback_time.isoformat()}",
        f"Duration:         {record.duration_ms}ms",
    ]
    if record.trace_id:
        lines.append(f"Trace ID:         {record.trace_id}")
    lines.append("")
    return "\n".join(lines)


__all__: list[str] = [
    "ExitCode",
    "OUTPUT_FORMATS",
    "error",
    "error_exit",
    "exit_code_for",
    "fail",
    "format_record",
    "format_records",
    "format_rollback",
    "info",
    "success",
    "warn",
]
