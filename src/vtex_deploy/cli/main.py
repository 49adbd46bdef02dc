"""Main entry point for the vtex-deploy CLI.

Commands:
    vtex-deploy deploy:qa: Deploy to the QA workspace
    vtex-deploy deploy:prod: Release a stable version through verification
    vtex-deploy rollback: Reinstall a previous version
    vtex-deploy status: Show one deployment
    vtex-deploy history: List recent deployments
    vtex-deploy validate: Run validation gates without deploying
    vtex-deploy health: Check the toolchain and project health

Example:
    $ vtex-deploy --help
    $ vtex-deploy --config vtex-deploy.yaml deploy:qa --skip-tests
"""

from __future__ import annotations

import sys
from importlib.metadata import version as get_version
from pathlib import Path

import click

from vtex_deploy.cli.checks import health_command, validate_command
from vtex_deploy.cli.deploy import deploy_prod_command, deploy_qa_command
from vtex_deploy.cli.rollback import rollback_command
from vtex_deploy.cli.status import history_command, status_command
from vtex_deploy.config import DEFAULT_CONFIG_PATH


def _get_version() -> str:
    """Package version, or 'unknown' if not installed."""
    try:
        return get_version("vtex-deploy")
    except Exception:
        return "unknown"


@click.group(
    name="vtex-deploy",
    help="vtex-deploy - QA and production deployments for VTEX IO apps.",
    epilog="Use 'vtex-deploy <command> --help' for command-specific help.",
    context_settings={
        "help_option_names": ["-h", "--help"],
    },
)
@click.version_option(
    version=_get_version(),
    prog_name="vtex-deploy",
    message="%(prog)s %(version)s",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Configuration file.",
)
@click.option(
    "--project-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="App project directory.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path, project_dir: Path) -> None:
    """Root command group for the vtex-deploy CLI."""
    obj = ctx.ensure_object(dict)
    obj.setdefault("config_path", config_path)
    obj.setdefault("project_dir", project_dir)


cli.add_command(deploy_qa_command)
cli.add_command(deploy_prod_command)
cli.add_command(rollback_command)
cli.add_command(status_command)
cli.add_command(history_command)
cli.add_command(validate_command)
cli.add_command(health_command)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the vtex-deploy CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
