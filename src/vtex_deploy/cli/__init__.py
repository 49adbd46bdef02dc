"""Command line interface for vtex-deploy."""

from __future__ import annotations

from vtex_deploy.cli.main import cli, main

__all__: list[str] = ["cli", "main"]
