"""CLI application setup using Typer."""

from shellbox.cli.main import app

__all__ = ["app"]
