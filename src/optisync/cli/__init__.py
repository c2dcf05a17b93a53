"""Command-line interface for optisync (Typer + Rich)."""

from optisync.cli.app import app

__all__ = ["app"]
