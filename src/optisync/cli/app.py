"""
Root Typer application for the optisync CLI.

::

    optisync [--version] [--log-level LEVEL]
      ├── config     resolved OPTISYNC_* settings
      └── simulate   one scripted mutation lifecycle
"""

from __future__ import annotations

import typer

from optisync import __version__
from optisync.cli.simulate import simulate
from optisync.cli.utils import print_dict, print_json
from optisync.core.logging import configure_from_settings
from optisync.core.settings import get_settings

app = typer.Typer(
    name="optisync",
    help="Resilient optimistic synchronization engine.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _show_version(requested: bool) -> None:
    if requested:
        typer.echo(f"optisync {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_show_version,
        is_eager=True,
        help="Print the version and exit.",
    ),
    log_level: str = typer.Option("ERROR", "--log-level", help="Engine log level."),
) -> None:
    """Inspect configuration and simulate mutation lifecycles."""
    configure_from_settings(get_settings(), level=log_level, json_format=False)


@app.command("config")
def show_config(json_out: bool = typer.Option(False, "--json", help="Emit JSON.")) -> None:
    """Show resolved settings (OPTISYNC_* environment and .env)."""
    values = get_settings().model_dump()
    if json_out:
        print_json(values)
        return
    print_dict(values, title="optisync settings")


app.command("simulate")(simulate)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
