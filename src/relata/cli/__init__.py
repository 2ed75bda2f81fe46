"""Relata CLI: inspect compiled schemas and compile where inputs."""

from __future__ import annotations

import typer

from relata.cli import schema, where
from relata.config import RelataConfig
from relata.log import configure_logging

app = typer.Typer(
    name="relata",
    help="Relata CLI: inspect compiled schemas and compile where inputs.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    json_output: bool = False
    verbose: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        from relata import __version__

        print(f"relata {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr"),
    log_level: str = typer.Option(
        RelataConfig.log_level, "--log-level", envvar="RELATA_LOG_LEVEL", help="Log level"
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all relata commands."""
    state.json_output = json_output
    state.verbose = verbose
    # an explicit --log-level wins over --verbose; the source enum is matched by
    # name since typer may ship its own click
    source = ctx.get_parameter_source("log_level")
    if verbose and getattr(source, "name", None) != "COMMANDLINE":
        log_level = "DEBUG"
    configure_logging(log_level)
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.add_typer(schema.app, name="schema", help="Inspect and export compiled schemas")
app.add_typer(where.app, name="where", help="Compile where inputs to filter trees")


def main() -> None:
    """Entry point for the relata CLI."""
    app()
