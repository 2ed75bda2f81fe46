"""relata schema: print, export, and list the relations of a compiled schema."""

from __future__ import annotations

import json
from typing import Any, Optional

import typer
import yaml

from relata.cli import _exitcodes as ec
from relata.cli._loader import load_schema_or_exit
from relata.cli._output import print_error, print_table
from relata.printer import RELATION_LABELS, export_schema, format_schema

app = typer.Typer(no_args_is_help=True)

_MODELS_HELP = "Python import path for models"


@app.command(name="show")
def schema_show_cmd(
    models: Optional[str] = typer.Option(
        None, "--models", envvar="RELATA_MODELS", help=_MODELS_HELP
    ),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
) -> None:
    """Print every model, field, and relation of the schema."""
    from relata.cli import state

    compiled = load_schema_or_exit(models, models_path)
    if state.json_output:
        print(json.dumps(export_schema(compiled), indent=2, default=str))
        return
    print(format_schema(compiled), end="")


@app.command(name="relations")
def schema_relations_cmd(
    models: Optional[str] = typer.Option(
        None, "--models", envvar="RELATA_MODELS", help=_MODELS_HELP
    ),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
) -> None:
    """List relations with their kind and foreign key placement."""
    from relata.cli import state

    compiled = load_schema_or_exit(models, models_path)
    rows: list[list[Any]] = []
    for rel in compiled.relations:
        f = rel.source.get_relation_fields()[rel.source_field]
        cfg = f.relation_config
        rows.append(
            [
                rel.name or "",
                RELATION_LABELS[rel.type],
                f"{rel.source.name}.{rel.source_field}",
                f"{rel.target.name}.{rel.target_field}" if rel.target_field else rel.target.name,
                cfg.foreign_key if cfg else "",
                cfg.side if cfg else "",
            ]
        )
    print_table(
        ["name", "kind", "source", "target", "foreign_key", "side"],
        rows,
        json_mode=state.json_output,
    )


@app.command(name="export")
def schema_export_cmd(
    models: Optional[str] = typer.Option(
        None, "--models", envvar="RELATA_MODELS", help=_MODELS_HELP
    ),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
    output: Optional[str] = typer.Option(None, "--output", help="Output file path"),
    fmt: str = typer.Option("json", "--format", help="Output format: json or yaml"),
) -> None:
    """Export the compiled schema for review, diffing, and CI artifacts."""
    if fmt not in ("json", "yaml"):
        print_error("--format must be 'json' or 'yaml'")
        raise typer.Exit(ec.USAGE_ERROR)
    compiled = load_schema_or_exit(models, models_path)
    _write_output(export_schema(compiled), output, fmt)


def _write_output(data: dict[str, Any], output: str | None, fmt: str) -> None:
    """Write schema data to file or stdout."""
    if fmt == "yaml":
        content = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    else:
        content = json.dumps(data, indent=2, default=str)

    if output:
        with open(output, "w") as f:
            f.write(content)
        print(f"Written to {output}")
    else:
        print(content)
