"""relata where: compile where inputs against a model."""

from __future__ import annotations

import json
from typing import Optional

import typer

from relata.cli import _exitcodes as ec
from relata.cli._loader import load_schema_or_exit
from relata.cli._output import print_error, print_object
from relata.errors import ValidationError
from relata.filters import compile_unique_where

app = typer.Typer(no_args_is_help=True)


@app.command(name="compile")
def where_compile_cmd(
    model_name: str = typer.Argument(..., help="Model name"),
    where_json: str = typer.Argument(..., help="Where input as JSON"),
    models: Optional[str] = typer.Option(
        None, "--models", envvar="RELATA_MODELS", help="Python import path for models"
    ),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
    unique: bool = typer.Option(False, "--unique", help="Compile as a unique-where input"),
) -> None:
    """Print the filter tree a where input compiles to."""
    try:
        where = json.loads(where_json)
    except json.JSONDecodeError as e:
        print_error(f"Invalid JSON: {e}")
        raise typer.Exit(ec.USAGE_ERROR)

    compiled = load_schema_or_exit(models, models_path)
    if model_name not in compiled.models:
        print_error(f"Model '{model_name}' not found in schema")
        raise typer.Exit(ec.USAGE_ERROR)
    model = compiled.models[model_name]

    try:
        if unique:
            tree = compile_unique_where(where, model)
        else:
            tree = compiled.compiler.compile(where, model)
    except ValidationError as e:
        print_error(str(e))
        raise typer.Exit(ec.VALIDATION_ERROR)

    print_object(tree.to_dict(), json_mode=True)
