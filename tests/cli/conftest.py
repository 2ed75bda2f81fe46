"""Shared fixtures for CLI tests."""

from __future__ import annotations

import textwrap
import uuid
from pathlib import Path

import pytest
from loguru import logger
from typer.testing import CliRunner

from relata.cli import app

BLOG_MODELS = """\
from relata import Model, RelationField, ScalarField

User = Model(
    "User",
    {
        "id": ScalarField("ID", unique=True, auto_generated=True),
        "email": ScalarField("Email", unique=True, non_null=True),
        "posts": RelationField("Post", list=True, relation_name="wrote"),
    },
)
Post = Model(
    "Post",
    {
        "id": ScalarField("ID", unique=True, auto_generated=True),
        "title": ScalarField("String"),
        "author": RelationField("User", relation_name="wrote"),
        "tags": RelationField("Tag", list=True, relation_name="tagged"),
    },
)
Tag = Model(
    "Tag",
    {
        "id": ScalarField("ID", unique=True, auto_generated=True),
        "label": ScalarField("String", unique=True),
        "posts": RelationField("Post", list=True, relation_name="tagged"),
    },
)
"""


def write_module(directory: Path, source: str) -> Path:
    """Write a models module under a fresh name; imported modules are cached by name."""
    path = directory / f"models_{uuid.uuid4().hex}.py"
    path.write_text(textwrap.dedent(source))
    return path


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def models_path(tmp_path) -> str:
    """Path of a module declaring a small blog schema."""
    return str(write_module(tmp_path, BLOG_MODELS))


@pytest.fixture
def invoke(runner):
    """Invoke the CLI with the given arguments."""

    def run(args: list[str], **kwargs):
        return runner.invoke(app, args, catch_exceptions=False, **kwargs)

    return run


@pytest.fixture(autouse=True)
def _drop_log_sinks():
    """The CLI adds a sink bound to the runner's stderr; drop it afterwards."""
    yield
    logger.remove()
