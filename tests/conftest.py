"""Shared test fixtures for Relata tests."""

from __future__ import annotations

import pytest

from relata import Model, ObjectField, RelationField, ScalarField, Schema
from relata.storage import MemoryDataSourceGroup
from relata.types import EnumField

# --- Test models ---


def make_models() -> list[Model]:
    """Build a fresh, uncompiled model set.

    User <-> Friend   many-to-many ("friends")
    User <-> Book     one-to-many  ("authored"), Book holds author_id
    User <-> Profile  one-to-one   ("profile"), User holds profile_id
    User  -> Team     uni many-to-one
    Team  -> User     uni one-to-many (members)
    """
    note = ObjectField(
        "Note",
        {"language": ScalarField("String"), "score": ScalarField("Int")},
        list=True,
    )
    location = ObjectField(
        "Location",
        {
            "lat": ScalarField("Float"),
            "lng": ScalarField("Float"),
            "address": ObjectField(
                "Address", {"city": ScalarField("String"), "zip": ScalarField("String")}
            ),
        },
    )
    user = Model(
        "User",
        {
            "id": ScalarField("ID", unique=True, auto_generated=True),
            "username": ScalarField("String", unique=True, non_null=True),
            "age": ScalarField("Int"),
            "status": EnumField("Status", ["OK", "NOT_OK"]),
            "tags": ScalarField("String", list=True, item_non_null=True),
            "scores": ScalarField("Int", list=True),
            "notes": note,
            "location": location,
            "settings": ScalarField("Json"),
            "created_at": ScalarField("DateTime"),
            "updatedAt": ScalarField("DateTime", updated_at=True),
            "friends": RelationField("Friend", list=True, relation_name="friends"),
            "books": RelationField("Book", list=True, relation_name="authored"),
            "profile": RelationField("Profile", relation_name="profile"),
            "team": RelationField("Team"),
        },
    )
    friend = Model(
        "Friend",
        {
            "id": ScalarField("ID", unique=True, auto_generated=True),
            "username": ScalarField("String", unique=True),
            "users": RelationField("User", list=True, relation_name="friends"),
        },
    )
    book = Model(
        "Book",
        {
            "id": ScalarField("ID", unique=True, auto_generated=True),
            "title": ScalarField("String"),
            "author": RelationField("User", relation_name="authored"),
        },
    )
    profile = Model(
        "Profile",
        {
            "id": ScalarField("ID", unique=True, auto_generated=True),
            "bio": ScalarField("String"),
            "user": RelationField("User", relation_name="profile"),
        },
    )
    team = Model(
        "Team",
        {
            "id": ScalarField("ID", unique=True, auto_generated=True),
            "name": ScalarField("String", unique=True),
            "members": RelationField("User", list=True),
        },
    )
    return [user, friend, book, profile, team]


# --- Fixtures ---


@pytest.fixture
def models():
    """Fresh uncompiled models."""
    return make_models()


@pytest.fixture
def group():
    """In-memory storage shared by every model of a test."""
    return MemoryDataSourceGroup()


@pytest.fixture
def schema(group):
    """Compiled schema over fresh models and in-memory storage."""
    return Schema(make_models(), data_source=group)


@pytest.fixture
def user_model(schema):
    return schema.models["User"]


@pytest.fixture
def users(schema):
    return schema["User"]


@pytest.fixture
def friends(schema):
    return schema["Friend"]


@pytest.fixture
def make_schema(group):
    """Factory compiling fresh models with extra Schema keyword arguments."""

    def factory(**kwargs):
        return Schema(make_models(), data_source=group, **kwargs)

    return factory
