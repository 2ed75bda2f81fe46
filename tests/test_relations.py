"""Tests for the relation engine handlers."""

from __future__ import annotations

import asyncio

import pytest
from loguru import logger

from relata import Model, RelationField, ScalarField
from relata.errors import (
    ConfigurationError,
    NotFoundError,
    RelationBatchError,
    StorageBackendError,
)
from relata.filters import compile_where
from relata.relation_hooks import resolve_ids, run_batch
from relata.relations import (
    ManyToManyRelation,
    OneToManyRelation,
    OneToOneRelation,
    create_relation,
)


def handler(schema, model_name, field_name):
    model = schema.models[model_name]
    return create_relation(model, model.fields[field_name])


async def _new(schema, model_name, **data):
    return await schema[model_name].create(data)


class TestDispatch:
    def test_one_handler_per_relationship(self, schema):
        assert isinstance(handler(schema, "User", "friends"), ManyToManyRelation)
        assert isinstance(handler(schema, "Friend", "users"), ManyToManyRelation)
        assert isinstance(handler(schema, "User", "books"), OneToManyRelation)
        assert isinstance(handler(schema, "Book", "author"), OneToManyRelation)
        assert isinstance(handler(schema, "User", "team"), OneToManyRelation)
        assert isinstance(handler(schema, "User", "profile"), OneToOneRelation)

    def test_reciprocal_found_by_relation_name(self, schema):
        h = handler(schema, "User", "friends")
        assert h.reciprocal is schema.models["Friend"].fields["users"]
        assert h.reciprocal_key == "users_ids"
        assert handler(schema, "User", "team").reciprocal is None

    def test_uncompiled_field(self):
        rel = RelationField("User")
        model = Model("Book", {"id": ScalarField("ID", unique=True), "author": rel})
        with pytest.raises(ConfigurationError, match="Book.author"):
            create_relation(model, rel)


class TestManyToMany:
    @pytest.mark.asyncio
    async def test_link_writes_both_sides(self, schema, group):
        u = await _new(schema, "User", username="ben")
        f = await _new(schema, "Friend", username="amy")
        await handler(schema, "User", "friends").link(u["id"], f["id"])
        assert group.collection("users")[u["id"]]["friends_ids"] == [f["id"]]
        assert group.collection("friends")[f["id"]]["users_ids"] == [u["id"]]

    @pytest.mark.asyncio
    async def test_link_then_unlink_restores_arrays(self, schema, group):
        h = handler(schema, "User", "friends")
        u = await _new(schema, "User", username="ben")
        f0 = await _new(schema, "Friend", username="old")
        f1 = await _new(schema, "Friend", username="new")
        await h.link(u["id"], f0["id"])
        before_user = list(group.collection("users")[u["id"]]["friends_ids"])
        before_friend = list(group.collection("friends")[f1["id"]].get("users_ids") or [])

        await h.link(u["id"], f1["id"])
        await h.unlink(u["id"], f1["id"])

        assert group.collection("users")[u["id"]]["friends_ids"] == before_user
        assert group.collection("friends")[f1["id"]]["users_ids"] == before_friend

    @pytest.mark.asyncio
    async def test_relink_then_unlink_restores_arrays(self, schema, group):
        h = handler(schema, "User", "friends")
        u = await _new(schema, "User", username="ben")
        f = await _new(schema, "Friend", username="amy")
        await h.link(u["id"], f["id"])
        before_user = list(group.collection("users")[u["id"]]["friends_ids"])
        before_friend = list(group.collection("friends")[f["id"]]["users_ids"])

        await h.link(u["id"], f["id"])
        await h.unlink(u["id"], f["id"])

        assert group.collection("users")[u["id"]]["friends_ids"] == before_user == [f["id"]]
        assert group.collection("friends")[f["id"]]["users_ids"] == before_friend == [u["id"]]

    @pytest.mark.asyncio
    async def test_duplicate_link_is_not_deduplicated(self, schema, group):
        h = handler(schema, "User", "friends")
        u = await _new(schema, "User", username="ben")
        f = await _new(schema, "Friend", username="amy")
        await h.link(u["id"], f["id"])
        await h.link(u["id"], f["id"])
        assert group.collection("users")[u["id"]]["friends_ids"] == [f["id"], f["id"]]
        assert group.collection("friends")[f["id"]]["users_ids"] == [u["id"], u["id"]]

    @pytest.mark.asyncio
    async def test_second_write_failure_leaves_half_link(self, schema, group, monkeypatch):
        h = handler(schema, "User", "friends")
        u = await _new(schema, "User", username="ben")
        f = await _new(schema, "Friend", username="amy")

        async def disk_full(*args, **kwargs):
            raise StorageBackendError("add_reference", "disk full")

        monkeypatch.setattr(group.get_data_source("friends"), "add_reference", disk_full)
        with pytest.raises(StorageBackendError, match="disk full"):
            await h.link(u["id"], f["id"])

        assert group.collection("users")[u["id"]]["friends_ids"] == [f["id"]]
        assert "users_ids" not in group.collection("friends")[f["id"]]

    @pytest.mark.asyncio
    async def test_create_and_link(self, schema, group):
        u = await _new(schema, "User", username="ben")
        created = await handler(schema, "User", "friends").create_and_link(
            u["id"], {"username": "amy"}
        )
        assert created["username"] == "amy"
        assert group.collection("users")[u["id"]]["friends_ids"] == [created["id"]]
        assert group.collection("friends")[created["id"]]["users_ids"] == [u["id"]]

    @pytest.mark.asyncio
    async def test_delete_and_unlink(self, schema, group):
        h = handler(schema, "User", "friends")
        u = await _new(schema, "User", username="ben")
        f = await h.create_and_link(u["id"], {"username": "amy"})
        await h.delete_and_unlink(u["id"], f["id"])
        assert f["id"] not in group.collection("friends")
        assert group.collection("users")[u["id"]]["friends_ids"] == []

    @pytest.mark.asyncio
    async def test_join_with_where(self, schema):
        h = handler(schema, "User", "friends")
        u = await _new(schema, "User", username="ben")
        await h.create_and_link(u["id"], {"username": "amy"})
        await h.create_and_link(u["id"], {"username": "bob"})
        assert {r["username"] for r in await h.join(u["id"])} == {"amy", "bob"}
        where = compile_where({"username": "bob"}, schema.models["Friend"])
        assert [r["username"] for r in await h.join(u["id"], where=where)] == ["bob"]

    @pytest.mark.asyncio
    async def test_join_without_links(self, schema):
        u = await _new(schema, "User", username="ben")
        assert await handler(schema, "User", "friends").join(u["id"]) == []


class TestOneToMany:
    @pytest.mark.asyncio
    async def test_list_side_writes_key_on_many_side(self, schema, group):
        h = handler(schema, "User", "books")
        u = await _new(schema, "User", username="ben")
        b = await _new(schema, "Book", title="Python")
        await h.link(u["id"], b["id"])
        assert group.collection("books")[b["id"]]["author_id"] == u["id"]
        assert "books" not in group.collection("users")[u["id"]]
        assert [r["id"] for r in await h.join(u["id"])] == [b["id"]]

    @pytest.mark.asyncio
    async def test_to_one_side_join(self, schema):
        u = await _new(schema, "User", username="ben")
        b = await _new(schema, "Book", title="Python")
        await handler(schema, "User", "books").link(u["id"], b["id"])
        author = await handler(schema, "Book", "author").join(b["id"])
        assert author["username"] == "ben"

    @pytest.mark.asyncio
    async def test_unlink_only_own_records(self, schema, group):
        h = handler(schema, "User", "books")
        ben = await _new(schema, "User", username="ben")
        amy = await _new(schema, "User", username="amy")
        b = await _new(schema, "Book", title="Python")
        await h.link(amy["id"], b["id"])
        await h.unlink(ben["id"], b["id"])
        assert group.collection("books")[b["id"]]["author_id"] == amy["id"]
        await h.unlink(amy["id"], b["id"])
        assert group.collection("books")[b["id"]]["author_id"] is None

    @pytest.mark.asyncio
    async def test_to_one_delete_and_unlink(self, schema, group):
        h = handler(schema, "Book", "author")
        b = await _new(schema, "Book", title="Python")
        u = await h.create_and_link(b["id"], {"username": "ben"})
        assert group.collection("books")[b["id"]]["author_id"] == u["id"]
        await h.delete_and_unlink(b["id"])
        assert u["id"] not in group.collection("users")
        assert group.collection("books")[b["id"]]["author_id"] is None

    @pytest.mark.asyncio
    async def test_uni_one_to_many(self, schema, group):
        h = handler(schema, "Team", "members")
        t = await _new(schema, "Team", name="core")
        u = await h.create_and_link(t["id"], {"username": "ben"})
        assert group.collection("users")[u["id"]]["team_members_id"] == t["id"]
        assert [m["username"] for m in await h.join(t["id"])] == ["ben"]


class TestOneToOne:
    @pytest.mark.asyncio
    async def test_link_releases_previous_holder(self, schema, group):
        h = handler(schema, "User", "profile")
        ben = await _new(schema, "User", username="ben")
        amy = await _new(schema, "User", username="amy")
        p = await _new(schema, "Profile", bio="hi")
        await h.link(ben["id"], p["id"])
        await h.link(amy["id"], p["id"])
        assert group.collection("users")[ben["id"]]["profile_id"] is None
        assert group.collection("users")[amy["id"]]["profile_id"] == p["id"]
        owner = await handler(schema, "Profile", "user").join(p["id"])
        assert owner["username"] == "amy"

    @pytest.mark.asyncio
    async def test_link_from_key_less_side(self, schema, group):
        h = handler(schema, "Profile", "user")
        ben = await _new(schema, "User", username="ben")
        amy = await _new(schema, "User", username="amy")
        p = await _new(schema, "Profile", bio="hi")
        await h.link(p["id"], ben["id"])
        await h.link(p["id"], amy["id"])
        assert group.collection("users")[ben["id"]]["profile_id"] is None
        assert group.collection("users")[amy["id"]]["profile_id"] == p["id"]

    @pytest.mark.asyncio
    async def test_unlink_unlinked_is_noop(self, schema, group):
        ben = await _new(schema, "User", username="ben")
        await handler(schema, "User", "profile").unlink(ben["id"])
        assert group.collection("users")[ben["id"]]["profile_id"] is None
        p = await _new(schema, "Profile", bio="hi")
        await handler(schema, "Profile", "user").unlink(p["id"])

    @pytest.mark.asyncio
    async def test_join_unlinked(self, schema):
        ben = await _new(schema, "User", username="ben")
        assert await handler(schema, "User", "profile").join(ben["id"]) is None


class TestRunBatch:
    @pytest.mark.asyncio
    async def test_all_succeed(self):
        async def ok(n):
            return n

        assert await run_batch("batch", [ok(1), ok(2)]) == [1, 2]

    @pytest.mark.asyncio
    async def test_failures_are_aggregated_without_rollback(self):
        done: list[int] = []

        async def op(n):
            if n % 2:
                raise ValueError(f"bad {n}")
            done.append(n)

        messages: list[str] = []
        sink = logger.add(messages.append, level="WARNING")
        try:
            with pytest.raises(RelationBatchError) as exc_info:
                await run_batch("User.friends.connect", [op(n) for n in range(4)])
        finally:
            logger.remove(sink)

        assert exc_info.value.succeeded == 2
        assert sorted(str(e) for e in exc_info.value.errors) == ["bad 1", "bad 3"]
        assert sorted(done) == [0, 2]
        assert any("2 of 4 relation operations failed" in m for m in messages)


class TestResolveIds:
    @pytest.mark.asyncio
    async def test_resolves_in_order(self, schema):
        amy = await _new(schema, "Friend", username="amy")
        bob = await _new(schema, "Friend", username="bob")
        ids = await resolve_ids(
            schema.models["Friend"], [{"username": "bob"}, {"id": amy["id"]}], None
        )
        assert ids == [bob["id"], amy["id"]]

    @pytest.mark.asyncio
    async def test_failure_waits_for_other_lookups(self, schema, group, monkeypatch):
        source = group.get_data_source("friends")
        original = source.find_one
        finished: list[str] = []

        async def slow_find_one(where, context=None):
            await asyncio.sleep(0.01)
            record = await original(where, context)
            finished.append("slow")
            return record

        await _new(schema, "Friend", username="amy")
        lookups = iter([original, slow_find_one])
        monkeypatch.setattr(source, "find_one", lambda *a, **kw: next(lookups)(*a, **kw))

        with pytest.raises(NotFoundError):
            await resolve_ids(
                schema.models["Friend"], [{"username": "nope"}, {"username": "amy"}], None
            )
        assert finished == ["slow"]
