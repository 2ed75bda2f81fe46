"""Tests for schema compilation."""

from __future__ import annotations

import pytest

from relata import Hook, Model, RelataConfig, RelationField, ScalarField, Schema
from relata.errors import ConfigurationError
from relata.filters import Quantifier
from relata.storage import MemoryDataSourceGroup
from relata.types import RelationConfig, RelationType


def _id() -> ScalarField:
    return ScalarField("ID", unique=True, auto_generated=True)


def _compile(*models: Model, **kwargs) -> Schema:
    kwargs.setdefault("data_source", MemoryDataSourceGroup())
    return Schema(list(models), **kwargs)


class TestRelationPairing:
    @pytest.mark.parametrize(
        "model, field, relation_type",
        [
            ("User", "friends", RelationType.BI_MANY_TO_MANY),
            ("Friend", "users", RelationType.BI_MANY_TO_MANY),
            ("User", "books", RelationType.BI_ONE_TO_MANY),
            ("Book", "author", RelationType.BI_ONE_TO_MANY),
            ("User", "profile", RelationType.BI_ONE_TO_ONE),
            ("Profile", "user", RelationType.BI_ONE_TO_ONE),
            ("User", "team", RelationType.UNI_MANY_TO_ONE),
            ("Team", "members", RelationType.UNI_ONE_TO_MANY),
        ],
    )
    def test_relation_types(self, schema, model, field, relation_type):
        assert schema.models[model].fields[field].relation_type is relation_type

    @pytest.mark.parametrize(
        "model, field, foreign_key, side",
        [
            ("User", "friends", "friends_ids", "source"),
            ("Friend", "users", "users_ids", "source"),
            ("Book", "author", "author_id", "source"),
            ("User", "books", "author_id", "target"),
            ("User", "profile", "profile_id", "source"),
            ("Profile", "user", "profile_id", "target"),
            ("User", "team", "team_id", "source"),
            ("Team", "members", "team_members_id", "target"),
        ],
    )
    def test_relation_configs(self, schema, model, field, foreign_key, side):
        config = schema.models[model].fields[field].relation_config
        assert config == RelationConfig(foreign_key, side)

    def test_relations(self, schema):
        summary = [
            (r.name, r.source.name, r.source_field, r.target.name, r.target_field)
            for r in schema.relations
        ]
        assert summary == [
            ("friends", "User", "friends", "Friend", "users"),
            ("authored", "User", "books", "Book", "author"),
            ("profile", "User", "profile", "Profile", "user"),
            (None, "User", "team", "Team", None),
            (None, "Team", "members", "User", None),
        ]

    def test_reciprocals_point_at_each_other(self, schema):
        friends = schema.models["User"].fields["friends"]
        users = schema.models["Friend"].fields["users"]
        assert friends.reciprocal is users
        assert users.reciprocal is friends
        assert schema.models["User"].fields["team"].reciprocal is None

    def test_explicit_foreign_key(self):
        author = Model(
            "Author",
            {"id": _id(), "posts": RelationField("Post", list=True, relation_name="wrote")},
        )
        post = Model(
            "Post",
            {
                "id": _id(),
                "by": RelationField("Author", relation_name="wrote", foreign_key="writer"),
            },
        )
        _compile(author, post)
        assert post.fields["by"].relation_config == RelationConfig("writer", "source")
        assert author.fields["posts"].relation_config == RelationConfig("writer", "target")

    def test_target_given_as_model(self):
        tag = Model("Tag", {"id": _id()})
        item = Model("Item", {"id": _id(), "tag": RelationField(tag)})
        _compile(tag, item)
        assert item.fields["tag"].relation_to is tag
        assert item.fields["tag"].relation_config == RelationConfig("tag_id", "source")


class TestSymmetricSelfRelation:
    @pytest.fixture
    def people(self):
        person = Model(
            "Person",
            {
                "id": _id(),
                "name": ScalarField("String", unique=True),
                "friends": RelationField(
                    "Person", list=True, relation_type=RelationType.BI_MANY_TO_MANY
                ),
            },
        )
        return _compile(person)

    def test_single_field_is_its_own_reciprocal(self, people):
        friends = people.models["Person"].fields["friends"]
        assert friends.reciprocal is friends
        assert friends.relation_config == RelationConfig("friends_ids", "source")
        assert len(people.relations) == 1

    @pytest.mark.asyncio
    async def test_connect_writes_both_records(self, people):
        api = people["Person"]
        a = await api.create({"name": "a"})
        b = await api.create({"name": "b"})
        await api.update({"id": a["id"]}, {"friends": {"connect": [{"id": b["id"]}]}})
        assert (await api.find_one({"id": a["id"]}))["friends_ids"] == [b["id"]]
        assert (await api.find_one({"id": b["id"]}))["friends_ids"] == [a["id"]]


class TestCompiledState:
    def test_array_fields_marked(self, user_model):
        assert user_model.create_mutation_factory.array_fields == {"tags", "scores", "notes"}
        assert user_model.update_mutation_factory.array_fields == {"tags", "scores", "notes"}

    def test_models_bound_by_source_key(self, schema, group):
        assert schema.models["User"].data_source is group.get_data_source("users")
        assert schema.models["Friend"].data_source is group.get_data_source("friends")

    def test_custom_source_key(self):
        group = MemoryDataSourceGroup()
        person = Model("Person", {"id": _id()}, source_key="people_v2")
        _compile(person, data_source=group)
        assert person.data_source is group.get_data_source("people_v2")

    def test_prebound_models_need_no_factory(self):
        group = MemoryDataSourceGroup()
        tag = Model("Tag", {"id": _id()})
        tag.bind(group.get_data_source("tags"))
        schema = Schema([tag])
        assert schema["Tag"].data_source is group.get_data_source("tags")

    def test_relation_resolvers_registered(self, schema):
        assert set(schema.hooks["User"].resolve_fields) == {"friends", "books", "profile", "team"}
        assert set(schema.hooks["Team"].resolve_fields) == {"members"}
        assert schema.hooks["User"].wrap_create is not None
        assert schema.hooks["User"].wrap_delete is None

    def test_extension_wrapper_merged(self, make_schema):
        async def guard(ctx, proceed):
            return await proceed()

        schema = make_schema(extensions=[{"Friend": Hook(wrap_delete=guard)}])
        assert schema.hooks["Friend"].wrap_delete is not None

    def test_default_quantifier(self, make_schema):
        schema = make_schema(config=RelataConfig(default_quantifier="every"))
        assert schema.compiler.default_quantifier is Quantifier.EVERY

    def test_object_types_get_no_api(self):
        address = Model("Address", {"city": ScalarField("String")}, object_type=True)
        schema = _compile(address, Model("Tag", {"id": _id()}))
        assert schema.model("Address") is address
        with pytest.raises(KeyError, match="No API for model: Address"):
            schema.api("Address")

    def test_unknown_model(self, schema):
        with pytest.raises(KeyError, match="Unknown model: Nope"):
            schema.model("Nope")
        with pytest.raises(KeyError):
            schema["Nope"]

    def test_recompile_is_stable(self, models):
        first = Schema(models, data_source=MemoryDataSourceGroup())
        configs = {
            (m.name, n): f.relation_config
            for m in first.models.values()
            for n, f in m.get_relation_fields().items()
        }
        second = Schema(models, data_source=MemoryDataSourceGroup())
        assert configs == {
            (m.name, n): f.relation_config
            for m in second.models.values()
            for n, f in m.get_relation_fields().items()
        }
        assert len(second.relations) == len(first.relations)


class TestConfigurationErrors:
    def test_duplicate_model(self):
        with pytest.raises(ConfigurationError, match="declared twice"):
            _compile(Model("Tag", {"id": _id()}), Model("Tag", {"id": _id()}))

    def test_unknown_target(self):
        with pytest.raises(ConfigurationError, match="targets unknown model 'Nope'"):
            _compile(Model("Tag", {"id": _id(), "x": RelationField("Nope")}))

    def test_target_outside_schema(self):
        stray = Model("Stray", {"id": _id()})
        with pytest.raises(ConfigurationError, match="outside this schema"):
            _compile(Model("Tag", {"id": _id(), "x": RelationField(stray)}))

    def test_relation_name_on_three_fields(self):
        a = Model("A", {"id": _id(), "b": RelationField("B", relation_name="r")})
        b = Model(
            "B",
            {
                "id": _id(),
                "a": RelationField("A", relation_name="r"),
                "again": RelationField("A", relation_name="r"),
            },
        )
        with pytest.raises(ConfigurationError, match="declared on 3 fields"):
            _compile(a, b)

    def test_fields_not_pointing_at_each_other(self):
        a = Model("A", {"id": _id(), "b": RelationField("B", relation_name="r")})
        b = Model("B", {"id": _id()})
        c = Model("C", {"id": _id(), "b": RelationField("B", relation_name="r")})
        with pytest.raises(ConfigurationError, match="do not point at each other"):
            _compile(a, b, c)

    def test_declared_type_mismatch(self):
        a = Model(
            "A",
            {
                "id": _id(),
                "bs": RelationField(
                    "B", list=True, relation_name="r", relation_type=RelationType.BI_ONE_TO_ONE
                ),
            },
        )
        b = Model("B", {"id": _id(), "as_": RelationField("A", list=True, relation_name="r")})
        with pytest.raises(ConfigurationError, match="form BI_MANY_TO_MANY"):
            _compile(a, b)

    def test_unidirectional_type_mismatch(self):
        a = Model(
            "A",
            {"id": _id(), "b": RelationField("B", relation_type=RelationType.UNI_ONE_TO_MANY)},
        )
        with pytest.raises(ConfigurationError, match="cannot be UNI_ONE_TO_MANY"):
            _compile(a, Model("B", {"id": _id()}))

    def test_no_unique_field(self):
        with pytest.raises(ConfigurationError, match="declares no unique field"):
            _compile(Model("Tag", {"name": ScalarField("String")}))

    def test_unbound_model(self):
        with pytest.raises(ConfigurationError, match="has no data source bound"):
            Schema([Model("Tag", {"id": _id()})])

    def test_bad_quantifier(self):
        with pytest.raises(ConfigurationError, match="Unknown default quantifier"):
            _compile(Model("Tag", {"id": _id()}), config=RelataConfig(default_quantifier="most"))

    def test_extension_for_unknown_model(self):
        with pytest.raises(ConfigurationError, match="unknown models: \\['Ghost'\\]"):
            _compile(Model("Tag", {"id": _id()}), extensions=[{"Ghost": Hook()}])
