"""Example 03: Where inputs.

This example demonstrates the where grammar and the filter trees it compiles to:
- `<field>_<operator>` suffixes and OR / AND composition
- `__` paths into embedded objects and elementMatch on object lists
- relation filters with some / none / every quantifiers
"""

import asyncio
import json

from relata import Model, ObjectField, RelationField, ScalarField, Schema
from relata.storage import MemoryDataSourceGroup

Note = ObjectField(
    "Note", {"language": ScalarField("String"), "score": ScalarField("Int")}, list=True
)
Author = Model(
    "Author",
    {
        "id": ScalarField("ID", unique=True, auto_generated=True),
        "name": ScalarField("String", unique=True),
        "age": ScalarField("Int"),
        "location": ObjectField(
            "Location", {"lat": ScalarField("Float"), "lng": ScalarField("Float")}
        ),
        "notes": Note,
        "books": RelationField("Book", list=True, relation_name="wrote"),
    },
)
Book = Model(
    "Book",
    {
        "id": ScalarField("ID", unique=True, auto_generated=True),
        "title": ScalarField("String"),
        "author": RelationField("Author", relation_name="wrote"),
    },
)


async def main() -> None:
    schema = Schema([Author, Book], data_source=MemoryDataSourceGroup())
    authors, books = schema["Author"], schema["Book"]

    await authors.create(
        {
            "name": "Ada",
            "age": 36,
            "location": {"lat": 51.5, "lng": -0.1},
            "notes": [{"language": "ENG", "score": 5}, {"language": "DEU", "score": 15}],
        }
    )
    await authors.create(
        {
            "name": "Kurt",
            "age": 71,
            "location": {"lat": 48.2, "lng": 16.4},
            "notes": [{"language": "ENG", "score": 15}, {"language": "DEU", "score": 5}],
        }
    )
    await books.create({"title": "Python Patterns", "author": {"connect": {"name": "Ada"}}})
    await books.create({"title": "Incompleteness", "author": {"connect": {"name": "Kurt"}}})

    queries = [
        {"age_lt": 50},
        {"OR": [{"age_gt": 70}, {"name": "Ada"}]},
        {"location__lat_gt": 50},
        {"notes": {"score_lte": 10, "language": "ENG"}},
        {"notes": {"elementMatch": {"score_lte": 10, "language": "ENG"}}},
        {"books": {"some": {"title_contains": "Python"}}},
        {"books": {"none": {"title_contains": "Python"}}},
    ]
    for where in queries:
        names = [a["name"] for a in await authors.find(where)]
        print(f"{json.dumps(where):70} -> {names}")

    print("\nCompiled tree for a relation filter:")
    tree = schema.compiler.compile({"books": {"every": {"title_contains": "Python"}}}, Author)
    print(json.dumps(tree.to_dict(), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
