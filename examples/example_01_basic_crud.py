"""Example 01: Basic CRUD.

This example demonstrates:
- Declaring models with scalar, enum and list fields
- Compiling them into a Schema over in-memory storage
- create / find_one / find / update / delete
- Native array updates with add and remove
"""

import asyncio

from relata import EnumField, Model, ScalarField, Schema
from relata.errors import NotFoundError, ValidationError
from relata.storage import MemoryDataSourceGroup

Customer = Model(
    "Customer",
    {
        "id": ScalarField("ID", unique=True, auto_generated=True),
        "email": ScalarField("Email", unique=True, non_null=True),
        "name": ScalarField("String"),
        "age": ScalarField("Int"),
        "tier": EnumField("Tier", ["FREE", "GOLD"]),
        "tags": ScalarField("String", list=True, item_non_null=True),
        "updatedAt": ScalarField("DateTime", updated_at=True),
    },
)


async def main() -> None:
    schema = Schema([Customer], data_source=MemoryDataSourceGroup())
    customers = schema["Customer"]

    print("=" * 60)
    print("Creating customers")
    alice = await customers.create(
        {"email": "alice@example.com", "name": "Alice", "age": 31, "tier": "GOLD", "tags": ["vip"]}
    )
    await customers.create({"email": "bob@example.com", "name": "Bob", "age": "24"})
    print(f"  alice -> {alice['id']} (updatedAt {alice['updatedAt']:%H:%M:%S})")

    print("\nQuerying")
    found = await customers.find_one({"email": "bob@example.com"})
    print(f"  find_one by email: {found['name']}, age coerced to {found['age']!r}")
    adults = await customers.find({"age_gte": 30})
    print(f"  age >= 30: {[c['name'] for c in adults]}")

    print("\nUpdating tags")
    await customers.update({"id": alice["id"]}, {"tags": {"add": ["beta", "vip"]}})
    print(f"  after add: {(await customers.find_one({'id': alice['id']}))['tags']}")
    await customers.update({"id": alice["id"]}, {"tags": {"remove": ["vip"]}})
    print(f"  after remove: {(await customers.find_one({'id': alice['id']}))['tags']}")

    print("\nErrors")
    try:
        await customers.update({"email": "nobody@example.com"}, {"age": 1})
    except NotFoundError as e:
        print(f"  NotFoundError: {e}")
    try:
        await customers.update({"age": 31}, {"age": 32})
    except ValidationError as e:
        print(f"  ValidationError: {e}")

    deleted = await customers.delete({"email": "bob@example.com"})
    print(f"\nDeleted {deleted['name']}; remaining: {len(await customers.find())}")


if __name__ == "__main__":
    asyncio.run(main())
