"""Example 02: Relations.

This example demonstrates the nested relation inputs of create/update:
- many-to-many create / connect / disconnect (ids embedded on both sides)
- one-to-many connect (the "many" side holds the foreign key)
- one-to-one linking, which releases the previous partner
- resolving relation fields, optionally narrowed by a where input
"""

import asyncio

from relata import Model, RelationField, ScalarField, Schema, format_schema
from relata.storage import MemoryDataSourceGroup


def _id() -> ScalarField:
    return ScalarField("ID", unique=True, auto_generated=True)


User = Model(
    "User",
    {
        "id": _id(),
        "username": ScalarField("String", unique=True),
        "friends": RelationField("Friend", list=True, relation_name="friends"),
        "posts": RelationField("Post", list=True, relation_name="wrote"),
        "avatar": RelationField("Avatar", relation_name="avatar"),
    },
)
Friend = Model(
    "Friend",
    {
        "id": _id(),
        "username": ScalarField("String", unique=True),
        "users": RelationField("User", list=True, relation_name="friends"),
    },
)
Post = Model(
    "Post",
    {
        "id": _id(),
        "title": ScalarField("String"),
        "author": RelationField("User", relation_name="wrote"),
    },
)
Avatar = Model(
    "Avatar",
    {
        "id": _id(),
        "url": ScalarField("Url", unique=True),
        "user": RelationField("User", relation_name="avatar"),
    },
)


async def main() -> None:
    storage = MemoryDataSourceGroup()
    schema = Schema([User, Friend, Post, Avatar], data_source=storage)
    print(format_schema(schema))
    users, posts = schema["User"], schema["Post"]

    print("Nested create")
    ben = await users.create(
        {"username": "ben", "friends": {"create": [{"username": "amy"}, {"username": "joe"}]}}
    )
    stored = storage.collection("users")[ben["id"]]
    print(f"  ben.friends_ids = {stored['friends_ids']}")
    for friend in storage.collection("friends").values():
        print(f"  {friend['username']}.users_ids = {friend['users_ids']}")

    print("\nDisconnect joe")
    await users.update({"id": ben["id"]}, {"friends": {"disconnect": [{"username": "joe"}]}})
    resolved = await users.resolve_field(storage.collection("users")[ben["id"]], "friends")
    print(f"  ben's friends: {[f['username'] for f in resolved]}")

    print("\nOne-to-many")
    for title in ("Relations 101", "Filters in depth"):
        await posts.create({"title": title, "author": {"connect": {"username": "ben"}}})
    filtered = await users.resolve_field(
        stored, "posts", {"where": {"title_contains": "Filters"}}
    )
    print(f"  ben's posts matching 'Filters': {[p['title'] for p in filtered]}")

    print("\nOne-to-one")
    avatar = await schema["Avatar"].create({"url": "https://cdn.example.com/a.png"})
    amy = await users.create({"username": "amy"})
    await users.update({"id": ben["id"]}, {"avatar": {"connect": {"id": avatar["id"]}}})
    await users.update({"id": amy["id"]}, {"avatar": {"connect": {"id": avatar["id"]}}})
    for name in ("ben", "amy"):
        record = await users.find_one({"username": name})
        print(f"  {name}.avatar_id = {record.get('avatar_id')}")


if __name__ == "__main__":
    asyncio.run(main())
