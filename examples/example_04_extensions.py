"""Example 04: Extension hooks.

This example demonstrates hook contributions wrapping the generated API:
- an audit wrapper around create that sees the payload after relation inputs are stripped
- a wrapper that vetoes deletes by raising before calling proceed()
- an extra field resolver
- how partial relation batch failures surface as RelationBatchError
"""

import asyncio

from relata import Hook, Model, RelationField, ScalarField, Schema, configure_logging
from relata.errors import RelationBatchError
from relata.storage import MemoryDataSourceGroup

User = Model(
    "User",
    {
        "id": ScalarField("ID", unique=True, auto_generated=True),
        "username": ScalarField("String", unique=True),
        "groups": RelationField("Group", list=True, relation_name="members"),
    },
)
Group = Model(
    "Group",
    {
        "id": ScalarField("ID", unique=True, auto_generated=True),
        "name": ScalarField("String", unique=True),
        "users": RelationField("User", list=True, relation_name="members"),
    },
)

audit_log: list[str] = []


async def audit_create(ctx, proceed):
    audit_log.append(f"create User with {sorted(ctx.data)}")
    result = await proceed()
    audit_log.append(f"created {ctx.response['id']}")
    return result


async def protect_admins(ctx, proceed):
    if ctx.where.get("username") == "admin":
        raise PermissionError("the admin user cannot be deleted")
    return await proceed()


async def display_name(record, args, request_context):
    return record["username"].title()


async def main() -> None:
    configure_logging("WARNING")
    storage = MemoryDataSourceGroup()
    schema = Schema(
        [User, Group],
        data_source=storage,
        extensions=[
            {
                "User": Hook(
                    wrap_create=audit_create,
                    wrap_delete=protect_admins,
                    resolve_fields={"displayName": display_name},
                )
            }
        ],
    )
    users, groups = schema["User"], schema["Group"]

    admin = await users.create({"username": "admin", "groups": {"create": [{"name": "ops"}]}})
    print("Audit log:")
    for line in audit_log:
        print(f"  {line}")
    print(f"displayName: {await users.resolve_field(admin, 'displayName')}")

    try:
        await users.delete({"username": "admin"})
    except PermissionError as e:
        print(f"Delete vetoed: {e}")

    print("\nPartial batch failure:")
    await groups.create({"name": "dev"})
    source = storage.get_data_source("groups")
    original = source.add_reference

    async def reject_dev(record_id, field, ref_id, context=None):
        group = await source.find_one_by_id(record_id)
        if group["name"] == "dev":
            raise RuntimeError("group dev is read-only")
        await original(record_id, field, ref_id, context)

    source.add_reference = reject_dev
    bob = await users.create({"username": "bob"})
    try:
        await users.update(
            {"id": bob["id"]}, {"groups": {"connect": [{"name": "ops"}, {"name": "dev"}]}}
        )
    except RelationBatchError as e:
        print(f"  {e.succeeded} succeeded, {len(e.errors)} failed: {e.errors[0]}")
    stored = storage.collection("users")[bob["id"]]
    print(f"  bob.groups_ids has {len(stored['groups_ids'])} entries (no rollback)")


if __name__ == "__main__":
    asyncio.run(main())
