"""Tests for association maintenance"""

import logging

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, patch

from docscope_server.engine import LinkTable, add_many, add_one, get_all, remove_one
from docscope_server.engine.associations import CHILD_NOT_FOUND, OWNER_NOT_FOUND
from docscope_server.errors import EngineError, ErrorKind
from docscope_server.registry import CollectionRegistry
from docscope_server.storage import MemoryStore


async def load(collection, document_id):
    return await collection.repository.find_one({"_id": document_id})


@pytest_asyncio.fixture
async def linked(permissions, users, roles, seed):
    await seed(permissions, {"_id": "p1", "name": "read-reports"}, {"_id": "p2", "name": "write-reports"})
    await seed(
        users,
        {"_id": "u1", "name": "Ann"},
        {"_id": "u2", "name": "Bob"},
        {"_id": "u3", "name": "Cid"},
    )
    await seed(roles, {"_id": "r1", "name": "editor"}, {"_id": "r2", "name": "viewer"})


class TestLinkTable:
    """Tests for the keyed linking entry table"""

    def test_upsert_creates_entry(self):
        table = LinkTable("user")
        entry = table.upsert("u1", {"level": "read"})
        assert entry["user"] == "u1"
        assert entry["level"] == "read"
        assert entry["_id"]
        assert "u1" in table
        assert len(table) == 1

    def test_upsert_preserves_identity_and_position(self):
        table = LinkTable("user")
        first = table.upsert("u1", {"level": "read"})
        table.upsert("u2")
        replaced = table.upsert("u1", {"level": "write"})
        assert replaced["_id"] == first["_id"]
        assert replaced["level"] == "write"
        assert table.ids() == ["u1", "u2"]

    def test_upsert_without_extra_keeps_entry(self):
        table = LinkTable("user")
        table.upsert("u1", {"level": "read"})
        kept = table.upsert("u1")
        assert kept["level"] == "read"

    def test_upsert_replaces_extra_fields(self):
        table = LinkTable("user")
        table.upsert("u1", {"level": "read", "note": "x"})
        entry = table.upsert("u1", {"level": "write"})
        assert "note" not in entry

    def test_reserved_keys_not_copied(self):
        table = LinkTable("user")
        entry = table.upsert("u1", {"_id": "forged", "childId": "u1", "user": "u9", "level": "read"})
        assert entry["_id"] != "forged"
        assert entry["user"] == "u1"
        assert "childId" not in entry

    def test_remove(self):
        table = LinkTable("user", [{"_id": "e1", "user": "u1"}])
        assert table.remove("u1") is True
        assert table.remove("u1") is False
        assert table.to_list() == []

    def test_loads_embedded_references(self):
        table = LinkTable("user", [{"_id": "e1", "user": {"_id": "u1", "name": "Ann"}}])
        assert table.get("u1") == {"_id": "e1", "user": {"_id": "u1", "name": "Ann"}}

    def test_to_list_returns_copies(self):
        table = LinkTable("user")
        table.upsert("u1")
        table.to_list()[0]["user"] = "changed"
        assert table.get("u1")["user"] == "u1"


class TestAddOne:
    """Tests for add_one"""

    @pytest.mark.asyncio
    async def test_many_many_symmetry(self, linked, permissions, users):
        assert await add_one(permissions, "p1", "u1", "users") is True

        owner = await load(permissions, "p1")
        child = await load(users, "u1")
        assert [entry["user"] for entry in owner["users"]] == ["u1"]
        assert [entry["permission"] for entry in child["permissions"]] == ["p1"]

    @pytest.mark.asyncio
    async def test_idempotent(self, linked, permissions, users):
        await add_one(permissions, "p1", "u1", "users", {"level": "read"})
        owner_entry = (await load(permissions, "p1"))["users"][0]
        child_entry = (await load(users, "u1"))["permissions"][0]

        await add_one(permissions, "p1", "u1", "users", {"level": "read"})
        owner = await load(permissions, "p1")
        child = await load(users, "u1")

        assert owner["users"] == [owner_entry]
        assert child["permissions"] == [child_entry]

    @pytest.mark.asyncio
    async def test_relink_replaces_extra_fields(self, linked, permissions, users):
        await add_one(permissions, "p1", "u1", "users", {"level": "read"})
        entry_id = (await load(permissions, "p1"))["users"][0]["_id"]

        await add_one(permissions, "p1", "u1", "users", {"level": "write"})
        owner = await load(permissions, "p1")
        child = await load(users, "u1")

        assert len(owner["users"]) == 1
        assert owner["users"][0]["_id"] == entry_id
        assert owner["users"][0]["level"] == "write"
        assert child["permissions"][0]["level"] == "write"

    @pytest.mark.asyncio
    async def test_extra_fields_must_be_mapping(self, linked, permissions):
        with pytest.raises(EngineError) as exc_info:
            await add_one(permissions, "p1", "u1", "users", ["read"])
        assert exc_info.value.kind is ErrorKind.BAD_REQUEST

    @pytest.mark.asyncio
    async def test_reciprocal_from_child_side(self, linked, permissions, users):
        await add_one(users, "u2", "p2", "permissions")
        owner = await load(permissions, "p2")
        assert [entry["user"] for entry in owner["users"]] == ["u2"]

    @pytest.mark.asyncio
    async def test_one_many_sets_foreign_key(self, linked, roles, users):
        await add_one(roles, "r1", "u1", "users")
        assert (await load(users, "u1"))["role"] == "r1"
        assert "users" not in await load(roles, "r1")

    @pytest.mark.asyncio
    async def test_owner_not_found(self, linked, permissions):
        with pytest.raises(EngineError) as exc_info:
            await add_one(permissions, "missing", "u1", "users")
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.message == OWNER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_owner_error_reported_first(self, linked, permissions):
        with pytest.raises(EngineError) as exc_info:
            await add_one(permissions, "missing", "also-missing", "users")
        assert exc_info.value.message == OWNER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_child_not_found(self, linked, permissions):
        with pytest.raises(EngineError) as exc_info:
            await add_one(permissions, "p1", "missing", "users")
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.message == CHILD_NOT_FOUND
        assert "users" not in await load(permissions, "p1")

    @pytest.mark.asyncio
    async def test_unknown_association(self, linked, permissions):
        with pytest.raises(EngineError) as exc_info:
            await add_one(permissions, "p1", "u1", "groups")
        assert exc_info.value.kind is ErrorKind.INTERNAL
        assert exc_info.value.message == "groups association does not exist."

    @pytest.mark.asyncio
    async def test_load_failure_is_server_timeout(self, linked, permissions):
        with patch.object(permissions.repository, "find_one", AsyncMock(side_effect=RuntimeError("down"))):
            with pytest.raises(EngineError) as exc_info:
                await add_one(permissions, "p1", "u1", "users")
        assert exc_info.value.kind is ErrorKind.SERVER_TIMEOUT

    @pytest.mark.asyncio
    async def test_partial_save_failure(self, linked, permissions, users, caplog):
        failing = AsyncMock(side_effect=RuntimeError("connection reset"))
        with patch.object(users.repository, "update", failing):
            with caplog.at_level(logging.ERROR):
                with pytest.raises(EngineError) as exc_info:
                    await add_one(permissions, "p1", "u1", "users")

        assert exc_info.value.kind is ErrorKind.GATEWAY_TIMEOUT
        assert exc_info.value.retryable is True
        # The owner side persisted, the child side did not
        assert len((await load(permissions, "p1"))["users"]) == 1
        assert "permissions" not in await load(users, "u1")
        assert "permission/p1" in caplog.text

    @pytest.mark.asyncio
    async def test_save_of_vanished_document_fails(self, linked, permissions, users):
        with patch.object(users.repository, "update", AsyncMock(return_value=None)):
            with pytest.raises(EngineError) as exc_info:
                await add_one(permissions, "p1", "u1", "users")
        assert exc_info.value.kind is ErrorKind.GATEWAY_TIMEOUT


class TestReciprocalResolution:
    """Tests for misconfigured MANY_MANY pairs"""

    @pytest.mark.asyncio
    async def test_missing_reciprocal(self):
        registry = CollectionRegistry(MemoryStore())
        team = registry.register("team", {"members": {"type": "MANY_MANY", "model": "member"}})
        member = registry.register("member")
        registry.resolve()
        await team.repository.create({"_id": "t1"})
        await member.repository.create({"_id": "m1"})

        with pytest.raises(EngineError) as exc_info:
            await add_one(team, "t1", "m1", "members")
        assert exc_info.value.kind is ErrorKind.INTERNAL
        assert exc_info.value.message == "members reciprocal association does not exist."

    @pytest.mark.asyncio
    async def test_ambiguous_reciprocal(self, caplog):
        registry = CollectionRegistry(MemoryStore())
        team = registry.register("team", {"members": {"type": "MANY_MANY", "model": "member"}})
        member = registry.register(
            "member",
            {
                "teams": {"type": "MANY_MANY", "model": "team"},
                "ledTeams": {"type": "MANY_MANY", "model": "team"},
            },
        )
        with caplog.at_level(logging.WARNING):
            registry.resolve()
        assert "Ambiguous reciprocal for team.members" in caplog.text

        await team.repository.create({"_id": "t1"})
        await member.repository.create({"_id": "m1"})
        with pytest.raises(EngineError) as exc_info:
            await add_one(team, "t1", "m1", "members")
        assert exc_info.value.kind is ErrorKind.INTERNAL
        assert "ambiguous" in exc_info.value.message
        assert "members" not in await team.repository.find_one({"_id": "t1"})


class TestRemoveOne:
    """Tests for remove_one"""

    @pytest.mark.asyncio
    async def test_many_many_removes_both_sides(self, linked, permissions, users):
        await add_one(permissions, "p1", "u1", "users")
        await add_one(permissions, "p1", "u2", "users")

        assert await remove_one(permissions, "p1", "u1", "users") is True

        owner = await load(permissions, "p1")
        assert [entry["user"] for entry in owner["users"]] == ["u2"]
        assert (await load(users, "u1"))["permissions"] == []
        assert len((await load(users, "u2"))["permissions"]) == 1

    @pytest.mark.asyncio
    async def test_missing_link_is_noop(self, linked, permissions, users):
        spy = AsyncMock(wraps=users.repository.update)
        with patch.object(users.repository, "update", spy):
            assert await remove_one(permissions, "p1", "u1", "users") is True
        spy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_one_many_clears_foreign_key(self, linked, roles, users):
        await add_one(roles, "r1", "u1", "users")
        await remove_one(roles, "r1", "u1", "users")
        assert (await load(users, "u1"))["role"] is None

    @pytest.mark.asyncio
    async def test_one_many_other_owner_untouched(self, linked, roles, users):
        await add_one(roles, "r2", "u1", "users")
        await remove_one(roles, "r1", "u1", "users")
        assert (await load(users, "u1"))["role"] == "r2"

    @pytest.mark.asyncio
    async def test_child_not_found(self, linked, permissions):
        with pytest.raises(EngineError) as exc_info:
            await remove_one(permissions, "p1", "missing", "users")
        assert exc_info.value.kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_save_failure(self, linked, permissions, users):
        await add_one(permissions, "p1", "u1", "users")
        with patch.object(permissions.repository, "update", AsyncMock(side_effect=RuntimeError("down"))):
            with pytest.raises(EngineError) as exc_info:
                await remove_one(permissions, "p1", "u1", "users")
        assert exc_info.value.kind is ErrorKind.GATEWAY_TIMEOUT


class TestAddMany:
    """Tests for add_many"""

    @pytest.mark.asyncio
    async def test_sequential_in_order(self, linked, permissions, users):
        await add_many(permissions, "p1", ["u1", "u2"], "users")

        owner = await load(permissions, "p1")
        assert [entry["user"] for entry in owner["users"]] == ["u1", "u2"]
        for user_id in ("u1", "u2"):
            child = await load(users, user_id)
            assert [entry["permission"] for entry in child["permissions"]] == ["p1"]

    @pytest.mark.asyncio
    async def test_keeps_existing_links(self, linked, permissions):
        await add_one(permissions, "p1", "u3", "users")
        await add_many(permissions, "p1", ["u1", "u2"], "users")
        owner = await load(permissions, "p1")
        assert [entry["user"] for entry in owner["users"]] == ["u3", "u1", "u2"]

    @pytest.mark.asyncio
    async def test_duplicate_ids_link_once(self, linked, permissions):
        await add_many(permissions, "p1", ["u1", "u1"], "users")
        owner = await load(permissions, "p1")
        assert len(owner["users"]) == 1

    @pytest.mark.asyncio
    async def test_records_with_extra_fields(self, linked, permissions, users):
        await add_many(
            permissions,
            "p1",
            [{"childId": "u1", "level": "read"}, {"childId": "u2", "level": "write"}],
            "users",
        )
        owner = await load(permissions, "p1")
        assert [(e["user"], e["level"]) for e in owner["users"]] == [("u1", "read"), ("u2", "write")]
        assert "childId" not in owner["users"][0]
        assert (await load(users, "u2"))["permissions"][0]["level"] == "write"

    @pytest.mark.asyncio
    async def test_one_many(self, linked, roles, users):
        await add_many(roles, "r1", ["u1", "u3"], "users")
        assert (await load(users, "u1"))["role"] == "r1"
        assert (await load(users, "u3"))["role"] == "r1"
        assert "role" not in await load(users, "u2")

    @pytest.mark.asyncio
    async def test_mixed_payload_rejected(self, linked, permissions):
        with pytest.raises(EngineError) as exc_info:
            await add_many(permissions, "p1", ["u1", {"childId": "u2"}], "users")
        assert exc_info.value.kind is ErrorKind.BAD_REQUEST

    @pytest.mark.asyncio
    async def test_string_payload_rejected(self, linked, permissions):
        with pytest.raises(EngineError) as exc_info:
            await add_many(permissions, "p1", "u1", "users")
        assert exc_info.value.kind is ErrorKind.BAD_REQUEST

    @pytest.mark.asyncio
    async def test_failure_keeps_earlier_links(self, linked, permissions, users):
        with pytest.raises(EngineError) as exc_info:
            await add_many(permissions, "p1", ["u1", "missing", "u2"], "users")
        assert exc_info.value.kind is ErrorKind.NOT_FOUND

        owner = await load(permissions, "p1")
        assert [entry["user"] for entry in owner["users"]] == ["u1"]
        assert "permissions" in await load(users, "u1")
        assert "permissions" not in await load(users, "u2")

    @pytest.mark.asyncio
    async def test_owner_not_found(self, linked, permissions):
        with pytest.raises(EngineError) as exc_info:
            await add_many(permissions, "missing", ["u1"], "users")
        assert exc_info.value.message == OWNER_NOT_FOUND


class TestGetAll:
    """Tests for get_all"""

    @pytest.mark.asyncio
    async def test_many_many_with_linking_model(self, linked, permissions, options):
        await add_one(permissions, "p1", "u1", "users", {"level": "read"})
        await add_one(permissions, "p1", "u2", "users", {"level": "write"})

        documents = await get_all(permissions, "p1", "users", None, options)

        assert [d["_id"] for d in documents] == ["u1", "u2"]
        assert documents[0]["user_permission"] == {"level": "read"}
        assert documents[1]["user_permission"] == {"level": "write"}

    @pytest.mark.asyncio
    async def test_many_many_without_linking_model(self, linked, permissions, roles, options):
        await add_one(permissions, "p1", "r1", "roles")
        documents = await get_all(permissions, "p1", "roles", None, options)
        assert [d["_id"] for d in documents] == ["r1"]
        assert "role_permission" not in documents[0]

    @pytest.mark.asyncio
    async def test_no_links(self, linked, permissions, options):
        assert await get_all(permissions, "p1", "users", None, options) == []

    @pytest.mark.asyncio
    async def test_one_many(self, linked, roles, options):
        await add_many(roles, "r1", ["u1", "u2"], "users")
        await add_one(roles, "r2", "u3", "users")

        documents = await get_all(roles, "r1", "users", None, options)
        assert sorted(d["_id"] for d in documents) == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_where_narrows(self, linked, permissions, options):
        await add_many(permissions, "p1", ["u1", "u2"], "users")
        documents = await get_all(permissions, "p1", "users", {"$where": {"name": "Bob"}}, options)
        assert [d["_id"] for d in documents] == ["u2"]

    @pytest.mark.asyncio
    async def test_where_cannot_widen_id_set(self, linked, permissions, options):
        await add_one(permissions, "p1", "u1", "users")
        documents = await get_all(permissions, "p1", "users", {"$where": {"_id": "u3"}}, options)
        assert [d["_id"] for d in documents] == ["u1"]

    @pytest.mark.asyncio
    async def test_invalid_where(self, linked, permissions, options):
        with pytest.raises(EngineError) as exc_info:
            await get_all(permissions, "p1", "users", {"$where": "name=Bob"}, options)
        assert exc_info.value.kind is ErrorKind.BAD_REQUEST

    @pytest.mark.asyncio
    async def test_soft_deleted_children_hidden(self, linked, permissions, users, options):
        await add_many(permissions, "p1", ["u1", "u2"], "users")
        await users.repository.update("u2", {"isDeleted": True})
        documents = await get_all(permissions, "p1", "users", None, options)
        assert [d["_id"] for d in documents] == ["u1"]

    @pytest.mark.asyncio
    async def test_owner_not_found(self, linked, permissions, options):
        with pytest.raises(EngineError) as exc_info:
            await get_all(permissions, "missing", "users", None, options)
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
