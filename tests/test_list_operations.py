"""
Unit tests for list operations.

Tests:
- ADD_TO_LIST (creation, dedup, ordering)
- GET_LIST_MEMBERS / GET_LIST_COUNT / IS_LIST_MEMBER
- REMOVE_FROM_LIST / REMOVE_LIST
"""

import pytest

from raincache_docstore import NotFoundError


@pytest.mark.unit
class TestAddToList:

    @pytest.mark.asyncio
    async def test_add_creates_list(self, engine, database):
        await engine.add_to_list("lists.online", "users.alice")

        entry = await database.collection("raincache").find_one({"key": "lists.online"})
        assert entry["list"] is True
        assert entry["value"] is None
        assert entry["namespaces"] == ["", "lists"]
        assert await engine.get_list_members("lists.online") == ["users.alice"]

    @pytest.mark.asyncio
    async def test_add_same_value_twice(self, engine):
        await engine.add_to_list("L", "x")
        await engine.add_to_list("L", "x")

        assert await engine.get_list_count("L") == 1

    @pytest.mark.asyncio
    async def test_add_preserves_order_and_drops_repeats(self, engine):
        await engine.add_to_list("L", ["a", "b", "a"])

        assert await engine.get_list_members("L") == ["a", "b"]

    @pytest.mark.asyncio
    async def test_add_only_novel_values(self, engine):
        await engine.add_to_list("L", ["a", "b"])
        await engine.add_to_list("L", ["c", "b", "d", "a"])

        assert await engine.get_list_members("L") == ["a", "b", "c", "d"]

    @pytest.mark.asyncio
    async def test_add_all_present_is_noop(self, engine, database):
        await engine.add_to_list("L", ["a", "b"])
        before = len(database.collection("raincachelists"))

        await engine.add_to_list("L", ["b", "a"])

        assert len(database.collection("raincachelists")) == before
        assert await engine.get_list_members("L") == ["a", "b"]

    @pytest.mark.asyncio
    async def test_add_tuple_of_values(self, engine):
        await engine.add_to_list("L", ("a", "b"))

        assert await engine.get_list_members("L") == ["a", "b"]

    @pytest.mark.asyncio
    async def test_add_empty_sequence_creates_empty_list(self, engine):
        await engine.add_to_list("L", [])

        assert await engine.get_list_members("L") == []
        assert await engine.get_list_count("L") == 0

    @pytest.mark.asyncio
    async def test_add_numbers_and_structures(self, engine):
        await engine.add_to_list("L", [1, {"id": 2}, 1, {"id": 2}])

        assert await engine.get_list_members("L") == [1, {"id": 2}]

    @pytest.mark.asyncio
    async def test_array_member_added_once(self, engine):
        await engine.add_to_list("L", [["a", "b"]])
        await engine.add_to_list("L", [["a", "b"]])

        assert await engine.get_list_count("L") == 1
        assert await engine.get_list_members("L") == [["a", "b"]]

    @pytest.mark.asyncio
    async def test_array_member_beside_its_items(self, engine):
        await engine.add_to_list("L", [["a", "b"]])
        await engine.add_to_list("L", ["a", ["a", "b"]])

        assert await engine.get_list_members("L") == [["a", "b"], "a"]

    @pytest.mark.asyncio
    async def test_booleans_and_numbers_are_distinct(self, engine):
        await engine.add_to_list("L", [1, True, 0, False, 1, True])

        members = await engine.get_list_members("L")
        assert members == [1, True, 0, False]
        assert [type(member) for member in members] == [int, bool, int, bool]

    @pytest.mark.asyncio
    async def test_boolean_added_after_number(self, engine):
        await engine.add_to_list("L", 1)
        await engine.add_to_list("L", True)

        assert await engine.get_list_count("L") == 2

    @pytest.mark.asyncio
    async def test_lists_do_not_share_members(self, engine):
        await engine.add_to_list("L1", ["a"])
        await engine.add_to_list("L2", ["a", "b"])

        assert await engine.get_list_members("L1") == ["a"]
        assert await engine.get_list_members("L2") == ["a", "b"]


@pytest.mark.unit
class TestListQueries:

    @pytest.mark.asyncio
    async def test_is_list_member(self, engine):
        await engine.add_to_list("L", ["a", "b"])

        assert await engine.is_list_member("L", "a") is True
        assert await engine.is_list_member("L", "z") is False

    @pytest.mark.asyncio
    async def test_is_list_member_keeps_booleans_apart(self, engine):
        await engine.add_to_list("L", [1, 0])

        assert await engine.is_list_member("L", True) is False
        assert await engine.is_list_member("L", False) is False
        assert await engine.is_list_member("L", 1) is True

    @pytest.mark.asyncio
    async def test_get_list_count(self, engine):
        await engine.add_to_list("L", ["a", "b", "c"])

        assert await engine.get_list_count("L") == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", [
        "get_list_members",
        "get_list_count",
        "remove_list",
    ])
    async def test_missing_list_raises_not_found(self, engine, operation):
        with pytest.raises(NotFoundError) as exc_info:
            await getattr(engine, operation)("missing")
        assert exc_info.value.key == "missing"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["is_list_member", "remove_from_list"])
    async def test_missing_list_member_ops_raise_not_found(self, engine, operation):
        with pytest.raises(NotFoundError):
            await getattr(engine, operation)("missing", "value")


@pytest.mark.unit
class TestListRemoval:

    @pytest.mark.asyncio
    async def test_remove_from_list(self, engine):
        await engine.add_to_list("L", ["a", "b", "c"])
        await engine.remove_from_list("L", "b")

        assert await engine.get_list_members("L") == ["a", "c"]

    @pytest.mark.asyncio
    async def test_remove_boolean_leaves_number(self, engine):
        await engine.add_to_list("L", [1, True])
        await engine.remove_from_list("L", True)

        members = await engine.get_list_members("L")
        assert members == [1]
        assert type(members[0]) is int

    @pytest.mark.asyncio
    async def test_remove_absent_member_is_noop(self, engine):
        await engine.add_to_list("L", ["a"])
        await engine.remove_from_list("L", "zzz")

        assert await engine.get_list_members("L") == ["a"]

    @pytest.mark.asyncio
    async def test_readd_after_remove(self, engine):
        await engine.add_to_list("L", ["a", "b"])
        await engine.remove_from_list("L", "a")
        await engine.add_to_list("L", "a")

        assert await engine.get_list_members("L") == ["b", "a"]

    @pytest.mark.asyncio
    async def test_remove_list_deletes_members_and_entry(self, engine, database):
        await engine.add_to_list("L", ["a", "b"])
        await engine.add_to_list("other", ["a"])

        await engine.remove_list("L")

        assert await database.collection("raincache").count({"key": "L"}) == 0
        assert len(database.collection("raincachelists")) == 1
        assert await engine.get_list_members("other") == ["a"]

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, engine):
        await engine.add_to_list("L", "m")
        assert await engine.is_list_member("L", "m") is True

        await engine.remove_from_list("L", "m")
        assert await engine.is_list_member("L", "m") is False

        await engine.remove_list("L")
        with pytest.raises(NotFoundError):
            await engine.get_list_members("L")

    @pytest.mark.asyncio
    async def test_key_reusable_as_value_after_remove_list(self, engine):
        await engine.add_to_list("k", "a")
        await engine.remove_list("k")
        await engine.upsert("k", "plain")

        assert await engine.get("k") == "plain"
