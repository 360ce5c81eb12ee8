"""Tests for the in-process cache and user directory."""

import pytest

from sessionguard.storage.errors import ConstraintViolation
from sessionguard.storage.memory import MemoryUserDirectory


class TestMemoryCache:
    async def test_set_get_expire(self, cache, clock):
        await cache.set_json("k", {"a": 1}, 10)

        assert await cache.get_json("k") == {"a": 1}
        clock.advance(seconds=10)
        assert await cache.get_json("k") is None
        assert await cache.exists("k") is False

    async def test_returned_payload_is_a_copy(self, cache):
        await cache.set_json("k", {"nested": {"a": 1}}, 10)
        value = await cache.get_json("k")
        value["nested"]["a"] = 2

        assert await cache.get_json("k") == {"nested": {"a": 1}}

    async def test_pop_is_at_most_once(self, cache):
        await cache.set_json("k", {"a": 1}, 10)

        assert await cache.pop_json("k") == {"a": 1}
        assert await cache.pop_json("k") is None

    async def test_index_ttl_only_grows(self, cache, clock):
        await cache.set_indexed("r1", {}, 100, index_key="idx", member="m1")
        await cache.set_indexed("r2", {}, 10, index_key="idx", member="m2")

        clock.advance(seconds=50)
        assert await cache.index_members("idx") == {"m1", "m2"}
        clock.advance(seconds=50)
        assert await cache.index_members("idx") == set()

    async def test_delete_indexed_keeps_unlisted_members(self, cache):
        await cache.set_indexed("r1", {}, 100, index_key="idx", member="m1")
        await cache.set_indexed("r2", {}, 100, index_key="idx", member="m2")

        removed = await cache.delete_indexed("idx", {"m1": "r1"})

        assert removed == 1
        assert await cache.index_members("idx") == {"m2"}
        assert await cache.get_json("r2") == {}

    async def test_delete_counts_live_keys_only(self, cache):
        await cache.set_json("a", {}, 10)
        assert await cache.delete("a", "missing") == 1
        assert await cache.delete() == 0


class TestMemoryUserDirectory:
    def test_create_and_find(self, directory):
        user = directory.create_user(" Carol@Example.com ", "Carol", "hash")

        assert user.email == "carol@example.com"
        assert directory.find_user_by_email("CAROL@example.com").id == user.id
        assert directory.find_user_by_id(user.id).name == "Carol"
        assert directory.find_user_by_id("missing") is None

    def test_duplicate_email_rejected(self, directory):
        directory.create_user("carol@example.com", "Carol", "hash")

        with pytest.raises(ConstraintViolation):
            directory.create_user("CAROL@example.com", "Other", "hash")

    def test_set_password_hash(self, directory, clock):
        user = directory.create_user("carol@example.com", "Carol", "old")
        clock.advance(seconds=5)

        directory.set_password_hash(user.id, "new")

        stored = directory.find_user_by_id(user.id)
        assert stored.password_hash == "new"
        assert stored.updated_at == clock.now()

    def test_set_password_for_missing_user_is_noop(self):
        MemoryUserDirectory().set_password_hash("missing", "hash")

    def test_lookups_return_copies(self, directory):
        user = directory.create_user("carol@example.com", "Carol", "hash")
        found = directory.find_user_by_id(user.id)
        found.name = "Mallory"

        assert directory.find_user_by_id(user.id).name == "Carol"
