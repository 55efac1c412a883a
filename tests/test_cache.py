"""Tests for the Upstash cache tier against an in-process fake server."""

from __future__ import annotations

import json

import pytest

from friday.errors import CacheUnavailableError
from friday.memory.cache import CacheCredentials, CacheTier
from friday.memory.models import MemoryEntry

from conftest import TOKEN, FakeUpstash


def entry(title: str, category: str = "decision") -> MemoryEntry:
    return MemoryEntry.create(category, title, f"Body of {title}", ["tag"])


class TestKeyScheme:
    def test_entry_and_meta_keys(self):
        tier = CacheTier(CacheCredentials(url="https://x", token="t", key_prefix="acme"))
        assert tier.entry_key("issue", "abc") == "acme:issue:abc"
        assert tier.meta_key("index") == "acme:meta:index"

    def test_parse_entry_key(self):
        tier = CacheTier(CacheCredentials(url="https://x", token="t"))
        assert tier.parse_entry_key("friday:decision:use-pg-1234") == ("decision", "use-pg-1234")
        assert tier.parse_entry_key("friday:meta:index") is None
        assert tier.parse_entry_key("other:decision:x") is None

    def test_configure_does_not_connect(self):
        tier = CacheTier()
        assert not tier.configured
        tier.configure(CacheCredentials(url="https://x/", token="t"))
        assert tier.configured
        assert tier._session is None


class TestPing:
    @pytest.mark.asyncio
    async def test_connected(self, cache: CacheTier):
        health = await cache.ping()
        assert health.connected is True
        assert health.latency_ms is not None
        assert health.error is None

    @pytest.mark.asyncio
    async def test_not_configured(self):
        health = await CacheTier().ping()
        assert health.connected is False
        assert health.error == "not configured"

    @pytest.mark.asyncio
    async def test_timeout(self, upstash: FakeUpstash):
        upstash.delay = 1.0
        tier = CacheTier(CacheCredentials(url=upstash.url, token=TOKEN, timeout=0.1))
        try:
            health = await tier.ping()
        finally:
            await tier.close()
        assert health.connected is False
        assert health.error == "timeout"

    @pytest.mark.asyncio
    async def test_bad_token(self, upstash: FakeUpstash):
        tier = CacheTier(CacheCredentials(url=upstash.url, token="wrong", timeout=1.0))
        try:
            health = await tier.ping()
        finally:
            await tier.close()
        assert health.connected is False
        assert "Unauthorized" in health.error

    @pytest.mark.asyncio
    async def test_unreachable(self):
        tier = CacheTier(CacheCredentials(url="http://127.0.0.1:9", token=TOKEN, timeout=0.5))
        try:
            health = await tier.ping()
        finally:
            await tier.close()
        assert health.connected is False


class TestEntries:
    @pytest.mark.asyncio
    async def test_put_and_get(self, cache: CacheTier, upstash: FakeUpstash):
        e = entry("Use Postgres")
        await cache.put(e)
        assert f"friday:decision:{e.id}" in upstash.data
        assert json.loads(upstash.data[f"friday:decision:{e.id}"])["title"] == "Use Postgres"
        assert await cache.get(e.id) == e
        assert await cache.get(e.id, category="decision") == e

    @pytest.mark.asyncio
    async def test_get_missing(self, cache: CacheTier):
        assert await cache.get("nope") is None

    @pytest.mark.asyncio
    async def test_malformed_value_ignored(self, cache: CacheTier, upstash: FakeUpstash):
        upstash.data["friday:issue:broken"] = "{not json"
        assert await cache.get("broken", category="issue") is None

    @pytest.mark.asyncio
    async def test_list_keys_and_entry_keys(self, cache: CacheTier, upstash: FakeUpstash):
        a, b = entry("A"), entry("B", category="issue")
        await cache.put(a)
        await cache.put(b)
        await cache.put_meta("index", {"entries": []})
        upstash.data["unrelated:key"] = "x"

        keys = await cache.list_keys_with_prefix("friday:")
        assert len(keys) == 3
        assert await cache.entry_keys() == {
            a.id: ("decision", f"friday:decision:{a.id}"),
            b.id: ("issue", f"friday:issue:{b.id}"),
        }

    @pytest.mark.asyncio
    async def test_meta_round_trip(self, cache: CacheTier):
        await cache.put_meta("profile", {"name": "demo"})
        assert await cache.get_meta("profile") == {"name": "demo"}
        assert await cache.get_meta("missing") is None


class TestDeleteAll:
    @pytest.mark.asyncio
    async def test_bounded_by_namespace(self, cache: CacheTier, upstash: FakeUpstash):
        await cache.put(entry("A"))
        await cache.put(entry("B", category="issue"))
        upstash.data["fridayish:decision:x"] = "keep"
        upstash.data["other:thing"] = "keep"

        deleted = await cache.delete_all("friday:decision:")
        assert deleted == 1
        deleted = await cache.delete_all("friday")
        assert deleted == 1
        assert set(upstash.data) == {"fridayish:decision:x", "other:thing"}

    @pytest.mark.asyncio
    async def test_glob_characters_in_prefix_are_literal(self, upstash: FakeUpstash):
        tier = CacheTier(CacheCredentials(url=upstash.url, token=TOKEN, key_prefix="team*"))
        upstash.data["teamB:decision:x"] = "other namespace"
        upstash.data["team*:decision:y"] = "ours"
        try:
            deleted = await tier.delete_all("team*")
        finally:
            await tier.close()
        assert deleted == 1
        assert set(upstash.data) == {"teamB:decision:x"}

    @pytest.mark.asyncio
    async def test_sub_prefix_is_literal(self, cache: CacheTier, upstash: FakeUpstash):
        upstash.data["friday:decision:a?b"] = "match"
        upstash.data["friday:decision:axb"] = "keep"
        assert await cache.list_keys_with_prefix("friday:decision:a?") == ["friday:decision:a?b"]

    @pytest.mark.asyncio
    async def test_refuses_foreign_prefix(self, cache: CacheTier):
        with pytest.raises(ValueError):
            await cache.delete_all("other:")


class TestFailurePolicy:
    @pytest.mark.asyncio
    async def test_retries_once_then_raises(self, cache: CacheTier, upstash: FakeUpstash):
        upstash.fail = True
        with pytest.raises(CacheUnavailableError, match="service unavailable"):
            await cache.put(entry("A"))
        assert upstash.command_names() == ["SET", "SET"]

    @pytest.mark.asyncio
    async def test_not_configured_raises(self):
        with pytest.raises(CacheUnavailableError):
            await CacheTier().put(entry("A"))
