"""Cache tier — Upstash Redis over its REST API.

Every command is a JSON array POSTed to the database URL with a Bearer token.
The tier never connects eagerly and never retries more than once; deciding
whether to fall back is the orchestrator's job.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any

import aiohttp

from friday.errors import CacheUnavailableError
from friday.memory.models import CATEGORIES, HealthStatus, MemoryEntry

logger = logging.getLogger(__name__)

RETRY_BACKOFF = 0.2  # seconds
SCAN_COUNT = 200
META_NAMESPACE = "meta"
_GLOB_SPECIAL = re.compile(r"[*?\[\]\\]")


@dataclass
class CacheCredentials:
    url: str
    token: str
    timeout: float = 3.0
    key_prefix: str = "friday"


class CacheTier:
    """Namespaced key-value access to an Upstash Redis database."""

    def __init__(self, credentials: CacheCredentials | None = None) -> None:
        self._credentials: CacheCredentials | None = None
        self._session: aiohttp.ClientSession | None = None
        if credentials:
            self.configure(credentials)

    def configure(self, credentials: CacheCredentials) -> None:
        """Store connection parameters. Does not connect."""
        self._credentials = CacheCredentials(
            url=credentials.url.rstrip("/"),
            token=credentials.token,
            timeout=credentials.timeout,
            key_prefix=credentials.key_prefix,
        )

    @property
    def configured(self) -> bool:
        return self._credentials is not None

    @property
    def prefix(self) -> str:
        return self._credentials.key_prefix if self._credentials else "friday"

    # ── Key scheme ────────────────────────────────────────────

    def entry_key(self, category: str, entry_id: str) -> str:
        return f"{self.prefix}:{category}:{entry_id}"

    def meta_key(self, name: str) -> str:
        return f"{self.prefix}:{META_NAMESPACE}:{name}"

    def parse_entry_key(self, key: str) -> tuple[str, str] | None:
        """Return (category, id) for an entry key, None for meta or foreign keys."""
        parts = key.split(":", 2)
        if len(parts) != 3 or parts[0] != self.prefix or parts[1] not in CATEGORIES:
            return None
        return parts[1], parts[2]

    # ── Transport ─────────────────────────────────────────────

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self._credentials.token}"},
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _post(self, command: list) -> Any:
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(total=self._credentials.timeout)
        async with session.post(self._credentials.url, json=command, timeout=timeout) as resp:
            try:
                payload = await resp.json(content_type=None)
            except (json.JSONDecodeError, aiohttp.ContentTypeError) as e:
                raise CacheUnavailableError(f"Invalid response (HTTP {resp.status})") from e
            if isinstance(payload, dict) and "error" in payload:
                raise CacheUnavailableError(f"Redis error: {payload['error']}")
            if resp.status >= 400:
                raise CacheUnavailableError(f"HTTP {resp.status}")
            return payload.get("result") if isinstance(payload, dict) else None

    async def _command(self, *args) -> Any:
        """Run one command, retrying once after a short backoff."""
        if not self._credentials:
            raise CacheUnavailableError("cache tier not configured")
        command = [str(a) for a in args]
        last_error: Exception | None = None
        for attempt in range(2):
            try:
                return await self._post(command)
            except CacheUnavailableError as e:
                last_error = e
            except asyncio.TimeoutError as e:
                last_error = CacheUnavailableError("timeout")
                last_error.__cause__ = e
            except aiohttp.ClientError as e:
                last_error = CacheUnavailableError(f"{type(e).__name__}: {e}")
                last_error.__cause__ = e
            if attempt == 0:
                logger.debug("Cache command %s failed (%s), retrying", command[0], last_error)
                await asyncio.sleep(RETRY_BACKOFF)
        raise last_error

    # ── Health ────────────────────────────────────────────────

    async def ping(self) -> HealthStatus:
        """Single bounded round-trip. Never raises."""
        if not self._credentials:
            return HealthStatus(connected=False, error="not configured")
        start = time.monotonic()
        try:
            result = await self._post(["PING"])
        except asyncio.TimeoutError:
            return HealthStatus(connected=False, error="timeout")
        except aiohttp.ClientError as e:
            return HealthStatus(connected=False, error=f"{type(e).__name__}: {e}")
        except CacheUnavailableError as e:
            return HealthStatus(connected=False, error=str(e))
        latency = round((time.monotonic() - start) * 1000, 1)
        if result != "PONG":
            return HealthStatus(connected=False, latency_ms=latency, error=f"unexpected reply {result!r}")
        return HealthStatus(connected=True, latency_ms=latency)

    # ── Entries ───────────────────────────────────────────────

    async def put(self, entry: MemoryEntry) -> None:
        payload = json.dumps(entry.to_dict(), ensure_ascii=False)
        await self._command("SET", self.entry_key(entry.category, entry.id), payload)

    async def get(self, entry_id: str, category: str | None = None) -> MemoryEntry | None:
        """Fetch one entry. Without a category, all category keys are tried in one MGET."""
        categories = [category] if category else list(CATEGORIES)
        entries = await self.get_many([self.entry_key(c, entry_id) for c in categories])
        return next((e for e in entries.values() if e is not None), None)

    async def get_many(self, keys: list[str]) -> dict[str, MemoryEntry | None]:
        if not keys:
            return {}
        values = await self._command("MGET", *keys)
        result: dict[str, MemoryEntry | None] = {}
        for key, raw in zip(keys, values or []):
            result[key] = self._decode(key, raw)
        return result

    def _decode(self, key: str, raw: str | None) -> MemoryEntry | None:
        if raw is None:
            return None
        try:
            entry = MemoryEntry.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring malformed cache value at %s: %s", key, e)
            return None
        return entry

    async def list_keys_with_prefix(self, prefix: str) -> list[str]:
        """All keys starting with ``prefix`` (SCAN, cursor-driven).

        ``prefix`` is literal: glob metacharacters in it are escaped.
        """
        pattern = _GLOB_SPECIAL.sub(r"\\\g<0>", prefix) + "*"
        keys: list[str] = []
        cursor = "0"
        while True:
            reply = await self._command("SCAN", cursor, "MATCH", pattern, "COUNT", SCAN_COUNT)
            cursor, batch = str(reply[0]), reply[1]
            keys.extend(k for k in batch if k.startswith(prefix))
            if cursor == "0":
                break
        return sorted(set(keys))

    async def entry_keys(self) -> dict[str, tuple[str, str]]:
        """Map entry id → (category, key) for every entry under this prefix."""
        found: dict[str, tuple[str, str]] = {}
        for key in await self.list_keys_with_prefix(f"{self.prefix}:"):
            parsed = self.parse_entry_key(key)
            if parsed:
                category, entry_id = parsed
                found[entry_id] = (category, key)
        return found

    async def delete_all(self, prefix: str) -> int:
        """Delete every key under ``prefix``. Refuses prefixes outside this namespace."""
        if not (prefix == self.prefix or prefix.startswith(f"{self.prefix}:")):
            raise ValueError(f"Refusing to delete outside namespace {self.prefix!r}: {prefix!r}")
        if prefix == self.prefix:
            prefix = f"{prefix}:"
        keys = await self.list_keys_with_prefix(prefix)
        deleted = 0
        for i in range(0, len(keys), 100):
            deleted += int(await self._command("DEL", *keys[i : i + 100]) or 0)
        logger.info("Deleted %d cache keys under %s", deleted, prefix)
        return deleted

    # ── Meta mirrors ──────────────────────────────────────────

    async def put_meta(self, name: str, payload: dict) -> None:
        await self._command("SET", self.meta_key(name), json.dumps(payload, ensure_ascii=False))

    async def get_meta(self, name: str) -> dict | None:
        raw = await self._command("GET", self.meta_key(name))
        return json.loads(raw) if raw else None
