"""Hybrid memory manager — the durable tier plus an optional Upstash cache.

State machine::

    uninitialized → initializing → git-only | hybrid

Durable failures are fatal. Cache failures during initialize() or ordinary
writes degrade to git-only and are recorded in ``reason``; cache failures
during an explicit sync() propagate.
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import TYPE_CHECKING

from friday.errors import CacheUnavailableError, StoreIOError
from friday.memory.models import (
    HealthStatus,
    MemoryEntry,
    MemoryMode,
    MemoryStats,
    ProjectProfile,
    SearchResult,
    SyncDirection,
    SyncState,
    format_ts,
    utcnow,
)
from friday.memory.store import CURRENT_STATE_FILE, DurableStore
from friday.search import SearchEscalator

if TYPE_CHECKING:
    from friday.memory.cache import CacheTier

logger = logging.getLogger(__name__)

LOCK_FILE = ".sync.lock"
LOCK_TIMEOUT = 60  # seconds
MGET_BATCH = 100

CURRENT_STATE_TEMPLATE = """\
# Current State — {name}

## Project
- Type: {type}
- Tech stack: {stack}
- Detection confidence: {confidence}%

## Active Work
_Nothing recorded yet._

## Next Steps
_Nothing recorded yet._
"""


class HybridMemoryManager:
    """Owns the durable store and the cache tier for one project."""

    def __init__(
        self,
        store: DurableStore,
        cache: CacheTier | None = None,
        capacity: int = 100,
    ) -> None:
        self.store = store
        self.cache = cache
        self.capacity = capacity
        self.mode = MemoryMode.UNINITIALIZED
        self.reason: str | None = None

    @property
    def cache_configured(self) -> bool:
        return self.cache is not None and self.cache.configured

    @property
    def hybrid(self) -> bool:
        return self.mode is MemoryMode.HYBRID

    # ── Lifecycle ─────────────────────────────────────────────

    def is_initialized(self) -> bool:
        return self.store.is_initialized()

    async def initialize(self) -> MemoryMode:
        """Create/validate the durable layout, then ping the cache."""
        self.mode = MemoryMode.INITIALIZING
        try:
            self.store.initialize()
        except StoreIOError:
            self.mode = MemoryMode.UNINITIALIZED
            raise

        if not self.cache_configured:
            self._degrade("cache tier not configured")
            return self.mode

        health = await self.cache.ping()
        if health.connected:
            self.mode = MemoryMode.HYBRID
            self.reason = None
            logger.info("Hybrid memory active (cache latency %.1fms)", health.latency_ms or 0)
        else:
            self._degrade(f"cache unreachable: {health.error}")
        return self.mode

    def _degrade(self, reason: str) -> None:
        if self.mode is MemoryMode.HYBRID:
            logger.warning("Falling back to git-only memory: %s", reason)
        elif self.cache_configured:
            logger.warning("Git-only memory: %s", reason)
        else:
            logger.info("Git-only memory: %s", reason)
        self.mode = MemoryMode.GIT_ONLY
        self.reason = reason

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()

    # ── Project documents ─────────────────────────────────────

    def create_index(self, profile: ProjectProfile) -> None:
        """Rewrite INDEX.md's project header. Entry rows are preserved."""
        self.store.write_index_document(profile.to_dict())

    def create_current_state(self, profile: ProjectProfile) -> ProjectProfile:
        """Write current-state.md. A previously stored created_at is kept."""
        previous = self.read_profile()
        if previous is not None:
            profile.created_at = previous.created_at
        body = CURRENT_STATE_TEMPLATE.format(
            name=profile.name,
            type=profile.type,
            stack=", ".join(profile.tech_stack) or "Generic",
            confidence=round(profile.confidence * 100),
        )
        self.store.write_document(CURRENT_STATE_FILE, profile.to_dict(), body)
        return profile

    def read_profile(self) -> ProjectProfile | None:
        document = self.store.read_current_state()
        if document is None:
            return None
        metadata, _ = document
        try:
            return ProjectProfile.from_dict(metadata)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable %s: %s", CURRENT_STATE_FILE, e)
            return None

    # ── Writes ────────────────────────────────────────────────

    async def write_entry(self, entry: MemoryEntry) -> list[str]:
        """Durable write (fatal on failure), capacity check, best-effort cache put.

        Returns ids archived by the capacity check.
        """
        self.store.write_entry(entry)
        archived = self.store.enforce_capacity(self.capacity)
        if self.hybrid:
            try:
                await self.cache.put(entry)
            except CacheUnavailableError as e:
                logger.warning("Cache put for %s failed, durable copy kept: %s", entry.id, e)
                self._degrade(f"cache write failed: {e}")
        return archived

    async def record(self, category: str, title: str, body: str, tags=()) -> MemoryEntry:
        """Create or update the entry for (category, title)."""
        entry = MemoryEntry.create(category, title, body, tags)
        existing = self.store.get_entry(entry.id)
        if existing is not None:
            updated_at = max(entry.updated_at, existing.updated_at)
            if updated_at == existing.updated_at and not entry.same_content(existing):
                # changed content always advances updated_at
                updated_at = existing.updated_at + timedelta(microseconds=1)
            entry = MemoryEntry(
                id=entry.id,
                category=entry.category,
                title=entry.title,
                body=entry.body,
                tags=entry.tags,
                created_at=existing.created_at,
                updated_at=updated_at,
                origin_tier=existing.origin_tier,
            )
        await self.write_entry(entry)
        return entry

    # ── Sync ──────────────────────────────────────────────────

    def _acquire_lock(self) -> None:
        lock_path = self.store.root / LOCK_FILE
        if lock_path.exists():
            if time.time() - lock_path.stat().st_mtime < LOCK_TIMEOUT:
                raise StoreIOError("Another sync is in progress (lock held)")
            logger.warning("Removing stale sync lock %s", lock_path)
            lock_path.unlink(missing_ok=True)
        lock_path.write_text(str(time.time()), encoding="utf-8")

    def _release_lock(self) -> None:
        (self.store.root / LOCK_FILE).unlink(missing_ok=True)

    async def sync(
        self,
        direction: SyncDirection | str = SyncDirection.BIDIRECTIONAL,
        force: bool = False,
    ) -> SyncState:
        """Reconcile both tiers by last-write-wins on updated_at.

        Equal timestamps with different content are conflicts unless ``force``:
        then the durable copy wins, or the cache copy for remote-to-local.
        """
        direction = SyncDirection(direction)
        if not self.store.is_initialized():
            raise StoreIOError(f"Memory not initialized at {self.store.root}")
        if not self.cache_configured:
            raise CacheUnavailableError("cache tier not configured")
        health = await self.cache.ping()
        if not health.connected:
            self._degrade(f"cache unreachable: {health.error}")
            raise CacheUnavailableError(f"cache unreachable: {health.error}")

        self._acquire_lock()
        try:
            state = await self._reconcile(direction, force)
        finally:
            self._release_lock()

        if self.mode is MemoryMode.GIT_ONLY:
            self.mode = MemoryMode.HYBRID
            self.reason = None
        logger.info("Sync complete — %s", state.summary())
        return state

    async def _reconcile(self, direction: SyncDirection, force: bool) -> SyncState:
        state = SyncState(direction=direction, last_synced_at=utcnow(), forced=force)
        record = self.store.read_index()
        local_rows = {row.id: row for row in record}
        remote_keys = await self.cache.entry_keys()

        shared = sorted(local_rows.keys() & remote_keys.keys())
        remote_only = sorted(remote_keys.keys() - local_rows.keys())
        local_only = sorted(local_rows.keys() - remote_keys.keys())

        if direction.allows_push:
            for entry_id in local_only:
                entry = self.store.read_row(local_rows[entry_id])
                if entry is None:
                    logger.warning("Indexed entry %s has no readable file, skipping", entry_id)
                    continue
                await self.cache.put(entry)
                state.pushed_count += 1

        remote_entries = await self._fetch_remote(
            [remote_keys[i][1] for i in shared + (remote_only if direction.allows_pull else [])]
        )

        if direction.allows_pull:
            for entry_id in remote_only:
                remote = remote_entries.get(remote_keys[entry_id][1])
                if remote is None:
                    continue
                self.store.write_entry(self._copy(remote, "cache"))
                state.pulled_count += 1

        for entry_id in shared:
            local = self.store.read_row(local_rows[entry_id])
            remote = remote_entries.get(remote_keys[entry_id][1])
            if local is None or remote is None:
                continue
            await self._resolve(local, remote, direction, force, state)

        if direction.allows_push:
            await self._mirror_meta()
        return state

    async def _fetch_remote(self, keys: list[str]) -> dict[str, MemoryEntry | None]:
        fetched: dict[str, MemoryEntry | None] = {}
        for i in range(0, len(keys), MGET_BATCH):
            fetched.update(await self.cache.get_many(keys[i : i + MGET_BATCH]))
        return fetched

    async def _resolve(
        self,
        local: MemoryEntry,
        remote: MemoryEntry,
        direction: SyncDirection,
        force: bool,
        state: SyncState,
    ) -> None:
        if local.updated_at > remote.updated_at:
            winner = "durable"
        elif remote.updated_at > local.updated_at:
            winner = "cache"
        elif local.same_content(remote):
            return
        elif not force:
            state.conflicts.append(local.id)
            logger.warning("Sync conflict on %s: same updated_at, different content", local.id)
            return
        else:
            winner = "cache" if direction is SyncDirection.REMOTE_TO_LOCAL else "durable"

        if winner == "durable" and direction.allows_push:
            await self.cache.put(self._copy(local, local.origin_tier))
            state.pushed_count += 1
        elif winner == "cache" and direction.allows_pull:
            self.store.write_entry(self._copy(remote, remote.origin_tier))
            state.pulled_count += 1

    @staticmethod
    def _copy(entry: MemoryEntry, origin_tier: str) -> MemoryEntry:
        return MemoryEntry.from_dict({**entry.to_dict(), "origin_tier": origin_tier})

    async def _mirror_meta(self) -> None:
        record = self.store.read_index()
        await self.cache.put_meta(
            "index",
            {"updated_at": format_ts(utcnow()), "entries": [row.to_dict() for row in record]},
        )
        profile = self.read_profile()
        if profile is not None:
            await self.cache.put_meta("profile", profile.to_dict())

    # ── Status ────────────────────────────────────────────────

    async def get_stats(self) -> MemoryStats:
        durable = self.store.stats()
        cache_keys = None
        if self.hybrid:
            try:
                cache_keys = len(await self.cache.entry_keys())
            except CacheUnavailableError as e:
                self._degrade(f"cache unreachable: {e}")
        return MemoryStats(mode=self.mode, durable=durable, cache_keys=cache_keys, reason=self.reason)

    async def get_health(self) -> HealthStatus:
        if self.cache is None:
            return HealthStatus(connected=False, error="not configured")
        return await self.cache.ping()

    async def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        """Local + cache search only; never touches an external source."""
        escalator = SearchEscalator(self, external=None)
        report = await escalator.search(query, limit=limit)
        return report.results
