"""Per-session context — one object built at session start, passed everywhere.

Holds the configuration, the project profiler, the hybrid memory manager and
the external search source, and implements the caller-facing operations.
Every operation returns a ToolResult; typed FRIDAY errors become failures.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field

from friday.config import FridayConfig, validate_config
from friday.errors import FridayError, StoreIOError
from friday.memory.cache import CacheCredentials, CacheTier
from friday.memory.hybrid import HybridMemoryManager
from friday.memory.models import MemoryMode, MemoryStats, ProjectProfile
from friday.memory.store import DurableStore
from friday.profiler import ProjectProfiler
from friday.search import Context7Source, ExternalSource, SearchEscalator, format_results
from friday.tools.requests import (
    ContextRequest,
    GreetingRequest,
    RecordRequest,
    SearchRequest,
    SetupRequest,
    SyncRequest,
)

logger = logging.getLogger(__name__)

RECENT_ENTRIES = 5
RULE = "━" * 52


@dataclass
class ToolResult:
    """Structured outcome of a caller-facing operation."""

    ok: bool
    summary: str
    data: dict = field(default_factory=dict)


def stats_to_dict(stats: MemoryStats) -> dict:
    data = {
        "mode": stats.mode.value,
        "total": stats.durable.total,
        "by_category": dict(stats.durable.by_category),
        "archived": stats.durable.archived,
    }
    if stats.cache_keys is not None:
        data["cache_keys"] = stats.cache_keys
    if stats.reason:
        data["reason"] = stats.reason
    return data


def build_manager(config: FridayConfig) -> HybridMemoryManager:
    cache = None
    if config.cache.configured:
        cache = CacheTier(
            CacheCredentials(
                url=config.cache.url,
                token=config.cache.token,
                timeout=config.cache.timeout,
                key_prefix=config.cache.key_prefix,
            )
        )
    return HybridMemoryManager(
        DurableStore(config.memory_dir),
        cache=cache,
        capacity=config.memory.capacity,
    )


def build_external(config: FridayConfig) -> ExternalSource | None:
    if not config.search.external_url:
        return None
    return Context7Source(
        config.search.external_url,
        api_key=config.search.external_api_key,
        timeout=config.search.external_timeout,
    )


class FridaySession:
    """Explicit context for one coding-assistant session."""

    def __init__(
        self,
        config: FridayConfig,
        external: ExternalSource | None = None,
    ) -> None:
        validate_config(config)
        self.config = config
        self.profiler = ProjectProfiler(config.project_root)
        self.manager = build_manager(config)
        self.external = external if external is not None else build_external(config)

    async def close(self) -> None:
        await self.manager.close()

    async def _ensure_ready(self) -> None:
        """Attach to an existing memory directory; never creates one."""
        if self.manager.mode is not MemoryMode.UNINITIALIZED:
            return
        if not self.manager.is_initialized():
            raise StoreIOError("FRIDAY memory not initialized; run setup first")
        await self.manager.initialize()

    async def _reconfigure(self, request: SetupRequest) -> None:
        cache = self.config.cache
        memory = self.config.memory
        if not request.enable_remote and cache.enabled:
            cache = dataclasses.replace(cache, enabled=False)
        if request.capacity_limit is not None:
            memory = dataclasses.replace(memory, capacity=request.capacity_limit)
        if cache is self.config.cache and memory is self.config.memory:
            return
        config = dataclasses.replace(self.config, cache=cache, memory=memory)
        validate_config(config)
        await self.manager.close()
        self.config = config
        self.manager = build_manager(config)

    # ── Operations ────────────────────────────────────────────

    async def setup(self, request: SetupRequest) -> ToolResult:
        try:
            await self._reconfigure(request)
            already = self.manager.is_initialized()
            await self.manager.initialize()

            profile = self.profiler.detect(previous=self.manager.read_profile())
            if request.project_type != "auto-detect":
                profile.type = request.project_type
                profile.confidence = 1.0
            self.manager.create_index(profile)
            profile = self.manager.create_current_state(profile)

            stats = await self.manager.get_stats()
            health = await self.manager.get_health() if self.manager.cache_configured else None
        except FridayError as e:
            logger.error("Setup failed: %s", e)
            return ToolResult(ok=False, summary=f"Setup failed: {e}")

        lines = [RULE, "FRIDAY setup", RULE, ""]
        lines.append(f"Project: {profile.name}")
        lines.append(f"Type: {profile.type} ({round(profile.confidence * 100)}% confidence)")
        lines.append(f"Tech stack: {', '.join(profile.tech_stack) or 'Generic'}")
        lines.append("")
        lines.append(
            f"Memory: {'existing' if already else 'created'} {self.manager.store.root}"
        )
        if health is None:
            lines.append("Cache: not configured (git-only mode)")
        elif health.connected:
            lines.append(f"Cache: connected ({health.latency_ms}ms), hybrid mode active")
        else:
            lines.append(f"Cache: unavailable ({health.error}), falling back to git-only")
        lines.append(f"Mode: {stats.mode.value}")
        lines.append(f"Entries: {stats.total}")
        return ToolResult(
            ok=True,
            summary="\n".join(lines),
            data={
                "already_initialized": already,
                "profile": profile.to_dict(),
                "stats": stats_to_dict(stats),
            },
        )

    async def search(self, request: SearchRequest) -> ToolResult:
        try:
            await self._ensure_ready()
            escalator = SearchEscalator(
                self.manager,
                external=self.external,
                min_results=self.config.search.min_results,
                sufficient_score=self.config.search.sufficient_score,
            )
            report = await escalator.search(
                request.query, limit=request.limit, feature_context=request.feature_context
            )
        except FridayError as e:
            return ToolResult(ok=False, summary=f"Search failed: {e}")
        return ToolResult(
            ok=True,
            summary=format_results(report.results, request.query),
            data={
                "stages": report.stages,
                "results": [
                    {
                        "entry_id": r.entry_id,
                        "title": r.title,
                        "snippet": r.snippet,
                        "source": r.source,
                        "score": r.score,
                    }
                    for r in report.results
                ],
            },
        )

    async def sync(self, request: SyncRequest) -> ToolResult:
        try:
            await self._ensure_ready()
            state = await self.manager.sync(request.direction, force=request.force)
        except FridayError as e:
            logger.error("Sync failed: %s", e)
            return ToolResult(ok=False, summary=f"Sync failed: {e}")
        return ToolResult(
            ok=True,
            summary=f"Sync complete: {state.summary()}",
            data={
                "direction": state.direction.value,
                "pushed": state.pushed_count,
                "pulled": state.pulled_count,
                "conflicts": list(state.conflicts),
                "forced": state.forced,
                "last_synced_at": state.last_synced_at.isoformat(),
            },
        )

    async def context(self, request: ContextRequest | None = None) -> ToolResult:
        try:
            await self._ensure_ready()
            profile = self.manager.read_profile()
            stats = await self.manager.get_stats()
            recent = []
            for entry in self.manager.store.list_all(include_archived=False):
                recent.append(entry)
                if len(recent) >= RECENT_ENTRIES:
                    break
        except FridayError as e:
            return ToolResult(ok=False, summary=f"Context unavailable: {e}")

        lines = [self._profile_line(profile), f"Mode: {stats.mode.value}"]
        counts = ", ".join(f"{c}: {n}" for c, n in stats.durable.by_category.items()) or "none"
        lines.append(f"Entries: {stats.total} ({counts})")
        if stats.reason:
            lines.append(f"Note: {stats.reason}")
        if recent:
            lines.append("")
            lines.append("Recent:")
            lines += [f"- [{e.category}] {e.title}" for e in recent]
        return ToolResult(
            ok=True,
            summary="\n".join(lines),
            data={
                "profile": profile.to_dict() if profile else None,
                "stats": stats_to_dict(stats),
                "recent": [e.id for e in recent],
            },
        )

    async def greeting(self, request: GreetingRequest | None = None) -> ToolResult:
        """Short status: who we are working on, memory mode, cache health, counts."""
        try:
            await self._ensure_ready()
            profile = self.manager.read_profile()
            stats = await self.manager.get_stats()
            health = await self.manager.get_health() if self.manager.cache_configured else None
        except FridayError as e:
            return ToolResult(ok=False, summary=f"FRIDAY is not ready: {e}")

        lines = ["FRIDAY online.", self._profile_line(profile), f"Mode: {stats.mode.value}"]
        if health is None:
            lines.append("Cache: not configured")
        elif health.connected:
            lines.append(f"Cache: connected ({health.latency_ms}ms)")
        else:
            lines.append(f"Cache: unavailable ({health.error})")
        counts = ", ".join(f"{c}: {n}" for c, n in stats.durable.by_category.items()) or "none"
        lines.append(f"Entries: {stats.total} ({counts})")
        return ToolResult(
            ok=True,
            summary="\n".join(lines),
            data={
                "profile": profile.to_dict() if profile else None,
                "stats": stats_to_dict(stats),
                "cache_connected": health.connected if health else False,
            },
        )

    @staticmethod
    def _profile_line(profile: ProjectProfile | None) -> str:
        if profile is None:
            return "Project: unknown (run setup)"
        stack = ", ".join(profile.tech_stack) or "Generic"
        return f"Project: {profile.name} ({profile.type}; {stack})"

    async def record(self, request: RecordRequest) -> ToolResult:
        try:
            await self._ensure_ready()
            entry = await self.manager.record(
                request.category, request.title, request.body, request.tags
            )
        except FridayError as e:
            return ToolResult(ok=False, summary=f"Record failed: {e}")
        return ToolResult(
            ok=True,
            summary=f"Recorded {entry.category} '{entry.title}' ({entry.id})",
            data={"id": entry.id, "mode": self.manager.mode.value},
        )
