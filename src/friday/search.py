"""Staged search: durable tier → cache tier → external knowledge source.

Each stage runs only when the previous ones are insufficient. External
findings are returned to the caller and never written back to either tier.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, Protocol, runtime_checkable

import aiohttp

from friday.errors import CacheUnavailableError, ExternalSourceError
from friday.memory.models import MemoryEntry, SearchResult

if TYPE_CHECKING:
    from friday.memory.hybrid import HybridMemoryManager

logger = logging.getLogger(__name__)

STAGE_DURABLE = "durable"
STAGE_CACHE = "cache"
STAGE_EXTERNAL = "external"

SNIPPET_CHARS = 160
_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def tokenize(text: str) -> set[str]:
    return {t.lower() for t in _TOKEN_RE.findall(text or "")}


def score_text(query_tokens: set[str], text_tokens: set[str]) -> float:
    """Share of distinct query tokens present in the text."""
    if not query_tokens:
        return 0.0
    return len(query_tokens & text_tokens) / len(query_tokens)


def entry_tokens(entry: MemoryEntry) -> set[str]:
    tokens = tokenize(entry.title) | tokenize(entry.body) | {entry.category}
    for tag in entry.tags:
        tokens |= tokenize(tag)
    return tokens


def make_snippet(text: str, query_tokens: set[str]) -> str:
    """First line mentioning a query token, else the start of the text."""
    flat = " ".join(text.split())
    for line in text.splitlines():
        if tokenize(line) & query_tokens:
            flat = " ".join(line.split())
            break
    if len(flat) > SNIPPET_CHARS:
        return flat[: SNIPPET_CHARS - 1].rstrip() + "…"
    return flat


def score_entries(
    query_tokens: set[str], entries: Iterable[MemoryEntry], source: str
) -> list[SearchResult]:
    results = []
    for entry in entries:
        score = score_text(query_tokens, entry_tokens(entry))
        if score <= 0:
            continue
        results.append(
            SearchResult(
                entry_id=entry.id,
                snippet=make_snippet(entry.body or entry.title, query_tokens),
                source=source,
                score=round(score, 4),
                title=entry.title,
                updated_at=entry.updated_at,
            )
        )
    return results


def rank(results: list[SearchResult]) -> list[SearchResult]:
    """Dedup by entry_id (first occurrence wins), then score desc, updated_at desc."""
    seen: set[str] = set()
    unique = []
    for result in results:
        if result.entry_id in seen:
            continue
        seen.add(result.entry_id)
        unique.append(result)
    unique.sort(key=lambda r: r.updated_at or _OLDEST, reverse=True)
    unique.sort(key=lambda r: r.score, reverse=True)
    return unique


@runtime_checkable
class ExternalSource(Protocol):
    """A knowledge source consulted only when memory has too little."""

    @property
    def name(self) -> str: ...

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        """Return results tagged source='external'. Raise ExternalSourceError on failure."""
        ...


class Context7Source:
    """Context7 library-documentation search over HTTP."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 5.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "context7"

    async def search(self, query: str, limit: int) -> list[SearchResult]:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        try:
            async with aiohttp.ClientSession(headers=headers, timeout=timeout) as session:
                async with session.get(f"{self._base_url}/search", params={"query": query}) as resp:
                    resp.raise_for_status()
                    payload = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise ExternalSourceError(f"{self.name}: timeout") from e
        except aiohttp.ClientError as e:
            raise ExternalSourceError(f"{self.name}: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise ExternalSourceError(f"{self.name}: response is not JSON") from e

        items = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise ExternalSourceError(f"{self.name}: unexpected payload shape")

        query_tokens = tokenize(query)
        results = []
        for item in items[:limit]:
            if not isinstance(item, dict):
                continue
            title = str(item.get("title") or item.get("id") or "")
            description = str(item.get("description") or "")
            score = score_text(query_tokens, tokenize(title) | tokenize(description))
            results.append(
                SearchResult(
                    entry_id=str(item.get("id") or title),
                    snippet=make_snippet(description or title, query_tokens),
                    source=STAGE_EXTERNAL,
                    score=round(score, 4),
                    title=title,
                )
            )
        return results


@dataclass
class SearchReport:
    query: str
    results: list[SearchResult] = field(default_factory=list)
    stages: list[str] = field(default_factory=list)


class SearchEscalator:
    """Query the cheapest source first and stop as soon as results suffice."""

    def __init__(
        self,
        manager: HybridMemoryManager,
        external: ExternalSource | None = None,
        min_results: int = 3,
        sufficient_score: float = 0.6,
    ) -> None:
        self._manager = manager
        self._external = external
        self.min_results = min_results
        self.sufficient_score = sufficient_score

    def _sufficient(self, results: list[SearchResult]) -> bool:
        if len(results) < self.min_results:
            return False
        return max(r.score for r in results) >= self.sufficient_score

    async def search(self, query: str, limit: int = 10, feature_context: str = "") -> SearchReport:
        """Run the stages in order. ``feature_context`` only widens the external query."""
        report = SearchReport(query=query)
        query_tokens = tokenize(query)
        if not query_tokens:
            return report

        # durable tier
        report.stages.append(STAGE_DURABLE)
        local_entries = list(self._manager.store.list_all(include_archived=False))
        results = rank(score_entries(query_tokens, local_entries, STAGE_DURABLE))
        if self._sufficient(results):
            report.results = results[:limit]
            return report

        # cache tier, only entries absent locally
        if self._manager.hybrid:
            report.stages.append(STAGE_CACHE)
            local_ids = self._manager.store.read_index().ids()
            try:
                cached = await self._cache_only_entries(local_ids)
            except CacheUnavailableError as e:
                logger.warning("Cache stage skipped: %s", e)
                cached = []
            results = rank(results + score_entries(query_tokens, cached, STAGE_CACHE))

        # external source
        if len(results) < self.min_results and self._external is not None:
            report.stages.append(STAGE_EXTERNAL)
            external_query = f"{query} {feature_context}".strip()
            try:
                external = await self._external.search(external_query, limit)
            except (ExternalSourceError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning("External search via %s failed: %s", self._external.name, e)
                external = []
            results = rank(results + external)

        report.results = results[:limit]
        return report

    async def _cache_only_entries(self, local_ids: set[str]) -> list[MemoryEntry]:
        cache = self._manager.cache
        remote = await cache.entry_keys()
        keys = [key for entry_id, (_, key) in remote.items() if entry_id not in local_ids]
        fetched = await cache.get_many(keys)
        return [entry for entry in fetched.values() if entry is not None]


def format_results(results: list[SearchResult], query: str = "") -> str:
    """Render ranked results as a markdown list."""
    if not results:
        return f'No memory found for "{query}".' if query else "No memory found."
    lines = [f'Results for "{query}":' if query else "Results:"]
    for r in results:
        title = r.title or r.entry_id
        lines.append(f"- [{r.source}] {title} ({r.score:.0%}) — {r.snippet}")
    return "\n".join(lines)
