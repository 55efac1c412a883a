"""Shared memory types: entries, index rows, sync reports, health, search hits."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

Category = Literal["implementation", "decision", "issue"]
Tier = Literal["durable", "cache"]
Source = Literal["durable", "cache", "external"]

CATEGORIES: tuple[str, ...] = ("implementation", "decision", "issue")

# category → durable subdirectory
CATEGORY_DIRS = {
    "implementation": "implementations",
    "decision": "decisions",
    "issue": "issues",
}
ARCHIVE_DIR = "archive"


class MemoryMode(str, Enum):
    """HybridMemoryManager state machine."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    GIT_ONLY = "git-only"
    HYBRID = "hybrid"


class SyncDirection(str, Enum):
    LOCAL_TO_REMOTE = "local-to-remote"
    REMOTE_TO_LOCAL = "remote-to-local"
    BIDIRECTIONAL = "bidirectional"

    @property
    def allows_push(self) -> bool:
        return self is not SyncDirection.REMOTE_TO_LOCAL

    @property
    def allows_pull(self) -> bool:
        return self is not SyncDirection.LOCAL_TO_REMOTE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def parse_ts(value) -> datetime:
    """Accept an ISO string or a datetime (YAML may already have parsed it)."""
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).strip())
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def slugify(text: str) -> str:
    """Lowercase ASCII-ish slug; keeps CJK, drops path and key separators."""
    slug = re.sub(r'[<>:"/\\|?*\n\r\t\'`.,;!()\[\]{}#]', "", text.strip().lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug[:60] or "untitled"


def make_entry_id(category: str, title: str) -> str:
    """Stable id for (category, title). Never regenerated once written."""
    digest = hashlib.sha1(f"{category}:{title.strip()}".encode("utf-8")).hexdigest()[:8]
    return f"{slugify(title)}-{digest}"


@dataclass(frozen=True)
class MemoryEntry:
    """One recorded fact. Immutable once written; updates produce a new value."""

    id: str
    category: Category
    title: str
    body: str
    tags: frozenset[str] = frozenset()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    origin_tier: Tier = "durable"

    @classmethod
    def create(
        cls,
        category: Category,
        title: str,
        body: str,
        tags=(),
        *,
        origin_tier: Tier = "durable",
        now: datetime | None = None,
    ) -> MemoryEntry:
        if category not in CATEGORIES:
            raise ValueError(f"Unknown category: {category!r}")
        if "\n" in title.strip() or "\r" in title.strip():
            raise ValueError("Entry title must be a single line")
        ts = now or utcnow()
        return cls(
            id=make_entry_id(category, title),
            category=category,
            title=title.strip(),
            body=body.strip(),
            tags=frozenset(t.strip() for t in tags if t and t.strip()),
            created_at=ts,
            updated_at=ts,
            origin_tier=origin_tier,
        )

    def fingerprint(self) -> str:
        """Hash of the content fields. Timestamps and origin are not content."""
        payload = "\x1f".join(
            [self.category, self.title.strip(), self.body.strip(), ",".join(sorted(self.tags))]
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def same_content(self, other: MemoryEntry) -> bool:
        return self.fingerprint() == other.fingerprint()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "title": self.title,
            "body": self.body,
            "tags": sorted(self.tags),
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
            "origin_tier": self.origin_tier,
        }

    @classmethod
    def from_dict(cls, data: dict) -> MemoryEntry:
        category = data["category"]
        if category not in CATEGORIES:
            raise ValueError(f"Unknown category: {category!r}")
        return cls(
            id=str(data["id"]),
            category=category,
            title=str(data.get("title", "")).strip(),
            body=str(data.get("body", "")).strip(),
            tags=frozenset(str(t) for t in data.get("tags") or []),
            created_at=parse_ts(data["created_at"]),
            updated_at=parse_ts(data["updated_at"]),
            origin_tier=data.get("origin_tier", "durable"),
        )


@dataclass(frozen=True)
class IndexRow:
    id: str
    category: Category
    path: str  # relative to the memory root, posix separators
    updated_at: datetime

    @property
    def archived(self) -> bool:
        return self.path.startswith(f"{ARCHIVE_DIR}/")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "path": self.path,
            "updated_at": format_ts(self.updated_at),
        }


@dataclass
class IndexRecord:
    """Authoritative enumeration of durable entries, newest first."""

    rows: list[IndexRow] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def get(self, entry_id: str) -> IndexRow | None:
        for row in self.rows:
            if row.id == entry_id:
                return row
        return None

    def ids(self) -> set[str]:
        return {row.id for row in self.rows}

    def upsert(self, row: IndexRow) -> None:
        self.rows = [r for r in self.rows if r.id != row.id]
        self.rows.append(row)
        self.sort()

    def remove(self, entry_id: str) -> None:
        self.rows = [r for r in self.rows if r.id != entry_id]

    def sort(self) -> None:
        self.rows.sort(key=lambda r: r.id)
        self.rows.sort(key=lambda r: r.updated_at, reverse=True)


@dataclass
class ProjectProfile:
    name: str
    type: str
    tech_stack: list[str] = field(default_factory=list)
    confidence: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "tech_stack": list(self.tech_stack),
            "confidence": round(self.confidence, 2),
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ProjectProfile:
        return cls(
            name=str(data.get("name", "")),
            type=str(data.get("type", "")),
            tech_stack=[str(t) for t in data.get("tech_stack") or []],
            confidence=float(data.get("confidence", 0.0)),
            created_at=parse_ts(data["created_at"]) if data.get("created_at") else utcnow(),
            updated_at=parse_ts(data["updated_at"]) if data.get("updated_at") else utcnow(),
        )


@dataclass
class SyncState:
    direction: SyncDirection
    last_synced_at: datetime
    pushed_count: int = 0
    pulled_count: int = 0
    conflicts: list[str] = field(default_factory=list)
    forced: bool = False

    def summary(self) -> str:
        text = (
            f"{self.direction.value}: pushed {self.pushed_count}, "
            f"pulled {self.pulled_count}, conflicts {len(self.conflicts)}"
        )
        if self.conflicts:
            text += f" ({', '.join(self.conflicts)})"
        return text


@dataclass
class HealthStatus:
    connected: bool
    latency_ms: float | None = None
    error: str | None = None


@dataclass
class SearchResult:
    entry_id: str
    snippet: str
    source: Source
    score: float
    title: str = ""
    updated_at: datetime | None = None


@dataclass
class DurableStats:
    total: int
    by_category: dict[str, int]
    archived: int = 0


@dataclass
class MemoryStats:
    mode: MemoryMode
    durable: DurableStats
    cache_keys: int | None = None
    reason: str | None = None

    @property
    def total(self) -> int:
        return self.durable.total
