"""Durable tier — markdown entries with YAML frontmatter plus an INDEX.md manifest.

Markdown files are the source of truth and are meant to be committed with the
project. INDEX.md carries the machine-readable index in its frontmatter and a
human-readable table in its body; both are regenerated on every write.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterator

import frontmatter
import yaml

from friday.errors import IndexCorruptError, StoreIOError
from friday.memory.models import (
    ARCHIVE_DIR,
    CATEGORIES,
    CATEGORY_DIRS,
    DurableStats,
    IndexRecord,
    IndexRow,
    MemoryEntry,
    format_ts,
    parse_ts,
    utcnow,
)

logger = logging.getLogger(__name__)

INDEX_FILE = "INDEX.md"
CURRENT_STATE_FILE = "current-state.md"


class EntryListing:
    """Lazy, restartable view over durable entries, newest first.

    Each iteration re-reads the index, so a listing taken before a write sees
    the write on its next pass.
    """

    def __init__(self, store: DurableStore, include_archived: bool = True) -> None:
        self._store = store
        self._include_archived = include_archived

    def __iter__(self) -> Iterator[MemoryEntry]:
        for row in self._store.read_index():
            if row.archived and not self._include_archived:
                continue
            entry = self._store.read_row(row)
            if entry is not None:
                yield entry


class DurableStore:
    """Read/write access to <project>/.github/memory/."""

    def __init__(self, root: Path) -> None:
        self.root = root

    # ── Initialization ────────────────────────────────────────

    def initialize(self) -> None:
        """Create the directory layout and an empty manifest. Idempotent."""
        if self.root.exists() and not self.root.is_dir():
            raise StoreIOError(f"Memory path is not a directory: {self.root}")
        if self.root.exists() and not os.access(self.root, os.W_OK | os.X_OK):
            raise StoreIOError(f"Memory path is not writable: {self.root}")
        try:
            for d in [*CATEGORY_DIRS.values(), ARCHIVE_DIR]:
                (self.root / d).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreIOError(f"Cannot create memory layout at {self.root}: {e}") from e

        if not self.is_initialized():
            self._write_index(IndexRecord(), project=None)
            logger.info("Initialized durable memory at %s", self.root)

    def is_initialized(self) -> bool:
        return (self.root / INDEX_FILE).is_file()

    # ── Atomic file writes ────────────────────────────────────

    def _atomic_write(self, path: Path, content: str) -> None:
        """Write to a temp file in the same directory, then rename over ``path``."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StoreIOError(f"Failed to write {path}: {e}") from e

    # ── Index ─────────────────────────────────────────────────

    def read_index(self) -> IndexRecord:
        """Parse INDEX.md. Never truncates silently: corruption is raised."""
        meta = self._load_index_metadata()
        rows_data = meta.get("entries")
        if not isinstance(rows_data, list):
            raise IndexCorruptError(f"{INDEX_FILE} has no 'entries' list")
        record = IndexRecord()
        for raw in rows_data:
            try:
                record.rows.append(
                    IndexRow(
                        id=str(raw["id"]),
                        category=raw["category"],
                        path=str(raw["path"]),
                        updated_at=parse_ts(raw["updated_at"]),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise IndexCorruptError(f"Malformed row in {INDEX_FILE}: {raw!r}") from e
        record.sort()
        return record

    def _load_index_metadata(self) -> dict:
        path = self.root / INDEX_FILE
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise StoreIOError(f"Memory not initialized: {path} missing") from e
        except OSError as e:
            raise StoreIOError(f"Cannot read {path}: {e}") from e
        try:
            post = frontmatter.loads(text)
        except (yaml.YAMLError, ValueError) as e:
            raise IndexCorruptError(f"Cannot parse {INDEX_FILE}: {e}") from e
        return dict(post.metadata)

    def _read_project_block(self) -> dict | None:
        try:
            project = self._load_index_metadata().get("project")
        except (IndexCorruptError, StoreIOError):
            return None
        return project if isinstance(project, dict) else None

    def _write_index(self, record: IndexRecord, project: dict | None) -> None:
        record.sort()
        metadata: dict = {"updated_at": format_ts(utcnow())}
        if project:
            metadata["project"] = project
        metadata["entries"] = [row.to_dict() for row in record]
        post = frontmatter.Post(self._render_index_body(record, project), **metadata)
        self._atomic_write(self.root / INDEX_FILE, frontmatter.dumps(post) + "\n")

    def _render_index_body(self, record: IndexRecord, project: dict | None) -> str:
        name = project.get("name", "Project") if project else "Project"
        lines = [f"# {name} — Memory Index", ""]
        if project:
            stack = ", ".join(project.get("tech_stack") or []) or "Generic"
            lines += [f"- Type: {project.get('type', 'unknown')}", f"- Tech stack: {stack}", ""]
        lines += ["## Structure", ""]
        lines += [f"- `{d}/`" for d in [*CATEGORY_DIRS.values(), ARCHIVE_DIR]]
        lines.append("")
        if record.rows:
            lines += ["## Entries", "", "| Category | Entry | Updated |", "|---|---|---|"]
            for row in record:
                lines.append(f"| {row.category} | [{row.id}]({row.path}) | {row.updated_at:%Y-%m-%d} |")
        else:
            lines.append("_No entries yet._")
        return "\n".join(lines)

    def rebuild_index(self) -> IndexRecord:
        """Regenerate INDEX.md from the entry files that exist on disk."""
        record = IndexRecord()
        for d in [*CATEGORY_DIRS.values(), ARCHIVE_DIR]:
            subdir = self.root / d
            if not subdir.is_dir():
                continue
            for md_file in sorted(subdir.glob("*.md")):
                entry = self._read_entry_file(md_file)
                if entry is None:
                    logger.warning("Skipping unreadable entry file %s", md_file)
                    continue
                record.upsert(self._row_for(entry, md_file))
        self._write_index(record, self._read_project_block())
        logger.info("Rebuilt %s with %d entries", INDEX_FILE, len(record))
        return record

    # ── Entries ───────────────────────────────────────────────

    def _row_for(self, entry: MemoryEntry, path: Path) -> IndexRow:
        return IndexRow(
            id=entry.id,
            category=entry.category,
            path=path.relative_to(self.root).as_posix(),
            updated_at=entry.updated_at,
        )

    def _entry_path(self, entry: MemoryEntry, record: IndexRecord) -> Path:
        existing = record.get(entry.id)
        if existing is not None:
            return self.root / existing.path
        return self.root / CATEGORY_DIRS[entry.category] / f"{entry.id}.md"

    def _render_entry(self, entry: MemoryEntry) -> str:
        data = entry.to_dict()
        body = data.pop("body")
        post = frontmatter.Post(f"# {entry.title}\n\n{body}".rstrip(), **data)
        return frontmatter.dumps(post) + "\n"

    def _read_entry_file(self, path: Path) -> MemoryEntry | None:
        try:
            post = frontmatter.load(str(path))
        except FileNotFoundError:
            return None
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.warning("Cannot parse entry %s: %s", path, e)
            return None
        data = dict(post.metadata)
        content = post.content.strip()
        heading = f"# {str(data.get('title', '')).strip()}"
        rest = content[len(heading):]
        if data.get("title") and content.startswith(heading) and rest[:1] in ("", "\n"):
            content = rest
        data["body"] = content.strip()
        try:
            return MemoryEntry.from_dict(data)
        except (KeyError, ValueError) as e:
            logger.warning("Invalid entry metadata in %s: %s", path, e)
            return None

    def write_entry(self, entry: MemoryEntry) -> Path:
        """Write ``entry`` and its index row. The entry's updated_at is kept as-is."""
        record = self.read_index()
        path = self._entry_path(entry, record)
        self._atomic_write(path, self._render_entry(entry))
        record.upsert(self._row_for(entry, path))
        self._write_index(record, self._read_project_block())
        logger.debug("Wrote %s entry %s", entry.category, entry.id)
        return path

    def get_entry(self, entry_id: str) -> MemoryEntry | None:
        row = self.read_index().get(entry_id)
        if row is None:
            return None
        return self.read_row(row)

    def read_row(self, row: IndexRow) -> MemoryEntry | None:
        """Load the entry an index row points at, without re-reading the index."""
        return self._read_entry_file(self.root / row.path)

    def list_all(self, include_archived: bool = True) -> EntryListing:
        return EntryListing(self, include_archived=include_archived)

    def archive_entry(self, entry_id: str) -> bool:
        """Move an entry file into archive/. Its index row is kept."""
        record = self.read_index()
        row = record.get(entry_id)
        if row is None or row.archived:
            return False
        src = self.root / row.path
        dest = self.root / ARCHIVE_DIR / src.name
        try:
            shutil.move(str(src), str(dest))
        except OSError as e:
            raise StoreIOError(f"Failed to archive {src}: {e}") from e
        record.upsert(
            IndexRow(id=row.id, category=row.category, path=dest.relative_to(self.root).as_posix(),
                     updated_at=row.updated_at)
        )
        self._write_index(record, self._read_project_block())
        logger.info("Archived entry %s", entry_id)
        return True

    def enforce_capacity(self, limit: int) -> list[str]:
        """Archive the oldest active entries so at most ``limit`` remain active."""
        active = [row for row in self.read_index() if not row.archived]
        overflow = active[limit:]  # index is newest first
        archived = []
        for row in overflow:
            if self.archive_entry(row.id):
                archived.append(row.id)
        if archived:
            logger.info("Capacity %d reached, archived %d entries", limit, len(archived))
        return archived

    def stats(self) -> DurableStats:
        by_category: dict[str, int] = {}
        archived = 0
        record = self.read_index()
        for row in record:
            by_category[row.category] = by_category.get(row.category, 0) + 1
            if row.archived:
                archived += 1
        ordered = {c: by_category[c] for c in CATEGORIES if c in by_category}
        return DurableStats(total=len(record), by_category=ordered, archived=archived)

    # ── Project documents ─────────────────────────────────────

    def write_index_document(self, project: dict) -> None:
        """Rewrite INDEX.md with ``project`` metadata, keeping the entry rows."""
        self._write_index(self.read_index(), project)

    def write_document(self, name: str, metadata: dict, body: str) -> Path:
        path = self.root / name
        post = frontmatter.Post(body, **metadata)
        self._atomic_write(path, frontmatter.dumps(post) + "\n")
        return path

    def read_document(self, name: str) -> tuple[dict, str] | None:
        path = self.root / name
        if not path.is_file():
            return None
        try:
            post = frontmatter.load(str(path))
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.warning("Cannot parse %s: %s", path, e)
            return None
        return dict(post.metadata), post.content

    def read_current_state(self) -> tuple[dict, str] | None:
        """Metadata and body of current-state.md, or None when absent or unreadable."""
        return self.read_document(CURRENT_STATE_FILE)
