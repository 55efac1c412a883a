"""Typed request payloads, validated before they reach the memory core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from friday.config import MAX_CAPACITY
from friday.errors import ConfigInvalidError
from friday.memory.models import CATEGORIES, SyncDirection

PROJECT_TYPES = ("auto-detect", "web", "api", "cli")
MAX_SEARCH_LIMIT = 100

# legacy direction names → SyncDirection
DIRECTION_ALIASES = {
    "git-to-redis": SyncDirection.LOCAL_TO_REMOTE,
    "redis-to-git": SyncDirection.REMOTE_TO_LOCAL,
    "both": SyncDirection.BIDIRECTIONAL,
}


@dataclass(frozen=True)
class SetupRequest:
    project_type: str = "auto-detect"
    enable_remote: bool = True
    capacity_limit: int | None = None


@dataclass(frozen=True)
class SearchRequest:
    query: str
    limit: int = 10
    feature_context: str = ""


@dataclass(frozen=True)
class SyncRequest:
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    force: bool = False


@dataclass(frozen=True)
class ContextRequest:
    pass


@dataclass(frozen=True)
class GreetingRequest:
    pass


@dataclass(frozen=True)
class RecordRequest:
    category: str
    title: str
    body: str
    tags: tuple[str, ...] = field(default_factory=tuple)


Request = Union[
    SetupRequest, SearchRequest, SyncRequest, ContextRequest, GreetingRequest, RecordRequest
]


class _Payload:
    """Reads fields out of an untyped payload, collecting every problem."""

    def __init__(self, operation: str, payload: dict | None, aliases: dict[str, str]) -> None:
        if payload is not None and not isinstance(payload, dict):
            raise ConfigInvalidError(f"{operation}: payload must be an object")
        self.operation = operation
        self.errors: list[str] = []
        self.values: dict = {}
        for key, value in (payload or {}).items():
            name = aliases.get(key)
            if name is None:
                self.errors.append(f"{operation}: unknown field {key!r}")
            else:
                self.values[name] = value

    def string(self, name: str, default=None, required: bool = False):
        value = self.values.get(name, default)
        if value is None:
            if required:
                self.errors.append(f"{self.operation}: {name} is required")
            return default
        if not isinstance(value, str) or (required and not value.strip()):
            self.errors.append(f"{self.operation}: {name} must be a non-empty string")
            return default
        return value.strip()

    def boolean(self, name: str, default: bool) -> bool:
        value = self.values.get(name, default)
        if not isinstance(value, bool):
            self.errors.append(f"{self.operation}: {name} must be a boolean")
            return default
        return value

    def integer(self, name: str, default, low: int, high: int):
        value = self.values.get(name, default)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
            self.errors.append(f"{self.operation}: {name} must be an integer in [{low}, {high}]")
            return default
        return value

    def check(self) -> None:
        if self.errors:
            raise ConfigInvalidError(self.errors)


def _parse_setup(payload: dict | None) -> SetupRequest:
    p = _Payload(
        "setup",
        payload,
        {
            "projectType": "project_type",
            "project_type": "project_type",
            "enableRemote": "enable_remote",
            "enable_remote": "enable_remote",
            "enableRedis": "enable_remote",
            "capacityLimit": "capacity_limit",
            "capacity_limit": "capacity_limit",
            "memoryCapacity": "capacity_limit",
        },
    )
    project_type = p.string("project_type", "auto-detect")
    if project_type not in PROJECT_TYPES:
        p.errors.append(f"setup: projectType must be one of {', '.join(PROJECT_TYPES)}")
    request = SetupRequest(
        project_type=project_type,
        enable_remote=p.boolean("enable_remote", True),
        capacity_limit=p.integer("capacity_limit", None, 1, MAX_CAPACITY),
    )
    p.check()
    return request


def _parse_search(payload: dict | None) -> SearchRequest:
    p = _Payload(
        "search",
        payload,
        {
            "query": "query",
            "limit": "limit",
            "featureContext": "feature_context",
            "feature_context": "feature_context",
        },
    )
    request = SearchRequest(
        query=p.string("query", "", required=True),
        limit=p.integer("limit", 10, 1, MAX_SEARCH_LIMIT),
        feature_context=p.string("feature_context", ""),
    )
    p.check()
    return request


def _parse_sync(payload: dict | None) -> SyncRequest:
    p = _Payload("sync", payload, {"direction": "direction", "force": "force"})
    raw = p.string("direction", SyncDirection.BIDIRECTIONAL.value)
    direction = SyncDirection.BIDIRECTIONAL
    if raw in DIRECTION_ALIASES:
        direction = DIRECTION_ALIASES[raw]
    else:
        try:
            direction = SyncDirection(raw)
        except ValueError:
            valid = ", ".join(d.value for d in SyncDirection)
            p.errors.append(f"sync: direction must be one of {valid}")
    request = SyncRequest(direction=direction, force=p.boolean("force", False))
    p.check()
    return request


def _parse_context(payload: dict | None) -> ContextRequest:
    _Payload("context", payload, {}).check()
    return ContextRequest()


def _parse_greeting(payload: dict | None) -> GreetingRequest:
    _Payload("greeting", payload, {}).check()
    return GreetingRequest()


def _parse_record(payload: dict | None) -> RecordRequest:
    p = _Payload(
        "record",
        payload,
        {"category": "category", "title": "title", "body": "body", "tags": "tags"},
    )
    category = p.string("category", "", required=True)
    if category and category not in CATEGORIES:
        p.errors.append(f"record: category must be one of {', '.join(CATEGORIES)}")
    tags = p.values.get("tags", [])
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        p.errors.append("record: tags must be a list of strings")
        tags = []
    title = p.string("title", "", required=True)
    if "\n" in title or "\r" in title:
        p.errors.append("record: title must be a single line")
    request = RecordRequest(
        category=category,
        title=title,
        body=p.string("body", "", required=True),
        tags=tuple(tags),
    )
    p.check()
    return request


_PARSERS = {
    "setup": _parse_setup,
    "search": _parse_search,
    "sync": _parse_sync,
    "context": _parse_context,
    "greeting": _parse_greeting,
    "record": _parse_record,
}


def parse_request(operation: str, payload: dict | None = None) -> Request:
    """Validate an untyped payload into the request type for ``operation``."""
    parser = _PARSERS.get(operation)
    if parser is None:
        raise ConfigInvalidError(f"unknown operation {operation!r}")
    return parser(payload)
