"""Typed failures shared by the memory tiers and the tool layer."""

from __future__ import annotations


class FridayError(Exception):
    """Base class for every failure the tool layer reports to the caller."""


class StoreIOError(FridayError):
    """The durable tier cannot be created, read or written. Always fatal."""


class IndexCorruptError(FridayError):
    """INDEX.md exists but cannot be parsed. Recover with ``rebuild_index()``."""


class CacheUnavailableError(FridayError):
    """The remote cache tier is unreachable, timed out, or rejected a command."""


class ConfigInvalidError(FridayError):
    """Settings or request payloads are out of range."""

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class ExternalSourceError(FridayError):
    """The external knowledge source failed or answered with an unusable payload."""
