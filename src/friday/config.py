"""Configuration loading from environment variables, .env and friday.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from dotenv import dotenv_values

from friday.errors import ConfigInvalidError

_CONFIG_FILENAME = "friday.toml"
_DEFAULT_MEMORY_SUBDIR = Path(".github") / "memory"

MAX_CAPACITY = 10_000
MAX_CACHE_TIMEOUT = 30.0

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
# key separator plus Redis glob metacharacters
_PREFIX_FORBIDDEN = set(":*?[]\\")


@dataclass
class MemoryConfig:
    """Durable tier settings."""

    dir: Path | None = None  # None → <project_root>/.github/memory
    capacity: int = 100


@dataclass
class CacheConfig:
    """Upstash Redis REST settings. Empty url/token means git-only mode."""

    url: str = ""
    token: str = ""
    enabled: bool = True
    timeout: float = 3.0
    key_prefix: str = "friday"

    @property
    def configured(self) -> bool:
        return self.enabled and bool(self.url) and bool(self.token)


@dataclass
class SearchConfig:
    """Search escalation thresholds and the optional external source."""

    min_results: int = 3
    sufficient_score: float = 0.6
    external_url: str = ""
    external_api_key: str = ""
    external_timeout: float = 5.0


@dataclass
class FridayConfig:
    """Top-level FRIDAY configuration."""

    project_root: Path = field(default_factory=Path.cwd)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    log_level: str = "INFO"

    @property
    def memory_dir(self) -> Path:
        if self.memory.dir is None:
            return self.project_root / _DEFAULT_MEMORY_SUBDIR
        if self.memory.dir.is_absolute():
            return self.memory.dir
        return self.project_root / self.memory.dir


def _read_toml(config_path: Path | None, project_root: Path) -> dict:
    if config_path and config_path.exists():
        return tomllib.loads(config_path.read_text())
    for candidate in [project_root / _CONFIG_FILENAME, Path.home() / ".friday" / _CONFIG_FILENAME]:
        if candidate.exists():
            return tomllib.loads(candidate.read_text())
    return {}


def _as_int(name: str, value, errors: list[str], default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        errors.append(f"{name} must be an integer, got {value!r}")
        return default


def _as_float(name: str, value, errors: list[str], default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        errors.append(f"{name} must be a number, got {value!r}")
        return default


def _as_bool(name: str, value, errors: list[str], default: bool) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    errors.append(f"{name} must be a boolean, got {value!r}")
    return default


def load_config(
    config_path: Path | None = None,
    project_root: Path | None = None,
) -> FridayConfig:
    """Load configuration and validate it.

    Priority: environment variables > <project_root>/.env > friday.toml > defaults.
    Raises ConfigInvalidError listing every problem found.
    """
    env_root = os.getenv("FRIDAY_PROJECT_ROOT")
    root = project_root or (Path(env_root) if env_root else Path.cwd())

    file_data = _read_toml(config_path, root)
    dotenv_data = {k: v for k, v in dotenv_values(root / ".env").items() if v is not None}

    def setting(key: str, section: dict, name: str, default):
        if key in os.environ:
            return os.environ[key]
        if key in dotenv_data:
            return dotenv_data[key]
        return section.get(name, default)

    memory_data = file_data.get("memory", {})
    cache_data = file_data.get("cache", {})
    search_data = file_data.get("search", {})
    errors: list[str] = []

    memory_dir = setting("FRIDAY_MEMORY_DIR", memory_data, "dir", None)
    config = FridayConfig(
        project_root=root,
        memory=MemoryConfig(
            dir=Path(memory_dir) if memory_dir else None,
            capacity=_as_int(
                "memory capacity",
                setting("FRIDAY_MEMORY_CAPACITY", memory_data, "capacity", 100),
                errors,
                100,
            ),
        ),
        cache=CacheConfig(
            url=setting("UPSTASH_REDIS_REST_URL", cache_data, "url", ""),
            token=setting("UPSTASH_REDIS_REST_TOKEN", cache_data, "token", ""),
            enabled=_as_bool(
                "cache enabled",
                setting("FRIDAY_REDIS_ENABLED", cache_data, "enabled", True),
                errors,
                True,
            ),
            timeout=_as_float(
                "cache timeout",
                setting("FRIDAY_CACHE_TIMEOUT", cache_data, "timeout", 3.0),
                errors,
                3.0,
            ),
            key_prefix=setting("FRIDAY_KEY_PREFIX", cache_data, "key_prefix", "friday"),
        ),
        search=SearchConfig(
            min_results=_as_int(
                "search min_results",
                setting("FRIDAY_SEARCH_MIN_RESULTS", search_data, "min_results", 3),
                errors,
                3,
            ),
            sufficient_score=_as_float(
                "search sufficient_score",
                setting("FRIDAY_SEARCH_THRESHOLD", search_data, "sufficient_score", 0.6),
                errors,
                0.6,
            ),
            external_url=setting("FRIDAY_CONTEXT7_URL", search_data, "external_url", ""),
            external_api_key=setting("CONTEXT7_API_KEY", search_data, "external_api_key", ""),
        ),
        log_level=setting("FRIDAY_LOG_LEVEL", file_data, "log_level", "INFO"),
    )
    if errors:
        raise ConfigInvalidError(errors)
    validate_config(config)
    return config


def config_errors(config: FridayConfig) -> list[str]:
    """Return every range or consistency problem in ``config``."""
    errors: list[str] = []
    if not 1 <= config.memory.capacity <= MAX_CAPACITY:
        errors.append(f"memory capacity must be between 1 and {MAX_CAPACITY}")
    if not 0 < config.cache.timeout <= MAX_CACHE_TIMEOUT:
        errors.append(f"cache timeout must be in (0, {MAX_CACHE_TIMEOUT:g}] seconds")
    if not config.cache.key_prefix or set(config.cache.key_prefix) & _PREFIX_FORBIDDEN:
        errors.append("cache key_prefix must be non-empty and contain none of : * ? [ ] \\")
    if bool(config.cache.url) != bool(config.cache.token):
        errors.append("Upstash URL and token must be set together")
    if config.cache.url and not config.cache.url.startswith(("https://", "http://")):
        errors.append("Upstash URL must start with https:// or http://")
    if config.search.min_results < 1:
        errors.append("search min_results must be at least 1")
    if not 0 < config.search.sufficient_score <= 1:
        errors.append("search sufficient_score must be in (0, 1]")
    if config.search.external_url and not config.search.external_url.startswith(
        ("https://", "http://")
    ):
        errors.append("external search URL must start with https:// or http://")
    return errors


def validate_config(config: FridayConfig) -> None:
    """Raise ConfigInvalidError if ``config`` has any problem."""
    errors = config_errors(config)
    if errors:
        raise ConfigInvalidError(errors)
