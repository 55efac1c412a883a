"""Tests for configuration loading."""

import pytest
from pathlib import Path

from friday.config import CacheConfig, FridayConfig, MemoryConfig, load_config, validate_config
from friday.errors import ConfigInvalidError

ENV_KEYS = [
    "UPSTASH_REDIS_REST_URL",
    "UPSTASH_REDIS_REST_TOKEN",
    "FRIDAY_REDIS_ENABLED",
    "FRIDAY_MEMORY_CAPACITY",
    "FRIDAY_CACHE_TIMEOUT",
    "FRIDAY_KEY_PREFIX",
    "FRIDAY_MEMORY_DIR",
    "FRIDAY_PROJECT_ROOT",
    "FRIDAY_LOG_LEVEL",
    "FRIDAY_SEARCH_MIN_RESULTS",
    "FRIDAY_SEARCH_THRESHOLD",
    "FRIDAY_CONTEXT7_URL",
    "CONTEXT7_API_KEY",
]


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    def test_defaults(self, tmp_path: Path):
        config = load_config(project_root=tmp_path)
        assert config.memory.capacity == 100
        assert config.cache.configured is False
        assert config.memory_dir == tmp_path / ".github" / "memory"
        assert config.search.min_results == 3

    def test_env_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("UPSTASH_REDIS_REST_URL", "https://example.upstash.io")
        monkeypatch.setenv("UPSTASH_REDIS_REST_TOKEN", "secret")
        monkeypatch.setenv("FRIDAY_MEMORY_CAPACITY", "250")

        config = load_config(project_root=tmp_path)
        assert config.cache.configured is True
        assert config.memory.capacity == 250

    def test_toml_file(self, tmp_path: Path):
        toml_path = tmp_path / "friday.toml"
        toml_path.write_text("""
log_level = "DEBUG"

[memory]
dir = "notes/memory"
capacity = 40

[cache]
timeout = 1.5
key_prefix = "acme"

[search]
min_results = 2
""")
        config = load_config(toml_path, project_root=tmp_path)
        assert config.memory.capacity == 40
        assert config.memory_dir == tmp_path / "notes" / "memory"
        assert config.cache.timeout == 1.5
        assert config.cache.key_prefix == "acme"
        assert config.search.min_results == 2
        assert config.log_level == "DEBUG"

    def test_env_overrides_dotenv_overrides_toml(self, tmp_path: Path, monkeypatch):
        (tmp_path / "friday.toml").write_text("[memory]\ncapacity = 10\n[cache]\ntimeout = 2\n")
        (tmp_path / ".env").write_text("FRIDAY_MEMORY_CAPACITY=20\nFRIDAY_CACHE_TIMEOUT=4\n")
        monkeypatch.setenv("FRIDAY_MEMORY_CAPACITY", "30")

        config = load_config(project_root=tmp_path)
        assert config.memory.capacity == 30  # env wins
        assert config.cache.timeout == 4.0  # .env beats toml

    def test_disabled_flag_selects_git_only(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("UPSTASH_REDIS_REST_URL", "https://example.upstash.io")
        monkeypatch.setenv("UPSTASH_REDIS_REST_TOKEN", "secret")
        monkeypatch.setenv("FRIDAY_REDIS_ENABLED", "false")

        config = load_config(project_root=tmp_path)
        assert config.cache.configured is False


class TestValidation:
    @pytest.mark.parametrize(
        "env, fragment",
        [
            ({"FRIDAY_MEMORY_CAPACITY": "0"}, "capacity"),
            ({"FRIDAY_MEMORY_CAPACITY": "lots"}, "integer"),
            ({"FRIDAY_CACHE_TIMEOUT": "120"}, "timeout"),
            ({"FRIDAY_REDIS_ENABLED": "maybe"}, "boolean"),
            ({"FRIDAY_SEARCH_THRESHOLD": "1.5"}, "sufficient_score"),
            ({"UPSTASH_REDIS_REST_URL": "https://x.upstash.io"}, "together"),
            ({"FRIDAY_KEY_PREFIX": "a:b"}, "key_prefix"),
            ({"FRIDAY_KEY_PREFIX": "team*"}, "key_prefix"),
            ({"FRIDAY_KEY_PREFIX": "team[1]"}, "key_prefix"),
        ],
    )
    def test_invalid_settings(self, tmp_path: Path, monkeypatch, env, fragment):
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        with pytest.raises(ConfigInvalidError, match=fragment):
            load_config(project_root=tmp_path)

    def test_collects_every_error(self):
        config = FridayConfig(
            memory=MemoryConfig(capacity=-1),
            cache=CacheConfig(url="ftp://nope", token="t", timeout=0),
        )
        with pytest.raises(ConfigInvalidError) as excinfo:
            validate_config(config)
        assert len(excinfo.value.errors) == 3

    def test_missing_credentials_are_valid(self):
        validate_config(FridayConfig())
