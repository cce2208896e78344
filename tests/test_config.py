"""Tests for configuration loading."""

import os
from pathlib import Path

import pytest

from autoledger.config import (
    DEFAULT_BALANCE_TTL,
    DEFAULT_DB_PATH,
    DEFAULT_TIMEOUT,
    CacheConfig,
    StoreConfig,
    find_config_file,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove AUTOLEDGER_* variables inherited from the environment."""
    for name in list(os.environ):
        if name.startswith("AUTOLEDGER_"):
            monkeypatch.delenv(name)


class TestStoreConfig:
    """Tests for StoreConfig."""

    def test_is_rest_true(self):
        """Test is_rest returns True for the rest backend."""
        config = StoreConfig(
            backend="rest", path=Path("x.db"), url="https://x", service_key="k"
        )
        assert config.is_rest is True

    def test_is_rest_false(self):
        """Test is_rest returns False for sqlite."""
        config = StoreConfig(backend="sqlite", path=Path("x.db"), url="", service_key="")
        assert config.is_rest is False


class TestCacheConfig:
    """Tests for CacheConfig."""

    def test_is_redis_with_url(self):
        """Test a URL selects the shared cache."""
        assert CacheConfig(url="redis://localhost:6379/0").is_redis is True

    def test_is_redis_without_url(self):
        """Test the in-process cache is used without a URL."""
        assert CacheConfig().is_redis is False

    def test_is_redis_disabled(self):
        """Test a disabled cache ignores its URL."""
        assert CacheConfig(enabled=False, url="redis://localhost").is_redis is False


class TestFindConfigFile:
    """Tests for find_config_file function."""

    def test_finds_existing_config(self, temp_dir, monkeypatch):
        """Test finding an existing config file."""
        config_path = temp_dir / "config.toml"
        config_path.write_text('[store]\nbackend = "sqlite"')
        monkeypatch.setattr("autoledger.config.DEFAULT_CONFIG_PATHS", [config_path])
        result = find_config_file()
        assert result == config_path

    def test_returns_none_when_no_config(self, temp_dir, monkeypatch):
        """Test returning None when no config file exists."""
        nonexistent = temp_dir / "nonexistent.toml"
        monkeypatch.setattr("autoledger.config.DEFAULT_CONFIG_PATHS", [nonexistent])
        result = find_config_file()
        assert result is None


class TestLoadConfig:
    """Tests for load_config function."""

    def test_defaults_without_file(self, temp_dir, monkeypatch):
        """Test defaults when no config file exists."""
        monkeypatch.setattr("autoledger.config.DEFAULT_CONFIG_PATHS", [temp_dir / "none.toml"])
        config = load_config()
        assert config.store.backend == "sqlite"
        assert config.store.path == Path(DEFAULT_DB_PATH)
        assert config.store.timeout == DEFAULT_TIMEOUT
        assert config.cache.enabled is True
        assert config.cache.balance_ttl == DEFAULT_BALANCE_TTL
        assert config.cache.rules_ttl == 0
        assert config.ledger.timezone == "America/Bogota"
        assert config.ledger.fallback_institution == "cash"
        assert config.ledger.fallback_category == "missing"

    def test_load_from_toml_file(self, temp_dir):
        """Test loading config from a TOML file."""
        config_path = temp_dir / "config.toml"
        config_path.write_text("""
[store]
backend = 'rest'
url = 'https://store.example.test/'
service_key = 'toml-key'
timeout = 3.5
max_retries = 4

[cache]
enabled = false
balance_ttl = 60
rules_ttl = 30

[ledger]
timezone = 'UTC'
fallback_institution = 'efectivo'
""")
        config = load_config(config_path)
        assert config.store.is_rest
        assert config.store.url == "https://store.example.test"
        assert config.store.service_key == "toml-key"
        assert config.store.timeout == 3.5
        assert config.store.max_retries == 4
        assert config.cache.enabled is False
        assert config.cache.balance_ttl == 60
        assert config.cache.rules_ttl == 30
        assert config.ledger.timezone == "UTC"
        assert config.ledger.fallback_institution == "efectivo"
        assert config.ledger.transfer_category == "transfer"

    def test_relative_db_path_resolved(self, temp_dir):
        """Test relative database paths resolve against the config file."""
        config_path = temp_dir / "config.toml"
        config_path.write_text("[store]\npath = 'custom.db'\n")
        config = load_config(config_path)
        assert config.store.path == temp_dir / "custom.db"

    def test_env_overrides_toml(self, temp_dir, monkeypatch):
        """Test environment variables take precedence over the file."""
        config_path = temp_dir / "config.toml"
        config_path.write_text("[store]\nservice_key = 'toml-key'\n[cache]\nenabled = true\n")
        monkeypatch.setenv("AUTOLEDGER_SERVICE_KEY", "env-key")
        monkeypatch.setenv("AUTOLEDGER_CACHE_ENABLED", "off")
        monkeypatch.setenv("AUTOLEDGER_FALLBACK_CATEGORY", "otros")
        config = load_config(config_path)
        assert config.store.service_key == "env-key"
        assert config.cache.enabled is False
        assert config.ledger.fallback_category == "otros"

    def test_limits_are_clamped(self, temp_dir, monkeypatch):
        """Test timeout and retry values are kept within bounds."""
        monkeypatch.setenv("AUTOLEDGER_STORE_TIMEOUT", "600")
        monkeypatch.setenv("AUTOLEDGER_STORE_RETRIES", "-3")
        config = load_config(temp_dir / "missing.toml")
        assert config.store.timeout == 60.0
        assert config.store.max_retries == 0

    def test_unknown_backend_rejected(self, temp_dir, monkeypatch):
        """Test an unknown backend name is an error."""
        monkeypatch.setenv("AUTOLEDGER_STORE_BACKEND", "mongo")
        with pytest.raises(ValueError, match="mongo"):
            load_config(temp_dir / "missing.toml")

    def test_cache_url_from_toml(self, temp_dir):
        """Test the cache URL is read from the cache section."""
        config_path = temp_dir / "config.toml"
        config_path.write_text("[cache]\nurl = 'redis://cache.example.test:6379/1'\n")
        config = load_config(config_path)
        assert config.cache.url == "redis://cache.example.test:6379/1"
        assert config.cache.is_redis

    def test_cache_url_from_env(self, temp_dir, monkeypatch):
        """Test AUTOLEDGER_CACHE_URL overrides the file."""
        config_path = temp_dir / "config.toml"
        config_path.write_text("[cache]\nurl = 'redis://toml:6379/0'\n")
        monkeypatch.setenv("AUTOLEDGER_CACHE_URL", "redis://env:6379/0")
        config = load_config(config_path)
        assert config.cache.url == "redis://env:6379/0"
