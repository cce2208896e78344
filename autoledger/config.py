"""Configuration loading from TOML files with environment variable fallbacks."""

import os
from dataclasses import dataclass
from pathlib import Path

import tomli

DEFAULT_CONFIG_PATHS = [
    Path("config.toml"),
    Path.home() / ".config" / "autoledger" / "config.toml",
]

DEFAULT_DB_PATH = "autoledger.db"
DEFAULT_TIMEOUT = 10.0
MAX_TIMEOUT = 60.0
DEFAULT_MAX_RETRIES = 2
MAX_RETRIES_LIMIT = 5
DEFAULT_BALANCE_TTL = 86400
DEFAULT_TIMEZONE = "America/Bogota"


@dataclass(frozen=True)
class StoreConfig:
    """Record store configuration."""

    backend: str
    path: Path
    url: str
    service_key: str
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES

    @property
    def is_rest(self) -> bool:
        """Check if the HTTP record store is selected."""
        return self.backend == "rest"


@dataclass(frozen=True)
class CacheConfig:
    """Balance and rule cache configuration."""

    enabled: bool = True
    url: str = ""
    balance_ttl: int = DEFAULT_BALANCE_TTL
    rules_ttl: int = 0

    @property
    def is_redis(self) -> bool:
        """Check if a shared Redis cache is configured."""
        return self.enabled and bool(self.url)


@dataclass(frozen=True)
class LedgerConfig:
    """Defaults used when building and resolving transactions."""

    timezone: str = DEFAULT_TIMEZONE
    currency: str = "COP"
    fallback_institution: str = "cash"
    transfer_category: str = "transfer"
    fallback_category: str = "missing"


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    store: StoreConfig
    cache: CacheConfig
    ledger: LedgerConfig


def find_config_file() -> Path | None:
    """Find the first existing config file from default paths."""
    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            return path
    return None


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML file with environment variable fallbacks."""
    path = config_path or find_config_file()
    toml_data = _load_toml_data(path)
    return _build_config(toml_data, path)


def _load_toml_data(config_path: Path | None) -> dict:
    """Load TOML data from file if it exists."""
    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            return tomli.load(f)
    return {}


def _build_config(toml_data: dict, config_path: Path | None) -> Config:
    """Build Config object from TOML data and environment variables."""
    store_config = _build_store_config(toml_data.get("store", {}), config_path)
    cache_config = _build_cache_config(toml_data.get("cache", {}))
    ledger_config = _build_ledger_config(toml_data.get("ledger", {}))
    return Config(store=store_config, cache=cache_config, ledger=ledger_config)


def _build_store_config(store_data: dict, config_path: Path | None) -> StoreConfig:
    """Build store config, resolving relative paths against config file location."""
    backend = os.environ.get("AUTOLEDGER_STORE_BACKEND", store_data.get("backend", "sqlite"))
    if backend not in ("sqlite", "rest"):
        raise ValueError(f"Unknown store backend: {backend}")
    db_path = Path(os.environ.get("AUTOLEDGER_DB_PATH", store_data.get("path", DEFAULT_DB_PATH)))
    if not db_path.is_absolute() and config_path:
        db_path = config_path.parent / db_path
    url = os.environ.get("AUTOLEDGER_STORE_URL", store_data.get("url", ""))
    service_key = os.environ.get("AUTOLEDGER_SERVICE_KEY", store_data.get("service_key", ""))
    timeout = float(
        os.environ.get("AUTOLEDGER_STORE_TIMEOUT", store_data.get("timeout", DEFAULT_TIMEOUT))
    )
    max_retries = int(
        os.environ.get(
            "AUTOLEDGER_STORE_RETRIES", store_data.get("max_retries", DEFAULT_MAX_RETRIES)
        )
    )
    return StoreConfig(
        backend=backend,
        path=db_path,
        url=url.rstrip("/"),
        service_key=service_key,
        timeout=min(max(timeout, 0.1), MAX_TIMEOUT),
        max_retries=min(max(max_retries, 0), MAX_RETRIES_LIMIT),
    )


def _build_cache_config(cache_data: dict) -> CacheConfig:
    """Build cache config from TOML data and env vars."""
    enabled_env = os.environ.get("AUTOLEDGER_CACHE_ENABLED")
    if enabled_env is not None:
        enabled = enabled_env.lower() in ("1", "true", "yes", "on")
    else:
        enabled = bool(cache_data.get("enabled", True))
    balance_ttl = int(
        os.environ.get("AUTOLEDGER_BALANCE_TTL", cache_data.get("balance_ttl", DEFAULT_BALANCE_TTL))
    )
    rules_ttl = int(os.environ.get("AUTOLEDGER_RULES_TTL", cache_data.get("rules_ttl", 0)))
    url = os.environ.get("AUTOLEDGER_CACHE_URL", cache_data.get("url", ""))
    return CacheConfig(enabled=enabled, url=url, balance_ttl=balance_ttl, rules_ttl=rules_ttl)


def _build_ledger_config(ledger_data: dict) -> LedgerConfig:
    """Build ledger defaults from TOML data and env vars."""
    return LedgerConfig(
        timezone=os.environ.get(
            "AUTOLEDGER_TIMEZONE", ledger_data.get("timezone", DEFAULT_TIMEZONE)
        ),
        currency=os.environ.get("AUTOLEDGER_CURRENCY", ledger_data.get("currency", "COP")),
        fallback_institution=os.environ.get(
            "AUTOLEDGER_FALLBACK_INSTITUTION", ledger_data.get("fallback_institution", "cash")
        ),
        transfer_category=os.environ.get(
            "AUTOLEDGER_TRANSFER_CATEGORY", ledger_data.get("transfer_category", "transfer")
        ),
        fallback_category=os.environ.get(
            "AUTOLEDGER_FALLBACK_CATEGORY", ledger_data.get("fallback_category", "missing")
        ),
    )
