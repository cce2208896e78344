"""Tests for application wiring."""

from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from autoledger.api import RestStoreClient
from autoledger.app import AutoLedgerApp
from autoledger.cache import MemoryCache, NullCache, RedisCache
from autoledger.config import CacheConfig
from autoledger.db.models import (
    Account,
    AccountType,
    AutomationRule,
    Category,
    TransactionType,
)
from autoledger.db.repository import Repository
from autoledger.pipeline import ExtractedExpense


def make_expense() -> ExtractedExpense:
    return ExtractedExpense(
        amount=Decimal("1500"),
        description="Tinto",
        category="food",
        bank="cash",
        payment_type="cash",
        source="manual",
        confidence=80,
    )


class TestAutoLedgerApp:
    """Tests for AutoLedgerApp."""

    def test_pipeline_requires_start(self, config):
        """Test the pipeline is unavailable before start."""
        app = AutoLedgerApp(AsyncMock(), config=config)
        with pytest.raises(RuntimeError):
            app.pipeline

    async def test_sqlite_lifecycle(self, config):
        """Test start opens the SQLite store and stop closes it."""
        app = AutoLedgerApp(AsyncMock(), config=config)
        await app.start()
        assert isinstance(app.store, Repository)
        assert app.pipeline is not None
        await app.stop()
        assert app.store is None
        assert config.store.path.exists()

    async def test_rest_lifecycle(self, config, rest_store_config):
        """Test the rest backend opens an HTTP client."""
        rest_config = replace(config, store=rest_store_config)
        async with AutoLedgerApp(AsyncMock(), config=rest_config) as app:
            assert isinstance(app.store, RestStoreClient)
        assert app.store is None

    async def test_process_message(self, config):
        """Test a message flows through the wired pipeline."""
        cache = MemoryCache()
        extractor = AsyncMock()
        extractor.extract.return_value = make_expense()
        async with AutoLedgerApp(extractor, config=config, cache=cache) as app:
            await app.store.save_account(
                Account(
                    id="CASH",
                    name="Efectivo",
                    account_type=AccountType.CASH,
                    institution="cash",
                    balance=Decimal("10000"),
                )
            )
            await app.store.save_category(
                Category(id="cat-food", name="Food", slug="food",
                         category_type=TransactionType.EXPENSE)
            )
            result = await app.pipeline.process("1500 tinto")
            assert result.primary.account_id == "CASH"
            assert result.primary.category_id == "cat-food"
            assert await app.pipeline.current_balance("CASH") == Decimal("8500")
        assert len(cache) == 1

    async def test_rules_cache_wired(self, config):
        """Test a positive rules ttl serves rules from a snapshot."""
        cached_config = replace(config, cache=CacheConfig(rules_ttl=60))
        async with AutoLedgerApp(AsyncMock(), config=cached_config) as app:
            engine = app.pipeline._engine
            assert await engine.get_active_rules() == []
            await app.store.save_rule(AutomationRule(id="r1", name="new"))
            assert await engine.get_active_rules() == []

    async def test_memory_cache_by_default(self, config):
        """Test an enabled cache without a URL is in-process."""
        async with AutoLedgerApp(AsyncMock(), config=config) as app:
            assert isinstance(app.cache, MemoryCache)

    async def test_disabled_cache(self, config):
        """Test a disabled cache never stores balances."""
        disabled = replace(config, cache=CacheConfig(enabled=False))
        async with AutoLedgerApp(AsyncMock(), config=disabled) as app:
            assert isinstance(app.cache, NullCache)

    async def test_redis_cache_from_url(self, config, monkeypatch):
        """Test a cache URL wires a Redis cache that is closed on stop."""
        client = AsyncMock()
        urls = []

        def from_url(url, **kwargs):
            urls.append((url, kwargs))
            return client

        monkeypatch.setattr("autoledger.cache.redis.from_url", from_url)
        redis_config = replace(config, cache=CacheConfig(url="redis://cache.example.test:6379/0"))
        async with AutoLedgerApp(AsyncMock(), config=redis_config) as app:
            assert isinstance(app.cache, RedisCache)
        assert urls == [("redis://cache.example.test:6379/0", {"decode_responses": True})]
        client.aclose.assert_awaited_once()
        assert app.cache is None

    async def test_injected_cache_left_open(self, config):
        """Test a caller's cache wins over configuration and is not closed."""
        cache = RedisCache(AsyncMock())
        redis_config = replace(config, cache=CacheConfig(url="redis://cache.example.test"))
        async with AutoLedgerApp(AsyncMock(), config=redis_config, cache=cache) as app:
            assert app.cache is cache
        cache._client.aclose.assert_not_awaited()
