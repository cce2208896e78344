"""Application wiring for the autoledger posting engine."""

from autoledger.api import RestStoreClient
from autoledger.cache import BalanceCache, MemoryCache, NullCache, RedisCache
from autoledger.config import Config, load_config
from autoledger.db import RecordStore
from autoledger.db.repository import Repository
from autoledger.pipeline import ExpensePipeline, Extractor
from autoledger.posting import PostingService, StoreBalanceLedger
from autoledger.rules import CachedRuleSource, LiveRuleSource, RuleEngine, RuleSource
from autoledger.transfers import TransferProcessor


class AutoLedgerApp:
    """Owns the store connection and builds the processing components.

    Use as an async context manager; one instance serves one invocation.
    """

    def __init__(
        self,
        extractor: Extractor,
        config: Config | None = None,
        cache: BalanceCache | None = None,
    ):
        self._config = config if config is not None else load_config()
        self._extractor = extractor
        self._injected_cache = cache
        self._cache: BalanceCache | None = None
        self._store: Repository | RestStoreClient | None = None
        self._pipeline: ExpensePipeline | None = None

    @property
    def config(self) -> Config:
        """Get application configuration."""
        return self._config

    @property
    def store(self) -> RecordStore | None:
        """Get the record store."""
        return self._store

    @property
    def cache(self) -> BalanceCache | None:
        """Get the balance cache in use."""
        return self._cache

    @property
    def pipeline(self) -> ExpensePipeline:
        """Get the message pipeline."""
        if self._pipeline is None:
            raise RuntimeError("AutoLedgerApp is not started")
        return self._pipeline

    async def __aenter__(self) -> "AutoLedgerApp":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """Open the store and cache and build the pipeline."""
        if self._config.store.is_rest:
            client = RestStoreClient(self._config.store)
            await client.__aenter__()
            self._store = client
        else:
            repo = Repository(self._config.store.path)
            await repo.connect()
            self._store = repo
        self._cache = self._open_cache()
        self._pipeline = self._build_pipeline(self._store, self._cache)

    async def stop(self) -> None:
        """Close the store, and the cache if this app opened it."""
        if isinstance(self._store, RestStoreClient):
            await self._store.__aexit__(None, None, None)
        elif isinstance(self._store, Repository):
            await self._store.close()
        if self._cache is not self._injected_cache and isinstance(self._cache, RedisCache):
            await self._cache.close()
        self._store = None
        self._cache = None
        self._pipeline = None

    def _open_cache(self) -> BalanceCache:
        if self._injected_cache is not None:
            return self._injected_cache
        cache_config = self._config.cache
        if cache_config.is_redis:
            return RedisCache.from_url(cache_config.url)
        if cache_config.enabled:
            return MemoryCache()
        return NullCache()

    def _build_pipeline(self, store: RecordStore, cache: BalanceCache) -> ExpensePipeline:
        cache_config = self._config.cache
        rule_source: RuleSource = LiveRuleSource(store)
        if cache_config.rules_ttl > 0:
            rule_source = CachedRuleSource(rule_source, cache_config.rules_ttl)
        engine = RuleEngine(rule_source)
        transfers = TransferProcessor(
            engine, store, transfer_category_slug=self._config.ledger.transfer_category
        )
        posting = PostingService(
            store, StoreBalanceLedger(store), cache, balance_ttl=cache_config.balance_ttl
        )
        return ExpensePipeline(
            store,
            self._extractor,
            engine,
            transfers,
            posting,
            ledger_config=self._config.ledger,
        )
