"""Shared test fixtures."""

import tempfile
from decimal import Decimal
from pathlib import Path

import pytest

from autoledger.config import CacheConfig, Config, LedgerConfig, StoreConfig
from autoledger.db.models import Account, AccountType, Category, TransactionType
from autoledger.db.repository import Repository


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir):
    """Create a temporary database path."""
    return temp_dir / "test.db"


@pytest.fixture
def store_config(temp_db_path):
    """Create a test SQLite store config."""
    return StoreConfig(
        backend="sqlite",
        path=temp_db_path,
        url="",
        service_key="",
    )


@pytest.fixture
def rest_store_config():
    """Create a test REST store config."""
    return StoreConfig(
        backend="rest",
        path=Path("unused.db"),
        url="https://store.example.test",
        service_key="service-key",
        timeout=5.0,
        max_retries=2,
    )


@pytest.fixture
def config(store_config):
    """Create a test config."""
    return Config(store=store_config, cache=CacheConfig(), ledger=LedgerConfig())


@pytest.fixture
async def repository(temp_db_path):
    """Create a repository with a temporary database."""
    repo = Repository(temp_db_path)
    await repo.connect()
    yield repo
    await repo.close()


@pytest.fixture
async def seeded_repository(repository):
    """Repository with two bank accounts, a cash account and base categories."""
    await repository.save_account(
        Account(
            id="A1",
            name="Bancolombia Ahorros",
            account_type=AccountType.SAVINGS,
            institution="bancolombia",
            last_four="2651",
            balance=Decimal("100000"),
        )
    )
    await repository.save_account(
        Account(
            id="A2",
            name="Nequi",
            account_type=AccountType.SAVINGS,
            institution="nequi",
            balance=Decimal("5000"),
        )
    )
    await repository.save_account(
        Account(
            id="CASH",
            name="Efectivo",
            account_type=AccountType.CASH,
            institution="cash",
            balance=Decimal("50000"),
        )
    )
    for slug, category_type in [
        ("transfer", TransactionType.TRANSFER),
        ("missing", TransactionType.EXPENSE),
        ("food", TransactionType.EXPENSE),
        ("salary", TransactionType.INCOME),
    ]:
        await repository.save_category(
            Category(id=f"cat-{slug}", name=slug.title(), slug=slug, category_type=category_type)
        )
    return repository
