"""Posting of drafts: persistence, balance mutation and cache invalidation."""

import asyncio
import logging
from decimal import Decimal
from typing import Protocol

from autoledger.cache import DEFAULT_TTL_SECONDS, BalanceCache, NullCache, balance_key
from autoledger.db import RecordStore
from autoledger.db.models import Transaction, TransactionDraft, TransactionType
from autoledger.errors import PartiallyAppliedError, PartiallyPostedError, PersistenceError

log = logging.getLogger("autoledger.posting")


class BalanceLedger(Protocol):
    """Applies a signed delta to an account balance and returns the new balance."""

    async def apply(self, account_id: str, delta: Decimal) -> Decimal: ...


class StoreBalanceLedger:
    """Reads the balance from the store, then writes balance + delta back.

    The read and the write are separate requests with no lock or version
    check between them: two concurrent postings against the same account can
    both read the same balance and one update is lost.
    """

    def __init__(self, store: RecordStore):
        self._store = store

    async def apply(self, account_id: str, delta: Decimal) -> Decimal:
        current = await self._store.get_account_balance(account_id)
        new_balance = current + delta
        await self._store.update_account_balance(account_id, new_balance)
        return new_balance


class InMemoryBalanceLedger:
    """Lock-guarded balances held in memory."""

    def __init__(self, balances: dict[str, Decimal] | None = None):
        self._balances = dict(balances) if balances is not None else {}
        self._lock = asyncio.Lock()

    async def apply(self, account_id: str, delta: Decimal) -> Decimal:
        async with self._lock:
            if account_id not in self._balances:
                raise KeyError(account_id)
            self._balances[account_id] += delta
            return self._balances[account_id]

    def balance(self, account_id: str) -> Decimal:
        return self._balances[account_id]


def balance_deltas(draft: TransactionDraft) -> list[tuple[str, Decimal]]:
    """Balance changes implied by a draft, in the order they are applied.

    A transfer without a destination is the incoming mirror of a paired
    transfer; the outgoing leg already moved the money, so it changes nothing.
    """
    if draft.transaction_type == TransactionType.EXPENSE:
        return [(draft.account_id, -draft.amount)]
    if draft.transaction_type == TransactionType.INCOME:
        return [(draft.account_id, draft.amount)]
    if draft.transfer_to_account_id:
        return [
            (draft.account_id, -draft.amount),
            (draft.transfer_to_account_id, draft.amount),
        ]
    return []


class PostingService:
    """Persists drafts and keeps account balances in step."""

    def __init__(
        self,
        store: RecordStore,
        ledger: BalanceLedger | None = None,
        cache: BalanceCache | None = None,
        balance_ttl: int = DEFAULT_TTL_SECONDS,
    ):
        self._store = store
        self._ledger = ledger if ledger is not None else StoreBalanceLedger(store)
        self._cache = cache if cache is not None else NullCache()
        self._balance_ttl = balance_ttl

    async def post(self, draft: TransactionDraft) -> Transaction:
        """Persist a draft, then update the balances it touches.

        Raises PersistenceError if the create fails (nothing is mutated) and
        PartiallyAppliedError if a balance update fails after the create.
        Neither step is retried.
        """
        transaction = await self._create(draft)
        await self._apply_balances(draft, transaction)
        return transaction

    async def post_all(self, drafts: list[TransactionDraft]) -> list[Transaction]:
        """Persist the legs of one message, then update balances.

        Every record is created before any balance moves. If a create fails
        after earlier legs were saved, PartiallyPostedError names the saved
        records and no balance has changed.
        """
        transactions: list[Transaction] = []
        for draft in drafts:
            try:
                transactions.append(await self._create(draft))
            except PersistenceError as e:
                if not transactions:
                    raise
                posted_ids = [t.id for t in transactions]
                log.error(
                    f"Transfer {draft.transfer_id} partially posted: saved {posted_ids}, "
                    f"no balance changed"
                )
                raise PartiallyPostedError(
                    f"Transfer {draft.transfer_id} saved {len(posted_ids)} of "
                    f"{len(drafts)} records; balances were not updated",
                    transfer_id=draft.transfer_id,
                    posted_transaction_ids=posted_ids,
                ) from e
        for draft, transaction in zip(drafts, transactions):
            await self._apply_balances(draft, transaction)
        return transactions

    async def _create(self, draft: TransactionDraft) -> Transaction:
        try:
            transaction = await self._store.create_transaction(draft)
        except Exception as e:
            log.error(f"Failed to persist transaction for account {draft.account_id}: {e}")
            raise PersistenceError(f"Failed to create transaction: {e}") from e
        log.info(f"Persisted transaction {transaction.id} ({transaction.transaction_type.value})")
        return transaction

    async def _apply_balances(self, draft: TransactionDraft, transaction: Transaction) -> None:
        applied: list[str] = []
        for account_id, delta in balance_deltas(draft):
            try:
                new_balance = await self._ledger.apply(account_id, delta)
            except Exception as e:
                log.error(
                    f"Transaction {transaction.id} persisted but balance update failed "
                    f"for account {account_id}: {e}"
                )
                await self._invalidate(applied)
                raise PartiallyAppliedError(
                    f"Transaction {transaction.id} saved but balance of account "
                    f"{account_id} was not updated",
                    transaction_id=transaction.id,
                    account_id=account_id,
                    applied_account_ids=list(applied),
                ) from e
            applied.append(account_id)
            log.info(f"Account {account_id} balance {delta:+} -> {new_balance}")
        await self._invalidate(applied)

    async def get_balance(self, account_id: str) -> Decimal:
        """Read an account balance through the cache."""
        key = balance_key(account_id)
        try:
            cached = await self._cache.get(key)
        except Exception as e:
            log.warning(f"Cache get failed for {key}: {e}")
            cached = None
        if cached is not None:
            return Decimal(cached)
        balance = await self._store.get_account_balance(account_id)
        try:
            await self._cache.set(key, str(balance), self._balance_ttl)
        except Exception as e:
            log.warning(f"Cache set failed for {key}: {e}")
        return balance

    async def _invalidate(self, account_ids: list[str]) -> None:
        for account_id in account_ids:
            key = balance_key(account_id)
            try:
                await self._cache.delete(key)
            except Exception as e:
                log.warning(f"Cache invalidation failed for {key}: {e}")
