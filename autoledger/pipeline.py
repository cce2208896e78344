"""Message processing: extract, build draft, apply rules, expand transfers, post."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from autoledger.config import LedgerConfig
from autoledger.db import RecordStore
from autoledger.db.models import Transaction, TransactionDraft, TransactionType
from autoledger.errors import (
    ExtractionError,
    ExtractionTimeoutError,
    PartiallyAppliedError,
    PartiallyPostedError,
    RateLimitedError,
    ResolutionError,
    RuleConfigurationError,
)
from autoledger.formatting import current_local_times, parse_bank_date, parse_bank_time
from autoledger.posting import PostingService
from autoledger.rules import RuleEngine, build_transfer_prompt_section
from autoledger.transfers import TransferInfo, TransferProcessor, is_transfer_message

log = logging.getLogger("autoledger.pipeline")


@dataclass
class ExtractedExpense:
    """Structured candidate returned by the extractor."""

    amount: Decimal
    description: str
    category: str
    bank: str
    payment_type: str
    source: str
    confidence: int
    original_date: str | None = None
    original_time: str | None = None
    last_four: str | None = None
    account_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form kept on the draft for audit."""
        return {
            "amount": float(self.amount),
            "description": self.description,
            "category": self.category,
            "bank": self.bank,
            "payment_type": self.payment_type,
            "source": self.source,
            "confidence": self.confidence,
            "original_date": self.original_date,
            "original_time": self.original_time,
            "last_four": self.last_four,
            "account_type": self.account_type,
        }


class Extractor(Protocol):
    """Turns raw text into an ExtractedExpense, guided by prompt fragments."""

    async def extract(self, text: str, prompt_fragments: list[str]) -> ExtractedExpense: ...


def validate_expense(expense: ExtractedExpense) -> None:
    """Reject extractor output that cannot become a transaction."""
    try:
        amount = Decimal(str(expense.amount))
    except InvalidOperation as e:
        raise ExtractionError(f"Invalid amount: {expense.amount}") from e
    if not amount.is_finite() or amount <= 0:
        raise ExtractionError(f"Invalid amount: {expense.amount}")
    if not expense.description or not expense.description.strip():
        raise ExtractionError("Missing description")
    if not expense.category or not expense.category.strip():
        raise ExtractionError("Missing category")


@dataclass
class PipelineResult:
    """Posted transactions for one message, plus transfer details when relevant."""

    transactions: list[Transaction]
    expense: ExtractedExpense
    account_id: str
    transfer_info: TransferInfo | None = None

    @property
    def primary(self) -> Transaction:
        return self.transactions[0]


class ExpensePipeline:
    """Runs one inbound message through extraction, rules, transfers and posting."""

    def __init__(
        self,
        store: RecordStore,
        extractor: Extractor,
        engine: RuleEngine,
        transfers: TransferProcessor,
        posting: PostingService,
        ledger_config: LedgerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._extractor = extractor
        self._engine = engine
        self._transfers = transfers
        self._posting = posting
        self._ledger_config = ledger_config if ledger_config is not None else LedgerConfig()
        self._clock = clock

    async def current_balance(self, account_id: str) -> Decimal:
        """Balance for confirmation messages, read through the cache."""
        return await self._posting.get_balance(account_id)

    async def build_prompt_fragments(self) -> list[str]:
        """Rule prompt texts plus the transfer rule summary, fetched concurrently."""
        active_prompts, transfer_rules = await asyncio.gather(
            self._engine.get_active_prompt_fragments(),
            self._engine.get_transfer_rules(),
        )
        fragments = [*active_prompts, build_transfer_prompt_section(transfer_rules)]
        return [f for f in fragments if f]

    async def resolve_account(self, expense: ExtractedExpense) -> str:
        """Find the account the money left from, falling back to cash."""
        account = await self._store.get_account(
            expense.bank, expense.last_four, expense.account_type
        )
        if account is None:
            fallback = self._ledger_config.fallback_institution
            log.info(f"No account for {expense.bank}/{expense.last_four}, using {fallback}")
            account = await self._store.get_account(fallback)
        if account is None:
            raise ResolutionError("Could not determine account - no cash fallback found")
        return account.id

    async def resolve_category_id(self, slug: str) -> str | None:
        category = await self._store.get_category(slug)
        return category.id if category else None

    def resolve_datetime(self, expense: ExtractedExpense) -> tuple[date, time]:
        """Use the bank-reported date and time when both are present."""
        if expense.original_date and expense.original_time:
            try:
                return parse_bank_date(expense.original_date), parse_bank_time(
                    expense.original_time
                )
            except ValueError:
                log.warning(
                    f"Unparseable bank date/time {expense.original_date} "
                    f"{expense.original_time}, using current time"
                )
        now = self._clock() if self._clock else None
        return current_local_times(self._ledger_config.timezone, now)

    async def build_draft(
        self, text: str, expense: ExtractedExpense, source: str | None = None
    ) -> TransactionDraft:
        """Build the initial expense draft for a validated extraction."""
        account_id = await self.resolve_account(expense)
        category_id = await self.resolve_category_id(expense.category)
        draft_date, draft_time = self.resolve_datetime(expense)
        return TransactionDraft(
            date=draft_date,
            time=draft_time,
            amount=Decimal(str(expense.amount)),
            description=expense.description.strip(),
            account_id=account_id,
            transaction_type=TransactionType.EXPENSE,
            category_id=category_id,
            payment_method=expense.payment_type,
            source=source or expense.source,
            confidence=expense.confidence,
            raw_text=text,
            parsed_data=expense.to_dict(),
        )

    async def process(self, text: str, source: str | None = None) -> PipelineResult:
        """Process one message end to end and return what was posted.

        Rules are applied to every resulting draft before any of them is
        posted, so a rule configuration error never leaves half a transfer.
        Both legs of a transfer are created before either balance moves.
        """
        fragments = await self.build_prompt_fragments()
        expense = await self._extractor.extract(text, fragments)
        validate_expense(expense)
        draft = await self.build_draft(text, expense, source)

        transfer_info = None
        drafts = [draft]
        if is_transfer_message(text, expense.category):
            fallback_category_id = await self.resolve_category_id(
                self._ledger_config.fallback_category
            )
            result = await self._transfers.process(draft, text, fallback_category_id)
            drafts = result.drafts
            transfer_info = result.transfer_info

        finals = [await self._engine.apply(d) for d in drafts]
        transactions = await self._posting.post_all(finals)
        if transfer_info and transfer_info.is_internal_transfer:
            log.info(f"Internal transfer created: {transfer_info.rule_name}")
        return PipelineResult(
            transactions=transactions,
            expense=expense,
            account_id=draft.account_id,
            transfer_info=transfer_info,
        )


def user_message(error: Exception) -> str:
    """Translate an error into guidance a front-end can show the user."""
    if isinstance(error, RateLimitedError):
        return "⏳ Service is busy. Please try again in 30 seconds."
    if isinstance(error, (ExtractionTimeoutError, asyncio.TimeoutError)):
        return "⏱️ Request timed out. Please try again."
    if isinstance(error, ExtractionError):
        return (
            "❌ Could not understand message. Try format:\n"
            "• '20000 in rappi'\n"
            "• '50k for lunch'\n"
            "• Or forward the bank SMS"
        )
    if isinstance(error, ResolutionError):
        return "❌ Could not determine the account. Configure a cash account and try again."
    if isinstance(error, RuleConfigurationError):
        return (
            f"⚙️ Automation rule '{error.rule_name}' is misconfigured. "
            "Please fix it and retry."
        )
    if isinstance(error, PartiallyPostedError):
        return (
            "⚠️ Transfer only partially saved; balances were not changed.\n"
            f"Transfer: {error.transfer_id}\n"
            f"Saved records: {', '.join(error.posted_transaction_ids)}\n"
            "Do not resend this message. Remove or complete these records manually."
        )
    if isinstance(error, PartiallyAppliedError):
        return (
            "⚠️ Transaction saved but the balance could not be updated.\n"
            f"Transaction: {error.transaction_id}\n"
            f"Account: {error.account_id}\n"
            "Please reconcile this account manually."
        )
    return "❌ Could not process expense. Please try again later."
