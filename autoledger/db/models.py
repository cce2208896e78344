"""Ledger models, rule condition/action variants and their dict codecs."""

import json
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union

from autoledger.errors import RuleConfigurationError


class TransactionType(Enum):
    """Kind of ledger movement."""

    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


class AccountType(Enum):
    """Type of account the money lives in."""

    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    CREDIT = "credit"
    CASH = "cash"
    INVESTMENT = "investment"
    CRYPTO = "crypto"


@dataclass
class Account:
    """Account whose balance is the authoritative running total."""

    id: str | None
    name: str
    account_type: AccountType
    institution: str | None
    last_four: str | None = None
    currency: str = "COP"
    balance: Decimal = Decimal("0")
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class Category:
    """Transaction category, looked up by slug."""

    id: str | None
    name: str
    slug: str
    category_type: TransactionType
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)


# Rule conditions


@dataclass(frozen=True)
class DescriptionContains:
    """Any of the keywords appears in the description (case-insensitive)."""

    keywords: tuple[str, ...]


@dataclass(frozen=True)
class DescriptionRegex:
    """Description matches the pattern (case-insensitive search)."""

    pattern: str


@dataclass(frozen=True)
class AmountBetween:
    """Amount lies in the inclusive range [low, high]."""

    low: Decimal
    high: Decimal


@dataclass(frozen=True)
class AmountEquals:
    amount: Decimal


@dataclass(frozen=True)
class FromAccount:
    account_id: str


@dataclass(frozen=True)
class ToAccount:
    account_id: str


@dataclass(frozen=True)
class CategoryIs:
    category_id: str


@dataclass(frozen=True)
class SourceIn:
    sources: frozenset[str]


Condition = Union[
    DescriptionContains,
    DescriptionRegex,
    AmountBetween,
    AmountEquals,
    FromAccount,
    ToAccount,
    CategoryIs,
    SourceIn,
]


# Rule actions


@dataclass(frozen=True)
class SetType:
    transaction_type: TransactionType


@dataclass(frozen=True)
class SetCategory:
    category_id: str


@dataclass(frozen=True)
class ClearCategory:
    """Explicitly remove the category from the draft."""


@dataclass(frozen=True)
class LinkToAccount:
    """Turn the draft into a transfer towards account_id with a fresh group id."""

    account_id: str


@dataclass(frozen=True)
class AddNote:
    note: str


Action = Union[SetType, SetCategory, ClearCategory, LinkToAccount, AddNote]


@dataclass
class AutomationRule:
    """User-defined rule; every matching active rule is applied in priority order."""

    id: str | None
    name: str
    conditions: list[Condition] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    priority: int = 0
    is_active: bool = True
    prompt_text: str | None = None
    match_phone: str | None = None
    transfer_to_account_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class TransactionDraft:
    """Transaction under construction, transformed in place before posting."""

    date: date
    time: time
    amount: Decimal
    description: str
    account_id: str
    transaction_type: TransactionType = TransactionType.EXPENSE
    notes: str | None = None
    category_id: str | None = None
    payment_method: str | None = None
    source: str = "manual"
    confidence: int | None = None
    transfer_to_account_id: str | None = None
    transfer_id: str | None = None
    raw_text: str | None = None
    parsed_data: dict[str, Any] = field(default_factory=dict)

    def append_note(self, note: str) -> None:
        """Append a note on a new line, keeping what is already there."""
        self.notes = f"{self.notes}\n{note}" if self.notes else note


@dataclass
class Transaction:
    """Persisted transaction record."""

    id: str
    date: date
    time: time
    amount: Decimal
    description: str
    account_id: str
    transaction_type: TransactionType
    notes: str | None = None
    category_id: str | None = None
    payment_method: str | None = None
    source: str = "manual"
    confidence: int | None = None
    transfer_to_account_id: str | None = None
    transfer_id: str | None = None
    is_reconciled: bool = False
    raw_text: str | None = None
    parsed_data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)


def _string_list(data: dict[str, Any], key: str) -> list[str]:
    value = data[key]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key} must be a list of strings, got {value!r}")
    return value


def _decimal(value: Any, key: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number, got {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{key} must be a number, got {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"{key} must be a finite number, got {value!r}")
    return amount


def conditions_from_dict(data: dict[str, Any] | None) -> list[Condition]:
    """Parse the stored JSON form of a rule's conditions.

    Keys follow the record store schema (``description_contains``,
    ``description_regex``, ``amount_between``, ``amount_equals``,
    ``from_account``, ``to_account``, ``category``, ``source``). Keys with a
    null value are treated as absent. An empty keyword or source list is kept
    and never matches.

    Raises ValueError for values of the wrong shape.
    """
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"conditions must be an object, got {data!r}")
    conditions: list[Condition] = []
    if data.get("description_contains") is not None:
        keywords = _string_list(data, "description_contains")
        conditions.append(DescriptionContains(tuple(keywords)))
    if data.get("description_regex"):
        conditions.append(DescriptionRegex(data["description_regex"]))
    if data.get("amount_between") is not None:
        bounds = data["amount_between"]
        if not isinstance(bounds, list) or len(bounds) != 2:
            raise ValueError(f"amount_between must be [low, high], got {bounds!r}")
        low, high = (_decimal(bound, "amount_between") for bound in bounds)
        conditions.append(AmountBetween(low, high))
    if data.get("amount_equals") is not None:
        conditions.append(AmountEquals(_decimal(data["amount_equals"], "amount_equals")))
    if data.get("from_account"):
        conditions.append(FromAccount(data["from_account"]))
    if data.get("to_account"):
        conditions.append(ToAccount(data["to_account"]))
    if data.get("category"):
        conditions.append(CategoryIs(data["category"]))
    if data.get("source") is not None:
        conditions.append(SourceIn(frozenset(_string_list(data, "source"))))
    return conditions


def conditions_to_dict(conditions: list[Condition]) -> dict[str, Any]:
    """Serialize conditions to the stored JSON form."""
    data: dict[str, Any] = {}
    for condition in conditions:
        if isinstance(condition, DescriptionContains):
            data["description_contains"] = list(condition.keywords)
        elif isinstance(condition, DescriptionRegex):
            data["description_regex"] = condition.pattern
        elif isinstance(condition, AmountBetween):
            data["amount_between"] = [str(condition.low), str(condition.high)]
        elif isinstance(condition, AmountEquals):
            data["amount_equals"] = str(condition.amount)
        elif isinstance(condition, FromAccount):
            data["from_account"] = condition.account_id
        elif isinstance(condition, ToAccount):
            data["to_account"] = condition.account_id
        elif isinstance(condition, CategoryIs):
            data["category"] = condition.category_id
        elif isinstance(condition, SourceIn):
            data["source"] = sorted(condition.sources)
        else:
            raise TypeError(f"Unknown condition: {condition!r}")
    return data


def actions_from_dict(data: dict[str, Any] | None) -> list[Action]:
    """Parse the stored JSON form of a rule's actions.

    ``set_category`` is three-state: a missing key leaves the category alone,
    null or an empty string clears it, any other value sets it.

    Raises ValueError for an unknown transaction type or a non-object.
    """
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"actions must be an object, got {data!r}")
    actions: list[Action] = []
    if data.get("set_type"):
        try:
            transaction_type = TransactionType(data["set_type"])
        except ValueError as e:
            raise ValueError(f"set_type must be one of expense, income, transfer: {e}") from e
        actions.append(SetType(transaction_type))
    if "set_category" in data:
        if data["set_category"]:
            actions.append(SetCategory(data["set_category"]))
        else:
            actions.append(ClearCategory())
    if data.get("link_to_account"):
        actions.append(LinkToAccount(data["link_to_account"]))
    if data.get("add_note"):
        actions.append(AddNote(data["add_note"]))
    return actions


def actions_to_dict(actions: list[Action]) -> dict[str, Any]:
    """Serialize actions to the stored JSON form."""
    data: dict[str, Any] = {}
    for action in actions:
        if isinstance(action, SetType):
            data["set_type"] = action.transaction_type.value
        elif isinstance(action, SetCategory):
            data["set_category"] = action.category_id
        elif isinstance(action, ClearCategory):
            data["set_category"] = None
        elif isinstance(action, LinkToAccount):
            data["link_to_account"] = action.account_id
        elif isinstance(action, AddNote):
            data["add_note"] = action.note
        else:
            raise TypeError(f"Unknown action: {action!r}")
    return data


def decode_rule_logic(
    rule_id: str | None,
    rule_name: str,
    conditions: dict[str, Any] | str | None,
    actions: dict[str, Any] | str | None,
) -> tuple[list[Condition], list[Action]]:
    """Decode a stored rule's conditions and actions, given as objects or JSON text.

    Raises RuleConfigurationError naming the rule when either is malformed.
    """
    try:
        if isinstance(conditions, str):
            conditions = json.loads(conditions)
        if isinstance(actions, str):
            actions = json.loads(actions)
        return conditions_from_dict(conditions), actions_from_dict(actions)
    except ValueError as e:
        raise RuleConfigurationError(
            f"Rule '{rule_name}' is malformed: {e}", rule_id=rule_id, rule_name=rule_name
        ) from e
