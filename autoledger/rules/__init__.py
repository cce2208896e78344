"""Rules engine for transaction automation.

Every active rule whose conditions match is applied, in descending priority
order (oldest first on ties). Later rules see the output of earlier ones, so
when two matching rules set the same field the lower-priority rule wins
because it runs last.
"""

import asyncio
import logging
import re
import time
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from autoledger.db import RecordStore
from autoledger.db.models import (
    Action,
    AddNote,
    AmountBetween,
    AmountEquals,
    AutomationRule,
    CategoryIs,
    ClearCategory,
    Condition,
    DescriptionContains,
    DescriptionRegex,
    FromAccount,
    LinkToAccount,
    SetCategory,
    SetType,
    SourceIn,
    ToAccount,
    TransactionDraft,
    TransactionType,
)
from autoledger.errors import RuleConfigurationError

log = logging.getLogger("autoledger.rules")

IdGenerator = Callable[[], str]


def new_transfer_id() -> str:
    """Generate a random transfer-group identifier."""
    return str(uuid.uuid4())


class ConditionMatcher:
    """Evaluates a rule's conditions against a draft."""

    def __init__(self) -> None:
        self._compiled_patterns: dict[str, re.Pattern] = {}

    def matches(self, draft: TransactionDraft, conditions: list[Condition]) -> bool:
        """Return True iff every condition holds. An empty list always matches.

        Raises re.error for an invalid regular expression.
        """
        return all(self._check(draft, condition) for condition in conditions)

    def _check(self, draft: TransactionDraft, condition: Condition) -> bool:
        if isinstance(condition, DescriptionContains):
            description = draft.description.lower()
            return any(keyword.lower() in description for keyword in condition.keywords)
        if isinstance(condition, DescriptionRegex):
            return self._compile(condition.pattern).search(draft.description) is not None
        if isinstance(condition, AmountBetween):
            return condition.low <= draft.amount <= condition.high
        if isinstance(condition, AmountEquals):
            return draft.amount == condition.amount
        if isinstance(condition, FromAccount):
            return draft.account_id == condition.account_id
        if isinstance(condition, ToAccount):
            return draft.transfer_to_account_id == condition.account_id
        if isinstance(condition, CategoryIs):
            return draft.category_id == condition.category_id
        if isinstance(condition, SourceIn):
            return draft.source in condition.sources
        raise TypeError(f"Unknown condition: {condition!r}")

    def _compile(self, pattern: str) -> re.Pattern:
        """Compile and memoize a case-insensitive pattern."""
        compiled = self._compiled_patterns.get(pattern)
        if compiled is None:
            compiled = re.compile(pattern, re.IGNORECASE)
            self._compiled_patterns[pattern] = compiled
        return compiled


class ActionApplier:
    """Applies a rule's actions to a copy of a draft.

    Applying two LinkToAccount actions to the same draft leaves the last
    destination and a fresh transfer id; earlier links are silently replaced.
    """

    def __init__(self, id_generator: IdGenerator | None = None):
        self._id_generator = id_generator if id_generator is not None else new_transfer_id

    def apply(self, draft: TransactionDraft, actions: list[Action]) -> TransactionDraft:
        """Return a new draft with the actions applied in order."""
        result = replace(draft, parsed_data=dict(draft.parsed_data))
        for action in actions:
            if isinstance(action, SetType):
                result.transaction_type = action.transaction_type
            elif isinstance(action, SetCategory):
                result.category_id = action.category_id
            elif isinstance(action, ClearCategory):
                result.category_id = None
            elif isinstance(action, LinkToAccount):
                result.transaction_type = TransactionType.TRANSFER
                result.transfer_to_account_id = action.account_id
                result.transfer_id = self._id_generator()
            elif isinstance(action, AddNote):
                result.append_note(action.note)
            else:
                raise TypeError(f"Unknown action: {action!r}")
        return result


class RuleSource(Protocol):
    """Provides the active rule set."""

    async def active_rules(self) -> list[AutomationRule]: ...


class LiveRuleSource:
    """Reads the active rules from the record store on every call."""

    def __init__(self, store: RecordStore):
        self._store = store

    async def active_rules(self) -> list[AutomationRule]:
        return await self._store.get_active_rules()


class CachedRuleSource:
    """Read-through cache in front of another rule source."""

    def __init__(
        self,
        source: RuleSource,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._rules: list[AutomationRule] | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    async def active_rules(self) -> list[AutomationRule]:
        async with self._lock:
            if self._rules is None or self._clock() - self._fetched_at >= self._ttl_seconds:
                self._rules = await self._source.active_rules()
                self._fetched_at = self._clock()
                log.debug(f"Refreshed {len(self._rules)} active rules")
            return list(self._rules)

    def invalidate(self) -> None:
        """Force the next call to refetch."""
        self._rules = None


def _sort_key(rule: AutomationRule) -> tuple:
    return (-rule.priority, rule.created_at or datetime.min, rule.id or "")


def normalize_phone(phone_token: str) -> str:
    """Strip a leading '*' marker from a phone token."""
    return phone_token.strip().removeprefix("*")


class RuleEngine:
    """Applies the active automation rules to transaction drafts."""

    def __init__(
        self,
        source: RuleSource,
        matcher: ConditionMatcher | None = None,
        applier: ActionApplier | None = None,
    ):
        self._source = source
        self._matcher = matcher if matcher is not None else ConditionMatcher()
        self._applier = applier if applier is not None else ActionApplier()

    async def get_active_rules(self) -> list[AutomationRule]:
        """Active rules in application order."""
        rules = await self._source.active_rules()
        return sorted((r for r in rules if r.is_active), key=_sort_key)

    async def apply(self, draft: TransactionDraft) -> TransactionDraft:
        """Apply every matching active rule in order and return the result.

        A rule with an invalid regular expression aborts the whole call with
        RuleConfigurationError.
        """
        rules = await self.get_active_rules()
        return self.apply_rules(draft, rules)

    def apply_rules(
        self, draft: TransactionDraft, rules: list[AutomationRule]
    ) -> TransactionDraft:
        """Fold the given rules, already in application order, over a draft."""
        for rule in rules:
            try:
                matched = self._matcher.matches(draft, rule.conditions)
            except re.error as e:
                raise RuleConfigurationError(
                    f"Rule '{rule.name}' has an invalid pattern: {e}",
                    rule_id=rule.id,
                    rule_name=rule.name,
                ) from e
            if matched:
                draft = self._applier.apply(draft, rule.actions)
                log.info(f"Rule applied: {rule.name}")
        return draft

    async def get_active_prompt_fragments(self) -> list[str]:
        """Prompt texts of the active rules, in application order."""
        rules = await self.get_active_rules()
        return [r.prompt_text for r in rules if r.prompt_text]

    async def find_transfer_rule(self, phone_token: str) -> AutomationRule | None:
        """First active rule whose match_phone equals the normalized token."""
        phone = normalize_phone(phone_token)
        for rule in await self.get_active_rules():
            if rule.match_phone and normalize_phone(rule.match_phone) == phone:
                return rule
        return None

    async def get_transfer_rules(self) -> list[AutomationRule]:
        """Active rules that carry a match_phone token."""
        return [r for r in await self.get_active_rules() if r.match_phone]


def build_transfer_prompt_section(rules: list[AutomationRule]) -> str:
    """Describe the phone transfer rules for the extractor's instructions."""
    rule_lines = "\n".join(
        f'- If transferring to phone *{normalize_phone(r.match_phone)} '
        f'-> category: "transfer", note: "{r.name}"'
        for r in rules
        if r.match_phone
    )
    if not rule_lines:
        return ""
    return (
        "\nCUSTOM TRANSFER RULES:\n"
        f"{rule_lines}\n"
        "\nTRANSFER DETECTION:\n"
        '- Bank messages with "Transferiste" or "Enviaste" are transfers\n'
        "- Extract destination phone number (10 digits or *XXXXXXXXXX format)\n"
        "- If phone matches a rule above -> use that category and note\n"
        '- If no match -> category: "missing"\n'
    )
