"""Transfer detection and expansion into paired drafts."""

import logging
import re
from dataclasses import dataclass, field, replace

from autoledger.db import RecordStore
from autoledger.db.models import TransactionDraft, TransactionType
from autoledger.errors import RuleConfigurationError
from autoledger.rules import IdGenerator, RuleEngine, new_transfer_id

log = logging.getLogger("autoledger.transfers")

TRANSFER_KEYWORDS = (
    "transferiste",
    "enviaste",
    "transferencia",
    "envío a",
    "envio a",
    "transfer to",
    "sent to",
)

TRANSFER_CATEGORY_SLUG = "transfer"

# Destination phones are 10-digit Colombian mobile numbers, optionally '*'-prefixed.
PHONE_PATTERNS = [
    re.compile(r"\*(\d{10})\b"),
    re.compile(r"cuenta\s*\*?(\d{10})\b", re.IGNORECASE),
    re.compile(r"a\s+(\d{10})\b"),
    re.compile(r"al?\s+\*?(\d{10})\b", re.IGNORECASE),
]

ORIGIN_PATTERNS = [
    re.compile(r"desde\s+tu\s+cuenta\s+(\d{4})\b", re.IGNORECASE),
    re.compile(r"cuenta\s+(\d{4})\s+a\s+la", re.IGNORECASE),
    re.compile(r"\*(\d{4})\s*,?\s*el\s+\d", re.IGNORECASE),
]


@dataclass
class TransferInfo:
    """What the transfer processor found, for user-facing confirmations."""

    destination_phone: str | None
    from_account_last_four: str | None
    is_internal_transfer: bool = False
    linked_account_id: str | None = None
    rule_name: str | None = None


@dataclass
class TransferResult:
    drafts: list[TransactionDraft] = field(default_factory=list)
    transfer_info: TransferInfo | None = None


def is_transfer_message(raw_text: str, category_slug: str | None = None) -> bool:
    """Check if the text describes a transfer."""
    if category_slug == TRANSFER_CATEGORY_SLUG:
        return True
    lower_text = raw_text.lower()
    return any(keyword in lower_text for keyword in TRANSFER_KEYWORDS)


def _first_group(patterns: list[re.Pattern], text: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_phone_number(raw_text: str) -> str | None:
    """Extract the destination phone, e.g. from 'a la cuenta *3104633357'."""
    return _first_group(PHONE_PATTERNS, raw_text)


def extract_origin_account(raw_text: str) -> str | None:
    """Extract the last four digits of the origin account, e.g. 'desde tu cuenta 2651'."""
    return _first_group(ORIGIN_PATTERNS, raw_text)


class TransferProcessor:
    """Turns a transfer-shaped draft into one external or two internal drafts."""

    def __init__(
        self,
        engine: RuleEngine,
        store: RecordStore,
        id_generator: IdGenerator | None = None,
        transfer_category_slug: str = TRANSFER_CATEGORY_SLUG,
    ):
        self._engine = engine
        self._store = store
        self._id_generator = id_generator if id_generator is not None else new_transfer_id
        self._transfer_category_slug = transfer_category_slug

    async def process(
        self,
        draft: TransactionDraft,
        raw_text: str,
        fallback_category_id: str | None = None,
    ) -> TransferResult:
        """Resolve a transfer message.

        Without a destination phone, or without an active rule for it, the
        result is a single expense draft in the fallback category. When a rule
        matches, the result is an outgoing and an incoming transfer draft that
        share a fresh transfer id. Drafts are not run through the rule engine
        here; callers apply rules to each one before posting.
        """
        phone = extract_phone_number(raw_text)
        origin = extract_origin_account(raw_text)
        info = TransferInfo(destination_phone=phone, from_account_last_four=origin)

        if not phone:
            log.info("No phone number found in transfer message")
            unmatched = self._unmatched(
                draft, fallback_category_id, "Transfer - no matching phone found"
            )
            return TransferResult(drafts=[unmatched], transfer_info=info)

        rule = await self._engine.find_transfer_rule(phone)
        if rule is None:
            log.info(f"No transfer rule found for phone: {phone}")
            unmatched = self._unmatched(
                draft, fallback_category_id, f"Transfer to {phone} - no matching rule"
            )
            return TransferResult(drafts=[unmatched], transfer_info=info)

        if not rule.transfer_to_account_id:
            raise RuleConfigurationError(
                f"Transfer rule '{rule.name}' has no destination account",
                rule_id=rule.id,
                rule_name=rule.name,
            )

        log.info(f"Transfer rule matched: {rule.name} for phone: {phone}")
        info.is_internal_transfer = True
        info.linked_account_id = rule.transfer_to_account_id
        info.rule_name = rule.name

        transfer_id = self._id_generator()
        category = await self._store.get_category(self._transfer_category_slug)
        category_id = category.id if category else fallback_category_id

        outgoing = replace(
            draft,
            parsed_data=dict(draft.parsed_data),
            transaction_type=TransactionType.TRANSFER,
            category_id=category_id,
            transfer_to_account_id=rule.transfer_to_account_id,
            transfer_id=transfer_id,
            description=f"Transfer to {rule.name}",
        )
        outgoing.append_note(f"Internal transfer to {phone}")

        incoming = replace(
            draft,
            parsed_data=dict(draft.parsed_data),
            account_id=rule.transfer_to_account_id,
            transaction_type=TransactionType.TRANSFER,
            category_id=category_id,
            transfer_to_account_id=None,
            transfer_id=transfer_id,
            description=f"Transfer from {draft.description or 'unknown origin'}",
            notes=f"Internal transfer from account ending in {origin or 'unknown'}",
        )
        return TransferResult(drafts=[outgoing, incoming], transfer_info=info)

    def _unmatched(
        self, draft: TransactionDraft, fallback_category_id: str | None, note: str
    ) -> TransactionDraft:
        unmatched = replace(
            draft,
            parsed_data=dict(draft.parsed_data),
            transaction_type=TransactionType.EXPENSE,
            category_id=fallback_category_id,
            transfer_to_account_id=None,
            transfer_id=None,
        )
        unmatched.append_note(note)
        return unmatched
