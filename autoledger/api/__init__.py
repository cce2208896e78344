"""HTTP record store client (PostgREST dialect)."""

import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

import httpx

from autoledger.config import StoreConfig
from autoledger.db.models import (
    Account,
    AccountType,
    AutomationRule,
    Category,
    Transaction,
    TransactionDraft,
    TransactionType,
    decode_rule_logic,
)
from autoledger.errors import StoreError

log = logging.getLogger("autoledger.store")

REST_PREFIX = "/rest/v1"
RETRYABLE_STATUS_CODES = {500, 502, 503, 504}


def _parse_datetime(value: str | None) -> datetime:
    if not value:
        return datetime.now()
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def draft_to_payload(draft: TransactionDraft) -> dict[str, Any]:
    """Build the JSON body that creates a transaction."""
    payload: dict[str, Any] = {
        "date": draft.date.isoformat(),
        "time": draft.time.isoformat(timespec="minutes"),
        "amount": float(draft.amount),
        "description": draft.description,
        "account_id": draft.account_id,
        "type": draft.transaction_type.value,
        "source": draft.source,
    }
    optional = {
        "notes": draft.notes,
        "category_id": draft.category_id,
        "payment_method": draft.payment_method,
        "confidence": draft.confidence,
        "transfer_to_account_id": draft.transfer_to_account_id,
        "transfer_id": draft.transfer_id,
        "raw_text": draft.raw_text,
        "parsed_data": draft.parsed_data or None,
    }
    payload.update({k: v for k, v in optional.items() if v is not None})
    return payload


class RestStoreClient:
    """Async client for a PostgREST-style record store."""

    def __init__(self, config: StoreConfig):
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "RestStoreClient":
        """Enter async context."""
        self._client = httpx.AsyncClient(
            base_url=self._config.url,
            headers=self._get_headers(),
            timeout=self._config.timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with authorization."""
        return {
            "apikey": self._config.service_key,
            "Authorization": f"Bearer {self._config.service_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    async def _get(self, table: str, params: dict[str, str]) -> list[dict]:
        """GET rows from a table, retrying transport errors and 5xx responses."""
        url = f"{REST_PREFIX}/{table}"
        attempts = self._config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.get(url, params=params)
            except httpx.TransportError as e:
                if attempt == attempts:
                    raise StoreError(f"Request to {table} failed: {e}") from e
                log.warning(f"GET {table} failed ({e}), retry {attempt}/{attempts - 1}")
                continue
            if response.status_code in RETRYABLE_STATUS_CODES and attempt < attempts:
                log.warning(
                    f"GET {table} returned {response.status_code}, retry {attempt}/{attempts - 1}"
                )
                continue
            self._raise_for_status(response, table)
            return response.json()
        return []  # pragma: no cover

    def _raise_for_status(self, response: httpx.Response, table: str) -> None:
        if response.status_code >= 400:
            log.error(f"Store error response for {table}: {response.text}")
            raise StoreError(
                f"API Error: {response.reason_phrase} - {response.text}",
                status_code=response.status_code,
            )

    async def get_account(
        self,
        institution: str,
        last_four: str | None = None,
        account_type: str | None = None,
    ) -> Account | None:
        """Get the first active account for an institution, narrowed when possible."""
        params = {"institution": f"eq.{institution}", "is_active": "eq.true", "select": "*"}
        if last_four:
            params["last_four"] = f"eq.{last_four}"
        if account_type:
            params["type"] = f"eq.{account_type}"
        rows = await self._get("accounts", params)
        return self._parse_account(rows[0]) if rows else None

    async def get_account_by_id(self, account_id: str) -> Account | None:
        """Get account by ID."""
        rows = await self._get("accounts", {"id": f"eq.{account_id}", "select": "*"})
        return self._parse_account(rows[0]) if rows else None

    async def get_account_balance(self, account_id: str) -> Decimal:
        """Get the current balance of an account."""
        rows = await self._get("accounts", {"id": f"eq.{account_id}", "select": "balance"})
        if not rows:
            raise StoreError(f"Account {account_id} not found")
        return Decimal(str(rows[0]["balance"]))

    async def update_account_balance(self, account_id: str, balance: Decimal) -> None:
        """Overwrite the balance of an account. Not retried."""
        response = await self._client.patch(
            f"{REST_PREFIX}/accounts",
            params={"id": f"eq.{account_id}"},
            json={"balance": float(balance)},
        )
        self._raise_for_status(response, "accounts")

    async def get_category(self, slug: str) -> Category | None:
        """Get an active category by slug."""
        rows = await self._get(
            "categories", {"slug": f"eq.{slug}", "is_active": "eq.true", "select": "*"}
        )
        return self._parse_category(rows[0]) if rows else None

    async def get_active_rules(self) -> list[AutomationRule]:
        """Get all active rules, highest priority first, oldest first on ties."""
        rows = await self._get(
            "automation_rules",
            {"is_active": "eq.true", "order": "priority.desc,created_at.asc", "select": "*"},
        )
        return [self._parse_rule(row) for row in rows]

    async def create_transaction(self, draft: TransactionDraft) -> Transaction:
        """Create a transaction. Not retried."""
        response = await self._client.post(
            f"{REST_PREFIX}/transactions", json=draft_to_payload(draft)
        )
        self._raise_for_status(response, "transactions")
        rows = response.json()
        if not rows:
            raise StoreError("Store returned no transaction after create")
        return self._parse_transaction(rows[0])

    async def get_transaction_by_id(self, transaction_id: str) -> Transaction | None:
        """Get transaction by ID."""
        rows = await self._get("transactions", {"id": f"eq.{transaction_id}", "select": "*"})
        return self._parse_transaction(rows[0]) if rows else None

    def _parse_account(self, data: dict) -> Account:
        """Parse account data from API response."""
        return Account(
            id=data["id"],
            name=data["name"],
            account_type=AccountType(data["type"]),
            institution=data.get("institution"),
            last_four=data.get("last_four"),
            currency=data.get("currency", "COP"),
            balance=Decimal(str(data.get("balance", 0))),
            is_active=data.get("is_active", True),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )

    def _parse_category(self, data: dict) -> Category:
        """Parse category data from API response."""
        return Category(
            id=data["id"],
            name=data["name"],
            slug=data["slug"],
            category_type=TransactionType(data["type"]),
            is_active=data.get("is_active", True),
            created_at=_parse_datetime(data.get("created_at")),
        )

    def _parse_rule(self, data: dict) -> AutomationRule:
        """Parse automation rule data from API response."""
        conditions, actions = decode_rule_logic(
            data["id"], data["name"], data.get("conditions"), data.get("actions")
        )
        return AutomationRule(
            id=data["id"],
            name=data["name"],
            conditions=conditions,
            actions=actions,
            priority=data.get("priority", 0),
            is_active=data.get("is_active", True),
            prompt_text=data.get("prompt_text"),
            match_phone=data.get("match_phone"),
            transfer_to_account_id=data.get("transfer_to_account_id"),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )

    def _parse_transaction(self, data: dict) -> Transaction:
        """Parse transaction data from API response."""
        return Transaction(
            id=data["id"],
            date=date.fromisoformat(data["date"]),
            time=time.fromisoformat(data["time"]),
            amount=Decimal(str(data["amount"])),
            description=data["description"],
            account_id=data["account_id"],
            transaction_type=TransactionType(data["type"]),
            notes=data.get("notes"),
            category_id=data.get("category_id"),
            payment_method=data.get("payment_method"),
            source=data.get("source", "manual"),
            confidence=data.get("confidence"),
            transfer_to_account_id=data.get("transfer_to_account_id"),
            transfer_id=data.get("transfer_id"),
            is_reconciled=data.get("is_reconciled", False),
            raw_text=data.get("raw_text"),
            parsed_data=data.get("parsed_data") or {},
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )
