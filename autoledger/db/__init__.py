"""Record store contract shared by the SQLite and HTTP backends."""

from decimal import Decimal
from typing import Protocol

from autoledger.db.models import Account, AutomationRule, Category, Transaction, TransactionDraft


class RecordStore(Protocol):
    """Request/response record store used by the posting engine."""

    async def get_account(
        self,
        institution: str,
        last_four: str | None = None,
        account_type: str | None = None,
    ) -> Account | None: ...

    async def get_account_by_id(self, account_id: str) -> Account | None: ...

    async def get_category(self, slug: str) -> Category | None: ...

    async def get_active_rules(self) -> list[AutomationRule]: ...

    async def create_transaction(self, draft: TransactionDraft) -> Transaction: ...

    async def get_transaction_by_id(self, transaction_id: str) -> Transaction | None: ...

    async def get_account_balance(self, account_id: str) -> Decimal: ...

    async def update_account_balance(self, account_id: str, balance: Decimal) -> None: ...
