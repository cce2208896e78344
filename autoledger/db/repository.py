"""Data access layer for SQLite database."""

import json
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path

import aiosqlite

from autoledger.db.migrations import SCHEMA_VERSION, get_migration_sql
from autoledger.db.models import (
    Account,
    AccountType,
    AutomationRule,
    Category,
    Transaction,
    TransactionDraft,
    TransactionType,
    actions_to_dict,
    conditions_to_dict,
    decode_rule_logic,
)
from autoledger.errors import StoreError


def _new_id() -> str:
    return uuid.uuid4().hex


class Repository:
    """Async SQLite record store."""

    def __init__(self, db_path: Path):
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Connect to the database and run migrations."""
        self._connection = await aiosqlite.connect(self._db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _run_migrations(self) -> None:
        """Run pending database migrations."""
        current_version = await self._get_schema_version()
        if current_version < SCHEMA_VERSION:
            migrations = get_migration_sql(current_version, SCHEMA_VERSION)
            for sql in migrations:
                await self._connection.executescript(sql)
            await self._connection.commit()

    async def _get_schema_version(self) -> int:
        """Get current schema version from database."""
        try:
            cursor = await self._connection.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            return row["version"] if row else 0
        except aiosqlite.OperationalError:
            return 0

    # Account operations

    async def save_account(self, account: Account) -> Account:
        """Save or update an account."""
        account_id = account.id or _new_id()
        await self._connection.execute(
            """INSERT INTO accounts (id, name, type, institution, last_four,
               currency, balance, is_active, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
               name=excluded.name, type=excluded.type,
               institution=excluded.institution, last_four=excluded.last_four,
               currency=excluded.currency, balance=excluded.balance,
               is_active=excluded.is_active, updated_at=excluded.updated_at""",
            (
                account_id,
                account.name,
                account.account_type.value,
                account.institution,
                account.last_four,
                account.currency,
                str(account.balance),
                int(account.is_active),
                account.created_at.isoformat(),
                datetime.now().isoformat(),
            ),
        )
        await self._connection.commit()
        return await self.get_account_by_id(account_id)

    async def get_account_by_id(self, account_id: str) -> Account | None:
        """Get account by ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM accounts WHERE id = ?", (account_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_account(row) if row else None

    async def get_account(
        self,
        institution: str,
        last_four: str | None = None,
        account_type: str | None = None,
    ) -> Account | None:
        """Get the first active account for an institution, narrowed when possible."""
        conditions = ["institution = ?", "is_active = 1"]
        params: list = [institution]
        if last_four:
            conditions.append("last_four = ?")
            params.append(last_four)
        if account_type:
            conditions.append("type = ?")
            params.append(account_type)
        where_clause = " AND ".join(conditions)
        cursor = await self._connection.execute(
            f"SELECT * FROM accounts WHERE {where_clause} ORDER BY created_at LIMIT 1", params
        )
        row = await cursor.fetchone()
        return self._row_to_account(row) if row else None

    async def get_account_balance(self, account_id: str) -> Decimal:
        """Get the current balance of an account."""
        cursor = await self._connection.execute(
            "SELECT balance FROM accounts WHERE id = ?", (account_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise StoreError(f"Account {account_id} not found")
        return Decimal(row["balance"])

    async def update_account_balance(self, account_id: str, balance: Decimal) -> None:
        """Overwrite the balance of an account."""
        cursor = await self._connection.execute(
            "UPDATE accounts SET balance = ?, updated_at = ? WHERE id = ?",
            (str(balance), datetime.now().isoformat(), account_id),
        )
        await self._connection.commit()
        if cursor.rowcount == 0:
            raise StoreError(f"Account {account_id} not found")

    def _row_to_account(self, row: aiosqlite.Row) -> Account:
        """Convert database row to Account object."""
        return Account(
            id=row["id"],
            name=row["name"],
            account_type=AccountType(row["type"]),
            institution=row["institution"],
            last_four=row["last_four"],
            currency=row["currency"],
            balance=Decimal(row["balance"]),
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Category operations

    async def save_category(self, category: Category) -> Category:
        """Save or update a category, keyed by slug."""
        await self._connection.execute(
            """INSERT INTO categories (id, name, slug, type, is_active, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(slug) DO UPDATE SET
               name=excluded.name, type=excluded.type, is_active=excluded.is_active""",
            (
                category.id or _new_id(),
                category.name,
                category.slug,
                category.category_type.value,
                int(category.is_active),
                category.created_at.isoformat(),
            ),
        )
        await self._connection.commit()
        cursor = await self._connection.execute(
            "SELECT * FROM categories WHERE slug = ?", (category.slug,)
        )
        row = await cursor.fetchone()
        return self._row_to_category(row)

    async def get_category(self, slug: str) -> Category | None:
        """Get an active category by slug."""
        cursor = await self._connection.execute(
            "SELECT * FROM categories WHERE slug = ? AND is_active = 1", (slug,)
        )
        row = await cursor.fetchone()
        return self._row_to_category(row) if row else None

    async def get_category_by_id(self, category_id: str) -> Category | None:
        """Get category by ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM categories WHERE id = ?", (category_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_category(row) if row else None

    def _row_to_category(self, row: aiosqlite.Row) -> Category:
        """Convert database row to Category object."""
        return Category(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            category_type=TransactionType(row["type"]),
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # Rule operations

    async def save_rule(self, rule: AutomationRule) -> AutomationRule:
        """Save or update an automation rule."""
        now = datetime.now().isoformat()
        conditions = json.dumps(conditions_to_dict(rule.conditions))
        actions = json.dumps(actions_to_dict(rule.actions))
        rule_id = rule.id or _new_id()
        await self._connection.execute(
            """INSERT INTO automation_rules (id, name, is_active, priority,
               conditions, actions, prompt_text, match_phone,
               transfer_to_account_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
               name=excluded.name, is_active=excluded.is_active,
               priority=excluded.priority, conditions=excluded.conditions,
               actions=excluded.actions, prompt_text=excluded.prompt_text,
               match_phone=excluded.match_phone,
               transfer_to_account_id=excluded.transfer_to_account_id,
               updated_at=excluded.updated_at""",
            (
                rule_id,
                rule.name,
                int(rule.is_active),
                rule.priority,
                conditions,
                actions,
                rule.prompt_text,
                rule.match_phone,
                rule.transfer_to_account_id,
                rule.created_at.isoformat(),
                now,
            ),
        )
        await self._connection.commit()
        return await self.get_rule_by_id(rule_id)

    async def get_rule_by_id(self, rule_id: str) -> AutomationRule | None:
        """Get rule by ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM automation_rules WHERE id = ?", (rule_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_rule(row) if row else None

    async def get_active_rules(self) -> list[AutomationRule]:
        """Get all active rules, highest priority first, oldest first on ties."""
        cursor = await self._connection.execute(
            """SELECT * FROM automation_rules WHERE is_active = 1
               ORDER BY priority DESC, created_at ASC, id ASC"""
        )
        rows = await cursor.fetchall()
        return [self._row_to_rule(row) for row in rows]

    async def delete_rule(self, rule_id: str) -> None:
        """Delete a rule."""
        await self._connection.execute("DELETE FROM automation_rules WHERE id = ?", (rule_id,))
        await self._connection.commit()

    def _row_to_rule(self, row: aiosqlite.Row) -> AutomationRule:
        """Convert database row to AutomationRule object."""
        conditions, actions = decode_rule_logic(
            row["id"], row["name"], row["conditions"], row["actions"]
        )
        return AutomationRule(
            id=row["id"],
            name=row["name"],
            conditions=conditions,
            actions=actions,
            priority=row["priority"],
            is_active=bool(row["is_active"]),
            prompt_text=row["prompt_text"],
            match_phone=row["match_phone"],
            transfer_to_account_id=row["transfer_to_account_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Transaction operations

    async def create_transaction(self, draft: TransactionDraft) -> Transaction:
        """Persist a draft as a new transaction."""
        transaction_id = _new_id()
        now = datetime.now().isoformat()
        await self._connection.execute(
            """INSERT INTO transactions (id, date, time, amount, description, notes,
               category_id, account_id, type, payment_method, source, confidence,
               transfer_to_account_id, transfer_id, raw_text, parsed_data,
               created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                transaction_id,
                draft.date.isoformat(),
                draft.time.isoformat(timespec="minutes"),
                str(draft.amount),
                draft.description,
                draft.notes,
                draft.category_id,
                draft.account_id,
                draft.transaction_type.value,
                draft.payment_method,
                draft.source,
                draft.confidence,
                draft.transfer_to_account_id,
                draft.transfer_id,
                draft.raw_text,
                json.dumps(draft.parsed_data, default=str),
                now,
                now,
            ),
        )
        await self._connection.commit()
        return await self.get_transaction_by_id(transaction_id)

    async def get_transaction_by_id(self, transaction_id: str) -> Transaction | None:
        """Get transaction by ID."""
        cursor = await self._connection.execute(
            "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_transaction(row) if row else None

    async def get_transactions_by_transfer_id(self, transfer_id: str) -> list[Transaction]:
        """Get both legs of a paired transfer."""
        cursor = await self._connection.execute(
            "SELECT * FROM transactions WHERE transfer_id = ? ORDER BY created_at, rowid",
            (transfer_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_transaction(row) for row in rows]

    def _row_to_transaction(self, row: aiosqlite.Row) -> Transaction:
        """Convert database row to Transaction object."""
        return Transaction(
            id=row["id"],
            date=date.fromisoformat(row["date"]),
            time=time.fromisoformat(row["time"]),
            amount=Decimal(row["amount"]),
            description=row["description"],
            account_id=row["account_id"],
            transaction_type=TransactionType(row["type"]),
            notes=row["notes"],
            category_id=row["category_id"],
            payment_method=row["payment_method"],
            source=row["source"],
            confidence=row["confidence"],
            transfer_to_account_id=row["transfer_to_account_id"],
            transfer_id=row["transfer_id"],
            is_reconciled=bool(row["is_reconciled"]),
            raw_text=row["raw_text"],
            parsed_data=json.loads(row["parsed_data"]) if row["parsed_data"] else {},
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
