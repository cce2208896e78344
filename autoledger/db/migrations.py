"""Database schema migrations."""

SCHEMA_VERSION = 2

MIGRATIONS = {
    1: """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        );

        CREATE TABLE IF NOT EXISTS accounts (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            type TEXT NOT NULL,
            institution TEXT,
            last_four TEXT,
            currency TEXT NOT NULL DEFAULT 'COP',
            balance TEXT NOT NULL DEFAULT '0',
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_accounts_lookup
            ON accounts(institution, last_four, is_active);

        CREATE TABLE IF NOT EXISTS categories (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            type TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS automation_rules (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            priority INTEGER NOT NULL DEFAULT 0,
            conditions TEXT NOT NULL DEFAULT '{}',
            actions TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_rules_active_priority
            ON automation_rules(is_active, priority DESC);

        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            date TEXT NOT NULL,
            time TEXT NOT NULL,
            amount TEXT NOT NULL,
            description TEXT NOT NULL,
            notes TEXT,
            category_id TEXT REFERENCES categories(id),
            account_id TEXT NOT NULL REFERENCES accounts(id),
            type TEXT NOT NULL,
            payment_method TEXT,
            source TEXT NOT NULL,
            confidence INTEGER,
            transfer_to_account_id TEXT REFERENCES accounts(id),
            transfer_id TEXT,
            is_reconciled INTEGER NOT NULL DEFAULT 0,
            raw_text TEXT,
            parsed_data TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_transactions_account
            ON transactions(account_id);
        CREATE INDEX IF NOT EXISTS idx_transactions_transfer
            ON transactions(transfer_id);

        INSERT INTO schema_version (version) VALUES (1);
    """,
    2: """
        ALTER TABLE automation_rules ADD COLUMN prompt_text TEXT;
        ALTER TABLE automation_rules ADD COLUMN match_phone TEXT;
        ALTER TABLE automation_rules ADD COLUMN transfer_to_account_id TEXT
            REFERENCES accounts(id);

        CREATE INDEX IF NOT EXISTS idx_rules_match_phone
            ON automation_rules(match_phone);

        UPDATE schema_version SET version = 2;
    """,
}


def get_migration_sql(from_version: int, to_version: int) -> list[str]:
    """Get list of migration SQL statements to run."""
    statements = []
    for version in range(from_version + 1, to_version + 1):
        if version in MIGRATIONS:
            statements.append(MIGRATIONS[version])
    return statements
