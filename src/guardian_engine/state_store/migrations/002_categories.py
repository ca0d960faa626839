"""
Migration 002: Add categories table.

Category catalog with monthly budget caps. A cap of 0 means "no cap".
"""

import sqlite3

VERSION = 2
NAME = "categories"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create categories table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS categories (
            category_label TEXT PRIMARY KEY,
            monthly_cap TEXT NOT NULL DEFAULT '0',  -- Decimal as string
            group_name TEXT,
            accounting_type TEXT,  -- RECEITA_DIRETA, DESPESA_INDIRETA, ...
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove categories table."""
    conn.execute("DROP TABLE IF EXISTS categories")
