"""
Migration 001: Add learning_rules table.

One row per (token set, confirmed label). token_key is the sorted,
space-joined token set so the same set always maps to the same row.
"""

import sqlite3

VERSION = 1
NAME = "learning_rules"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create learning_rules table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS learning_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            token_key TEXT NOT NULL,
            tokens TEXT NOT NULL,  -- JSON array, order of first appearance
            category_label TEXT NOT NULL,
            hit_count INTEGER NOT NULL DEFAULT 1,
            derived_confidence REAL NOT NULL,
            original_description TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (token_key, category_label)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_learning_rules_label ON learning_rules(category_label)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove learning_rules table."""
    conn.execute("DROP TABLE IF EXISTS learning_rules")
