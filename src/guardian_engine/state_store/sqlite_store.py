"""
SQLite-based state store implementation.

Tables:
- decision_records: Classified records and their human decisions
- audit_log: Append-only log, one entry per decision record mutation
- learning_rules: Token rules learned from human decisions (migration 001)
- categories: Category catalog with monthly caps (migration 002)

Every decision record mutation and its audit entry are written in the
same transaction, update first. If either statement fails the whole
transaction is rolled back.
"""

import json
import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from decimal import Decimal
from pathlib import Path
from typing import Any

from ..exceptions import InvalidTransitionError, PersistenceError, RecordNotFoundError
from ..schemas.records import (
    AuditAction,
    AuditLogEntry,
    CategoryBudget,
    DecisionRecord,
    DecisionStatus,
    LearningRule,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

# Columns a transition may change
MUTABLE_COLUMNS = (
    "category_label",
    "confidence",
    "suggested_action",
    "needs_review",
    "status",
    "competence_date",
    "due_date",
    "paid_date",
    "matched_record_id",
    "suggestion_note",
    "updated_at",
)

RECORD_COLUMNS = (
    "id",
    "source_type",
    "category_label",
    "confidence",
    "suggested_action",
    "needs_review",
    "amount",
    "description",
    "occurred_at",
    "status",
    "created_at",
    "competence_date",
    "due_date",
    "paid_date",
    "included_date",
    "fingerprint",
    "origin",
    "source_ref",
    "counterparty_hint",
    "matched_record_id",
    "audit_outcome",
    "strategy",
    "suggestion_note",
    "updated_at",
)


def _record_to_row(record: DecisionRecord) -> dict[str, Any]:
    """Flatten a decision record into column values."""
    data = record.to_dict()
    data["needs_review"] = 1 if record.needs_review else 0
    data["audit_outcome"] = (
        json.dumps(record.audit_outcome.to_dict()) if record.audit_outcome else None
    )
    return {column: data[column] for column in RECORD_COLUMNS}


class StateStore:
    """
    SQLite-based record store for the decision engine.

    Provides persistent storage of:
    - Decision records (insert-or-ignore by fingerprint)
    - The append-only audit log
    - Learning rules
    - The category catalog

    Every call opens its own connection. Methods that read before they
    write take the write lock first, so concurrent callers serialize.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions.

        With ``immediate=True`` the write lock is taken before the first
        read, so read-check-write sequences cannot interleave.

        sqlite3 errors surface as PersistenceError after rollback.
        """
        conn = self._get_connection()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("Database error in %s: %s", self.db_path, e)
            raise PersistenceError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS decision_records (
                    id TEXT PRIMARY KEY,
                    source_type TEXT NOT NULL,
                    category_label TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    suggested_action TEXT NOT NULL,
                    needs_review INTEGER NOT NULL,
                    amount TEXT NOT NULL,  -- Decimal as string
                    description TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    competence_date TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    paid_date TEXT NOT NULL,
                    included_date TEXT NOT NULL,
                    fingerprint TEXT NOT NULL UNIQUE,
                    origin TEXT,
                    source_ref TEXT,  -- Upstream id (document_id for documents)
                    counterparty_hint TEXT,
                    matched_record_id TEXT,
                    audit_outcome TEXT,  -- JSON
                    strategy TEXT,
                    suggestion_note TEXT,
                    updated_at TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    decision_record_id TEXT,
                    action TEXT NOT NULL,
                    before_snapshot TEXT NOT NULL,  -- JSON
                    after_snapshot TEXT NOT NULL,  -- JSON
                    timestamp TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    metadata TEXT  -- JSON
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_decision_records_status "
                "ON decision_records(status)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_decision_records_category "
                "ON decision_records(category_label)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_log_record ON audit_log(decision_record_id)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Decision record methods

    def insert_decision_records(self, records: Iterable[DecisionRecord]) -> tuple[int, int]:
        """Insert records, skipping any whose fingerprint (or id) already exists.

        All records are written in one transaction.

        Returns:
            (inserted, skipped)
        """
        placeholders = ", ".join("?" for _ in RECORD_COLUMNS)
        sql = (
            f"INSERT OR IGNORE INTO decision_records ({', '.join(RECORD_COLUMNS)}) "
            f"VALUES ({placeholders})"
        )
        inserted = 0
        skipped = 0
        with self._transaction() as conn:
            for record in records:
                row = _record_to_row(record)
                cursor = conn.execute(sql, tuple(row[c] for c in RECORD_COLUMNS))
                if cursor.rowcount == 1:
                    inserted += 1
                else:
                    skipped += 1
        return inserted, skipped

    def get_decision_record(self, record_id: str) -> DecisionRecord | None:
        """Get a decision record by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM decision_records WHERE id = ?", (record_id,)
            ).fetchone()
            return DecisionRecord.from_row(row) if row else None

    def fingerprint_exists(self, fingerprint: str) -> bool:
        """Check if a record with this fingerprint has been stored."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM decision_records WHERE fingerprint = ?", (fingerprint,)
            ).fetchone()
            return row is not None

    def list_decision_records(
        self,
        status: DecisionStatus | str | None = None,
        category_label: str | None = None,
        limit: int | None = None,
    ) -> list[DecisionRecord]:
        """Filtered scan, oldest movement first."""
        query = "SELECT * FROM decision_records WHERE 1=1"
        params: list[Any] = []
        if status is not None:
            query += " AND status = ?"
            params.append(DecisionStatus(status).value)
        if category_label is not None:
            query += " AND category_label = ?"
            params.append(category_label)
        query += " ORDER BY occurred_at, id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [DecisionRecord.from_row(row) for row in rows]

    def update_decision_record(
        self,
        record_id: str,
        changes: dict[str, Any],
        action: AuditAction,
        actor: str = "system",
        expected_status: DecisionStatus | None = None,
    ) -> tuple[DecisionRecord, DecisionRecord]:
        """Merge changes into a record and append its audit entry atomically.

        Args:
            record_id: Record to update.
            changes: Field name -> new value (only MUTABLE_COLUMNS).
            action: Audit action to record.
            actor: Who performed the mutation.
            expected_status: If given, the record must currently be in this status.

        Returns:
            (before, after) records.

        Raises:
            RecordNotFoundError: Unknown record id.
            InvalidTransitionError: Current status differs from expected_status.
            PersistenceError: Database failure; nothing was changed.
        """
        unknown = set(changes) - set(MUTABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")

        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT * FROM decision_records WHERE id = ?", (record_id,)
            ).fetchone()
            if row is None:
                raise RecordNotFoundError(record_id)
            before = DecisionRecord.from_row(row)

            if expected_status is not None and before.status != expected_status:
                raise InvalidTransitionError(record_id, before.status.value, action.value)

            after = replace(before, **{**changes, "updated_at": utc_now_iso()})
            after_row = _record_to_row(after)
            assignments = ", ".join(f"{c} = ?" for c in MUTABLE_COLUMNS)
            conn.execute(
                f"UPDATE decision_records SET {assignments} WHERE id = ?",
                (*(after_row[c] for c in MUTABLE_COLUMNS), record_id),
            )
            self._append_audit(
                conn,
                record_id=record_id,
                action=action,
                before=before.to_dict(),
                after=after.to_dict(),
                actor=actor,
            )

        return before, after

    def delete_all_decision_records(self, actor: str = "system") -> int:
        """Delete every decision record, logging one clear_all audit entry.

        Returns:
            Number of records deleted.
        """
        with self._transaction(immediate=True) as conn:
            rows = conn.execute("SELECT * FROM decision_records ORDER BY id").fetchall()
            snapshots = [DecisionRecord.from_row(row).to_dict() for row in rows]
            conn.execute("DELETE FROM decision_records")
            self._append_audit(
                conn,
                record_id=None,
                action=AuditAction.CLEAR_ALL,
                before=snapshots,
                after=[],
                actor=actor,
                metadata={"deleted": len(snapshots)},
            )
        return len(snapshots)

    def count_decision_records(self) -> int:
        """Total number of decision records."""
        with self._transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM decision_records").fetchone()[0]

    # Audit log methods

    def _append_audit(
        self,
        conn: sqlite3.Connection,
        record_id: str | None,
        action: AuditAction,
        before: Any,
        after: Any,
        actor: str,
        metadata: dict | None = None,
    ) -> int:
        cursor = conn.execute(
            """
            INSERT INTO audit_log
            (decision_record_id, action, before_snapshot, after_snapshot, timestamp, actor, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (
                record_id,
                action.value,
                json.dumps(before),
                json.dumps(after),
                utc_now_iso(),
                actor,
                json.dumps(metadata) if metadata else None,
            ),
        )
        return cursor.lastrowid or 0

    def get_audit_log(self, record_id: str | None = None) -> list[AuditLogEntry]:
        """Audit entries in insertion order, optionally for one record."""
        with self._transaction() as conn:
            if record_id is None:
                rows = conn.execute("SELECT * FROM audit_log ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM audit_log WHERE decision_record_id = ? ORDER BY id",
                    (record_id,),
                ).fetchall()
            return [AuditLogEntry.from_row(row) for row in rows]

    # Learning rule methods

    def upsert_learning_rule(
        self,
        token_key: str,
        tokens: list[str],
        category_label: str,
        description: str,
        confidence_for: Callable[[int], float],
    ) -> tuple[LearningRule, bool]:
        """Increment the rule for (token set, label) or create it.

        Returns:
            (rule, created)
        """
        now = utc_now_iso()
        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT * FROM learning_rules WHERE token_key = ? AND category_label = ?",
                (token_key, category_label),
            ).fetchone()

            if row:
                hits = row["hit_count"] + 1
                conn.execute(
                    """
                    UPDATE learning_rules
                    SET hit_count = ?, derived_confidence = ?, updated_at = ?
                    WHERE id = ?
                """,
                    (hits, confidence_for(hits), now, row["id"]),
                )
                rule_id = row["id"]
                created = False
            else:
                cursor = conn.execute(
                    """
                    INSERT INTO learning_rules
                    (token_key, tokens, category_label, hit_count, derived_confidence,
                     original_description, created_at, updated_at)
                    VALUES (?, ?, ?, 1, ?, ?, ?, ?)
                """,
                    (
                        token_key,
                        json.dumps(tokens),
                        category_label,
                        confidence_for(1),
                        description,
                        now,
                        now,
                    ),
                )
                rule_id = cursor.lastrowid
                created = True

            rule_row = conn.execute(
                "SELECT * FROM learning_rules WHERE id = ?", (rule_id,)
            ).fetchone()
            return LearningRule.from_row(rule_row), created

    def get_learning_rule(self, rule_id: int) -> LearningRule | None:
        """Get a learning rule by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM learning_rules WHERE id = ?", (rule_id,)).fetchone()
            return LearningRule.from_row(row) if row else None

    def list_learning_rules(self) -> list[LearningRule]:
        """All learning rules, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM learning_rules ORDER BY id").fetchall()
            return [LearningRule.from_row(row) for row in rows]

    # Category methods

    def list_categories(self, include_inactive: bool = False) -> list[CategoryBudget]:
        """Category catalog ordered by label."""
        query = "SELECT * FROM categories"
        if not include_inactive:
            query += " WHERE active = 1"
        query += " ORDER BY category_label"
        with self._transaction() as conn:
            return [CategoryBudget.from_row(row) for row in conn.execute(query).fetchall()]

    def get_category(self, category_label: str) -> CategoryBudget | None:
        """Get an active category by label."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM categories WHERE category_label = ? AND active = 1",
                (category_label,),
            ).fetchone()
            return CategoryBudget.from_row(row) if row else None

    def upsert_category(self, category: CategoryBudget) -> None:
        """Insert or update a category."""
        now = utc_now_iso()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO categories
                (category_label, monthly_cap, group_name, accounting_type, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(category_label) DO UPDATE SET
                    monthly_cap = excluded.monthly_cap,
                    group_name = excluded.group_name,
                    accounting_type = excluded.accounting_type,
                    active = excluded.active,
                    updated_at = excluded.updated_at
            """,
                (
                    category.category_label,
                    str(category.monthly_cap),
                    category.group_name,
                    category.accounting_type,
                    1 if category.active else 0,
                    now,
                    now,
                ),
            )

    def set_category_active(self, category_label: str, active: bool) -> bool:
        """Activate or deactivate a category. Returns False if unknown."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE categories SET active = ?, updated_at = ? WHERE category_label = ?",
                (1 if active else 0, utc_now_iso(), category_label),
            )
            return cursor.rowcount > 0

    def seed_categories(self, categories: Iterable[CategoryBudget]) -> int:
        """Insert categories that do not exist yet. Returns number inserted."""
        now = utc_now_iso()
        inserted = 0
        with self._transaction() as conn:
            for category in categories:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO categories
                    (category_label, monthly_cap, group_name, accounting_type, active,
                     created_at, updated_at)
                    VALUES (?, ?, ?, ?, 1, ?, ?)
                """,
                    (
                        category.category_label,
                        str(category.monthly_cap),
                        category.group_name,
                        category.accounting_type,
                        now,
                        now,
                    ),
                )
                inserted += cursor.rowcount
        return inserted

    # Stats

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        with self._transaction() as conn:
            by_status = {
                row["status"]: row["n"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) AS n FROM decision_records GROUP BY status"
                ).fetchall()
            }
            needs_review = conn.execute(
                "SELECT COUNT(*) FROM decision_records "
                "WHERE status = 'pending' AND needs_review = 1"
            ).fetchone()[0]
            pending_total = Decimal("0")
            for row in conn.execute(
                "SELECT amount FROM decision_records WHERE status = 'pending'"
            ).fetchall():
                pending_total += abs(Decimal(row["amount"]))
            rules = conn.execute("SELECT COUNT(*) FROM learning_rules").fetchone()[0]
            audit_entries = conn.execute("SELECT COUNT(*) FROM audit_log").fetchone()[0]

        return {
            "records_total": sum(by_status.values()),
            "pending": by_status.get(DecisionStatus.PENDING.value, 0),
            "approved": by_status.get(DecisionStatus.APPROVED.value, 0),
            "rejected": by_status.get(DecisionStatus.REJECTED.value, 0),
            "pending_needs_review": needs_review,
            "pending_amount": pending_total,
            "learning_rules": rules,
            "audit_entries": audit_entries,
        }
