"""Sync cycle orchestration.

One cycle over a rolling date window:
1. Fetch bank statement and documents concurrently (a failing source
   degrades to an empty list and is reported, the cycle goes on)
2. Build UnclassifiedRecords with content fingerprints
3. Classify in fixed-size chunks with a bounded worker pool
4. Reconcile transactions against documents once, single-threaded
5. Audit every result against its category budget
6. Persist chunk by chunk; fingerprints already stored are skipped

The cycle is idempotent: re-running it over an overlapping window never
creates duplicate decision records. A cancel event is checked between
chunks; chunks already persisted stay persisted.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from ..exceptions import PersistenceError, UpstreamUnavailable
from ..schemas.fingerprint import compute_fingerprint, record_id_for
from ..schemas.records import (
    APPROVAL_THRESHOLD,
    ClassificationResult,
    DecisionRecord,
    Severity,
    SourceType,
    UnclassifiedRecord,
)

if TYPE_CHECKING:
    from ..audit import BudgetAuditor
    from ..classification import ClassificationEngine
    from ..config import SyncConfig
    from ..matching import ReconciliationMatcher
    from ..registry import CategoryRegistry
    from ..sources import BankStatementSource, DocumentSource, RawDocument, RawTransaction
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncState(str, Enum):
    """Possible states for a sync cycle."""

    FETCHING = "FETCHING"
    CLASSIFYING = "CLASSIFYING"
    RECONCILING = "RECONCILING"
    AUDITING = "AUDITING"
    PERSISTING = "PERSISTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass
class SyncResult:
    """Result of a sync cycle."""

    state: SyncState
    window_start: date | None = None
    window_end: date | None = None
    transactions_fetched: int = 0
    documents_fetched: int = 0
    classified: int = 0
    matched: int = 0
    flagged: int = 0  # Critical budget audits
    automated: int = 0  # Confidence above the approval threshold
    inserted: int = 0
    skipped_duplicates: int = 0
    chunks_persisted: int = 0
    degraded_sources: list[str] = field(default_factory=list)
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Return True if the cycle completed."""
        return self.state == SyncState.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "state": self.state.value,
            "window_start": self.window_start.isoformat() if self.window_start else None,
            "window_end": self.window_end.isoformat() if self.window_end else None,
            "transactions_fetched": self.transactions_fetched,
            "documents_fetched": self.documents_fetched,
            "classified": self.classified,
            "matched": self.matched,
            "flagged": self.flagged,
            "automated": self.automated,
            "inserted": self.inserted,
            "skipped_duplicates": self.skipped_duplicates,
            "chunks_persisted": self.chunks_persisted,
            "degraded_sources": list(self.degraded_sources),
            "duration_ms": self.duration_ms,
            "errors": list(self.errors),
        }


class SyncCancelled(Exception):
    """Raised internally when the cancel event is set between chunks."""


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


def records_from_transactions(
    transactions: Sequence[RawTransaction], origin: str
) -> list[tuple[UnclassifiedRecord, str]]:
    """Bank lines → (record, fingerprint) pairs."""
    records = []
    for tx in transactions:
        fingerprint = compute_fingerprint(
            SourceType.TRANSACTION.value, tx.description, tx.amount, tx.date
        )
        records.append(
            (
                UnclassifiedRecord(
                    id=record_id_for(SourceType.TRANSACTION.value, fingerprint),
                    source_type=SourceType.TRANSACTION,
                    raw_description=tx.description,
                    amount=tx.amount,
                    occurred_at=tx.date,
                    counterparty_hint=tx.counterparty_id,
                    origin=origin,
                ),
                fingerprint,
            )
        )
    return records


def records_from_documents(
    documents: Sequence[RawDocument], origin: str
) -> list[tuple[UnclassifiedRecord, str]]:
    """Documents → (record, fingerprint) pairs."""
    records = []
    for doc in documents:
        description = " ".join(part for part in (doc.vendor, doc.description) if part)
        fingerprint = compute_fingerprint(
            SourceType.DOCUMENT.value, description, doc.amount, doc.date
        )
        records.append(
            (
                UnclassifiedRecord(
                    id=record_id_for(SourceType.DOCUMENT.value, fingerprint),
                    source_type=SourceType.DOCUMENT,
                    raw_description=description,
                    amount=doc.amount,
                    occurred_at=doc.date,
                    counterparty_hint=doc.vendor,
                    label_hint=doc.label_guess,
                    source_ref=doc.document_id,
                    origin=origin,
                ),
                fingerprint,
            )
        )
    return records


class SyncService:
    """Runs sync cycles.

    Usage:
        service = SyncService(bank, documents, engine, matcher, auditor, store, config.sync)
        result = service.run_cycle()
    """

    def __init__(
        self,
        bank_source: BankStatementSource,
        document_source: DocumentSource,
        engine: ClassificationEngine,
        matcher: ReconciliationMatcher,
        auditor: BudgetAuditor,
        store: StateStore,
        config: SyncConfig,
        registry: CategoryRegistry | None = None,
        approval_threshold: float = APPROVAL_THRESHOLD,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.bank_source = bank_source
        self.document_source = document_source
        self.engine = engine
        self.matcher = matcher
        self.auditor = auditor
        self.store = store
        self.config = config
        self.registry = registry
        self.approval_threshold = approval_threshold
        self.clock = clock

    def _fetch(self, result: SyncResult) -> tuple[list[RawTransaction], list[RawDocument]]:
        """Fetch both sources concurrently; a failure degrades to an empty list."""
        names = {"bank": self._source_name("bank"), "documents": self._source_name("documents")}
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="guardian-fetch") as pool:
            futures = {
                "bank": pool.submit(
                    self.bank_source.fetch_statement, result.window_start, result.window_end
                ),
                "documents": pool.submit(self.document_source.poll),
            }
            fetched: dict[str, list] = {}
            for role, future in futures.items():
                name = names[role]
                try:
                    fetched[role] = future.result()
                except UpstreamUnavailable as e:
                    logger.warning("Source '%s' unavailable, continuing without it: %s", name, e)
                    fetched[role] = []
                    result.degraded_sources.append(name)
                    result.errors.append(f"{name}: {e}")
                except Exception as e:
                    logger.exception("Source '%s' failed unexpectedly: %s", name, e)
                    fetched[role] = []
                    result.degraded_sources.append(name)
                    result.errors.append(f"{name}: {e}")

        return fetched["bank"], fetched["documents"]

    def _source_name(self, role: str) -> str:
        source = self.bank_source if role == "bank" else self.document_source
        return getattr(source, "name", role)

    def _check_cancel(self, cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelled()

    def _classify(
        self,
        records: list[UnclassifiedRecord],
        cancel_event: threading.Event | None,
    ) -> list[ClassificationResult]:
        """Classify in chunks; at most max_in_flight records run at once."""
        results: list[ClassificationResult] = []
        with ThreadPoolExecutor(
            max_workers=self.config.max_in_flight, thread_name_prefix="guardian-classify"
        ) as pool:
            for chunk in chunked(records, self.config.chunk_size):
                self._check_cancel(cancel_event)
                results.extend(pool.map(self.engine.classify, chunk))
        return results

    def _accounting_type(self, label: str) -> str | None:
        if self.registry is None:
            return None
        try:
            return self.registry.accounting_type(label)
        except UpstreamUnavailable:
            return None

    def _persist(
        self,
        records: list[DecisionRecord],
        result: SyncResult,
        cancel_event: threading.Event | None,
    ) -> None:
        for chunk in chunked(records, self.config.chunk_size):
            self._check_cancel(cancel_event)
            try:
                inserted, skipped = self.store.insert_decision_records(chunk)
            except PersistenceError as e:
                logger.error("Failed to persist chunk of %d record(s): %s", len(chunk), e)
                result.errors.append(f"persist: {e}")
                continue
            result.inserted += inserted
            result.skipped_duplicates += skipped
            result.chunks_persisted += 1

    def run_cycle(
        self,
        cancel_event: threading.Event | None = None,
        window_days: int | None = None,
    ) -> SyncResult:
        """Run one sync cycle.

        Args:
            cancel_event: Set it to stop the cycle at the next chunk boundary.
            window_days: Override the configured window.

        Returns:
            SyncResult with statistics and final state.
        """
        start_time = time.time()
        today = self.clock()
        days = window_days or self.config.window_days
        result = SyncResult(
            state=SyncState.FETCHING,
            window_start=today - timedelta(days=days),
            window_end=today,
        )

        try:
            logger.info("Sync cycle %s..%s: fetching", result.window_start, result.window_end)
            transactions, documents = self._fetch(result)
            result.transactions_fetched = len(transactions)
            result.documents_fetched = len(documents)

            pairs = records_from_transactions(
                transactions, self._source_name("bank")
            ) + records_from_documents(
                documents, self._source_name("documents")
            )
            fingerprints: dict[str, str] = {}
            records: list[UnclassifiedRecord] = []
            for record, fingerprint in pairs:
                # Identical movements within one batch collapse to one record
                if record.id in fingerprints:
                    continue
                fingerprints[record.id] = fingerprint
                records.append(record)

            result.state = SyncState.CLASSIFYING
            classified = self._classify(records, cancel_event)
            result.classified = len(classified)

            result.state = SyncState.RECONCILING
            hints = {
                r.record_id: r.counterparty_hint or r.description
                for r in classified
                if r.source_type == SourceType.DOCUMENT
            }
            outcome = self.matcher.reconcile(
                [r for r in classified if r.source_type == SourceType.TRANSACTION],
                [r for r in classified if r.source_type == SourceType.DOCUMENT],
                description_hints=hints,
                accounting_type=self._accounting_type,
            )
            result.matched = len(outcome.matches)

            result.state = SyncState.AUDITING
            audited = self.auditor.audit_many(outcome.transactions + outcome.documents)
            result.flagged = sum(
                1
                for r in audited
                if r.audit_outcome is not None and r.audit_outcome.severity == Severity.CRITICAL
            )
            result.automated = sum(1 for r in audited if r.confidence > self.approval_threshold)

            result.state = SyncState.PERSISTING
            decision_records = [
                DecisionRecord.from_result(r, fingerprints[r.record_id], today) for r in audited
            ]
            self._persist(decision_records, result, cancel_event)

            result.state = SyncState.COMPLETED
            logger.info(
                "Sync completed: %d classified, %d matched, %d flagged, %d new, %d duplicate",
                result.classified,
                result.matched,
                result.flagged,
                result.inserted,
                result.skipped_duplicates,
            )

        except SyncCancelled:
            logger.warning(
                "Sync cancelled during %s (%d chunk(s) persisted)",
                result.state.value,
                result.chunks_persisted,
            )
            result.state = SyncState.CANCELLED

        except Exception as e:
            logger.exception("Sync failed: %s", e)
            result.state = SyncState.FAILED
            result.errors.append(f"Fatal error: {e}")

        result.duration_ms = int((time.time() - start_time) * 1000)
        return result
