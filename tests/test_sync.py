"""Tests for the sync cycle."""

import threading
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from guardian_engine.audit import BudgetAuditor
from guardian_engine.classification import build_default_engine
from guardian_engine.config import Config, SyncConfig
from guardian_engine.exceptions import PersistenceError
from guardian_engine.matching import ReconciliationMatcher
from guardian_engine.schemas.records import DecisionStatus, Severity, SourceType, SuggestedAction
from guardian_engine.services import SyncService, SyncState
from guardian_engine.services.sync import chunked, records_from_transactions
from guardian_engine.sources import (
    RawDocument,
    RawTransaction,
    SourceError,
    StaticBankStatementSource,
    StaticDocumentSource,
)

TODAY = date(2026, 3, 31)


@pytest.fixture
def bank(sample_statement):
    return StaticBankStatementSource([RawTransaction.from_dict(i) for i in sample_statement])


@pytest.fixture
def documents(sample_documents):
    return StaticDocumentSource([RawDocument.from_dict(i) for i in sample_documents])


@pytest.fixture
def make_service(store, registry, learning):
    """Factory for a SyncService wired to the temp store."""

    def factory(bank_source, document_source, sync_config=None, **kwargs):
        config = Config()
        return SyncService(
            bank_source=bank_source,
            document_source=document_source,
            engine=build_default_engine(learning, config, registry=registry),
            matcher=ReconciliationMatcher(config.reconciliation),
            auditor=BudgetAuditor(registry),
            store=store,
            config=sync_config or config.sync,
            registry=registry,
            clock=lambda: TODAY,
            **kwargs,
        )

    return factory


class TestSyncCycle:
    """End-to-end cycle over static sources."""

    def test_full_cycle(self, make_service, bank, documents, store):
        """Every movement becomes a pending decision record."""
        result = make_service(bank, documents).run_cycle()

        assert result.success
        assert result.state == SyncState.COMPLETED
        assert result.window_start == date(2026, 3, 1)
        assert result.window_end == TODAY
        assert result.transactions_fetched == 4
        assert result.documents_fetched == 1
        assert result.classified == 5
        assert result.inserted == 5
        assert result.skipped_duplicates == 0
        assert result.degraded_sources == []

        records = store.list_decision_records(status=DecisionStatus.PENDING)
        assert len(records) == 5

    def test_payment_matched_to_invoice(self, make_service, bank, documents, store):
        """The accountant payment is reconciled with its invoice."""
        result = make_service(bank, documents).run_cycle()

        assert result.matched == 1
        by_description = {r.description: r for r in store.list_decision_records()}
        payment = by_description["PIX ENVIADO CONTABILIDADE SILVA"]
        assert payment.suggested_action == SuggestedAction.ARCHIVE
        assert payment.confidence == 1.0
        assert payment.needs_review is False
        assert payment.matched_record_id.startswith("DOC_")

        invoice = store.get_decision_record(payment.matched_record_id)
        assert invoice.source_type == SourceType.DOCUMENT
        assert invoice.source_ref == "nf-1001"
        assert invoice.matched_record_id == payment.id

    def test_over_budget_flagged(self, make_service, bank, documents, store):
        """The AWS bill above its 500 cap is critical and needs review."""
        result = make_service(bank, documents).run_cycle()

        assert result.flagged == 1
        aws = next(r for r in store.list_decision_records() if r.description.startswith("AWS"))
        assert aws.category_label == "Infraestrutura / AWS"
        assert aws.audit_outcome.severity == Severity.CRITICAL
        assert aws.audit_outcome.variation == Decimal("250.00")
        assert aws.needs_review is True
        assert aws.suggested_action == SuggestedAction.INVESTIGATE

    def test_default_dates(self, make_service, bank, documents, store):
        """Competence is the first of the month; included is today."""
        make_service(bank, documents).run_cycle()

        record = next(r for r in store.list_decision_records() if r.description.startswith("TARIFA"))
        assert record.competence_date == date(2026, 3, 1)
        assert record.due_date == date(2026, 3, 15)
        assert record.paid_date == date(2026, 3, 15)
        assert record.included_date == TODAY

    def test_rerun_is_idempotent(self, make_service, bank, documents, store):
        """Overlapping windows never duplicate records."""
        service = make_service(bank, documents)
        service.run_cycle()
        second = service.run_cycle()

        assert second.inserted == 0
        assert second.skipped_duplicates == 5
        assert store.count_decision_records() == 5

    def test_decisions_survive_resync(self, make_service, bank, documents, store, workflow):
        """A re-fetched movement does not reset its human decision."""
        service = make_service(bank, documents)
        service.run_cycle()
        record = store.list_decision_records()[0]
        workflow.approve(record.id)

        service.run_cycle()

        assert store.get_decision_record(record.id).status == DecisionStatus.APPROVED

    def test_identical_movements_in_batch_collapse(self, make_service, documents, store):
        """Same description, amount and day within one batch is stored once."""
        line = RawTransaction(Decimal("-20.00"), date(2026, 3, 5), "PADARIA CENTRAL")
        result = make_service(StaticBankStatementSource([line, line]), documents).run_cycle()

        assert result.transactions_fetched == 2
        assert result.classified == 2
        assert store.count_decision_records() == 2

    def test_window_override(self, make_service, bank, documents):
        """A shorter window fetches less."""
        result = make_service(bank, documents).run_cycle(window_days=18)

        assert result.window_start == date(2026, 3, 13)
        assert result.transactions_fetched == 1

    def test_learned_rule_used_on_next_cycle(self, make_service, documents, store, workflow):
        """A human decision changes how the next batch is classified."""
        first = RawTransaction(Decimal("-250.00"), date(2026, 3, 2), "CONTRATO SOFTWARE XYZ MENSAL")
        make_service(StaticBankStatementSource([first]), StaticDocumentSource()).run_cycle()
        workflow.reclassify(store.list_decision_records()[0].id, "Software ERP")

        second = RawTransaction(Decimal("-250.00"), date(2026, 3, 30), "CONTRATO SOFTWARE XYZ MENSAL")
        make_service(StaticBankStatementSource([second]), StaticDocumentSource()).run_cycle()

        new = next(r for r in store.list_decision_records() if r.occurred_at == date(2026, 3, 30))
        assert new.category_label == "Software ERP"
        assert new.confidence == pytest.approx(0.83)
        assert new.strategy == "learned_rule"


class TestDegradedSources:
    """Tests for partial source failures."""

    def test_bank_down_documents_still_processed(self, make_service, documents, store):
        """A failing source degrades to empty and is reported."""
        bank = MagicMock()
        bank.name = "bank"
        bank.fetch_statement.side_effect = SourceError("bank", "timed out")

        result = make_service(bank, documents).run_cycle()

        assert result.success
        assert result.degraded_sources == ["bank"]
        assert result.transactions_fetched == 0
        assert result.inserted == 1
        assert any("timed out" in e for e in result.errors)

    def test_unexpected_source_error_also_degrades(self, make_service, bank, store):
        """Non-upstream exceptions in a source are contained too."""
        docs = MagicMock()
        docs.name = "documents"
        docs.poll.side_effect = RuntimeError("bug")

        result = make_service(bank, docs).run_cycle()

        assert result.success
        assert result.degraded_sources == ["documents"]
        assert result.inserted == 4

    def test_both_down(self, make_service):
        """Nothing fetched is still a completed cycle."""
        bank = MagicMock()
        bank.name = "bank"
        bank.fetch_statement.side_effect = SourceError("bank", "down")
        docs = MagicMock()
        docs.name = "documents"
        docs.poll.side_effect = SourceError("documents", "down")

        result = make_service(bank, docs).run_cycle()

        assert result.success
        assert sorted(result.degraded_sources) == ["bank", "documents"]
        assert result.inserted == 0

    def test_sources_sharing_a_name(self, make_service, sample_statement, sample_documents):
        """Both sources are processed even when they report the same name."""
        bank = StaticBankStatementSource(
            [RawTransaction.from_dict(i) for i in sample_statement], name="inter"
        )
        docs = StaticDocumentSource(
            [RawDocument.from_dict(i) for i in sample_documents], name="inter"
        )

        result = make_service(bank, docs).run_cycle()

        assert result.success
        assert result.transactions_fetched == 4
        assert result.documents_fetched == 1
        assert result.inserted == 5

    def test_shared_name_one_source_down(self, make_service, sample_documents):
        """A failure is attributed to the failing source only."""
        bank = MagicMock()
        bank.name = "inter"
        bank.fetch_statement.side_effect = SourceError("inter", "down")
        docs = StaticDocumentSource(
            [RawDocument.from_dict(i) for i in sample_documents], name="inter"
        )

        result = make_service(bank, docs).run_cycle()

        assert result.success
        assert result.degraded_sources == ["inter"]
        assert result.documents_fetched == 1
        assert result.inserted == 1


class TestChunking:
    """Tests for chunked persistence and cancellation."""

    def test_chunks_persisted(self, make_service, bank, documents):
        """Records are written in chunks of chunk_size."""
        result = make_service(bank, documents, SyncConfig(chunk_size=2)).run_cycle()

        assert result.chunks_persisted == 3
        assert result.inserted == 5

    def test_cancel_before_start(self, make_service, bank, documents, store):
        """A set cancel event stops the cycle before anything is written."""
        cancel = threading.Event()
        cancel.set()

        result = make_service(bank, documents).run_cycle(cancel_event=cancel)

        assert result.state == SyncState.CANCELLED
        assert not result.success
        assert store.count_decision_records() == 0

    def test_cancel_between_chunks_keeps_persisted(self, make_service, bank, documents, store):
        """Chunks written before cancellation stay written."""
        cancel = threading.Event()
        real_insert = store.insert_decision_records

        def insert_then_cancel(records):
            outcome = real_insert(records)
            cancel.set()
            return outcome

        store.insert_decision_records = insert_then_cancel
        result = make_service(bank, documents, SyncConfig(chunk_size=2)).run_cycle(
            cancel_event=cancel
        )

        assert result.state == SyncState.CANCELLED
        assert result.chunks_persisted == 1
        assert store.count_decision_records() == 2

    def test_persistence_error_on_chunk(self, make_service, bank, documents, store):
        """A failing chunk is reported and the other chunks are still written."""
        real_insert = store.insert_decision_records
        calls = []

        def flaky_insert(records):
            calls.append(len(records))
            if len(calls) == 1:
                raise PersistenceError("database is locked")
            return real_insert(records)

        store.insert_decision_records = flaky_insert
        result = make_service(bank, documents, SyncConfig(chunk_size=2)).run_cycle()

        assert result.success
        assert result.chunks_persisted == 2
        assert result.inserted == 3
        assert any("locked" in e for e in result.errors)

    def test_classifier_crash_fails_cycle(self, make_service, bank, documents, store):
        """Unexpected errors end the cycle as FAILED with nothing written."""
        service = make_service(bank, documents)
        service.engine = MagicMock()
        service.engine.classify.side_effect = RuntimeError("boom")

        result = service.run_cycle()

        assert result.state == SyncState.FAILED
        assert store.count_decision_records() == 0
        assert result.errors


class TestHelpers:
    """Tests for sync helpers."""

    def test_chunked(self):
        """Slices cover the input in order."""
        assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
        assert list(chunked([], 3)) == []

    def test_record_ids_are_deterministic(self):
        """The same line always gets the same id."""
        line = RawTransaction(Decimal("-20.00"), date(2026, 3, 5), "PADARIA CENTRAL")
        (a, fp_a), = records_from_transactions([line], "bank")
        (b, fp_b), = records_from_transactions([line], "bank")

        assert a.id == b.id
        assert fp_a == fp_b
        assert a.id.startswith("TX_")

    def test_result_to_dict(self, make_service, bank, documents):
        """Results serialize to plain JSON types."""
        data = make_service(bank, documents).run_cycle().to_dict()

        assert data["state"] == "COMPLETED"
        assert data["window_start"] == "2026-03-01"
        assert data["inserted"] == 5
