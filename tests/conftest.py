"""Test fixtures and utilities."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from guardian_engine.learning import LearningStore
from guardian_engine.registry import CategoryRegistry, TTLCache
from guardian_engine.review import DecisionWorkflow
from guardian_engine.schemas.fingerprint import compute_fingerprint, record_id_for
from guardian_engine.schemas.records import (
    ClassificationResult,
    DecisionRecord,
    SourceType,
    SuggestedAction,
    UnclassifiedRecord,
)
from guardian_engine.state_store import StateStore

# Statement lines as a Brazilian bank exports them
SAMPLE_STATEMENT = [
    {"amount": "-450.00", "date": "2026-03-10", "description": "PIX ENVIADO CONTABILIDADE SILVA"},
    {"amount": "4200.00", "date": "2026-03-11", "description": "PIX RECEBIDO CLIENTE ACME"},
    {"amount": "-750.00", "date": "2026-03-12", "description": "AWS SERVICES FATURA MENSAL"},
    {"amount": "-12.90", "date": "2026-03-15", "description": "TARIFA PACOTE SERVICOS"},
]

SAMPLE_DOCUMENTS = [
    {
        "document_id": "nf-1001",
        "amount": "450.00",
        "date": "2026-03-12",
        "vendor": "Contabilidade Silva",
        "label_guess": "Contabilidade",
    },
]


def make_unclassified(
    description: str,
    amount: str = "-100.00",
    occurred_at: date = date(2026, 3, 10),
    source_type: SourceType = SourceType.TRANSACTION,
    counterparty_hint: str | None = None,
    label_hint: str | None = None,
) -> UnclassifiedRecord:
    """Build an UnclassifiedRecord with a fingerprint-derived id."""
    fingerprint = compute_fingerprint(
        source_type.value, description, Decimal(amount), occurred_at
    )
    return UnclassifiedRecord(
        id=record_id_for(source_type.value, fingerprint),
        source_type=source_type,
        raw_description=description,
        amount=Decimal(amount),
        occurred_at=occurred_at,
        counterparty_hint=counterparty_hint,
        label_hint=label_hint,
        origin="test",
    )


def make_result(
    record_id: str,
    category_label: str = "Pagamentos Diversos",
    amount: str = "-100.00",
    occurred_at: date = date(2026, 3, 10),
    source_type: SourceType = SourceType.TRANSACTION,
    confidence: float = 0.80,
    description: str = "PAGAMENTO FORNECEDOR",
    counterparty_hint: str | None = None,
) -> ClassificationResult:
    """Build a ClassificationResult consistent with its confidence."""
    return ClassificationResult(
        record_id=record_id,
        source_type=source_type,
        category_label=category_label,
        confidence=confidence,
        suggested_action=(
            SuggestedAction.APPROVE if confidence >= 0.90 else SuggestedAction.INVESTIGATE
        ),
        needs_review=confidence < 0.90,
        amount=Decimal(amount),
        description=description,
        occurred_at=occurred_at,
        origin="test",
        counterparty_hint=counterparty_hint,
        strategy="test",
    )


def make_decision_record(
    record_id: str = "TX_0000000000000001",
    description: str = "CONTRATO SOFTWARE XYZ MENSAL",
    category_label: str = "Software ERP",
    amount: str = "-250.00",
    occurred_at: date = date(2026, 3, 10),
    confidence: float = 0.80,
    fingerprint: str | None = None,
) -> DecisionRecord:
    """Build a pending DecisionRecord."""
    result = make_result(
        record_id,
        category_label=category_label,
        amount=amount,
        occurred_at=occurred_at,
        confidence=confidence,
        description=description,
    )
    return DecisionRecord.from_result(
        result, fingerprint or f"fp-{record_id}", today=date(2026, 3, 31)
    )


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_guardian.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with all migrations applied."""
    return StateStore(temp_db)


@pytest.fixture
def registry(store) -> CategoryRegistry:
    """Registry seeded with the default catalog."""
    return CategoryRegistry(store, TTLCache(60.0))


@pytest.fixture
def learning(store) -> LearningStore:
    """Learning store on the temp database."""
    return LearningStore(store)


@pytest.fixture
def workflow(store, learning) -> DecisionWorkflow:
    """Decision workflow on the temp database."""
    return DecisionWorkflow(store, learning)


@pytest.fixture
def sample_statement() -> list[dict]:
    """Bank feed items."""
    return [dict(item) for item in SAMPLE_STATEMENT]


@pytest.fixture
def sample_documents() -> list[dict]:
    """Document feed items."""
    return [dict(item) for item in SAMPLE_DOCUMENTS]
