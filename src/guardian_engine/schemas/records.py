"""
Core record types flowing through the decision engine.

UnclassifiedRecord → ClassificationResult → (AuditOutcome) → DecisionRecord

Amounts are signed Decimals: positive = credit (money in), negative =
debit (money out). Documents carry the amount as printed (positive).
Dates are plain `date` objects; timestamps are ISO strings in UTC.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

APPROVAL_THRESHOLD = 0.90


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SourceType(str, Enum):
    """Where a record came from."""

    TRANSACTION = "transaction"
    DOCUMENT = "document"


class SuggestedAction(str, Enum):
    """What the engine recommends the human does."""

    APPROVE = "approve"
    INVESTIGATE = "investigate"
    ARCHIVE = "archive"  # Reconciled against its counterpart


class Severity(str, Enum):
    """Budget audit severity."""

    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


class DecisionStatus(str, Enum):
    """Lifecycle status of a decision record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditAction(str, Enum):
    """Mutations recorded in the audit log."""

    APPROVE = "approve"
    REJECT = "reject"
    RECLASSIFY = "reclassify"
    CLEAR_ALL = "clear_all"


def _decimal_or_none(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def parse_date(value: Any) -> date | None:
    """Parse an ISO YYYY-MM-DD value; empty values become None."""
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def suggested_action_for(
    confidence: float,
    threshold: float = APPROVAL_THRESHOLD,
) -> SuggestedAction:
    """approve iff confidence reaches the approval threshold."""
    return SuggestedAction.APPROVE if confidence >= threshold else SuggestedAction.INVESTIGATE


def compute_needs_review(
    confidence: float,
    audit_outcome: AuditOutcome | None,
    threshold: float = APPROVAL_THRESHOLD,
) -> bool:
    """needs_review holds whenever confidence is below threshold or the audit is critical."""
    if confidence < threshold:
        return True
    return audit_outcome is not None and audit_outcome.severity == Severity.CRITICAL


@dataclass
class UnclassifiedRecord:
    """A raw movement or document awaiting classification."""

    id: str
    source_type: SourceType
    raw_description: str
    amount: Decimal
    occurred_at: date
    counterparty_hint: str | None = None
    label_hint: str | None = None  # Document label guess
    origin: str = ""
    source_ref: str | None = None  # Upstream id, e.g. the document_id

    @property
    def is_credit(self) -> bool:
        """True for money coming in."""
        return self.amount > 0


@dataclass
class AuditOutcome:
    """Result of checking an amount against its category budget."""

    within_budget: bool
    budget_limit: Decimal | None = None
    variation: Decimal | None = None
    severity: Severity = Severity.NONE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "within_budget": self.within_budget,
            "budget_limit": None if self.budget_limit is None else str(self.budget_limit),
            "variation": None if self.variation is None else str(self.variation),
            "severity": self.severity.value,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> AuditOutcome | None:
        """Inverse of to_dict; None passes through."""
        if not data:
            return None
        return cls(
            within_budget=bool(data["within_budget"]),
            budget_limit=_decimal_or_none(data.get("budget_limit")),
            variation=_decimal_or_none(data.get("variation")),
            severity=Severity(data.get("severity", "none")),
        )


@dataclass
class ClassificationResult:
    """Outcome of classifying (and later reconciling/auditing) one record."""

    record_id: str
    source_type: SourceType
    category_label: str
    confidence: float
    suggested_action: SuggestedAction
    needs_review: bool
    amount: Decimal
    description: str
    occurred_at: date
    origin: str = ""
    source_ref: str | None = None
    counterparty_hint: str | None = None
    matched_record_id: str | None = None
    audit_outcome: AuditOutcome | None = None
    strategy: str = ""  # Name of the classifier tier that decided

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")


@dataclass
class LearningRule:
    """Token-keyed rule learned from a human decision."""

    id: int
    tokens: list[str]
    category_label: str
    hit_count: int
    derived_confidence: float
    original_description: str
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: Any) -> LearningRule:
        """Create from database row."""
        return cls(
            id=row["id"],
            tokens=json.loads(row["tokens"]),
            category_label=row["category_label"],
            hit_count=row["hit_count"],
            derived_confidence=row["derived_confidence"],
            original_description=row["original_description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "tokens": list(self.tokens),
            "category_label": self.category_label,
            "hit_count": self.hit_count,
            "derived_confidence": self.derived_confidence,
            "original_description": self.original_description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class CategoryBudget:
    """A category with its monthly cap (0 = no cap)."""

    category_label: str
    monthly_cap: Decimal = Decimal("0")
    group_name: str = ""
    accounting_type: str = ""
    active: bool = True

    @property
    def has_cap(self) -> bool:
        """True when a positive cap is configured."""
        return self.monthly_cap > 0

    @property
    def is_revenue(self) -> bool:
        """True for revenue accounting types."""
        return self.accounting_type.startswith("RECEITA")

    @classmethod
    def from_row(cls, row: Any) -> CategoryBudget:
        """Create from database row."""
        return cls(
            category_label=row["category_label"],
            monthly_cap=Decimal(row["monthly_cap"]),
            group_name=row["group_name"] or "",
            accounting_type=row["accounting_type"] or "",
            active=bool(row["active"]),
        )


def build_suggestion_note(
    category_label: str,
    confidence: float,
    action: SuggestedAction,
) -> str:
    """Human-readable note explaining the suggestion."""
    note = f'Classified as "{category_label}" with {round(confidence * 100)}% confidence.'
    if action == SuggestedAction.ARCHIVE:
        return note + " Reconciled with its counterpart; safe to archive."
    if action == SuggestedAction.APPROVE:
        return note + " Recommended for approval."
    return note + " Review recommended before approval."


@dataclass
class DecisionRecord:
    """Persisted classification awaiting or holding a human decision."""

    id: str
    source_type: SourceType
    category_label: str
    confidence: float
    suggested_action: SuggestedAction
    needs_review: bool
    amount: Decimal
    description: str
    occurred_at: date
    status: DecisionStatus
    created_at: str
    competence_date: date
    due_date: date
    paid_date: date
    included_date: date
    fingerprint: str
    origin: str = ""
    source_ref: str | None = None
    counterparty_hint: str | None = None
    matched_record_id: str | None = None
    audit_outcome: AuditOutcome | None = None
    strategy: str = ""
    suggestion_note: str = ""
    updated_at: str | None = None

    @classmethod
    def from_result(
        cls,
        result: ClassificationResult,
        fingerprint: str,
        today: date | None = None,
    ) -> DecisionRecord:
        """Build a pending record with default dates.

        competence = first day of the movement's month; due = paid = movement
        date; included = discovery date.
        """
        today = today or date.today()
        return cls(
            id=result.record_id,
            source_type=result.source_type,
            category_label=result.category_label,
            confidence=result.confidence,
            suggested_action=result.suggested_action,
            needs_review=result.needs_review,
            amount=result.amount,
            description=result.description,
            occurred_at=result.occurred_at,
            status=DecisionStatus.PENDING,
            created_at=utc_now_iso(),
            competence_date=result.occurred_at.replace(day=1),
            due_date=result.occurred_at,
            paid_date=result.occurred_at,
            included_date=today,
            fingerprint=fingerprint,
            origin=result.origin,
            source_ref=result.source_ref,
            counterparty_hint=result.counterparty_hint,
            matched_record_id=result.matched_record_id,
            audit_outcome=result.audit_outcome,
            strategy=result.strategy,
            suggestion_note=build_suggestion_note(
                result.category_label, result.confidence, result.suggested_action
            ),
        )

    def to_dict(self) -> dict:
        """Full JSON-serializable snapshot (used for audit before/after)."""
        return {
            "id": self.id,
            "source_type": self.source_type.value,
            "category_label": self.category_label,
            "confidence": self.confidence,
            "suggested_action": self.suggested_action.value,
            "needs_review": self.needs_review,
            "amount": str(self.amount),
            "description": self.description,
            "occurred_at": self.occurred_at.isoformat(),
            "status": self.status.value,
            "created_at": self.created_at,
            "competence_date": self.competence_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "paid_date": self.paid_date.isoformat(),
            "included_date": self.included_date.isoformat(),
            "fingerprint": self.fingerprint,
            "origin": self.origin,
            "source_ref": self.source_ref,
            "counterparty_hint": self.counterparty_hint,
            "matched_record_id": self.matched_record_id,
            "audit_outcome": self.audit_outcome.to_dict() if self.audit_outcome else None,
            "strategy": self.strategy,
            "suggestion_note": self.suggestion_note,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: Any) -> DecisionRecord:
        """Create from database row."""
        audit_json = row["audit_outcome"]
        return cls(
            id=row["id"],
            source_type=SourceType(row["source_type"]),
            category_label=row["category_label"],
            confidence=row["confidence"],
            suggested_action=SuggestedAction(row["suggested_action"]),
            needs_review=bool(row["needs_review"]),
            amount=Decimal(row["amount"]),
            description=row["description"],
            occurred_at=date.fromisoformat(row["occurred_at"]),
            status=DecisionStatus(row["status"]),
            created_at=row["created_at"],
            competence_date=date.fromisoformat(row["competence_date"]),
            due_date=date.fromisoformat(row["due_date"]),
            paid_date=date.fromisoformat(row["paid_date"]),
            included_date=date.fromisoformat(row["included_date"]),
            fingerprint=row["fingerprint"],
            origin=row["origin"] or "",
            source_ref=row["source_ref"],
            counterparty_hint=row["counterparty_hint"],
            matched_record_id=row["matched_record_id"],
            audit_outcome=AuditOutcome.from_dict(json.loads(audit_json)) if audit_json else None,
            strategy=row["strategy"] or "",
            suggestion_note=row["suggestion_note"] or "",
            updated_at=row["updated_at"],
        )


@dataclass
class AuditLogEntry:
    """Append-only record of one mutation."""

    id: int
    decision_record_id: str | None  # None for clear_all
    action: AuditAction
    before_snapshot: Any
    after_snapshot: Any
    timestamp: str
    actor: str = "system"
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Any) -> AuditLogEntry:
        """Create from database row."""
        return cls(
            id=row["id"],
            decision_record_id=row["decision_record_id"],
            action=AuditAction(row["action"]),
            before_snapshot=json.loads(row["before_snapshot"]),
            after_snapshot=json.loads(row["after_snapshot"]),
            timestamp=row["timestamp"],
            actor=row["actor"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        )


__all__ = [
    "APPROVAL_THRESHOLD",
    "AuditAction",
    "AuditLogEntry",
    "AuditOutcome",
    "CategoryBudget",
    "ClassificationResult",
    "DecisionRecord",
    "DecisionStatus",
    "LearningRule",
    "Severity",
    "SourceType",
    "SuggestedAction",
    "UnclassifiedRecord",
    "build_suggestion_note",
    "compute_needs_review",
    "parse_date",
    "suggested_action_for",
    "utc_now_iso",
]
