"""Reconciliation matcher: pairs bank transactions with supporting documents.

Multi-signal score per (transaction, document) pair:
- value (0.5): 1.0 when absolute amounts agree within 0.01, then linear
  decay with the relative difference, reaching 0 at the value tolerance (5%)
- date (0.3): 1.0 within ±3 days, linear decay to 0 at ±7 days
- vendor (0.2): share of the document hint's significant tokens that also
  appear in the transaction text

Pairs at or above the match threshold (0.75) are assigned greedily by
score, so every document and every transaction is matched at most once.
The pass is single-threaded and deterministic: ties are broken by
document id, then transaction id.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal

from ..config import ReconciliationConfig
from ..schemas.records import ClassificationResult, SuggestedAction
from ..schemas.tokens import extract_tokens

logger = logging.getLogger(__name__)


@dataclass
class MatchScore:
    """Individual signal contribution to a match score."""

    signal: str
    score: float
    weight: float
    detail: str

    @property
    def weighted_score(self) -> float:
        """Get the weighted score for this signal."""
        return self.score * self.weight


@dataclass
class MatchResult:
    """A scored (transaction, document) pair."""

    transaction_id: str
    document_id: str
    total_score: float
    signals: list[MatchScore] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "transaction_id": self.transaction_id,
            "document_id": self.document_id,
            "total_score": self.total_score,
            "signals": [
                {
                    "signal": s.signal,
                    "score": s.score,
                    "weight": s.weight,
                    "weighted_score": s.weighted_score,
                    "detail": s.detail,
                }
                for s in self.signals
            ],
        }


@dataclass
class ReconciliationOutcome:
    """Updated results plus the accepted matches."""

    transactions: list[ClassificationResult]
    documents: list[ClassificationResult]
    matches: list[MatchResult] = field(default_factory=list)


class ReconciliationMatcher:
    """Scores and assigns transaction/document pairs."""

    def __init__(self, config: ReconciliationConfig | None = None) -> None:
        self.config = config or ReconciliationConfig()

    def _score_value(self, tx_amount: Decimal, doc_amount: Decimal) -> MatchScore:
        a, b = abs(tx_amount), abs(doc_amount)
        diff = abs(a - b)
        if diff <= Decimal(str(self.config.amount_epsilon)):
            score, detail = 1.0, f"amounts equal ({a})"
        else:
            relative = float(diff / max(a, b))
            score = max(0.0, 1.0 - relative / self.config.value_tolerance)
            detail = f"amounts differ by {diff} ({relative:.1%})"
        return MatchScore("value", score, self.config.weight_value, detail)

    def _score_date(self, tx: ClassificationResult, doc: ClassificationResult) -> MatchScore:
        days = abs((tx.occurred_at - doc.occurred_at).days)
        full, zero = self.config.date_full_days, self.config.date_zero_days
        if days <= full:
            score = 1.0
        elif days >= zero:
            score = 0.0
        else:
            score = (zero - days) / (zero - full)
        return MatchScore("date", score, self.config.weight_date, f"{days} day(s) apart")

    def _score_vendor(self, tx: ClassificationResult, hint: str | None) -> MatchScore:
        hint_tokens = extract_tokens(hint)
        if not hint_tokens:
            return MatchScore("vendor", 0.0, self.config.weight_vendor, "no vendor hint")
        tx_tokens = set(extract_tokens(f"{tx.description} {tx.counterparty_hint or ''}"))
        shared = [t for t in hint_tokens if t in tx_tokens]
        score = len(shared) / len(hint_tokens)
        detail = f"{len(shared)}/{len(hint_tokens)} hint tokens shared"
        return MatchScore("vendor", score, self.config.weight_vendor, detail)

    def score_pair(
        self,
        tx: ClassificationResult,
        doc: ClassificationResult,
        hint: str | None = None,
    ) -> MatchResult:
        """Score one pair without any threshold applied."""
        if hint is None:
            hint = doc.counterparty_hint or doc.description
        signals = [
            self._score_value(tx.amount, doc.amount),
            self._score_date(tx, doc),
            self._score_vendor(tx, hint),
        ]
        total = round(sum(s.weighted_score for s in signals), 4)
        return MatchResult(tx.record_id, doc.record_id, total, signals)

    @staticmethod
    def _plausible(
        tx: ClassificationResult,
        doc: ClassificationResult,
        accounting_type: Callable[[str], str | None] | None,
    ) -> bool:
        """Credits pair with revenue documents, debits with everything else."""
        if accounting_type is None:
            return True
        doc_type = accounting_type(doc.category_label)
        if doc_type is None:
            return True
        doc_is_revenue = doc_type.startswith("RECEITA")
        return doc_is_revenue == (tx.amount > 0)

    def reconcile(
        self,
        transactions: Sequence[ClassificationResult],
        documents: Sequence[ClassificationResult],
        description_hints: Mapping[str, str] | None = None,
        accounting_type: Callable[[str], str | None] | None = None,
    ) -> ReconciliationOutcome:
        """Match transactions against documents.

        Args:
            transactions: Classified bank transactions.
            documents: Classified supporting documents.
            description_hints: Optional document id -> vendor/description hint.
            accounting_type: Optional label -> accounting type lookup used to
                reject implausible pairs (credit vs. expense document).

        Returns:
            New result lists (inputs untouched) and the accepted matches.
        """
        hints = description_hints or {}
        candidates: list[MatchResult] = []
        for doc in documents:
            hint = hints.get(doc.record_id)
            for tx in transactions:
                if not self._plausible(tx, doc, accounting_type):
                    continue
                scored = self.score_pair(tx, doc, hint)
                if scored.total_score >= self.config.match_threshold:
                    candidates.append(scored)

        candidates.sort(key=lambda m: (-m.total_score, m.document_id, m.transaction_id))

        used_tx: set[str] = set()
        used_doc: set[str] = set()
        matches: list[MatchResult] = []
        for candidate in candidates:
            if candidate.transaction_id in used_tx or candidate.document_id in used_doc:
                continue
            used_tx.add(candidate.transaction_id)
            used_doc.add(candidate.document_id)
            matches.append(candidate)

        tx_to_doc = {m.transaction_id: m.document_id for m in matches}
        doc_to_tx = {m.document_id: m.transaction_id for m in matches}

        new_transactions = [
            replace(
                tx,
                matched_record_id=tx_to_doc[tx.record_id],
                suggested_action=SuggestedAction.ARCHIVE,
                confidence=1.0,
                needs_review=False,
            )
            if tx.record_id in tx_to_doc
            else tx
            for tx in transactions
        ]
        new_documents = [
            replace(doc, matched_record_id=doc_to_tx[doc.record_id])
            if doc.record_id in doc_to_tx
            else doc
            for doc in documents
        ]

        logger.info(
            "Reconciled %d transaction(s) against %d document(s): %d match(es)",
            len(transactions),
            len(documents),
            len(matches),
        )
        return ReconciliationOutcome(new_transactions, new_documents, matches)
