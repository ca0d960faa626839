"""Budget auditor: checks a classified amount against its category cap.

Rules:
- cap > 0 and |amount| > cap  → critical, variation = |amount| - cap,
  needs_review forced on, suggested action forced to investigate
- |amount| == cap             → within budget (the cap itself is allowed)
- no category / cap == 0      → no check, no audit outcome
- registry unavailable        → treated as "no policy" (logged)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Protocol

from ..exceptions import UpstreamUnavailable
from ..schemas.records import (
    AuditOutcome,
    CategoryBudget,
    ClassificationResult,
    Severity,
    SuggestedAction,
)

logger = logging.getLogger(__name__)


class BudgetPolicy(Protocol):
    """Anything that can resolve a category label to its budget."""

    def resolve(self, category_label: str) -> CategoryBudget | None: ...


class BudgetAuditor:
    """Applies the category cap policy to classification results."""

    def __init__(self, policy: BudgetPolicy) -> None:
        self.policy = policy

    def _budget_for(self, category_label: str) -> CategoryBudget | None:
        try:
            return self.policy.resolve(category_label)
        except UpstreamUnavailable as e:
            logger.warning(
                "No budget policy for '%s' (registry unavailable: %s)", category_label, e
            )
            return None

    def audit(self, result: ClassificationResult) -> ClassificationResult:
        """Return a copy of ``result`` carrying its audit outcome."""
        budget = self._budget_for(result.category_label)
        if budget is None or not budget.has_cap:
            return replace(result, audit_outcome=None)

        amount = abs(result.amount)
        cap = budget.monthly_cap
        if amount > cap:
            variation = amount - cap
            logger.info(
                "Budget exceeded for %s: %s > %s in '%s'",
                result.record_id,
                amount,
                cap,
                result.category_label,
            )
            return replace(
                result,
                audit_outcome=AuditOutcome(
                    within_budget=False,
                    budget_limit=cap,
                    variation=variation,
                    severity=Severity.CRITICAL,
                ),
                needs_review=True,
                suggested_action=SuggestedAction.INVESTIGATE,
            )

        return replace(
            result,
            audit_outcome=AuditOutcome(
                within_budget=True,
                budget_limit=cap,
                variation=amount - cap,
                severity=Severity.NONE,
            ),
        )

    def audit_many(self, results: list[ClassificationResult]) -> list[ClassificationResult]:
        """Audit every result, preserving order."""
        return [self.audit(result) for result in results]
