"""Daily summary payload for notification sinks.

Only the payload is built here; delivery (chat webhook, email) belongs to
whoever consumes it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from ..exceptions import UpstreamUnavailable
from ..schemas.records import DecisionStatus, Severity, utc_now_iso

if TYPE_CHECKING:
    from ..registry import CategoryRegistry
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

PENDING_CRITICAL_COUNT = 10
OVER_BUDGET_WARNING_PCT = Decimal("100")
OVER_BUDGET_CRITICAL_PCT = Decimal("150")


def format_brl(value: Decimal) -> str:
    """Format as Brazilian currency: R$ 1.234,56."""
    text = f"{value:,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")


def _item(label: str, value: str, severity: Severity) -> dict[str, str]:
    return {"label": label, "value": value, "severity": severity.value}


def build_summary(
    store: StateStore,
    registry: CategoryRegistry,
    today: date | None = None,
) -> dict[str, Any] | None:
    """Build the summary payload.

    Items:
    - pending records with their total (critical above 10 items)
    - categories whose approved total for the current month reaches the cap
      (warning at 100%, critical at 150%)
    - approved records that carry a critical budget audit

    Returns:
        ``{"title", "items", "timestamp"}`` or None when nothing to report.
    """
    today = today or date.today()
    items: list[dict[str, str]] = []

    pending = store.list_decision_records(status=DecisionStatus.PENDING)
    approved = store.list_decision_records(status=DecisionStatus.APPROVED)

    if pending:
        total = sum((abs(r.amount) for r in pending), Decimal("0"))
        items.append(
            _item(
                f"{len(pending)} record(s) awaiting approval",
                format_brl(total),
                Severity.CRITICAL if len(pending) > PENDING_CRITICAL_COUNT else Severity.WARNING,
            )
        )

    month_totals: dict[str, Decimal] = defaultdict(Decimal)
    for record in approved:
        competence = record.competence_date
        if (competence.year, competence.month) == (today.year, today.month):
            month_totals[record.category_label] += abs(record.amount)

    try:
        categories = {c.category_label: c for c in registry.list_categories()}
    except UpstreamUnavailable as e:
        logger.warning("Category registry unavailable, skipping budget items: %s", e)
        categories = {}

    for label, total in sorted(month_totals.items()):
        category = categories.get(label)
        if category is None or not category.has_cap:
            continue
        pct = total / category.monthly_cap * 100
        if pct >= OVER_BUDGET_WARNING_PCT:
            items.append(
                _item(
                    f'"{label}" is over budget',
                    f"{pct:.0f}% ({format_brl(total)} / {format_brl(category.monthly_cap)})",
                    Severity.CRITICAL if pct >= OVER_BUDGET_CRITICAL_PCT else Severity.WARNING,
                )
            )

    criticals = [
        r
        for r in approved
        if r.audit_outcome is not None and r.audit_outcome.severity == Severity.CRITICAL
    ]
    if criticals:
        items.append(
            _item(
                f"{len(criticals)} critical audit alert(s)",
                "Review records with critical budget variation",
                Severity.CRITICAL,
            )
        )

    if not items:
        return None

    return {
        "title": f"Guardian daily summary ({today.strftime('%d/%m/%Y')})",
        "items": items,
        "timestamp": utc_now_iso(),
    }
