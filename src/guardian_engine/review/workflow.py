"""
Decision record workflow (human approval state machine).

States:
    pending ──approve──▶ approved
    pending ──reject───▶ rejected
    any     ──reclassify▶ approved (label overridden, confidence 1.0)

Every transition writes the update and exactly one audit entry in one
store transaction. Learning happens after that transaction commits; a
learning failure is logged and never undoes the decision.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any

from ..exceptions import PersistenceError, ValidationError
from ..schemas.records import (
    AuditAction,
    AuditLogEntry,
    DecisionRecord,
    DecisionStatus,
    SuggestedAction,
    build_suggestion_note,
    parse_date,
)

if TYPE_CHECKING:
    from ..learning import LearningStore
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

DATE_OVERRIDE_FIELDS = ("competence_date", "due_date", "paid_date")


@dataclass
class ClearResult:
    """Outcome of clear_all."""

    deleted: int


def parse_overrides(overrides: dict[str, Any] | None) -> dict[str, date]:
    """Validate date overrides (ISO YYYY-MM-DD strings or dates).

    Raises:
        ValidationError: Unknown key or unparseable date.
    """
    if not overrides:
        return {}
    unknown = set(overrides) - set(DATE_OVERRIDE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown override field(s): {', '.join(sorted(unknown))} "
            f"(allowed: {', '.join(DATE_OVERRIDE_FIELDS)})"
        )
    parsed: dict[str, date] = {}
    for key, value in overrides.items():
        if value is None or value == "":
            continue
        try:
            parsed[key] = parse_date(value)
        except (TypeError, ValueError):
            raise ValidationError(
                f"{key} must be an ISO date (YYYY-MM-DD), got {value!r}"
            ) from None
    return parsed


class DecisionWorkflow:
    """
    Applies human decisions to decision records.

    Responsibilities:
    - Enforce allowed transitions
    - Persist each transition together with its audit entry
    - Feed approved labels back into the learning store
    """

    def __init__(self, store: StateStore, learning: LearningStore):
        """Initialize with state store and learning store."""
        self.store = store
        self.learning = learning

    def _learn(self, record: DecisionRecord) -> None:
        try:
            self.learning.learn(record.description, record.category_label)
        except PersistenceError as e:
            logger.warning("Decision on %s saved but learning failed: %s", record.id, e)

    def approve(
        self,
        record_id: str,
        overrides: dict[str, Any] | None = None,
        actor: str = "system",
    ) -> DecisionRecord:
        """Approve a pending record and learn from its label.

        Raises:
            RecordNotFoundError: Unknown id.
            InvalidTransitionError: Record is not pending.
        """
        changes: dict[str, Any] = {
            "status": DecisionStatus.APPROVED,
            "needs_review": False,
            **parse_overrides(overrides),
        }
        _, after = self.store.update_decision_record(
            record_id,
            changes,
            AuditAction.APPROVE,
            actor=actor,
            expected_status=DecisionStatus.PENDING,
        )
        logger.info("Approved %s as '%s'", record_id, after.category_label)
        self._learn(after)
        return after

    def reject(
        self,
        record_id: str,
        overrides: dict[str, Any] | None = None,
        actor: str = "system",
    ) -> DecisionRecord:
        """Reject a pending record. Nothing is learned."""
        changes: dict[str, Any] = {
            "status": DecisionStatus.REJECTED,
            "needs_review": False,
            **parse_overrides(overrides),
        }
        _, after = self.store.update_decision_record(
            record_id,
            changes,
            AuditAction.REJECT,
            actor=actor,
            expected_status=DecisionStatus.PENDING,
        )
        logger.info("Rejected %s", record_id)
        return after

    def reclassify(
        self,
        record_id: str,
        new_label: str | None,
        overrides: dict[str, Any] | None = None,
        actor: str = "system",
    ) -> DecisionRecord:
        """Override the label (from any status), approve, and learn the new label."""
        label = (new_label or "").strip()
        if not label:
            raise ValidationError("reclassify requires a non-empty category label")

        changes: dict[str, Any] = {
            "category_label": label,
            "status": DecisionStatus.APPROVED,
            "needs_review": False,
            "confidence": 1.0,
            "suggested_action": SuggestedAction.APPROVE,
            "suggestion_note": build_suggestion_note(label, 1.0, SuggestedAction.APPROVE),
            **parse_overrides(overrides),
        }
        before, after = self.store.update_decision_record(
            record_id, changes, AuditAction.RECLASSIFY, actor=actor
        )
        logger.info(
            "Reclassified %s: '%s' -> '%s'", record_id, before.category_label, after.category_label
        )
        self._learn(after)
        return after

    def clear_all(self, confirm: bool = False, actor: str = "system") -> ClearResult:
        """Delete every decision record. Requires ``confirm=True``.

        Raises:
            ValidationError: confirm is not exactly True (nothing is deleted).
        """
        if confirm is not True:
            raise ValidationError("clear_all requires explicit confirmation (confirm=True)")
        deleted = self.store.delete_all_decision_records(actor=actor)
        logger.warning("Cleared %d decision record(s) (actor=%s)", deleted, actor)
        return ClearResult(deleted=deleted)

    def apply(
        self,
        action: str,
        record_id: str | None = None,
        new_label: str | None = None,
        overrides: dict[str, Any] | None = None,
        confirm: bool = False,
        actor: str = "system",
    ) -> DecisionRecord | ClearResult:
        """Dispatch a decision by action name (approve/reject/reclassify/clear_all)."""
        try:
            audit_action = AuditAction(action)
        except ValueError:
            valid = ", ".join(a.value for a in AuditAction)
            raise ValidationError(f"Unknown action '{action}' (expected one of {valid})") from None

        if audit_action == AuditAction.CLEAR_ALL:
            return self.clear_all(confirm=confirm, actor=actor)
        if not record_id:
            raise ValidationError(f"{audit_action.value} requires a record id")
        if audit_action == AuditAction.APPROVE:
            return self.approve(record_id, overrides, actor=actor)
        if audit_action == AuditAction.REJECT:
            return self.reject(record_id, overrides, actor=actor)
        return self.reclassify(record_id, new_label, overrides, actor=actor)

    def pending(self) -> list[DecisionRecord]:
        """Records awaiting a decision."""
        return self.store.list_decision_records(status=DecisionStatus.PENDING)

    def history(self, record_id: str) -> list[AuditLogEntry]:
        """Audit entries for one record, oldest first."""
        return self.store.get_audit_log(record_id)
