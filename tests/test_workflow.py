"""Tests for the decision record workflow."""

import threading
import time
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from conftest import make_decision_record

from guardian_engine.exceptions import (
    InvalidTransitionError,
    PersistenceError,
    RecordNotFoundError,
    ValidationError,
)
from guardian_engine.review import DecisionWorkflow, parse_overrides
from guardian_engine.schemas.records import (
    AuditAction,
    DecisionRecord,
    DecisionStatus,
    SuggestedAction,
)


@pytest.fixture
def pending_record(store):
    """One stored pending record."""
    record = make_decision_record()
    store.insert_decision_records([record])
    return record


class TestApprove:
    """Tests for approval."""

    def test_approve_pending(self, workflow, store, pending_record):
        """Approving sets the status and clears the review flag."""
        approved = workflow.approve(pending_record.id)

        assert approved.status == DecisionStatus.APPROVED
        assert approved.needs_review is False
        assert store.get_decision_record(pending_record.id).status == DecisionStatus.APPROVED

    def test_approve_learns_label(self, workflow, learning, pending_record):
        """Approval teaches the learning store."""
        workflow.approve(pending_record.id)

        rules = learning.list_rules()
        assert len(rules) == 1
        assert rules[0].category_label == "Software ERP"
        assert rules[0].derived_confidence == pytest.approx(0.83)

    def test_approve_writes_one_audit_entry(self, workflow, store, pending_record):
        """Exactly one audit entry with before and after snapshots."""
        workflow.approve(pending_record.id, actor="ana")

        entries = store.get_audit_log(pending_record.id)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action == AuditAction.APPROVE
        assert entry.actor == "ana"
        assert entry.before_snapshot["status"] == "pending"
        assert entry.after_snapshot["status"] == "approved"

    def test_approve_with_date_overrides(self, workflow, pending_record):
        """Date overrides are applied on approval."""
        approved = workflow.approve(
            pending_record.id, overrides={"competence_date": "2026-02-01", "paid_date": "2026-03-11"}
        )

        assert approved.competence_date == date(2026, 2, 1)
        assert approved.paid_date == date(2026, 3, 11)
        assert approved.due_date == pending_record.due_date

    def test_approve_twice_rejected(self, workflow, store, pending_record):
        """Only pending records can be approved."""
        workflow.approve(pending_record.id)

        with pytest.raises(InvalidTransitionError):
            workflow.approve(pending_record.id)
        assert len(store.get_audit_log(pending_record.id)) == 1

    def test_concurrent_approvals_apply_once(self, workflow, store, learning, pending_record):
        """Two simultaneous approvals: one wins, the other sees it approved."""
        read_row = DecisionRecord.from_row

        def slow_from_row(row):
            record = read_row(row)
            time.sleep(0.2)
            return record

        outcomes: list[object] = []

        def approve():
            try:
                outcomes.append(workflow.approve(pending_record.id))
            except InvalidTransitionError as e:
                outcomes.append(e)

        with patch.object(DecisionRecord, "from_row", side_effect=slow_from_row):
            threads = [threading.Thread(target=approve) for _ in range(2)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=30)

        assert len(outcomes) == 2
        assert sum(isinstance(o, InvalidTransitionError) for o in outcomes) == 1
        assert [e.action for e in store.get_audit_log(pending_record.id)] == [AuditAction.APPROVE]
        assert [r.hit_count for r in learning.list_rules()] == [1]

    def test_generic_description_learns_nothing(self, workflow, learning, store):
        """Approving a line without significant tokens creates no rule."""
        record = make_decision_record(
            "TX_PIX",
            description="PIX RECEBIDO",
            category_label="Receita Operacional",
            amount="4200.00",
        )
        store.insert_decision_records([record])

        approved = workflow.approve(record.id)

        assert approved.status == DecisionStatus.APPROVED
        assert learning.list_rules() == []

    def test_unknown_record(self, workflow):
        """Unknown ids raise RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            workflow.approve("TX_missing")

    def test_learning_failure_keeps_decision(self, store, pending_record):
        """A learning error after commit is logged, not raised."""
        learning = MagicMock()
        learning.learn.side_effect = PersistenceError("disk full")

        approved = DecisionWorkflow(store, learning).approve(pending_record.id)

        assert approved.status == DecisionStatus.APPROVED
        assert store.get_decision_record(pending_record.id).status == DecisionStatus.APPROVED


class TestReject:
    """Tests for rejection."""

    def test_reject_pending(self, workflow, learning, store, pending_record):
        """Rejecting stores the status and learns nothing."""
        rejected = workflow.reject(pending_record.id)

        assert rejected.status == DecisionStatus.REJECTED
        assert learning.list_rules() == []
        assert store.get_audit_log(pending_record.id)[0].action == AuditAction.REJECT

    def test_reject_approved_fails(self, workflow, pending_record):
        """An approved record cannot be rejected."""
        workflow.approve(pending_record.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            workflow.reject(pending_record.id)
        assert exc_info.value.current_status == "approved"


class TestReclassify:
    """Tests for label override."""

    def test_reclassify_pending(self, workflow, learning, pending_record):
        """Reclassify overrides the label and approves with certainty."""
        record = workflow.reclassify(pending_record.id, "Fornecedores")

        assert record.category_label == "Fornecedores"
        assert record.status == DecisionStatus.APPROVED
        assert record.confidence == 1.0
        assert record.suggested_action == SuggestedAction.APPROVE
        assert record.needs_review is False
        assert learning.list_rules()[0].category_label == "Fornecedores"

    def test_reclassify_rewrites_note(self, workflow, store, pending_record):
        """The suggestion note describes the new label."""
        record = workflow.reclassify(pending_record.id, "Fornecedores")

        assert record.suggestion_note.startswith('Classified as "Fornecedores" with 100%')
        assert "Software ERP" not in record.suggestion_note
        stored = store.get_decision_record(pending_record.id)
        assert stored.suggestion_note == record.suggestion_note

    def test_reclassify_from_any_status(self, workflow, store, pending_record):
        """Approved and rejected records can still be reclassified."""
        workflow.reject(pending_record.id)
        record = workflow.reclassify(pending_record.id, "Fornecedores")

        assert record.status == DecisionStatus.APPROVED
        actions = [e.action for e in store.get_audit_log(pending_record.id)]
        assert actions == [AuditAction.REJECT, AuditAction.RECLASSIFY]

    @pytest.mark.parametrize("label", [None, "", "   "])
    def test_reclassify_requires_label(self, workflow, store, pending_record, label):
        """A blank label is a validation error and changes nothing."""
        with pytest.raises(ValidationError):
            workflow.reclassify(pending_record.id, label)

        assert store.get_decision_record(pending_record.id).status == DecisionStatus.PENDING
        assert store.get_audit_log(pending_record.id) == []

    def test_reclassified_rule_drives_next_classification(self, workflow, learning, store):
        """The corrected label is what the learning store returns next time."""
        record = make_decision_record(description="MENSALIDADE PLATAFORMA CRM ACME")
        store.insert_decision_records([record])

        workflow.reclassify(record.id, "Software ERP")

        match = learning.find_best_rule(["MENSALIDADE", "PLATAFORMA", "CRM", "ACME"])
        assert match.rule.category_label == "Software ERP"


class TestClearAll:
    """Tests for bulk deletion."""

    def test_requires_confirmation(self, workflow, store, pending_record):
        """Without confirm=True nothing is deleted."""
        for confirm in (False, "yes", 1):
            with pytest.raises(ValidationError):
                workflow.clear_all(confirm=confirm)

        assert store.count_decision_records() == 1

    def test_clear_all(self, workflow, store, pending_record):
        """Confirmed clear deletes everything and logs one entry."""
        store.insert_decision_records([make_decision_record("TX_0000000000000002")])

        result = workflow.clear_all(confirm=True, actor="ana")

        assert result.deleted == 2
        assert store.count_decision_records() == 0
        entries = store.get_audit_log()
        assert entries[-1].action == AuditAction.CLEAR_ALL
        assert entries[-1].decision_record_id is None
        assert len(entries[-1].before_snapshot) == 2
        assert entries[-1].metadata == {"deleted": 2}

    def test_learned_rules_survive(self, workflow, learning, pending_record):
        """Clearing records keeps what was learned."""
        workflow.approve(pending_record.id)
        workflow.clear_all(confirm=True)

        assert len(learning.list_rules()) == 1


class TestApply:
    """Tests for action dispatch."""

    def test_dispatch_by_name(self, workflow, pending_record):
        """Action names route to the matching transition."""
        record = workflow.apply("reclassify", pending_record.id, new_label="Contabilidade")
        assert record.category_label == "Contabilidade"

    def test_unknown_action(self, workflow):
        """Unknown action names are validation errors."""
        with pytest.raises(ValidationError, match="Unknown action"):
            workflow.apply("archive", "TX_1")

    def test_record_id_required(self, workflow):
        """Per-record actions need an id."""
        with pytest.raises(ValidationError):
            workflow.apply("approve")

    def test_pending_and_history(self, workflow, pending_record):
        """pending() lists open records; history() lists transitions."""
        assert [r.id for r in workflow.pending()] == [pending_record.id]

        workflow.approve(pending_record.id)

        assert workflow.pending() == []
        assert [e.action for e in workflow.history(pending_record.id)] == [AuditAction.APPROVE]


class TestParseOverrides:
    """Tests for date override validation."""

    def test_accepts_known_fields(self):
        """ISO strings and dates are both accepted; blanks are dropped."""
        parsed = parse_overrides(
            {"competence_date": "2026-01-01", "due_date": date(2026, 1, 10), "paid_date": ""}
        )
        assert parsed == {"competence_date": date(2026, 1, 1), "due_date": date(2026, 1, 10)}

    def test_unknown_field(self):
        """Only the date fields can be overridden."""
        with pytest.raises(ValidationError, match="included_date"):
            parse_overrides({"included_date": "2026-01-01"})

    def test_bad_date(self):
        """Unparseable dates are rejected."""
        with pytest.raises(ValidationError, match="competence_date"):
            parse_overrides({"competence_date": "01/02/2026"})
