"""Tests for the budget auditor."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from conftest import make_result

from guardian_engine.audit import BudgetAuditor
from guardian_engine.exceptions import UpstreamUnavailable
from guardian_engine.schemas.records import CategoryBudget, Severity, SuggestedAction


class TestBudgetAuditor:
    """Tests for cap checks against the seeded registry."""

    @pytest.fixture
    def auditor(self, registry):
        return BudgetAuditor(registry)

    def test_over_cap_is_critical(self, auditor):
        """750 against a 500 cap: critical, variation 250, forced review."""
        result = make_result(
            "TX_1", "Infraestrutura / AWS", amount="-750.00", confidence=0.92
        )

        audited = auditor.audit(result)

        outcome = audited.audit_outcome
        assert outcome.within_budget is False
        assert outcome.severity == Severity.CRITICAL
        assert outcome.budget_limit == Decimal("500")
        assert outcome.variation == Decimal("250.00")
        assert audited.needs_review is True
        assert audited.suggested_action == SuggestedAction.INVESTIGATE

    def test_cap_itself_is_within_budget(self, auditor):
        """An amount equal to the cap is allowed."""
        audited = auditor.audit(
            make_result("TX_1", "Infraestrutura / AWS", amount="-500.00", confidence=0.92)
        )

        assert audited.audit_outcome.within_budget is True
        assert audited.audit_outcome.severity == Severity.NONE
        assert audited.audit_outcome.variation == Decimal("0")
        assert audited.needs_review is False
        assert audited.suggested_action == SuggestedAction.APPROVE

    def test_one_cent_over_cap_is_critical(self, auditor):
        """The cap is the last allowed value."""
        audited = auditor.audit(
            make_result("TX_1", "Infraestrutura / AWS", amount="-500.01", confidence=0.92)
        )

        assert audited.audit_outcome.severity == Severity.CRITICAL
        assert audited.audit_outcome.variation == Decimal("0.01")
        assert audited.suggested_action == SuggestedAction.INVESTIGATE

    @pytest.mark.parametrize(
        "amount,severity,variation",
        [
            ("-1500.00", Severity.CRITICAL, Decimal("500.00")),
            ("-1000.00", Severity.NONE, Decimal("0")),
        ],
    )
    def test_utilities_cap(self, auditor, amount, severity, variation):
        """1500 in the 1000 Utilidades budget is flagged, 1000 is not."""
        audited = auditor.audit(make_result("TX_1", "Utilidades", amount=amount))

        assert audited.audit_outcome.severity == severity
        assert audited.audit_outcome.variation == variation
        assert audited.audit_outcome.within_budget is (severity == Severity.NONE)

    def test_within_budget_reports_headroom(self, auditor):
        """Variation below the cap is negative."""
        audited = auditor.audit(make_result("TX_1", "Utilidades", amount="-210.00"))

        assert audited.audit_outcome.variation == Decimal("-790.00")

    def test_uncapped_category_has_no_outcome(self, auditor):
        """Cap 0 means no budget check."""
        audited = auditor.audit(
            make_result("TX_1", "Receita Operacional", amount="999999.00", confidence=0.9)
        )
        assert audited.audit_outcome is None

    def test_unknown_category_has_no_outcome(self, auditor):
        """Labels missing from the catalog are not audited."""
        audited = auditor.audit(make_result("TX_1", "Categoria Inexistente", amount="-1.00"))
        assert audited.audit_outcome is None

    def test_input_not_mutated(self, auditor):
        """Audit returns a copy."""
        result = make_result("TX_1", "Infraestrutura / AWS", amount="-750.00", confidence=0.92)
        auditor.audit(result)

        assert result.audit_outcome is None
        assert result.needs_review is False

    def test_registry_unavailable_means_no_policy(self):
        """A failing registry never fails the audit."""
        policy = MagicMock()
        policy.resolve.side_effect = UpstreamUnavailable("down")

        audited = BudgetAuditor(policy).audit(make_result("TX_1", "Utilidades"))

        assert audited.audit_outcome is None

    def test_custom_policy(self):
        """Any object with resolve() can act as policy."""
        policy = MagicMock()
        policy.resolve.return_value = CategoryBudget("Viagens", Decimal("100"))

        audited = BudgetAuditor(policy).audit(make_result("TX_1", "Viagens", amount="-150.00"))

        assert audited.audit_outcome.severity == Severity.CRITICAL
        policy.resolve.assert_called_once_with("Viagens")

    def test_audit_many_preserves_order(self, auditor):
        """Batch audit keeps input order."""
        results = [make_result(f"TX_{i}", "Utilidades") for i in range(3)]
        assert [r.record_id for r in auditor.audit_many(results)] == ["TX_0", "TX_1", "TX_2"]
