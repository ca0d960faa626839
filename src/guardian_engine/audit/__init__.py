"""Budget audit of classified records."""

from .budget import BudgetAuditor, BudgetPolicy

__all__ = ["BudgetAuditor", "BudgetPolicy"]
