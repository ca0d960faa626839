"""Human decision workflow."""

from .workflow import ClearResult, DecisionWorkflow, parse_overrides

__all__ = ["ClearResult", "DecisionWorkflow", "parse_overrides"]
