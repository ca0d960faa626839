"""Reconciliation matcher for pairing transactions with documents."""

from .engine import MatchResult, MatchScore, ReconciliationMatcher, ReconciliationOutcome

__all__ = ["MatchResult", "MatchScore", "ReconciliationMatcher", "ReconciliationOutcome"]
