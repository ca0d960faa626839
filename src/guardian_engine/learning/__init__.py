"""Feedback loop: rules learned from human decisions."""

from .store import LearningStore, RuleMatch, learning_confidence

__all__ = ["LearningStore", "RuleMatch", "learning_confidence"]
