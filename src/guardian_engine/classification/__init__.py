"""Classification engine and its classifier tiers."""

from .base import Classifier, Suggestion
from .engine import ClassificationEngine, build_default_engine
from .rules import (
    CounterpartyRuleClassifier,
    KeywordRule,
    LabelHintClassifier,
    LearnedRuleClassifier,
    SignDefaultClassifier,
)

__all__ = [
    "ClassificationEngine",
    "Classifier",
    "CounterpartyRuleClassifier",
    "KeywordRule",
    "LabelHintClassifier",
    "LearnedRuleClassifier",
    "SignDefaultClassifier",
    "Suggestion",
    "build_default_engine",
]
