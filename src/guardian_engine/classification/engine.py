"""Classification engine: runs the classifier chain for one record.

Resolution order (default chain):
1. Learned rules (human-confirmed token rules)
2. Counterparty / vendor keyword heuristics
3. Optional LLM (disabled by default)
4. Document label hint
5. Credit/debit sign default

A tier wins when its confidence reaches ``accept_threshold``. Records whose
description contains no letter or digit skip the chain entirely and get
the low-confidence uncategorized default, which forces review.

``classify`` is a pure function of the record and the learned rules: it
never writes anything.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from ..registry.categories import UNCATEGORIZED_LABEL
from ..schemas.records import (
    APPROVAL_THRESHOLD,
    ClassificationResult,
    UnclassifiedRecord,
    compute_needs_review,
    suggested_action_for,
)
from ..schemas.tokens import has_alphanumeric
from .base import Classifier, Suggestion
from .rules import (
    CounterpartyRuleClassifier,
    LabelHintClassifier,
    LearnedRuleClassifier,
    SignDefaultClassifier,
)

if TYPE_CHECKING:
    import httpx

    from ..config import Config
    from ..learning import LearningStore
    from ..registry import CategoryRegistry

logger = logging.getLogger(__name__)

UNCATEGORIZED_CONFIDENCE = 0.30
UNCATEGORIZED_STRATEGY = "uncategorized"
DEFAULT_ACCEPT_THRESHOLD = 0.50


class ClassificationEngine:
    """Runs an ordered list of classifier strategies."""

    def __init__(
        self,
        classifiers: Sequence[Classifier],
        approval_threshold: float = APPROVAL_THRESHOLD,
        accept_threshold: float = DEFAULT_ACCEPT_THRESHOLD,
    ) -> None:
        self.classifiers = list(classifiers)
        self.approval_threshold = approval_threshold
        self.accept_threshold = accept_threshold

    def _resolve(self, record: UnclassifiedRecord) -> tuple[Suggestion, str]:
        if not has_alphanumeric(record.raw_description) and not has_alphanumeric(
            record.counterparty_hint
        ):
            logger.debug("Record %s has no usable description", record.id)
            return (
                Suggestion(UNCATEGORIZED_LABEL, UNCATEGORIZED_CONFIDENCE, "empty description"),
                UNCATEGORIZED_STRATEGY,
            )

        for classifier in self.classifiers:
            suggestion = classifier.suggest(record)
            if suggestion is not None and suggestion.confidence >= self.accept_threshold:
                return suggestion, classifier.name

        return (
            Suggestion(UNCATEGORIZED_LABEL, UNCATEGORIZED_CONFIDENCE, "no tier answered"),
            UNCATEGORIZED_STRATEGY,
        )

    def classify(self, record: UnclassifiedRecord) -> ClassificationResult:
        """Classify one record."""
        suggestion, strategy = self._resolve(record)
        confidence = suggestion.confidence
        logger.debug(
            "Classified %s as '%s' (%.2f) via %s: %s",
            record.id,
            suggestion.category_label,
            confidence,
            strategy,
            suggestion.reason,
        )
        return ClassificationResult(
            record_id=record.id,
            source_type=record.source_type,
            category_label=suggestion.category_label,
            confidence=confidence,
            suggested_action=suggested_action_for(confidence, self.approval_threshold),
            needs_review=compute_needs_review(confidence, None, self.approval_threshold),
            amount=record.amount,
            description=record.raw_description,
            occurred_at=record.occurred_at,
            origin=record.origin,
            source_ref=record.source_ref,
            counterparty_hint=record.counterparty_hint,
            strategy=strategy,
        )

    def classify_many(self, records: Sequence[UnclassifiedRecord]) -> list[ClassificationResult]:
        """Classify records sequentially, preserving order."""
        return [self.classify(record) for record in records]


def build_default_engine(
    learning: LearningStore,
    config: Config,
    registry: CategoryRegistry | None = None,
    llm_client: httpx.Client | None = None,
) -> ClassificationEngine:
    """Assemble the default classifier chain from configuration."""
    classifiers: list[Classifier] = [
        LearnedRuleClassifier(learning),
        CounterpartyRuleClassifier(),
    ]
    if config.llm.enabled and registry is not None:
        from .llm import LLMClassifier

        classifiers.append(LLMClassifier(config.llm, registry.category_names, client=llm_client))
        logger.info("LLM classifier enabled (%s at %s)", config.llm.model, config.llm.ollama_url)
    classifiers.extend([LabelHintClassifier(), SignDefaultClassifier()])

    return ClassificationEngine(
        classifiers,
        approval_threshold=config.classification.approval_threshold,
        accept_threshold=config.classification.accept_threshold,
    )
