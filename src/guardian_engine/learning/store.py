"""Learning store: token rules accumulated from human decisions.

A rule says "descriptions containing these significant tokens were
confirmed as this category N times". Confidence grows with N but is
capped at 0.97, so learning alone never produces certainty.

No temporal decay is applied; a rule keeps its hit count forever.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..schemas.records import LearningRule
from ..schemas.tokens import extract_tokens, token_key

if TYPE_CHECKING:
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.80
CONFIDENCE_STEP = 0.03
MAX_LEARNED_CONFIDENCE = 0.97
MIN_RULE_TOKENS = 2
# Share of a rule's tokens that must appear in a description for it to apply
MIN_RULE_COVERAGE = 0.5


def learning_confidence(hit_count: int) -> float:
    """Confidence derived from a rule's hit count.

    >>> learning_confidence(1)
    0.83
    >>> learning_confidence(10)
    0.97
    """
    return round(min(MAX_LEARNED_CONFIDENCE, BASE_CONFIDENCE + hit_count * CONFIDENCE_STEP), 2)


@dataclass
class RuleMatch:
    """A learned rule that applies to a description."""

    rule: LearningRule
    overlap: int

    @property
    def confidence(self) -> float:
        return learning_confidence(self.rule.hit_count)


class LearningStore:
    """Persists and queries learned token rules."""

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def learn(self, description: str, confirmed_label: str) -> LearningRule | None:
        """Record that ``description`` was confirmed as ``confirmed_label``.

        Returns the created or updated rule, or None when the description
        has fewer than two significant tokens (nothing is stored then).
        """
        tokens = extract_tokens(description)
        if len(tokens) < MIN_RULE_TOKENS:
            logger.info(
                "Not learning from '%s': %d significant token(s)", description, len(tokens)
            )
            return None

        rule, created = self.store.upsert_learning_rule(
            token_key=token_key(tokens),
            tokens=tokens,
            category_label=confirmed_label,
            description=description,
            confidence_for=learning_confidence,
        )
        if created:
            logger.info("Learned new rule %d: %s -> %s", rule.id, tokens, confirmed_label)
        else:
            logger.debug(
                "Rule %d reinforced (hits=%d): %s", rule.id, rule.hit_count, confirmed_label
            )
        return rule

    def find_best_rule(self, tokens: list[str]) -> RuleMatch | None:
        """Find the rule that best overlaps ``tokens``.

        A rule applies when it shares at least two tokens with the
        description and those cover at least half of the rule's tokens.
        Best = most shared tokens, then highest hit_count, then oldest rule.
        """
        if len(tokens) < MIN_RULE_TOKENS:
            return None
        wanted = set(tokens)
        best: RuleMatch | None = None
        for rule in self.store.list_learning_rules():
            overlap = len(wanted & set(rule.tokens))
            if overlap < MIN_RULE_TOKENS or overlap / len(rule.tokens) < MIN_RULE_COVERAGE:
                continue
            candidate = RuleMatch(rule=rule, overlap=overlap)
            if best is None or (overlap, rule.hit_count, -rule.id) > (
                best.overlap,
                best.rule.hit_count,
                -best.rule.id,
            ):
                best = candidate
        return best

    def list_rules(self) -> list[LearningRule]:
        """All learned rules, oldest first."""
        return self.store.list_learning_rules()
