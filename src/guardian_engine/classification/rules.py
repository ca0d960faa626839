"""Deterministic classifier tiers.

Order inside the default chain:
1. LearnedRuleClassifier: rules confirmed by humans
2. CounterpartyRuleClassifier: recurring counterparties and vendor keywords
3. LabelHintClassifier: label guessed by the document source
4. SignDefaultClassifier: credit/debit default
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..schemas.records import SourceType, UnclassifiedRecord
from ..schemas.tokens import extract_tokens, normalize_text
from .base import Classifier, Suggestion

if TYPE_CHECKING:
    from ..learning import LearningStore

logger = logging.getLogger(__name__)

HEURISTIC_BASE_CONFIDENCE = 0.85
LABEL_HINT_CONFIDENCE = 0.85
SIGN_DEFAULT_CONFIDENCE = 0.80

CREDIT_DEFAULT_LABEL = "Receita Operacional"
DEBIT_DEFAULT_LABEL = "Pagamentos Diversos"
DOCUMENT_DEFAULT_LABEL = "Despesas Administrativas"


class LearnedRuleClassifier(Classifier):
    """Applies the best-overlapping learned rule."""

    name = "learned_rule"

    def __init__(self, learning: LearningStore) -> None:
        self.learning = learning

    def suggest(self, record: UnclassifiedRecord) -> Suggestion | None:
        text = record.raw_description
        if record.counterparty_hint:
            text = f"{text} {record.counterparty_hint}"
        match = self.learning.find_best_rule(extract_tokens(text))
        if match is None:
            return None
        return Suggestion(
            category_label=match.rule.category_label,
            confidence=match.confidence,
            reason=(
                f"rule {match.rule.id} ({match.overlap} shared tokens, "
                f"{match.rule.hit_count} hits)"
            ),
        )


@dataclass(frozen=True)
class KeywordRule:
    """Keyword rule over normalized text.

    Matches when every phrase in ``all_of`` and at least one phrase in
    ``any_of`` (if given) occur as whole words.
    """

    category_label: str
    confidence: float
    any_of: tuple[str, ...] = ()
    all_of: tuple[str, ...] = ()
    direction: str | None = None  # "credit", "debit" or None for both
    source_type: SourceType | None = None

    def matches(self, record: UnclassifiedRecord, padded_text: str) -> bool:
        if self.source_type is not None and record.source_type != self.source_type:
            return False
        if self.direction == "credit" and not record.is_credit:
            return False
        if self.direction == "debit" and record.is_credit:
            return False
        if any(f" {phrase} " not in padded_text for phrase in self.all_of):
            return False
        if self.any_of and not any(f" {phrase} " in padded_text for phrase in self.any_of):
            return False
        return True


_INVESTMENT_PRODUCTS = ("CDB", "LCI", "LCA", "FUNDO", "TESOURO")
_CLOUD_VENDORS = ("AWS", "AMAZON", "AZURE", "GOOGLE CLOUD")
_TX = SourceType.TRANSACTION
_DOC = SourceType.DOCUMENT

# First match wins; every confidence sits above HEURISTIC_BASE_CONFIDENCE.
DEFAULT_KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("Resgate Investimento", 0.98, _INVESTMENT_PRODUCTS, ("RESGATE",), source_type=_TX),
    KeywordRule(
        "Aplicacao Investimento", 0.98, _INVESTMENT_PRODUCTS, ("APLICACAO",), source_type=_TX
    ),
    KeywordRule(
        "Rendimento Investimento",
        0.95,
        ("RENDIMENTO", "RENDIMENTOS", "JUROS"),
        direction="credit",
        source_type=_TX,
    ),
    KeywordRule(
        "Receita Operacional", 0.90, all_of=("PIX RECEBIDO",), direction="credit", source_type=_TX
    ),
    KeywordRule("Servicos Financeiros", 0.95, ("SERASA", "TARIFA", "IOF"), source_type=_TX),
    KeywordRule("Despesas Imobiliarias", 0.95, ("CONDOMINIO", "ALUGUEL", "IPTU")),
    KeywordRule("Fatura Cartao", 0.93, all_of=("FATURA",), any_of=("CARTAO",), source_type=_TX),
    KeywordRule("Folha de Pagamento", 0.92, ("SALARIO", "FOLHA", "INSS", "FGTS")),
    KeywordRule(
        "Nota Fiscal Servico",
        0.92,
        ("NOTA FISCAL", "NF E", "NFSE", "NFS E"),
        source_type=_DOC,
    ),
    KeywordRule("Infraestrutura / AWS", 0.92, _CLOUD_VENDORS),
    KeywordRule("Utilidades", 0.90, ("ENERGIA", "TELEFONE", "INTERNET")),
)


class CounterpartyRuleClassifier(Classifier):
    """Recognizes recurring counterparties and vendor keywords."""

    name = "counterparty_rule"

    def __init__(self, rules: tuple[KeywordRule, ...] = DEFAULT_KEYWORD_RULES) -> None:
        self.rules = rules

    def suggest(self, record: UnclassifiedRecord) -> Suggestion | None:
        # Banking stopwords are kept here: "PIX RECEBIDO" itself is a signal
        description = normalize_text(record.raw_description)
        hint = normalize_text(record.counterparty_hint)
        padded = f" {description} {hint} "
        for rule in self.rules:
            if rule.matches(record, padded):
                return Suggestion(
                    category_label=rule.category_label,
                    confidence=max(rule.confidence, HEURISTIC_BASE_CONFIDENCE),
                    reason="keyword rule",
                )
        return None


class LabelHintClassifier(Classifier):
    """Uses the label guessed by the document source."""

    name = "label_hint"

    def suggest(self, record: UnclassifiedRecord) -> Suggestion | None:
        if record.source_type != SourceType.DOCUMENT or not record.label_hint:
            return None
        return Suggestion(record.label_hint.strip(), LABEL_HINT_CONFIDENCE, "document label")


class SignDefaultClassifier(Classifier):
    """Falls back to a default category by sign (or document type)."""

    name = "sign_default"

    def suggest(self, record: UnclassifiedRecord) -> Suggestion | None:
        if record.source_type == SourceType.DOCUMENT:
            label = DOCUMENT_DEFAULT_LABEL
        elif record.is_credit:
            label = CREDIT_DEFAULT_LABEL
        else:
            label = DEBIT_DEFAULT_LABEL
        return Suggestion(label, SIGN_DEFAULT_CONFIDENCE, "sign default")
