"""
Significant-token extraction (SSOT).

THE normalization used by learning, classification and reconciliation.
Any two components comparing descriptions must go through this module.

Normalization:
1. Uppercase
2. Strip accents (NFKD, drop combining marks)
3. Replace every non-alphanumeric character with a space
4. Split on whitespace
5. Drop tokens shorter than MIN_TOKEN_LENGTH or in STOPWORDS
"""

import re
import unicodedata

MIN_TOKEN_LENGTH = 3

# Generic banking terms: present in most statement lines, carry no vendor signal
BANKING_TERMS = frozenset(
    {
        "PIX",
        "RECEBIDO",
        "RECEBIDA",
        "ENVIADO",
        "ENVIADA",
        "TED",
        "DOC",
        "PAGAMENTO",
        "PAGTO",
        "PGTO",
        "DEBITO",
        "CREDITO",
        "BOLETO",
        "TRANSFERENCIA",
        "TRANSF",
        "COMPRA",
        "CARTAO",
        "TARIFA",
        "AUTOMATICO",
        "PAYMENT",
        "TRANSFER",
    }
)

PREPOSITIONS = frozenset(
    {"DAS", "DOS", "PARA", "COM", "POR", "SEM", "THE", "AND", "FOR", "FROM", "WITH"}
)

ENTITY_SUFFIXES = frozenset({"LTDA", "EIRELI", "EPP", "CIA", "INC", "LLC", "LTD", "GMBH"})

STOPWORDS = BANKING_TERMS | PREPOSITIONS | ENTITY_SUFFIXES

_NON_ALNUM = re.compile(r"[^A-Z0-9]+")
_HAS_ALNUM = re.compile(r"[A-Za-z0-9]")


def normalize_text(text: str | None) -> str:
    """Uppercase, strip accents and replace punctuation with single spaces."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text.upper())
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub(" ", without_marks).strip()


def extract_tokens(text: str | None) -> list[str]:
    """Return significant tokens in order of appearance, without duplicates.

    >>> extract_tokens("Pagamento - CONTRATO Software XYZ mensal")
    ['CONTRATO', 'SOFTWARE', 'XYZ', 'MENSAL']
    >>> extract_tokens("PIX RECEBIDO")
    []
    """
    seen: set[str] = set()
    tokens: list[str] = []
    for token in normalize_text(text).split():
        if len(token) < MIN_TOKEN_LENGTH or token in STOPWORDS or token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tokens


def token_key(tokens: list[str] | set[str] | frozenset[str]) -> str:
    """Canonical, order-independent key for a token set."""
    return " ".join(sorted(set(tokens)))


def has_alphanumeric(text: str | None) -> bool:
    """Return True if the text contains at least one letter or digit."""
    return bool(text) and bool(_HAS_ALNUM.search(normalize_text(text)))
