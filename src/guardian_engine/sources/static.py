"""In-memory sources (no feed configured, or tests)."""

from __future__ import annotations

from datetime import date

from .base import RawDocument, RawTransaction


class StaticBankStatementSource:
    """Serves a fixed list of transactions, filtered by date window."""

    def __init__(self, transactions: list[RawTransaction] | None = None, name: str = "bank"):
        self.transactions = list(transactions or [])
        self.name = name

    def fetch_statement(self, start: date, end: date) -> list[RawTransaction]:
        return [t for t in self.transactions if start <= t.date <= end]


class StaticDocumentSource:
    """Serves a fixed list of documents."""

    def __init__(self, documents: list[RawDocument] | None = None, name: str = "documents"):
        self.documents = list(documents or [])
        self.name = name

    def poll(self) -> list[RawDocument]:
        return list(self.documents)
