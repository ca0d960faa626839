"""Bank statement and document sources."""

from .base import (
    BankStatementSource,
    DocumentSource,
    RawDocument,
    RawTransaction,
    SourceError,
)
from .http import HttpBankStatementSource, HttpDocumentSource
from .static import StaticBankStatementSource, StaticDocumentSource

__all__ = [
    "BankStatementSource",
    "DocumentSource",
    "HttpBankStatementSource",
    "HttpDocumentSource",
    "RawDocument",
    "RawTransaction",
    "SourceError",
    "StaticBankStatementSource",
    "StaticDocumentSource",
]
