"""Source contracts: what bank statement and document feeds hand over.

Only the output shape matters to the engine; how a feed talks to its bank
or mailbox is its own business.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from ..exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


class SourceError(UpstreamUnavailable):
    """A source could not be read."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        self.source = source
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code else ""
        super().__init__(f"{source}: {message}{detail}")


@dataclass
class RawTransaction:
    """One bank statement line. Negative amount = debit."""

    amount: Decimal
    date: date
    description: str
    counterparty_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawTransaction:
        """Parse a feed item. Raises ValueError on malformed input."""
        try:
            amount = Decimal(str(data["amount"]))
        except (KeyError, InvalidOperation) as e:
            raise ValueError(f"invalid amount in {data!r}") from e
        return cls(
            amount=amount,
            date=date.fromisoformat(str(data["date"])[:10]),
            description=str(data.get("description") or ""),
            counterparty_id=data.get("counterparty_id"),
        )


@dataclass
class RawDocument:
    """One supporting document (invoice, receipt, fiscal note)."""

    document_id: str
    amount: Decimal
    date: date
    label_guess: str | None = None
    vendor: str | None = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawDocument:
        """Parse a feed item. Raises ValueError on malformed input."""
        try:
            amount = Decimal(str(data["amount"]))
        except (KeyError, InvalidOperation) as e:
            raise ValueError(f"invalid amount in {data!r}") from e
        if not data.get("document_id"):
            raise ValueError(f"missing document_id in {data!r}")
        return cls(
            document_id=str(data["document_id"]),
            amount=amount,
            date=date.fromisoformat(str(data["date"])[:10]),
            label_guess=data.get("label_guess"),
            vendor=data.get("vendor"),
            description=str(data.get("description") or ""),
        )


class BankStatementSource(Protocol):
    """Feed of bank statement lines."""

    name: str

    def fetch_statement(self, start: date, end: date) -> list[RawTransaction]: ...


class DocumentSource(Protocol):
    """Feed of supporting documents."""

    name: str

    def poll(self) -> list[RawDocument]: ...


def parse_items(source: str, items: list[Any], parser: Any) -> list[Any]:
    """Parse feed items, skipping (and logging) malformed ones."""
    parsed = []
    for item in items:
        try:
            parsed.append(parser(item))
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Skipping malformed item from %s: %s", source, e)
    return parsed
