"""Classifier strategy interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..schemas.records import UnclassifiedRecord


@dataclass
class Suggestion:
    """A tier's opinion about one record."""

    category_label: str
    confidence: float
    reason: str = ""


class Classifier(ABC):
    """One tier of the classification chain.

    Implementations must be deterministic for a given record and backing
    data, and must not mutate the record.
    """

    name: str = "classifier"

    @abstractmethod
    def suggest(self, record: UnclassifiedRecord) -> Suggestion | None:
        """Return a suggestion, or None if this tier has no opinion."""
