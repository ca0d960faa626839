"""
HTTP JSON feeds for bank statements and documents.

Expected endpoints:
- GET {base_url}/statements?start=YYYY-MM-DD&end=YYYY-MM-DD
  → {"transactions": [{"amount", "date", "description", "counterparty_id"}]}
- GET {base_url}/documents
  → {"documents": [{"document_id", "amount", "date", "label_guess", "vendor"}]}

A bare JSON list is accepted for both.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import RawDocument, RawTransaction, SourceError, parse_items

logger = logging.getLogger(__name__)


class _JsonFeed:
    """Shared session handling: bearer auth, retry with backoff."""

    DEFAULT_TIMEOUT = 30
    name = "feed"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize the feed client.

        Args:
            base_url: Feed base URL
            token: Bearer token (optional)
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _get_json(self, endpoint: str, params: dict | None = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        logger.debug("Feed request: GET %s %s", url, params or "")
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RetryError as e:
            raise SourceError(self.name, f"retries exhausted for {url}: {e}") from e
        except requests.exceptions.ConnectionError as e:
            raise SourceError(self.name, f"failed to connect to {self.base_url}: {e}") from e
        except requests.exceptions.Timeout as e:
            raise SourceError(self.name, f"timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise SourceError(self.name, f"request failed: {e}") from e

        if response.status_code >= 400:
            raise SourceError(self.name, response.text[:200], status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise SourceError(self.name, "response is not JSON") from e

    @staticmethod
    def _items(payload: Any, key: str) -> list[Any]:
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict) and isinstance(payload.get(key), list):
            return payload[key]
        raise ValueError(f"expected a list or an object with '{key}'")


class HttpBankStatementSource(_JsonFeed):
    """Bank statement feed over HTTP."""

    name = "bank"

    def fetch_statement(self, start: date, end: date) -> list[RawTransaction]:
        """Fetch statement lines between start and end (inclusive)."""
        payload = self._get_json(
            "/statements", params={"start": start.isoformat(), "end": end.isoformat()}
        )
        try:
            items = self._items(payload, "transactions")
        except ValueError as e:
            raise SourceError(self.name, str(e)) from e
        transactions = parse_items(self.name, items, RawTransaction.from_dict)
        logger.info("Fetched %d transaction(s) for %s..%s", len(transactions), start, end)
        return transactions


class HttpDocumentSource(_JsonFeed):
    """Supporting document feed over HTTP."""

    name = "documents"

    def poll(self) -> list[RawDocument]:
        """Fetch documents waiting to be processed."""
        payload = self._get_json("/documents")
        try:
            items = self._items(payload, "documents")
        except ValueError as e:
            raise SourceError(self.name, str(e)) from e
        documents = parse_items(self.name, items, RawDocument.from_dict)
        logger.info("Polled %d document(s)", len(documents))
        return documents
