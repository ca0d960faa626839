"""Optional LLM classifier tier (Ollama).

Disabled unless ``llm.enabled`` is set. The model may only answer with one
of the registry's category names, and its confidence is capped below the
approval threshold, so an AI suggestion is always routed to a human.

Any transport or parsing failure means "no opinion": the chain simply
moves on to the next tier.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx

from ..schemas.records import UnclassifiedRecord
from .base import Classifier, Suggestion

if TYPE_CHECKING:
    from ..config import LLMConfig

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a bookkeeping assistant for a small company.
Classify the financial movement into exactly one of the allowed categories.
Respond with JSON only: {"category": "<one allowed category>", "confidence": <0.0-1.0>}"""


class LLMConcurrencyLimiter:
    """Semaphore-based limit on concurrent LLM requests."""

    def __init__(self, max_concurrent: int = 2) -> None:
        self._semaphore = threading.Semaphore(max_concurrent)
        self._active = 0
        self._lock = threading.Lock()

    def acquire(self, timeout: float | None = None) -> bool:
        """Acquire a slot. Returns False on timeout."""
        acquired = self._semaphore.acquire(timeout=timeout)
        if acquired:
            with self._lock:
                self._active += 1
        return acquired

    def release(self) -> None:
        """Release a slot."""
        with self._lock:
            self._active -= 1
        self._semaphore.release()

    @property
    def active_requests(self) -> int:
        """Number of requests currently holding a slot."""
        with self._lock:
            return self._active


class LLMClassifier(Classifier):
    """Asks a local Ollama model for a category."""

    name = "llm"

    def __init__(
        self,
        config: LLMConfig,
        categories: Callable[[], list[str]],
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the LLM tier.

        Args:
            config: LLM configuration.
            categories: Provider of the allowed category names.
            client: Optional preconfigured httpx client (tests inject a mock transport).
        """
        self.config = config
        self._categories = categories
        headers = {}
        if config.auth_header:
            # Support formats: "Bearer token" or "Custom-Header: value"
            if ":" in config.auth_header:
                key, value = config.auth_header.split(":", 1)
                headers[key.strip()] = value.strip()
            else:
                headers["Authorization"] = config.auth_header
        elif config.enabled and config.is_remote():
            logger.warning(
                "Ollama endpoint %s is remote and no auth_header is configured",
                config.ollama_url,
            )
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers=headers,
        )
        self._limiter = LLMConcurrencyLimiter(max_concurrent=config.max_concurrent)

    def _build_message(self, record: UnclassifiedRecord, allowed: list[str]) -> str:
        direction = "credit (money in)" if record.is_credit else "debit (money out)"
        lines = [
            f"Source: {record.source_type.value}",
            f"Description: {record.raw_description}",
            f"Amount: {record.amount} ({direction})",
            f"Date: {record.occurred_at.isoformat()}",
        ]
        if record.counterparty_hint:
            lines.append(f"Counterparty: {record.counterparty_hint}")
        lines.append("Allowed categories:")
        lines.extend(f"- {name}" for name in allowed)
        return "\n".join(lines)

    def _call_ollama(self, user_message: str) -> str | None:
        if not self._limiter.acquire(timeout=self.config.timeout_seconds):
            logger.warning(
                "LLM request timed out waiting for concurrency slot (max=%d, active=%d)",
                self.config.max_concurrent,
                self._limiter.active_requests,
            )
            return None
        try:
            response = self._client.post(
                f"{self.config.ollama_url.rstrip('/')}/api/chat",
                json={
                    "model": self.config.model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": user_message},
                    ],
                    "stream": False,
                    "format": "json",
                },
            )
            response.raise_for_status()
            return response.json().get("message", {}).get("content", "")
        except httpx.TimeoutException:
            logger.warning("Ollama request timed out after %ds", self.config.timeout_seconds)
            return None
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Ollama API error %s at %s", e.response.status_code, self.config.ollama_url
            )
            return None
        except httpx.RequestError as e:
            logger.warning("Ollama request failed: %s (URL: %s)", e, self.config.ollama_url)
            return None
        except ValueError as e:
            logger.warning("Ollama returned a non-JSON body: %s", e)
            return None
        finally:
            self._limiter.release()

    def suggest(self, record: UnclassifiedRecord) -> Suggestion | None:
        if not self.config.enabled:
            return None
        allowed = self._categories()
        if not allowed:
            return None

        content = self._call_ollama(self._build_message(record, allowed))
        if not content:
            return None

        try:
            data = json.loads(content)
            raw_label = str(data["category"]).strip()
            confidence = float(data.get("confidence", 0.0))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Unparseable LLM answer for %s: %s", record.id, e)
            return None

        by_folded = {name.casefold(): name for name in allowed}
        label = by_folded.get(raw_label.casefold())
        if label is None:
            logger.info("LLM proposed unknown category '%s' for %s", raw_label, record.id)
            return None

        confidence = max(0.0, min(confidence, self.config.max_confidence))
        return Suggestion(label, round(confidence, 2), f"model {self.config.model}")

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()
