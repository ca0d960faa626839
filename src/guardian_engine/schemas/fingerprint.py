"""
Content fingerprints and record ids (CRITICAL).

This module defines THE deterministic dedup key for decision records.
Overlapping sync windows fetch the same movements again; the fingerprint
is what makes persistence idempotent.

Fingerprint = SHA256(source_type|normalized description|amount|date)

The fingerprint must be:
- Stable: Same inputs always produce same output
- Reproducible: Can be regenerated from stored data
- Sign-aware: A debit and a credit of the same value differ

Known limitation: two genuinely identical movements on the same day
(same description, same amount) collapse into one record.
"""

import hashlib
from datetime import date
from decimal import Decimal

from .tokens import normalize_text

HASH_PREFIX_LENGTH = 16

RECORD_ID_PREFIXES = {
    "transaction": "TX",
    "document": "DOC",
}


def format_amount(amount: Decimal) -> str:
    """Format an amount with exactly two decimal places."""
    return f"{Decimal(amount):.2f}"


def compute_fingerprint(
    source_type: str,
    description: str,
    amount: Decimal,
    occurred_at: date,
) -> str:
    """Compute the full SHA256 content fingerprint of a movement."""
    components = [
        source_type,
        normalize_text(description),
        format_amount(amount),
        occurred_at.isoformat(),
    ]
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()


def record_id_for(source_type: str, fingerprint: str) -> str:
    """Deterministic record id derived from the fingerprint.

    >>> record_id_for("transaction", "ab" * 32)
    'TX_abababababababab'
    """
    prefix = RECORD_ID_PREFIXES.get(source_type, "REC")
    return f"{prefix}_{fingerprint[:HASH_PREFIX_LENGTH]}"
