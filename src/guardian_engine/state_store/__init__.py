"""
State Store (SQLite-based).

Persistent storage for:
- Decision records (deduplicated by content fingerprint)
- The append-only audit log
- Learning rules
- The category catalog
"""

from .sqlite_store import StateStore

__all__ = ["StateStore"]
