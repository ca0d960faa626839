"""Orchestration services: sync cycle and notification summary."""

from .notifications import build_summary, format_brl
from .sync import SyncResult, SyncService, SyncState

__all__ = [
    "SyncResult",
    "SyncService",
    "SyncState",
    "build_summary",
    "format_brl",
]
