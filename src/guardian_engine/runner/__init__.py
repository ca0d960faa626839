"""
CLI runner module.

Provides commands:
- init-config: Write a default config file
- sync: Fetch, classify, reconcile, audit and store new movements
- approve / reject / reclassify / clear-all: Human decisions
- status, pending, rules, history: Inspection
- notify-preview: Daily summary payload
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
