"""
Database migrations module.

Versioned, ordered migrations for the decision engine store.
Applied migrations are tracked in a migrations table.
"""

from .runner import MigrationRunner, get_all_migrations

__all__ = ["MigrationRunner", "get_all_migrations"]
