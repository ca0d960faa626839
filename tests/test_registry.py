"""Tests for the category registry and its TTL cache."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from guardian_engine.exceptions import (
    ConfigurationMissing,
    PersistenceError,
    UpstreamUnavailable,
    ValidationError,
)
from guardian_engine.registry import (
    DEFAULT_CATEGORIES,
    UNCATEGORIZED_LABEL,
    CategoryRegistry,
    TTLCache,
)
from guardian_engine.schemas.records import CategoryBudget


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTTLCache:
    """Tests for the injectable cache."""

    def test_expires_after_ttl(self):
        """Values are served until the TTL elapses."""
        clock = FakeClock()
        cache = TTLCache(60.0, clock=clock)
        cache.set({"a": 1})

        clock.now += 59
        assert cache.get() == {"a": 1}
        clock.now += 2
        assert cache.get() is None
        assert cache.peek_stale() == {"a": 1}

    def test_invalidate_keeps_stale_value(self):
        """Invalidation forces a miss but keeps the fallback value."""
        cache = TTLCache(60.0)
        cache.set("v")
        cache.invalidate()

        assert cache.is_fresh is False
        assert cache.get() is None
        assert cache.peek_stale() == "v"

    def test_negative_ttl_rejected(self):
        """TTL must not be negative."""
        with pytest.raises(ValueError):
            TTLCache(-1)


class TestCategoryRegistry:
    """Tests for category resolution."""

    def test_seeded_defaults(self, registry):
        """The default catalog is available, uncategorized included."""
        names = registry.category_names()

        assert len(names) == len(DEFAULT_CATEGORIES)
        assert UNCATEGORIZED_LABEL in names
        assert names == sorted(names)

    def test_resolve_known_and_unknown(self, registry):
        """resolve returns the budget or None."""
        budget = registry.resolve("Infraestrutura / AWS")

        assert budget.monthly_cap == Decimal("500")
        assert budget.accounting_type == "DESPESA_DIRETA"
        assert registry.resolve("Viagens") is None

    def test_require_raises_for_unknown(self, registry):
        """require turns a missing label into ConfigurationMissing."""
        with pytest.raises(ConfigurationMissing) as exc_info:
            registry.require("Viagens")
        assert exc_info.value.category_label == "Viagens"

    def test_accounting_type(self, registry):
        """Accounting type lookup for reconciliation plausibility."""
        assert registry.accounting_type("Receita Operacional") == "RECEITA_DIRETA"
        assert registry.accounting_type("Viagens") is None

    def test_upsert_visible_immediately(self, registry):
        """Changes through the registry invalidate its cache."""
        registry.resolve("Utilidades")
        registry.upsert_category(
            CategoryBudget("Utilidades", Decimal("1500"), "Utilidades", "DESPESA_INDIRETA")
        )

        assert registry.resolve("Utilidades").monthly_cap == Decimal("1500")

    def test_negative_cap_rejected(self, registry):
        """Caps must be zero or positive."""
        with pytest.raises(ValidationError, match="monthly_cap must be >= 0"):
            registry.upsert_category(CategoryBudget("Viagens", Decimal("-1")))

        assert registry.resolve("Viagens") is None

    def test_deactivate(self, registry):
        """Deactivated categories stop resolving."""
        assert registry.deactivate_category("Utilidades") is True
        assert registry.resolve("Utilidades") is None

    def test_outside_change_waits_for_ttl(self, store):
        """Writes behind the registry's back show up after the TTL."""
        clock = FakeClock()
        registry = CategoryRegistry(store, TTLCache(60.0, clock=clock))
        registry.resolve("Utilidades")

        store.upsert_category(CategoryBudget("Utilidades", Decimal("7"), "Utilidades"))
        assert registry.resolve("Utilidades").monthly_cap == Decimal("1000")

        clock.now += 61
        assert registry.resolve("Utilidades").monthly_cap == Decimal("7")

    def test_store_failure_serves_stale(self, store):
        """A failing store falls back to the last loaded catalog."""
        clock = FakeClock()
        registry = CategoryRegistry(store, TTLCache(60.0, clock=clock))
        registry.resolve("Utilidades")

        clock.now += 61
        registry.store = MagicMock()
        registry.store.list_categories.side_effect = PersistenceError("locked")

        assert registry.resolve("Utilidades").monthly_cap == Decimal("1000")

    def test_store_failure_without_cache(self):
        """With nothing cached the failure surfaces as UpstreamUnavailable."""
        failing = MagicMock()
        failing.list_categories.side_effect = PersistenceError("locked")
        registry = CategoryRegistry(failing, TTLCache(60.0), seed_defaults=False)

        with pytest.raises(UpstreamUnavailable):
            registry.resolve("Utilidades")
