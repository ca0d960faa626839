"""Category registry: catalog of categories and their monthly caps.

Reads go through an injected TTLCache. The registry's own mutation methods
invalidate that cache, so a cap changed through the registry is visible on
the very next read. Changes made behind the registry's back become visible
once the TTL expires.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from ..exceptions import (
    ConfigurationMissing,
    PersistenceError,
    UpstreamUnavailable,
    ValidationError,
)
from ..schemas.records import CategoryBudget
from .cache import TTLCache

if TYPE_CHECKING:
    from ..state_store import StateStore

logger = logging.getLogger(__name__)

UNCATEGORIZED_LABEL = "Despesas Nao Classificadas"


def _cat(label: str, cap: int, group: str, accounting_type: str) -> CategoryBudget:
    return CategoryBudget(
        category_label=label,
        monthly_cap=Decimal(cap),
        group_name=group,
        accounting_type=accounting_type,
    )


# Seed catalog. A cap of 0 means the category is never budget-checked.
DEFAULT_CATEGORIES: tuple[CategoryBudget, ...] = (
    _cat("Receita Operacional", 0, "Receita de Servicos", "RECEITA_DIRETA"),
    _cat("Receita Financeira", 0, "Rendimentos Financeiros", "RECEITA_FINANCEIRA"),
    _cat("Rendimento Investimento", 0, "Rendimentos Financeiros", "RECEITA_FINANCEIRA"),
    _cat("Folha de Pagamento", 15000, "Pessoal Tecnico", "DESPESA_DIRETA"),
    _cat("Infraestrutura Cloud", 500, "Infraestrutura e Hosting", "DESPESA_DIRETA"),
    _cat("Infraestrutura / AWS", 500, "Infraestrutura e Hosting", "DESPESA_DIRETA"),
    _cat("Software ERP", 300, "Ferramentas de Producao", "DESPESA_DIRETA"),
    _cat("Marketing Digital", 2000, "Marketing e Comercial", "DESPESA_INDIRETA"),
    _cat("Contabilidade", 500, "Servicos Terceirizados", "DESPESA_INDIRETA"),
    _cat("Fatura Cartao", 3000, "Administrativo", "DESPESA_INDIRETA"),
    _cat("Despesas Imobiliarias", 5000, "Ocupacao", "DESPESA_INDIRETA"),
    _cat("Utilidades", 1000, "Utilidades", "DESPESA_INDIRETA"),
    _cat("Servicos Financeiros", 1000, "Tarifas Bancarias", "DESPESA_FINANCEIRA"),
    _cat("Fornecedores", 2000, "Servicos Terceirizados", "DESPESA_INDIRETA"),
    _cat("Pagamentos Diversos", 1000, "Outros", "DESPESA_INDIRETA"),
    _cat("Transferencias", 0, "Outros", "DESPESA_INDIRETA"),
    _cat("Despesas Administrativas", 500, "Administrativo", "DESPESA_INDIRETA"),
    _cat(UNCATEGORIZED_LABEL, 0, "Outros", "DESPESA_INDIRETA"),
    _cat("Nota Fiscal Servico", 0, "Servicos Terceirizados", "DESPESA_INDIRETA"),
    _cat("Aplicacao Investimento", 0, "Outros", "DESPESA_FINANCEIRA"),
    _cat("Resgate Investimento", 0, "Rendimentos Financeiros", "RECEITA_FINANCEIRA"),
)


class CategoryRegistry:
    """Store-backed category catalog with a TTL cache.

    Usage:
        registry = CategoryRegistry(store, TTLCache(60))
        budget = registry.resolve("Utilidades")
    """

    def __init__(
        self,
        store: StateStore,
        cache: TTLCache[dict[str, CategoryBudget]] | None = None,
        seed_defaults: bool = True,
    ) -> None:
        """Initialize the registry.

        Args:
            store: Backing state store.
            cache: Cache for the label -> category mapping (default 60 s TTL).
            seed_defaults: Insert DEFAULT_CATEGORIES that are missing.
        """
        self.store = store
        self.cache: TTLCache[dict[str, CategoryBudget]] = cache or TTLCache(60.0)
        if seed_defaults:
            inserted = store.seed_categories(DEFAULT_CATEGORIES)
            if inserted:
                logger.info("Seeded %d default categories", inserted)
                self.cache.invalidate()

    def _catalog(self) -> dict[str, CategoryBudget]:
        cached = self.cache.get()
        if cached is not None:
            return cached
        try:
            catalog = {c.category_label: c for c in self.store.list_categories()}
        except PersistenceError as e:
            stale = self.cache.peek_stale()
            if stale is None:
                raise UpstreamUnavailable(f"Category registry unavailable: {e}") from e
            logger.warning("Category registry unavailable, serving stale catalog: %s", e)
            return stale
        self.cache.set(catalog)
        return catalog

    def resolve(self, category_label: str) -> CategoryBudget | None:
        """Look up an active category, None if it is not configured."""
        return self._catalog().get(category_label)

    def require(self, category_label: str) -> CategoryBudget:
        """Like resolve, but raise ConfigurationMissing for unknown labels."""
        category = self.resolve(category_label)
        if category is None:
            raise ConfigurationMissing(category_label)
        return category

    def accounting_type(self, category_label: str) -> str | None:
        """Accounting type (RECEITA_DIRETA, DESPESA_INDIRETA, ...) of a label."""
        category = self.resolve(category_label)
        return category.accounting_type if category else None

    def list_categories(self) -> list[CategoryBudget]:
        """Active categories ordered by label."""
        return sorted(self._catalog().values(), key=lambda c: c.category_label)

    def category_names(self) -> list[str]:
        """Active category labels ordered alphabetically."""
        return [c.category_label for c in self.list_categories()]

    def upsert_category(self, category: CategoryBudget) -> None:
        """Create or update a category and invalidate the cache."""
        if category.monthly_cap < 0:
            raise ValidationError(f"monthly_cap must be >= 0 (got {category.monthly_cap})")
        self.store.upsert_category(category)
        self.cache.invalidate()
        logger.info(
            "Category '%s' saved (cap %s)", category.category_label, category.monthly_cap
        )

    def deactivate_category(self, category_label: str) -> bool:
        """Deactivate a category. Returns False if it does not exist."""
        changed = self.store.set_category_active(category_label, False)
        self.cache.invalidate()
        return changed
