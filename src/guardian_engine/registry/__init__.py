"""Category registry and its cache."""

from .cache import TTLCache
from .categories import DEFAULT_CATEGORIES, UNCATEGORIZED_LABEL, CategoryRegistry

__all__ = ["CategoryRegistry", "DEFAULT_CATEGORIES", "TTLCache", "UNCATEGORIZED_LABEL"]
