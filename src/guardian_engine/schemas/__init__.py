"""Data contracts shared by every component."""

from .fingerprint import compute_fingerprint, record_id_for
from .records import (
    AuditAction,
    AuditLogEntry,
    AuditOutcome,
    CategoryBudget,
    ClassificationResult,
    DecisionRecord,
    DecisionStatus,
    LearningRule,
    Severity,
    SourceType,
    SuggestedAction,
    UnclassifiedRecord,
)
from .tokens import extract_tokens, normalize_text

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "AuditOutcome",
    "CategoryBudget",
    "ClassificationResult",
    "DecisionRecord",
    "DecisionStatus",
    "LearningRule",
    "Severity",
    "SourceType",
    "SuggestedAction",
    "UnclassifiedRecord",
    "compute_fingerprint",
    "extract_tokens",
    "normalize_text",
    "record_id_for",
]
