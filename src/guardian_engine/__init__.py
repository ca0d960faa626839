"""
Bank/document feed → Classification → Budget audit → Reconciliation → Human approval

A deterministic decision engine that classifies financial transactions and
supporting documents, checks them against budget caps, pairs bank movements
with their documents, and routes everything through an audited approval
workflow that learns from human corrections.
"""

__version__ = "0.1.0"
