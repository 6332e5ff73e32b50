"""Integrity hashing and external anchoring."""

from .anchor import AnchorReceipt, HttpLedgerClient, IntegrityAnchor, LedgerClient

__all__ = ["AnchorReceipt", "HttpLedgerClient", "IntegrityAnchor", "LedgerClient"]
