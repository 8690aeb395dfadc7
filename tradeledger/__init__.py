"""Append-only decision ledger and analytics engine for multi-strategy trading."""

__version__ = "0.1.0"
