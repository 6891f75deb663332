"""
Account Ledger for the Task Reward Platform

This module provides:
- Per-user accounts with available and frozen balances
- An append-only transaction log, one entry per balance movement
- Idempotent postings keyed by (user, related id, kind)
- Atomic units of work over per-user locks
- Tier and fee tables, settings and storage backends
"""

from .errors import LedgerServiceError
from .models import (
    Account,
    EntryKind,
    LedgerEntry,
    Posting,
    UserBalance,
)
from .service import LedgerService

__all__ = [
    "Account",
    "EntryKind",
    "LedgerEntry",
    "LedgerServiceError",
    "Posting",
    "UserBalance",
    "LedgerService",
]
