"""Ledger store: ORM models and transactional session scope."""

from ledger.db.models import (
    Base,
    Campaign,
    Donation,
    Receipt,
    Referral,
    RewardHistoryEntry,
    User,
)
from ledger.db.session import LedgerStore

__all__ = [
    "Base",
    "Campaign",
    "Donation",
    "LedgerStore",
    "Receipt",
    "Referral",
    "RewardHistoryEntry",
    "User",
]
