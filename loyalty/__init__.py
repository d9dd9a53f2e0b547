"""
Loyalty Points Ledger

This package provides:
- A per-user point balance kept consistent with an append-only ledger
- Point awards for spend, quiz completion, first purchase and referrals
- Redemption of points for currency value
- One-time milestone notifications and points expiry
"""

from .models import (
    EntryKind,
    LedgerEntry,
    PointsConfig,
    Referral,
    UserBalance,
)
from .service import LoyaltyService
from .storage import InMemoryRepository, LoyaltyRepository

__all__ = [
    "EntryKind",
    "LedgerEntry",
    "PointsConfig",
    "Referral",
    "UserBalance",
    "LoyaltyService",
    "InMemoryRepository",
    "LoyaltyRepository",
]
