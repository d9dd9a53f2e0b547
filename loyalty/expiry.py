"""
Expiry Sweeper

Points are consumed oldest-first: redemptions and earlier expiries are
charged against the earliest-expiring earned entries. A sweep expires
whatever part of the already-expired earned points is still unconsumed.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from loguru import logger

from .ledger import LedgerCore
from .models import CommitResult, EntryKind, utcnow
from .storage import LoyaltyRepository


class ExpirySweeper:
    def __init__(self, repo: LoyaltyRepository, ledger: LedgerCore):
        self.repo = repo
        self.ledger = ledger

    def expirable_points(self, user_id: UUID, now: datetime) -> int:
        balance = self.ledger.get_balance(user_id)
        lapsed = sum(
            e.delta
            for e in self.repo.list_entries(user_id)
            if e.kind == EntryKind.EARNED and e.expires_at is not None and e.expires_at <= now
        )
        consumed = balance.lifetime_redeemed + balance.lifetime_expired
        return min(max(lapsed - consumed, 0), balance.available_points)

    def expire_user(self, user_id: UUID, now: Optional[datetime] = None) -> Optional[CommitResult]:
        now = now or utcnow()
        with self.repo.user_lock(user_id):
            points = self.expirable_points(user_id, now)
            if points <= 0:
                return None
            result = self.ledger.commit(user_id, points, EntryKind.EXPIRED, "expired")
        logger.info(f"Expired {points} points for {user_id}")
        return result

    def sweep(self, now: Optional[datetime] = None) -> list[CommitResult]:
        now = now or utcnow()
        results = []
        for user_id in self.repo.list_user_ids():
            result = self.expire_user(user_id, now)
            if result is not None:
                results.append(result)
        logger.info(f"Expiry sweep finished: {len(results)} users affected")
        return results
