"""
Ledger Core

Owns per-user balances and the append-only ledger. ``commit`` is the only
path that mutates a balance: the entry and the new balance are written as a
single unit while the user's lock is held, so concurrent commits for one user
cannot lose updates or overdraw.
"""

from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from loguru import logger

from .errors import IdempotencyConflict, InsufficientBalance, InvalidAmount, PersistenceConflict
from .models import (
    CommitResult,
    EntryKind,
    LedgerEntry,
    LedgerHistoryResponse,
    UserBalance,
    utcnow,
)
from .storage import LoyaltyRepository


CommitListener = Callable[[CommitResult], None]


class LedgerCore:
    def __init__(self, repo: LoyaltyRepository, max_retries: int = 3):
        self.repo = repo
        self.max_retries = max_retries
        self._listeners: list[CommitListener] = []

    def add_listener(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    def get_balance(self, user_id: UUID) -> UserBalance:
        balance = self.repo.get_balance(user_id)
        if balance is None:
            balance = self.repo.create_balance_if_absent(user_id)
        return balance

    def commit(
        self,
        user_id: UUID,
        delta: int,
        kind: EntryKind,
        reason: str,
        related_order_id: Optional[UUID] = None,
        idempotency_key: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> CommitResult:
        """
        Append one entry and update the balance atomically.

        ``delta`` is a positive magnitude; the entry stores it signed.
        A commit whose idempotency key is already in the ledger returns the
        existing entry with ``applied=False`` and changes nothing. The stored
        entry must match the user, kind and delta of the replay, otherwise
        ``IdempotencyConflict`` is raised.
        """
        if delta <= 0:
            raise InvalidAmount(f"Commit delta must be positive, got {delta}")
        kind = EntryKind(kind)

        attempt = 0
        while True:
            attempt += 1
            try:
                result = self._commit_once(
                    user_id, delta, kind, reason, related_order_id, idempotency_key, expires_at
                )
                break
            except PersistenceConflict:
                if attempt >= self.max_retries:
                    logger.warning(f"Commit for {user_id} lost {attempt} races, giving up")
                    raise
                logger.debug(f"Commit conflict for {user_id}, retrying ({attempt}/{self.max_retries})")

        if result.applied:
            self._notify_listeners(result)
        return result

    def _commit_once(
        self,
        user_id: UUID,
        delta: int,
        kind: EntryKind,
        reason: str,
        related_order_id: Optional[UUID],
        idempotency_key: Optional[str],
        expires_at: Optional[datetime],
    ) -> CommitResult:
        with self.repo.user_lock(user_id):
            if idempotency_key:
                replay = self.replay_of(user_id, idempotency_key, kind)
                if replay:
                    if abs(replay.entry.delta) != delta:
                        raise IdempotencyConflict(
                            f"Key {idempotency_key} was committed for {abs(replay.entry.delta)} points, not {delta}"
                        )
                    return replay

            current = self.get_balance(user_id)
            updated = current.model_copy()

            if kind == EntryKind.EARNED:
                updated.lifetime_earned += delta
                updated.available_points += delta
                signed = delta
            else:
                if delta > current.available_points:
                    raise InsufficientBalance(user_id, current.available_points, delta)
                if kind == EntryKind.REDEEMED:
                    updated.lifetime_redeemed += delta
                else:
                    updated.lifetime_expired += delta
                updated.available_points -= delta
                signed = -delta

            now = utcnow()
            updated.version = current.version + 1
            updated.updated_at = now

            entry = LedgerEntry(
                user_id=user_id,
                delta=signed,
                kind=kind,
                reason="expired" if kind == EntryKind.EXPIRED else reason,
                related_order_id=related_order_id,
                idempotency_key=idempotency_key,
                balance_after=updated.available_points,
                expires_at=expires_at if kind == EntryKind.EARNED else None,
                created_at=now,
            )
            self.repo.apply_commit(entry, updated, expected_version=current.version)

        logger.debug(
            f"Committed {kind.value} {signed:+d} for {user_id} ({reason}), "
            f"available={updated.available_points}"
        )
        return CommitResult(balance=updated, entry=entry, applied=True)

    def _notify_listeners(self, result: CommitResult) -> None:
        for listener in self._listeners:
            try:
                listener(result)
            except Exception as e:
                logger.exception(f"Commit listener failed for {result.entry.user_id}: {e}")

    def history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        entries = sorted(self.repo.list_entries(user_id), key=lambda e: e.created_at)
        entries.reverse()
        balance = self.get_balance(user_id)
        return LedgerHistoryResponse(
            user_id=user_id,
            entries=entries[offset:offset + limit],
            total_count=len(entries),
            available_points=balance.available_points,
        )

    def has_entry(self, idempotency_key: str) -> bool:
        return self.repo.get_entry_by_key(idempotency_key) is not None

    def replay_of(self, user_id: UUID, idempotency_key: str, kind: EntryKind) -> Optional[CommitResult]:
        """Existing commit for ``idempotency_key``, checked against the caller."""
        existing = self.repo.get_entry_by_key(idempotency_key)
        if existing is None:
            return None
        if existing.user_id != user_id or existing.kind != EntryKind(kind):
            raise IdempotencyConflict(f"Key {idempotency_key} belongs to a different commit")
        logger.debug(f"Idempotent replay of {idempotency_key}")
        return CommitResult(balance=self.get_balance(user_id), entry=existing, applied=False)

    def fold(self, user_id: UUID) -> UserBalance:
        """Rebuild the balance counters from the ledger alone."""
        folded = UserBalance(user_id=user_id)
        for entry in self.repo.list_entries(user_id):
            if entry.kind == EntryKind.EARNED:
                folded.lifetime_earned += entry.delta
            elif entry.kind == EntryKind.REDEEMED:
                folded.lifetime_redeemed += -entry.delta
            else:
                folded.lifetime_expired += -entry.delta
            folded.available_points += entry.delta
        return folded

    def reconcile(self, user_id: UUID) -> bool:
        cached = self.get_balance(user_id)
        folded = self.fold(user_id)
        matches = (
            cached.available_points == folded.available_points
            and cached.lifetime_earned == folded.lifetime_earned
            and cached.lifetime_redeemed == folded.lifetime_redeemed
            and cached.lifetime_expired == folded.lifetime_expired
        )
        if not matches:
            logger.error(f"Balance for {user_id} diverges from ledger: cached={cached} folded={folded}")
        return matches
