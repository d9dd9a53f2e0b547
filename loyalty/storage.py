"""
Persistence for the loyalty ledger.

``LoyaltyRepository`` is the contract every component receives by injection.
``InMemoryRepository`` implements it for a single serving process:

- per-user re-entrant locks serialize mutations for one user
- ``apply_commit`` writes the ledger entry and the balance under one storage
  lock, guarded by the balance version (optimistic concurrency)
- referrals are unique per referred user, milestones per (user, threshold)
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional
from uuid import UUID

from .errors import DuplicateReferral, PersistenceConflict
from .models import (
    LedgerEntry,
    MilestoneCrossing,
    OrderRef,
    PointsConfig,
    Referral,
    UserBalance,
)


class LoyaltyRepository(ABC):
    @abstractmethod
    def user_lock(self, user_id: UUID):
        """Context manager serializing all mutations for ``user_id``."""

    # Config
    @abstractmethod
    def add_config(self, config: PointsConfig) -> None: ...

    @abstractmethod
    def latest_config(self) -> Optional[PointsConfig]: ...

    # Balances
    @abstractmethod
    def get_balance(self, user_id: UUID) -> Optional[UserBalance]: ...

    @abstractmethod
    def create_balance_if_absent(self, user_id: UUID) -> UserBalance: ...

    @abstractmethod
    def list_user_ids(self) -> list[UUID]: ...

    # Ledger
    @abstractmethod
    def apply_commit(self, entry: LedgerEntry, balance: UserBalance, expected_version: int) -> None: ...

    @abstractmethod
    def get_entry_by_key(self, idempotency_key: str) -> Optional[LedgerEntry]: ...

    @abstractmethod
    def list_entries(self, user_id: UUID) -> list[LedgerEntry]: ...

    # Referrals
    @abstractmethod
    def add_referral(self, referral: Referral) -> None: ...

    @abstractmethod
    def get_referral_by_referred(self, referred_id: UUID) -> Optional[Referral]: ...

    @abstractmethod
    def list_referrals_by_referrer(self, referrer_id: UUID) -> list[Referral]: ...

    # Milestones
    @abstractmethod
    def claim_milestone(self, crossing: MilestoneCrossing) -> bool: ...

    @abstractmethod
    def list_milestones(self, user_id: UUID) -> list[MilestoneCrossing]: ...

    # Orders (read-only view of the order collaborator)
    @abstractmethod
    def get_order(self, order_id: UUID) -> Optional[OrderRef]: ...


class InMemoryRepository(LoyaltyRepository):
    def __init__(self):
        self.configs: list[PointsConfig] = []
        self.balances: dict[UUID, UserBalance] = {}
        self.ledger_entries: list[LedgerEntry] = []
        self.idempotency_index: dict[str, LedgerEntry] = {}
        self.referrals: dict[UUID, Referral] = {}
        self.milestones: dict[tuple[UUID, int], MilestoneCrossing] = {}
        self.orders: dict[UUID, OrderRef] = {}
        self._lock = threading.RLock()
        self._user_locks: dict[UUID, threading.RLock] = {}

    @contextmanager
    def user_lock(self, user_id: UUID) -> Iterator[None]:
        with self._lock:
            lock = self._user_locks.setdefault(user_id, threading.RLock())
        with lock:
            yield

    def add_config(self, config: PointsConfig) -> None:
        with self._lock:
            self.configs.append(config)

    def latest_config(self) -> Optional[PointsConfig]:
        with self._lock:
            if not self.configs:
                return None
            # ties on created_at go to the later insert
            return max(enumerate(self.configs), key=lambda p: (p[1].created_at, p[0]))[1]

    def get_balance(self, user_id: UUID) -> Optional[UserBalance]:
        with self._lock:
            balance = self.balances.get(user_id)
            return balance.model_copy() if balance else None

    def create_balance_if_absent(self, user_id: UUID) -> UserBalance:
        with self._lock:
            if user_id not in self.balances:
                self.balances[user_id] = UserBalance(user_id=user_id)
            return self.balances[user_id].model_copy()

    def list_user_ids(self) -> list[UUID]:
        with self._lock:
            return list(self.balances)

    def apply_commit(self, entry: LedgerEntry, balance: UserBalance, expected_version: int) -> None:
        with self._lock:
            current = self.balances.get(entry.user_id)
            if current is None or current.version != expected_version:
                raise PersistenceConflict(
                    f"Balance for {entry.user_id} changed since version {expected_version}"
                )
            if entry.idempotency_key and entry.idempotency_key in self.idempotency_index:
                raise PersistenceConflict(f"Idempotency key {entry.idempotency_key} already committed")
            self.ledger_entries.append(entry)
            if entry.idempotency_key:
                self.idempotency_index[entry.idempotency_key] = entry
            self.balances[entry.user_id] = balance.model_copy()

    def get_entry_by_key(self, idempotency_key: str) -> Optional[LedgerEntry]:
        with self._lock:
            return self.idempotency_index.get(idempotency_key)

    def list_entries(self, user_id: UUID) -> list[LedgerEntry]:
        with self._lock:
            return [e for e in self.ledger_entries if e.user_id == user_id]

    def add_referral(self, referral: Referral) -> None:
        with self._lock:
            if referral.referred_id in self.referrals:
                raise DuplicateReferral(f"User {referral.referred_id} already has a referrer")
            self.referrals[referral.referred_id] = referral

    def get_referral_by_referred(self, referred_id: UUID) -> Optional[Referral]:
        with self._lock:
            return self.referrals.get(referred_id)

    def list_referrals_by_referrer(self, referrer_id: UUID) -> list[Referral]:
        with self._lock:
            found = [r for r in self.referrals.values() if r.referrer_id == referrer_id]
        return sorted(found, key=lambda r: r.created_at)

    def claim_milestone(self, crossing: MilestoneCrossing) -> bool:
        key = (crossing.user_id, crossing.threshold)
        with self._lock:
            if key in self.milestones:
                return False
            self.milestones[key] = crossing
            return True

    def list_milestones(self, user_id: UUID) -> list[MilestoneCrossing]:
        with self._lock:
            found = [m for (uid, _), m in self.milestones.items() if uid == user_id]
        return sorted(found, key=lambda m: m.threshold)

    def register_order(self, order: OrderRef) -> None:
        with self._lock:
            self.orders[order.id] = order

    def get_order(self, order_id: UUID) -> Optional[OrderRef]:
        with self._lock:
            return self.orders.get(order_id)
