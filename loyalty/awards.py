"""
Award Engine

Turns qualifying events into ``earned`` ledger entries. One-time bonuses are
keyed by an idempotency key, so a retried caller gets the original entry back
instead of a second credit.
"""

import calendar
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Optional
from uuid import UUID

from loguru import logger

from .config import ConfigResolver
from .ledger import LedgerCore
from .models import CommitResult, EntryKind, PointsConfig, utcnow
from .notifications import NotificationDispatcher, points_earned


REASON_SPEND = "spend"
REASON_QUIZ = "quiz completion"
REASON_FIRST_PURCHASE = "first purchase"
REASON_REFERRAL_SIGNUP = "referral signup"
REASON_REFERRAL_PURCHASE = "referral purchase"


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def spend_points(amount_spent: Decimal, config: PointsConfig) -> int:
    hundreds = (Decimal(amount_spent) / 100).to_integral_value(rounding=ROUND_FLOOR)
    return int(hundreds) * config.spend_points_per_100_units


class AwardEngine:
    def __init__(
        self,
        ledger: LedgerCore,
        configs: ConfigResolver,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.ledger = ledger
        self.configs = configs
        self.dispatcher = dispatcher

    def award_for_spend(
        self, user_id: UUID, amount_spent: Decimal, order_id: Optional[UUID] = None
    ) -> Optional[CommitResult]:
        config = self.configs.resolve()
        points = spend_points(amount_spent, config)
        if points <= 0:
            logger.debug(f"Spend of {amount_spent} earns no points for {user_id}, skipping")
            return None
        key = f"spend:{order_id}" if order_id else None
        return self._award(
            user_id, points, REASON_SPEND, config,
            idempotency_key=key, related_order_id=order_id, describe="your purchase",
        )

    def award_for_quiz_completion(self, user_id: UUID) -> Optional[CommitResult]:
        config = self.configs.resolve()
        return self._award(
            user_id, config.quiz_completion_points, REASON_QUIZ, config,
            idempotency_key=f"quiz_completion:{user_id}", describe="completing the style quiz",
        )

    def award_for_first_purchase(self, user_id: UUID) -> Optional[CommitResult]:
        config = self.configs.resolve()
        return self._award(
            user_id, config.first_purchase_points, REASON_FIRST_PURCHASE, config,
            idempotency_key=f"first_purchase:{user_id}", describe="your first purchase",
        )

    def award_for_referral_signup(self, referrer_id: UUID, referred_id: UUID) -> Optional[CommitResult]:
        config = self.configs.resolve()
        return self._award(
            referrer_id, config.referral_signup_points, REASON_REFERRAL_SIGNUP, config,
            idempotency_key=f"referral_signup:{referred_id}", describe="a friend signing up",
        )

    def award_for_referral_purchase(self, referrer_id: UUID, referred_id: UUID) -> Optional[CommitResult]:
        config = self.configs.resolve()
        return self._award(
            referrer_id, config.referral_purchase_points, REASON_REFERRAL_PURCHASE, config,
            idempotency_key=f"referral_purchase:{referred_id}", describe="a friend's first purchase",
        )

    def _award(
        self,
        user_id: UUID,
        points: int,
        reason: str,
        config: PointsConfig,
        idempotency_key: Optional[str] = None,
        related_order_id: Optional[UUID] = None,
        describe: str = "",
    ) -> Optional[CommitResult]:
        if idempotency_key:
            # a one-time bonus replays its original grant even if rates changed since
            replay = self.ledger.replay_of(user_id, idempotency_key, EntryKind.EARNED)
            if replay:
                logger.info(f"Award {idempotency_key} already granted to {user_id}")
                return replay
        if points <= 0:
            logger.debug(f"No points configured for {reason}, skipping award to {user_id}")
            return None

        expires_at = None
        if config.expiry_months > 0:
            expires_at = add_months(utcnow(), config.expiry_months)

        result = self.ledger.commit(
            user_id,
            points,
            EntryKind.EARNED,
            reason,
            related_order_id=related_order_id,
            idempotency_key=idempotency_key,
            expires_at=expires_at,
        )
        if not result.applied:
            logger.info(f"Award {idempotency_key} already granted to {user_id}")
            return result

        logger.info(f"Awarded {points} points to {user_id} for {reason}")
        if self.dispatcher:
            self.dispatcher.dispatch(points_earned(user_id, points, describe or reason))
        return result
