from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import UUID

from loguru import logger

from .config import ConfigResolver
from .errors import InvalidAmount, InvalidOrder
from .ledger import LedgerCore
from .models import EntryKind, RedemptionResult
from .notifications import NotificationDispatcher, points_redeemed
from .storage import LoyaltyRepository


CENTS = Decimal("0.01")


class RedemptionEngine:
    def __init__(
        self,
        repo: LoyaltyRepository,
        ledger: LedgerCore,
        configs: ConfigResolver,
        dispatcher: Optional[NotificationDispatcher] = None,
        currency: str = "KES",
    ):
        self.repo = repo
        self.ledger = ledger
        self.configs = configs
        self.dispatcher = dispatcher
        self.currency = currency

    def quote(self, points: int) -> Decimal:
        config = self.configs.resolve()
        return (Decimal(points) * config.point_value_currency).quantize(CENTS, rounding=ROUND_HALF_UP)

    def redeem(
        self,
        user_id: UUID,
        points: int,
        order_id: Optional[UUID] = None,
        idempotency_key: Optional[str] = None,
    ) -> RedemptionResult:
        if points <= 0:
            raise InvalidAmount(f"Cannot redeem {points} points")
        if order_id is not None:
            order = self.repo.get_order(order_id)
            if order is None:
                raise InvalidOrder(f"Order {order_id} not found")
            if order.user_id != user_id:
                raise InvalidOrder(f"Order {order_id} does not belong to user {user_id}")

        # client keys are only unique per user
        scoped_key = f"redeem:{user_id}:{idempotency_key}" if idempotency_key else None
        result = self.ledger.commit(
            user_id,
            points,
            EntryKind.REDEEMED,
            "redemption",
            related_order_id=order_id,
            idempotency_key=scoped_key,
        )
        value = self.quote(-result.entry.delta)
        if result.applied:
            logger.info(f"User {user_id} redeemed {points} points for {self.currency} {value}")
            if self.dispatcher:
                self.dispatcher.dispatch(points_redeemed(user_id, points, str(value), self.currency))

        return RedemptionResult(
            user_id=user_id,
            points=-result.entry.delta,
            currency_credited=value,
            balance=result.balance,
            entry=result.entry,
        )
