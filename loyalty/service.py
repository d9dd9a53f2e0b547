from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from .awards import AwardEngine
from .config import ConfigResolver
from .expiry import ExpirySweeper
from .ledger import LedgerCore
from .milestones import MilestoneDetector
from .models import (
    CommitResult,
    LedgerHistoryResponse,
    PointsConfig,
    PublishConfigRequest,
    RedemptionResult,
    Referral,
    UserBalance,
)
from .notifications import LogNotifier, NotificationDispatcher, Notifier
from .redemption import RedemptionEngine
from .referrals import ReferralTracker
from .settings import LoyaltySettings, get_settings
from .storage import InMemoryRepository, LoyaltyRepository


class LoyaltyService:
    """Wires the ledger components over one repository and notifier."""

    def __init__(
        self,
        repo: Optional[LoyaltyRepository] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[LoyaltySettings] = None,
    ):
        self.settings = settings or get_settings()
        self.repo = repo or InMemoryRepository()
        self.dispatcher = NotificationDispatcher(
            notifier or LogNotifier(),
            max_attempts=self.settings.notification_max_attempts,
        )
        self.configs = ConfigResolver(self.repo)
        self.ledger = LedgerCore(self.repo, max_retries=self.settings.commit_max_retries)
        self.milestones = MilestoneDetector(
            self.repo,
            self.dispatcher,
            thresholds=self.settings.milestone_thresholds,
            action_url=self.settings.wallet_action_url,
        )
        self.ledger.add_listener(self.milestones.on_commit)
        self.awards = AwardEngine(self.ledger, self.configs, self.dispatcher)
        self.redemptions = RedemptionEngine(
            self.repo, self.ledger, self.configs, self.dispatcher, currency=self.settings.currency
        )
        self.referrals = ReferralTracker(self.repo, self.awards)
        self.expiry = ExpirySweeper(self.repo, self.ledger)

    # Config
    def get_active_config(self) -> PointsConfig:
        return self.configs.get_active_config()

    def publish_config(self, request: PublishConfigRequest) -> PointsConfig:
        return self.configs.publish(request)

    # Ledger
    def get_balance(self, user_id: UUID) -> UserBalance:
        return self.ledger.get_balance(user_id)

    def get_ledger_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        return self.ledger.history(user_id, limit, offset)

    # Awards
    def award_for_spend(self, user_id: UUID, amount_spent: Decimal, order_id: Optional[UUID] = None) -> Optional[CommitResult]:
        return self.awards.award_for_spend(user_id, amount_spent, order_id)

    def award_for_quiz_completion(self, user_id: UUID) -> Optional[CommitResult]:
        return self.awards.award_for_quiz_completion(user_id)

    def award_for_first_purchase(self, user_id: UUID) -> Optional[CommitResult]:
        return self.awards.award_for_first_purchase(user_id)

    # Redemption
    def redeem(self, user_id: UUID, points: int, order_id: Optional[UUID] = None,
               idempotency_key: Optional[str] = None) -> RedemptionResult:
        return self.redemptions.redeem(user_id, points, order_id, idempotency_key)

    # Referrals
    def create_referral(self, referrer_id: UUID, referred_id: UUID, code: str) -> Referral:
        return self.referrals.create_referral(referrer_id, referred_id, code)

    def on_referred_first_purchase(self, referred_id: UUID) -> Optional[CommitResult]:
        return self.referrals.on_referred_first_purchase(referred_id)

    def resume_signup_award(self, referred_id: UUID) -> Optional[CommitResult]:
        return self.referrals.resume_signup_award(referred_id)

    # Maintenance
    def sweep_expired(self, now: Optional[datetime] = None) -> list[CommitResult]:
        return self.expiry.sweep(now)

    def retry_notifications(self) -> dict:
        return self.dispatcher.retry_pending()

    def close(self) -> None:
        self.dispatcher.close()
