"""
Unit Tests for the Award Engine
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loyalty.awards import add_months, spend_points
from loyalty.models import EntryKind, PointsConfig, PublishConfigRequest
from loyalty.notifications import RecordingNotifier
from loyalty.service import LoyaltyService
from loyalty.settings import LoyaltySettings


USER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
ORDER_ID = UUID("33333333-3333-3333-3333-333333333333")


class TestSpendAward:
    """Points for spend: floor(amount / 100) * rate."""

    def test_spend_of_250_awards_20(self, service):
        result = service.award_for_spend(USER_ID, Decimal("250"))

        assert result.entry.delta == 20
        assert result.entry.reason == "spend"
        assert service.get_balance(USER_ID).available_points == 20

    def test_small_spend_is_skipped(self, service, repo):
        assert service.award_for_spend(USER_ID, Decimal("99.99")) is None
        assert repo.list_entries(USER_ID) == []

    def test_spend_for_same_order_awards_once(self, service):
        first = service.award_for_spend(USER_ID, Decimal("1000"), order_id=ORDER_ID)
        retry = service.award_for_spend(USER_ID, Decimal("1000"), order_id=ORDER_ID)

        assert first.applied
        assert not retry.applied
        assert first.entry.related_order_id == ORDER_ID
        assert service.get_balance(USER_ID).available_points == 100

    def test_spend_points_helper(self):
        config = PointsConfig(spend_points_per_100_units=10)

        assert spend_points(Decimal("0"), config) == 0
        assert spend_points(Decimal("199.99"), config) == 10
        assert spend_points(Decimal("200"), config) == 20


class TestOneTimeBonuses:
    """Quiz and first-purchase bonuses are granted once per user."""

    def test_quiz_bonus_awarded_once(self, service, repo):
        service.award_for_quiz_completion(USER_ID)
        service.award_for_quiz_completion(USER_ID)

        quiz_entries = [
            e for e in repo.list_entries(USER_ID)
            if e.kind == EntryKind.EARNED and e.reason == "quiz completion"
        ]
        assert len(quiz_entries) == 1
        assert service.get_balance(USER_ID).available_points == 20

    def test_first_purchase_bonus_awarded_once(self, service):
        service.award_for_first_purchase(USER_ID)
        retry = service.award_for_first_purchase(USER_ID)

        assert not retry.applied
        assert service.get_balance(USER_ID).lifetime_earned == 100

    def test_retry_after_rate_change_replays_original_grant(self, service):
        service.award_for_first_purchase(USER_ID)
        service.publish_config(PublishConfigRequest(point_value_currency=Decimal("0.5"), first_purchase_points=250))

        retry = service.award_for_first_purchase(USER_ID)

        assert not retry.applied
        assert retry.entry.delta == 100
        assert service.get_balance(USER_ID).available_points == 100

    def test_bonuses_accumulate_rather_than_reset(self, service):
        service.award_for_quiz_completion(USER_ID)
        service.award_for_first_purchase(USER_ID)
        service.award_for_spend(USER_ID, Decimal("300"))

        balance = service.get_balance(USER_ID)
        assert balance.available_points == 150
        assert balance.lifetime_earned == 150
        assert balance.is_consistent()


class TestExpiryStamp:
    """Earned entries carry an expiry date from the active config."""

    def test_earned_entry_expires_after_configured_months(self, service):
        result = service.award_for_quiz_completion(USER_ID)

        expires = result.entry.expires_at
        created = result.entry.created_at
        assert expires is not None
        assert (expires.year - created.year) * 12 + expires.month - created.month == 12

    def test_add_months_clamps_day(self):
        moment = datetime(2024, 1, 31, tzinfo=timezone.utc)

        assert add_months(moment, 1) == datetime(2024, 2, 29, tzinfo=timezone.utc)
        assert add_months(moment, 13) == datetime(2025, 2, 28, tzinfo=timezone.utc)


class TestConfigFallback:
    """Without a published config, awards use zero-bonus defaults and never fail."""

    def test_awards_skip_without_config(self):
        svc = LoyaltyService(notifier=RecordingNotifier(), settings=LoyaltySettings())

        assert svc.award_for_quiz_completion(USER_ID) is None
        assert svc.award_for_spend(USER_ID, Decimal("5000")) is None
        assert svc.get_balance(USER_ID).available_points == 0


class TestEarnedNotification:
    """Applied awards notify the user; replays do not."""

    def test_points_earned_notification(self, service, notifier):
        service.award_for_quiz_completion(USER_ID)
        service.award_for_quiz_completion(USER_ID)
        service.dispatcher.flush()

        earned = [n for n in notifier.sent if "You earned" in n.title]
        assert len(earned) == 1
        assert earned[0].title == "🎉 You earned 20 points!"
        assert earned[0].category == "loyalty"
