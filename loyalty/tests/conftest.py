"""Shared fixtures for the loyalty tests."""

from decimal import Decimal

import pytest

from loyalty.models import PublishConfigRequest
from loyalty.notifications import RecordingNotifier
from loyalty.service import LoyaltyService
from loyalty.settings import LoyaltySettings
from loyalty.storage import InMemoryRepository


def standard_config(**overrides) -> PublishConfigRequest:
    values = dict(
        point_value_currency=Decimal("0.5"),
        spend_points_per_100_units=10,
        first_purchase_points=100,
        referral_signup_points=200,
        referral_purchase_points=150,
        quiz_completion_points=20,
        expiry_months=12,
    )
    values.update(overrides)
    return PublishConfigRequest(**values)


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(repo, notifier):
    svc = LoyaltyService(repo=repo, notifier=notifier, settings=LoyaltySettings())
    svc.publish_config(standard_config())
    yield svc
    svc.close()
