from decimal import Decimal

from loguru import logger

from .errors import ConfigNotFound
from .models import PointsConfig, PublishConfigRequest
from .storage import LoyaltyRepository


# Used when no points_config record exists yet. Accrual must never block checkout.
DEFAULT_POINT_VALUE = Decimal("1.0")
DEFAULT_EXPIRY_MONTHS = 12


def default_config() -> PointsConfig:
    return PointsConfig(
        point_value_currency=DEFAULT_POINT_VALUE,
        spend_points_per_100_units=0,
        first_purchase_points=0,
        referral_signup_points=0,
        referral_purchase_points=0,
        quiz_completion_points=0,
        expiry_months=DEFAULT_EXPIRY_MONTHS,
    )


class ConfigResolver:
    def __init__(self, repo: LoyaltyRepository):
        self.repo = repo

    def get_active_config(self) -> PointsConfig:
        config = self.repo.latest_config()
        if config is None:
            raise ConfigNotFound("No points configuration has been published")
        return config

    def resolve(self) -> PointsConfig:
        """Active config, or the documented defaults when none is published."""
        try:
            return self.get_active_config()
        except ConfigNotFound:
            logger.warning("No active points config, falling back to defaults")
            return default_config()

    def publish(self, request: PublishConfigRequest) -> PointsConfig:
        config = PointsConfig(**request.model_dump())
        self.repo.add_config(config)
        logger.info(f"Published points config {config.id}")
        return config
