"""
Loyalty settings.

Loads runtime configuration from environment variables (prefix ``LOYALTY_``)
using pydantic-settings. Point rates are not settings: they live in the
versioned ``points_config`` records served by the config resolver.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MILESTONES = [100, 500, 1000, 2500, 5000, 10000]


class LoyaltySettings(BaseSettings):
    """Application settings loaded from environment variables."""

    log_level: str = "INFO"
    currency: str = "KES"

    # Ledger
    commit_max_retries: int = Field(default=3, ge=1)

    # Notifications
    notification_max_attempts: int = Field(default=5, ge=1)
    wallet_action_url: str = "/wallet"
    milestone_thresholds: list[int] = Field(default_factory=lambda: list(DEFAULT_MILESTONES))

    model_config = SettingsConfigDict(
        env_prefix="LOYALTY_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("milestone_thresholds")
    @classmethod
    def sort_thresholds(cls, v: list[int]) -> list[int]:
        if any(t <= 0 for t in v):
            raise ValueError("milestone thresholds must be positive")
        return sorted(set(v))


@lru_cache
def get_settings() -> LoyaltySettings:
    return LoyaltySettings()
