from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntryKind(str, Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class PointsConfig(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    point_value_currency: Decimal = Field(default=Decimal("1.0"), ge=0)
    spend_points_per_100_units: int = Field(default=0, ge=0)
    first_purchase_points: int = Field(default=0, ge=0)
    referral_signup_points: int = Field(default=0, ge=0)
    referral_purchase_points: int = Field(default=0, ge=0)
    quiz_completion_points: int = Field(default=0, ge=0)
    expiry_months: int = Field(default=12, ge=0)
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True, json_schema_extra={
        "example": {
            "point_value_currency": 0.1,
            "spend_points_per_100_units": 10,
            "first_purchase_points": 100,
            "referral_signup_points": 200,
            "referral_purchase_points": 200,
            "quiz_completion_points": 20,
            "expiry_months": 12,
        }
    })


class UserBalance(BaseModel):
    user_id: UUID
    available_points: int = 0
    lifetime_earned: int = 0
    lifetime_redeemed: int = 0
    lifetime_expired: int = 0
    version: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(from_attributes=True)

    def is_consistent(self) -> bool:
        return (
            self.available_points >= 0
            and self.available_points
            == self.lifetime_earned - self.lifetime_redeemed - self.lifetime_expired
        )


class LedgerEntry(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    delta: int
    kind: EntryKind
    reason: str
    related_order_id: Optional[UUID] = None
    idempotency_key: Optional[str] = None
    balance_after: int
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True, from_attributes=True)


class Referral(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    referrer_id: UUID
    referred_id: UUID
    code: str
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)


class MilestoneCrossing(BaseModel):
    user_id: UUID
    threshold: int
    balance_at_crossing: int
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)


class OrderRef(BaseModel):
    id: UUID
    user_id: UUID

    model_config = ConfigDict(frozen=True)


class Notification(BaseModel):
    user_id: UUID
    title: str
    body: str
    category: str = "loyalty"
    type: NotificationType = NotificationType.INFO
    action_url: Optional[str] = None
    attempts: int = 0


class CommitResult(BaseModel):
    balance: UserBalance
    entry: LedgerEntry
    applied: bool = True


class RedemptionResult(BaseModel):
    user_id: UUID
    points: int
    currency_credited: Decimal
    balance: UserBalance
    entry: LedgerEntry


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[LedgerEntry]
    total_count: int
    available_points: int


class SpendAwardRequest(BaseModel):
    amount_spent: Decimal = Field(..., ge=0)
    order_id: Optional[UUID] = None


class RedeemRequest(BaseModel):
    points: int = Field(..., gt=0)
    order_id: Optional[UUID] = None
    idempotency_key: Optional[str] = None


class CreateReferralRequest(BaseModel):
    referrer_id: UUID
    referred_id: UUID
    code: str = Field(..., min_length=1)


class PublishConfigRequest(BaseModel):
    point_value_currency: Decimal = Field(..., ge=0)
    spend_points_per_100_units: int = Field(default=0, ge=0)
    first_purchase_points: int = Field(default=0, ge=0)
    referral_signup_points: int = Field(default=0, ge=0)
    referral_purchase_points: int = Field(default=0, ge=0)
    quiz_completion_points: int = Field(default=0, ge=0)
    expiry_months: int = Field(default=12, ge=0)


class AwardResponse(BaseModel):
    awarded_points: int
    balance: UserBalance
    entry: Optional[LedgerEntry] = None
    message: str
