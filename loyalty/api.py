from contextlib import asynccontextmanager
from typing import Optional
from uuid import UUID
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from .errors import (
    ConfigNotFound, DuplicateReferral, InsufficientBalance, InvalidAmount,
    IdempotencyConflict, InvalidOrder, InvalidReferral, PersistenceConflict,
)
from .log import setup_logging
from .models import (
    AwardResponse, CommitResult, CreateReferralRequest, LedgerHistoryResponse,
    PointsConfig, PublishConfigRequest, RedeemRequest, RedemptionResult,
    Referral, SpendAwardRequest, UserBalance,
)
from .service import LoyaltyService
from .settings import get_settings

setup_logging(get_settings().log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # deliver queued notifications before the worker is frozen or stopped
    loyalty_service.dispatcher.flush()


app = FastAPI(
    lifespan=lifespan,
    title="Loyalty Points API",
    description="Points ledger, rewards accrual and redemption for the shop",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

loyalty_service = LoyaltyService()


def _award_response(user_id: UUID, result: Optional[CommitResult], label: str) -> AwardResponse:
    if result is None:
        return AwardResponse(
            awarded_points=0,
            balance=loyalty_service.get_balance(user_id),
            message=f"No points earned for {label}",
        )
    if not result.applied:
        return AwardResponse(
            awarded_points=0, balance=result.balance, entry=result.entry,
            message=f"{label.capitalize()} already awarded (idempotent return)",
        )
    return AwardResponse(
        awarded_points=result.entry.delta, balance=result.balance, entry=result.entry,
        message=f"Awarded {result.entry.delta} points for {label}",
    )


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "loyalty-ledger"}


@app.get("/config", response_model=PointsConfig, tags=["Config"])
def get_config() -> PointsConfig:
    try:
        return loyalty_service.get_active_config()
    except ConfigNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.post("/config", response_model=PointsConfig, status_code=status.HTTP_201_CREATED, tags=["Config"])
def publish_config(request: PublishConfigRequest) -> PointsConfig:
    return loyalty_service.publish_config(request)


@app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Users"])
def get_user_balance(user_id: UUID) -> UserBalance:
    return loyalty_service.get_balance(user_id)


@app.get("/users/{user_id}/ledger", response_model=LedgerHistoryResponse, tags=["Users"])
def get_user_ledger(user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
    return loyalty_service.get_ledger_history(user_id, limit, offset)


@app.post("/users/{user_id}/awards/spend", response_model=AwardResponse, tags=["Awards"])
def award_spend(user_id: UUID, request: SpendAwardRequest) -> AwardResponse:
    try:
        result = loyalty_service.award_for_spend(user_id, request.amount_spent, request.order_id)
    except (IdempotencyConflict, PersistenceConflict) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return _award_response(user_id, result, "spend")


@app.post("/users/{user_id}/awards/quiz", response_model=AwardResponse, tags=["Awards"])
def award_quiz(user_id: UUID) -> AwardResponse:
    try:
        result = loyalty_service.award_for_quiz_completion(user_id)
    except (IdempotencyConflict, PersistenceConflict) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return _award_response(user_id, result, "quiz completion")


@app.post("/users/{user_id}/awards/first-purchase", response_model=AwardResponse, tags=["Awards"])
def award_first_purchase(user_id: UUID) -> AwardResponse:
    try:
        result = loyalty_service.award_for_first_purchase(user_id)
    except (IdempotencyConflict, PersistenceConflict) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return _award_response(user_id, result, "first purchase")


@app.post("/users/{user_id}/redemptions", response_model=RedemptionResult, tags=["Redemptions"])
def redeem_points(user_id: UUID, request: RedeemRequest) -> RedemptionResult:
    try:
        return loyalty_service.redeem(user_id, request.points, request.order_id, request.idempotency_key)
    except (InsufficientBalance, IdempotencyConflict, PersistenceConflict) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except (InvalidOrder, InvalidAmount) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/referrals", response_model=Referral, status_code=status.HTTP_201_CREATED, tags=["Referrals"])
def create_referral(request: CreateReferralRequest) -> Referral:
    try:
        return loyalty_service.create_referral(request.referrer_id, request.referred_id, request.code)
    except (DuplicateReferral, PersistenceConflict) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidReferral as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.post("/referrals/{referred_id}/signup-award", response_model=AwardResponse, tags=["Referrals"])
def resume_signup_award(referred_id: UUID) -> AwardResponse:
    try:
        result = loyalty_service.resume_signup_award(referred_id)
    except InvalidReferral as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    user_id = result.entry.user_id if result else loyalty_service.referrals.referrer_of(referred_id)
    return _award_response(user_id, result, "referral signup")


@app.post("/referrals/{referred_id}/first-purchase", response_model=AwardResponse, tags=["Referrals"])
def referred_first_purchase(referred_id: UUID) -> AwardResponse:
    result = loyalty_service.on_referred_first_purchase(referred_id)
    user_id = result.entry.user_id if result else referred_id
    return _award_response(user_id, result, "referral purchase")


@app.post("/expiry/sweep", tags=["System"])
def sweep_expired() -> dict:
    results = loyalty_service.sweep_expired()
    return {
        "users_affected": len(results),
        "points_expired": sum(-r.entry.delta for r in results),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
