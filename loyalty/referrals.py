from typing import Optional
from uuid import UUID

from loguru import logger

from .awards import AwardEngine
from .errors import InvalidReferral
from .models import CommitResult, Referral
from .storage import LoyaltyRepository


class ReferralTracker:
    def __init__(self, repo: LoyaltyRepository, awards: AwardEngine):
        self.repo = repo
        self.awards = awards

    def create_referral(self, referrer_id: UUID, referred_id: UUID, code: str) -> Referral:
        """
        Record the referral, then grant the referrer's signup bonus.

        The referral row and the bonus are separate writes. If the bonus
        commit fails after the row is stored, the error propagates and the
        referral stays recorded; ``resume_signup_award`` (also run on the
        referred user's first purchase) grants the missing bonus exactly once.
        """
        if referrer_id == referred_id:
            raise InvalidReferral(f"User {referrer_id} cannot refer themselves")
        code = code.strip()
        if not code:
            raise InvalidReferral("Referral code is required")

        referral = Referral(referrer_id=referrer_id, referred_id=referred_id, code=code)
        # raises DuplicateReferral when referred_id already has a referrer
        self.repo.add_referral(referral)
        logger.info(f"Recorded referral {referrer_id} -> {referred_id} ({code})")

        self.awards.award_for_referral_signup(referrer_id, referred_id)
        return referral

    def on_referred_first_purchase(self, referred_id: UUID) -> Optional[CommitResult]:
        referral = self.repo.get_referral_by_referred(referred_id)
        if referral is None:
            logger.debug(f"User {referred_id} was not referred, no purchase bonus")
            return None
        self.awards.award_for_referral_signup(referral.referrer_id, referred_id)
        return self.awards.award_for_referral_purchase(referral.referrer_id, referred_id)

    def resume_signup_award(self, referred_id: UUID) -> Optional[CommitResult]:
        referral = self.repo.get_referral_by_referred(referred_id)
        if referral is None:
            raise InvalidReferral(f"User {referred_id} was not referred")
        result = self.awards.award_for_referral_signup(referral.referrer_id, referred_id)
        if result is not None and result.applied:
            logger.info(f"Resumed signup bonus for referral {referral.referrer_id} -> {referred_id}")
        return result

    def referrer_of(self, referred_id: UUID) -> Optional[UUID]:
        referral = self.repo.get_referral_by_referred(referred_id)
        return referral.referrer_id if referral else None

    def referrals_for(self, referrer_id: UUID) -> list[Referral]:
        return self.repo.list_referrals_by_referrer(referrer_id)
