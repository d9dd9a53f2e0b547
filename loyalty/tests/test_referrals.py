"""
Unit Tests for the Referral Tracker
"""

import threading
from uuid import UUID

import pytest

from loyalty.errors import DuplicateReferral, InvalidReferral, PersistenceConflict


REFERRER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
REFERRED_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
SECOND_REFERRER_ID = UUID("770e8400-e29b-41d4-a716-446655440002")


class TestCreateReferral:
    """A referred user has at most one referrer, ever."""

    def test_referral_awards_signup_bonus(self, service):
        referral = service.create_referral(REFERRER_ID, REFERRED_ID, "ISA-JOHN")

        assert referral.referrer_id == REFERRER_ID
        assert referral.code == "ISA-JOHN"
        assert service.get_balance(REFERRER_ID).available_points == 200
        assert service.get_balance(REFERRED_ID).available_points == 0

    def test_duplicate_referral_rejected(self, service, repo):
        service.create_referral(REFERRER_ID, REFERRED_ID, "ISA-JOHN")

        with pytest.raises(DuplicateReferral):
            service.create_referral(SECOND_REFERRER_ID, REFERRED_ID, "ISA-MARY")

        assert len(repo.referrals) == 1
        assert service.referrals.referrer_of(REFERRED_ID) == REFERRER_ID
        assert service.get_balance(SECOND_REFERRER_ID).available_points == 0

    def test_concurrent_duplicate_creates_one_row(self, service, repo):
        barrier = threading.Barrier(4)
        errors = []

        def refer(referrer_id):
            barrier.wait()
            try:
                service.create_referral(referrer_id, REFERRED_ID, "CODE")
            except DuplicateReferral:
                errors.append(referrer_id)

        referrers = [REFERRER_ID, SECOND_REFERRER_ID, REFERRER_ID, SECOND_REFERRER_ID]
        threads = [threading.Thread(target=refer, args=(r,)) for r in referrers]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(repo.referrals) == 1
        assert len(errors) == 3
        total = (
            service.get_balance(REFERRER_ID).available_points
            + service.get_balance(SECOND_REFERRER_ID).available_points
        )
        assert total == 200

    def test_self_referral_rejected(self, service):
        with pytest.raises(InvalidReferral):
            service.create_referral(REFERRER_ID, REFERRER_ID, "ME")

    def test_blank_code_rejected(self, service):
        with pytest.raises(InvalidReferral):
            service.create_referral(REFERRER_ID, REFERRED_ID, "   ")

    def test_referrals_for_referrer(self, service):
        service.create_referral(REFERRER_ID, REFERRED_ID, "A")
        service.create_referral(REFERRER_ID, SECOND_REFERRER_ID, "B")

        found = service.referrals.referrals_for(REFERRER_ID)

        assert [r.referred_id for r in found] == [REFERRED_ID, SECOND_REFERRER_ID]


class TestReferredFirstPurchase:
    """The purchase bonus is granted once per referral relationship."""

    def test_purchase_bonus_once(self, service):
        service.create_referral(REFERRER_ID, REFERRED_ID, "ISA-JOHN")

        first = service.on_referred_first_purchase(REFERRED_ID)
        retry = service.on_referred_first_purchase(REFERRED_ID)

        assert first.applied
        assert not retry.applied
        assert service.get_balance(REFERRER_ID).available_points == 350

    def test_unreferred_user_gets_nothing(self, service):
        assert service.on_referred_first_purchase(REFERRED_ID) is None


class TestInterruptedSignupAward:
    """A referral whose bonus commit failed is completed later, exactly once."""

    @pytest.fixture
    def stranded_referral(self, service, repo, monkeypatch):
        def lose_race(entry, balance, expected_version):
            raise PersistenceConflict("simulated concurrent writer")

        monkeypatch.setattr(repo, "apply_commit", lose_race)
        with pytest.raises(PersistenceConflict):
            service.create_referral(REFERRER_ID, REFERRED_ID, "ISA-JOHN")
        monkeypatch.undo()

    def test_referral_kept_without_bonus(self, service, stranded_referral):
        assert service.referrals.referrer_of(REFERRED_ID) == REFERRER_ID
        assert service.get_balance(REFERRER_ID).available_points == 0

    def test_resume_grants_bonus_once(self, service, stranded_referral):
        first = service.resume_signup_award(REFERRED_ID)
        second = service.resume_signup_award(REFERRED_ID)

        assert first.applied
        assert not second.applied
        assert service.get_balance(REFERRER_ID).available_points == 200

    def test_first_purchase_completes_missing_bonus(self, service, stranded_referral):
        service.on_referred_first_purchase(REFERRED_ID)
        service.on_referred_first_purchase(REFERRED_ID)

        assert service.get_balance(REFERRER_ID).lifetime_earned == 350

    def test_resume_for_unreferred_user_rejected(self, service):
        with pytest.raises(InvalidReferral):
            service.resume_signup_award(REFERRED_ID)
