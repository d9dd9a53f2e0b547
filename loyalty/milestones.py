from typing import Iterable, Optional
from uuid import UUID

from loguru import logger

from .models import CommitResult, MilestoneCrossing
from .notifications import NotificationDispatcher, milestone_reached
from .settings import DEFAULT_MILESTONES
from .storage import LoyaltyRepository


class MilestoneDetector:
    """
    Raises one notification per ladder threshold per user.

    Each threshold is claimed through the repository's unique
    (user_id, threshold) key before notifying, so replayed or concurrent
    balance increases cannot notify twice.
    """

    def __init__(
        self,
        repo: LoyaltyRepository,
        dispatcher: NotificationDispatcher,
        thresholds: Iterable[int] = DEFAULT_MILESTONES,
        action_url: Optional[str] = None,
    ):
        self.repo = repo
        self.dispatcher = dispatcher
        self.thresholds = sorted(set(thresholds))
        self.action_url = action_url

    def on_commit(self, result: CommitResult) -> list[int]:
        if not result.applied or result.entry.delta <= 0:
            return []
        return self.evaluate(result.entry.user_id, result.balance.available_points)

    def evaluate(self, user_id: UUID, available_points: int) -> list[int]:
        crossed = []
        for threshold in self.thresholds:
            if threshold > available_points:
                break
            claimed = self.repo.claim_milestone(MilestoneCrossing(
                user_id=user_id,
                threshold=threshold,
                balance_at_crossing=available_points,
            ))
            if not claimed:
                continue
            logger.info(f"User {user_id} crossed the {threshold} points milestone")
            self.dispatcher.dispatch(
                milestone_reached(user_id, threshold, available_points, self.action_url)
            )
            crossed.append(threshold)
        return crossed

    def crossings(self, user_id: UUID) -> list[MilestoneCrossing]:
        return self.repo.list_milestones(user_id)
