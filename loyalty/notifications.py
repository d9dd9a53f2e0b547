"""
Notification Dispatcher

Delivery is best-effort and runs off the caller's thread. A failed ``notify``
is logged and queued for ``retry_pending``; it is never raised into the ledger
call that produced it.
"""

import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Optional, Protocol
from uuid import UUID

from loguru import logger

from .errors import NotificationDeliveryFailure
from .models import Notification, NotificationType


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LogNotifier:
    def notify(self, notification: Notification) -> None:
        logger.info(f"[notify {notification.user_id}] {notification.title}")


class RecordingNotifier:
    def __init__(self):
        self.sent: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.sent.append(notification)


def points_earned(user_id: UUID, points: int, reason: str) -> Notification:
    return Notification(
        user_id=user_id,
        title=f"🎉 You earned {points} points!",
        body=f"Congratulations! You've earned {points} points for {reason}. Keep earning more points!",
        type=NotificationType.SUCCESS,
    )


def milestone_reached(user_id: UUID, threshold: int, points: int, action_url: Optional[str] = None) -> Notification:
    name = f"{threshold:,} Points"
    return Notification(
        user_id=user_id,
        title=f"🏆 Milestone Achieved: {name}!",
        body=f"You've reached {name} with {points} points!",
        type=NotificationType.SUCCESS,
        action_url=action_url,
    )


def points_redeemed(user_id: UUID, points: int, value: str, currency: str) -> Notification:
    return Notification(
        user_id=user_id,
        title="Points redeemed successfully!",
        body=f"{points} points have been redeemed. Value: {currency} {value}",
        type=NotificationType.INFO,
    )


class NotificationDispatcher:
    """
    Delivers notifications on a background worker.

    ``dispatch`` only enqueues, so a slow or hanging notifier never holds up
    the award or redemption that produced the notice. One worker keeps
    delivery in dispatch order. ``flush`` waits for queued deliveries and
    ``close`` drains and stops the worker.
    """

    def __init__(self, notifier: Notifier, max_attempts: int = 5):
        self.notifier = notifier
        self.max_attempts = max_attempts
        self.pending: deque[Notification] = deque()
        self._lock = threading.Lock()
        self._inflight: set[Future] = set()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="loyalty-notify")

    def dispatch(self, notification: Notification) -> Future:
        future = self._executor.submit(self._deliver_or_queue, notification)
        with self._lock:
            self._inflight.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._inflight.discard(future)

    def _deliver_or_queue(self, notification: Notification) -> bool:
        try:
            self._deliver(notification)
            return True
        except NotificationDeliveryFailure as e:
            logger.warning(f"Queued notification for retry: {e}")
            with self._lock:
                self.pending.append(notification)
            return False

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight deliveries. Returns False if ``timeout`` ran out."""
        with self._lock:
            futures = list(self._inflight)
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _deliver(self, notification: Notification) -> None:
        notification.attempts += 1
        try:
            self.notifier.notify(notification)
        except Exception as e:
            raise NotificationDeliveryFailure(
                f"Delivery of '{notification.title}' to {notification.user_id} failed "
                f"(attempt {notification.attempts}): {e}"
            ) from e

    def retry_pending(self) -> dict:
        self.flush()
        with self._lock:
            batch = list(self.pending)
            self.pending.clear()

        result = {"successful": 0, "failed": 0, "gave_up": 0}
        for notification in batch:
            try:
                self._deliver(notification)
                result["successful"] += 1
            except NotificationDeliveryFailure as e:
                if notification.attempts >= self.max_attempts:
                    logger.error(f"Giving up on notification: {e}")
                    result["gave_up"] += 1
                else:
                    logger.warning(str(e))
                    result["failed"] += 1
                    with self._lock:
                        self.pending.append(notification)

        logger.info(
            f"Notification retry complete: {result['successful']} successful, "
            f"{result['failed']} failed, {result['gave_up']} gave up"
        )
        return result
