"""
Feed status state machine.

    active -> degraded -> blocked | unreachable
    degraded -> active (recovery)
    blocked | unreachable -> degraded (on a success)

"paused" belongs to the auto-pause manager: while paused the
machine does nothing.
"""

import logging
from typing import Callable, Optional, Sequence

from feeder.config import conf
from feeder.database.models import FeedStatus
from feeder.database.repository import FeedRepository
from feeder.errors import ErrorClass, FeedNotFound
from feeder.health import Attempt

logger = logging.getLogger(__name__)

# see feeder/config.py for descriptions
STATUS_ESCALATION_FAILURES = conf.STATUS_ESCALATION_FAILURES
STATUS_RECOVERY_SUCCESSES = conf.STATUS_RECOVERY_SUCCESSES
STATUS_WINDOW = conf.STATUS_WINDOW

# status codes that mean "blocked" regardless of classification
BLOCKED_CODES = {403, 522}

DESCRIPTIONS = {
    FeedStatus.ACTIVE: 'Functioning normally',
    FeedStatus.DEGRADED: 'Occasional failures but still working',
    FeedStatus.BLOCKED: 'Consistently blocked (403/522)',
    FeedStatus.UNREACHABLE: 'Consistently timing out',
    FeedStatus.PAUSED: 'Manually or automatically paused',
}

DiscoverFunc = Callable[[int], None]


def status_description(status: str) -> str:
    try:
        return DESCRIPTIONS[FeedStatus(status)]
    except ValueError:
        return 'Unknown status'


def next_status(current: FeedStatus,
                success: bool,
                error_class: Optional[ErrorClass],
                status_code: Optional[int],
                consecutive_failures: int,
                recent: Sequence[bool],
                window: int = STATUS_WINDOW,
                recovery_successes: int = STATUS_RECOVERY_SUCCESSES,
                escalation_failures: int = STATUS_ESCALATION_FAILURES) -> FeedStatus:
    """
    `recent` is the success flag of the most recent health log
    entries (including the attempt being evaluated).
    """
    if current == FeedStatus.PAUSED:
        return current

    if success:
        if current == FeedStatus.DEGRADED:
            if sum(1 for s in recent if s) >= recovery_successes:
                return FeedStatus.ACTIVE
        elif current in (FeedStatus.BLOCKED, FeedStatus.UNREACHABLE):
            # working again: must earn way back to active
            return FeedStatus.DEGRADED
        return current

    if consecutive_failures >= escalation_failures:
        if error_class == ErrorClass.BLOCKED or status_code in BLOCKED_CODES:
            return FeedStatus.BLOCKED
        if error_class == ErrorClass.TIMEOUT:
            return FeedStatus.UNREACHABLE

    if current == FeedStatus.ACTIVE and len(recent) >= window:
        failures = sum(1 for s in recent if not s)
        if 1 <= failures <= 2:
            return FeedStatus.DEGRADED
    return current


class StatusMachine:
    def __init__(self, repo: FeedRepository,
                 discover: Optional[DiscoverFunc] = None,
                 window: int = STATUS_WINDOW):
        self.repo = repo
        self.discover = discover
        self.window = window

    def evaluate(self, feed_id: int, attempt: Attempt) -> FeedStatus:
        """
        call after the attempt has been recorded.
        returns resulting status.
        """
        feed = self.repo.get_feed(feed_id)
        if feed is None:
            raise FeedNotFound(feed_id)

        current = FeedStatus(feed.status)
        logs = self.repo.recent_health_logs(feed_id, self.window)
        new = next_status(current, attempt.success, attempt.error_class,
                          attempt.status_code, feed.consecutive_failures,
                          [bool(log.success) for log in logs],
                          window=self.window)
        if new == current:
            return current

        if not self.repo.update_status(feed_id, new):
            # paused underneath us
            return FeedStatus.PAUSED
        logger.info(f"  Feed {feed_id} status {current.value} -> {new.value}")

        if new in (FeedStatus.BLOCKED, FeedStatus.UNREACHABLE):
            self._dispatch_discovery(feed_id)
        return new

    def _dispatch_discovery(self, feed_id: int) -> None:
        if self.discover is None:
            return
        try:
            self.discover(feed_id)
        except Exception as exc:
            # best effort: never interferes with ingestion
            logger.warning(f"  Feed {feed_id} discovery dispatch failed: {exc!r}")
