"""
Auto-pause: take chronically failing feeds out of rotation
until an operator resumes them.
"""

import logging
from typing import Optional

from feeder.config import conf
from feeder.database.models import Feed, FeedStatus
from feeder.database.repository import FeedRepository
from feeder.errors import FeedNotFound
from feeder.notifications import Notifier
from feeder.scheduler import FeedScheduler
from feeder.util import truncate

logger = logging.getLogger(__name__)

AUTO_PAUSE_FAILURES = conf.AUTO_PAUSE_FAILURES
MAX_ERROR_LENGTH = conf.MAX_ERROR_LENGTH


def pause_reason(feed: Feed) -> str:
    return (f"Auto-paused after {feed.consecutive_failures} consecutive failures. "
            f"Last error: {feed.last_error or 'Unknown'}")


class AutoPauseManager:
    def __init__(self, repo: FeedRepository,
                 scheduler: FeedScheduler,
                 notifier: Optional[Notifier] = None,
                 threshold: int = AUTO_PAUSE_FAILURES):
        self.repo = repo
        self.scheduler = scheduler
        self.notifier = notifier
        self.threshold = threshold

    def check(self, feed: Feed) -> bool:
        """
        pause feed if it has failed too many times in a row.
        returns True if paused.
        """
        if (feed.consecutive_failures or 0) < self.threshold or feed.paused:
            return False

        reason = pause_reason(feed)
        logger.warning(f"  Feed {feed.id} {reason}")
        self.pause(feed.id, reason)
        self.scheduler.unschedule(feed.id)
        if self.notifier:
            self.notifier.auto_paused(feed)

        feed.status = FeedStatus.PAUSED.value
        feed.is_active = False
        return True

    def pause(self, feed_id: int, reason: str) -> None:
        if not self.repo.update_feed(feed_id,
                                     status=FeedStatus.PAUSED.value,
                                     is_active=False,
                                     last_error=truncate(reason, MAX_ERROR_LENGTH)):
            raise FeedNotFound(feed_id)
        logger.info(f"  Feed {feed_id} paused")

    def resume(self, feed_id: int) -> Optional[str]:
        """
        operator action: clear failure state, reactivate, reschedule.
        returns next due time (isoformat) or None.
        """
        if not self.repo.update_feed(feed_id,
                                     status=FeedStatus.ACTIVE.value,
                                     is_active=True,
                                     consecutive_failures=0,
                                     failure_count=0,
                                     last_error=None,
                                     last_error_class=None):
            raise FeedNotFound(feed_id)
        logger.info(f"  Feed {feed_id} resumed")
        when = self.scheduler.schedule(feed_id)
        return when.isoformat() if when else None

    def reset_failures(self, feed_id: int) -> None:
        if not self.repo.update_feed(feed_id,
                                     consecutive_failures=0,
                                     failure_count=0):
            raise FeedNotFound(feed_id)
        logger.debug(f"  Feed {feed_id} failure counters reset")
