"""
Feed notifications: records of noteworthy feed state changes,
polled by an operator-facing consumer.

Producing notifications is best effort: failures are logged only.
"""

import logging
from typing import List, Optional

# PyPI
from sqlalchemy.exc import SQLAlchemyError

from feeder.config import conf
from feeder.database.models import Feed, FeedNotification, FeedStatus
from feeder.database.repository import FeedRepository

logger = logging.getLogger(__name__)

WARNING_FAILURES = conf.WARNING_FAILURES

Type = FeedNotification.Type
Priority = FeedNotification.Priority


def _name(feed: Feed) -> str:
    return feed.title or feed.url


class Notifier:
    def __init__(self, repo: FeedRepository,
                 warning_failures: int = WARNING_FAILURES):
        self.repo = repo
        self.warning_failures = warning_failures

    def create(self, feed_id: int, type: Type, priority: Priority,
               title: str, message: str) -> Optional[FeedNotification]:
        fn = FeedNotification.from_info(feed_id, type, priority, title, message)
        try:
            self.repo.add_notification(fn)
        except SQLAlchemyError as exc:
            logger.error(f"  Feed {feed_id} notification failed: {exc!r}")
            return None
        logger.info(f"  Feed {feed_id} {priority.value} {type.value} notification: {title}")
        return fn

    ################ producers (called by ingestion)

    def check_warning(self, feed: Feed) -> Optional[FeedNotification]:
        """
        warn when consecutive failures reach the threshold (once per streak)
        """
        if feed.consecutive_failures != self.warning_failures:
            return None
        n = feed.consecutive_failures
        return self.create(
            feed.id, Type.WARNING, Priority.NORMAL,
            f'Feed "{_name(feed)}" has {n} consecutive failures',
            f"The feed has failed {n} times in a row. "
            f"Last error: {feed.last_error or 'Unknown'}. "
            "Consider checking the feed URL or pausing it.")

    def auto_paused(self, feed: Feed) -> Optional[FeedNotification]:
        return self.create(
            feed.id, Type.ERROR, Priority.HIGH,
            f'Feed "{_name(feed)}" has been auto-paused',
            "The feed has been automatically paused after "
            f"{feed.consecutive_failures} consecutive failures. "
            f"Last error: {feed.last_error or 'Unknown'}. "
            "Please review and resume manually if needed.")

    def check_recovery(self, feed: Feed,
                       prev_failures: int) -> Optional[FeedNotification]:
        """
        `feed` as it stands after a successful attempt
        (and status evaluation); `prev_failures` is the consecutive
        failure count before that attempt.
        """
        if (prev_failures > 0
                and feed.consecutive_failures == 0
                and feed.status == FeedStatus.ACTIVE.value
                and (feed.failure_count or 0) > 0):
            return self.create(
                feed.id, Type.SUCCESS, Priority.LOW,
                f'Feed "{_name(feed)}" has recovered',
                "The feed is now working normally after previous failures.")
        return None

    ################ consumer side

    def unread(self, limit: int = 100) -> List[FeedNotification]:
        """high priority first, then newest first"""
        return self.repo.unread_notifications(limit)

    def mark_read(self, notification_id: int) -> bool:
        return self.repo.mark_notifications_read(
            FeedNotification.id == notification_id) > 0

    def dismiss_feed(self, feed_id: int) -> int:
        return self.repo.mark_notifications_read(
            FeedNotification.feed_id == feed_id)

    def delete(self, notification_id: int) -> bool:
        return self.repo.delete_notification(notification_id)
