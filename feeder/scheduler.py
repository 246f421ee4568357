"""
Feed scheduling.

A feed's (one and only) registration is its Feed.next_fetch_attempt:
NULL means unscheduled.  The queuer loop (scripts/queue_feeds.py)
queues due registrations to the work queue, and the task re-arms the
registration after each attempt.  Since the registration lives on the
feed row, scheduling twice can never produce two timers.
"""

import datetime as dt
import logging
import time
from typing import Any, Optional

from feeder.config import conf
from feeder.database.models import Feed
from feeder.database.repository import FeedRepository
from feeder.errors import ErrorClass, FeedNotFound
import feeder.queue as queue
from feeder.retry import next_attempt_at
from feeder.util import host_matches, utc

logger = logging.getLogger(__name__)

# see feeder/config.py for descriptions
DEFAULT_INTERVAL_MINS = conf.DEFAULT_INTERVAL_MINS
MAXIMUM_BACKOFF_MINS = conf.MAXIMUM_BACKOFF_MINS
MINIMUM_INTERVAL_MINS = conf.MINIMUM_INTERVAL_MINS
TASK_TIMEOUT_SECONDS = conf.TASK_TIMEOUT_SECONDS
THROTTLED_HOSTS = conf.THROTTLED_HOSTS
THROTTLED_MIN_MINUTES = conf.THROTTLED_MIN_MINUTES

# registrations queued longer than this many task timeouts are "strays"
STRAY_TIMEOUTS = 5


def feed_interval(feed: Feed) -> int:
    """
    refresh interval in minutes, clamped to configured minimum
    """
    return max(feed.refresh_interval_minutes or DEFAULT_INTERVAL_MINS,
               MINIMUM_INTERVAL_MINS)


def next_due(feed: Feed, now: dt.datetime) -> dt.datetime:
    """
    healthy feed: interval after last successful fetch (now if never);
    failing feed: retry/backoff policy.
    """
    interval = feed_interval(feed)
    failures = feed.consecutive_failures or 0
    if failures == 0:
        if feed.last_fetched_at is None:
            return now
        return feed.last_fetched_at + dt.timedelta(minutes=interval)

    try:
        error_class = ErrorClass(feed.last_error_class)
    except ValueError:          # includes None
        error_class = ErrorClass.OTHER
    return next_attempt_at(error_class, failures,
                           feed.last_attempt_at or now, interval,
                           MAXIMUM_BACKOFF_MINS)


def is_throttled(feed: Feed, now: dt.datetime) -> bool:
    """
    feeds from high-traffic hosts fetched at most once
    per THROTTLED_MIN_MINUTES, whatever the schedule says
    """
    if not feed.last_fetched_at or '.rss' not in feed.url:
        return False
    if not host_matches(feed.url, THROTTLED_HOSTS):
        return False
    return now - feed.last_fetched_at < dt.timedelta(minutes=THROTTLED_MIN_MINUTES)


class FeedScheduler:
    """
    `wq` is the work queue (rq Queue; anything with the same
    enqueue/enqueue_many methods in tests)
    """

    def __init__(self, repo: FeedRepository, wq: Any,
                 task_timeout: int = TASK_TIMEOUT_SECONDS):
        self.repo = repo
        self.wq = wq
        self.task_timeout = task_timeout

    def _feed(self, feed_id: int) -> Feed:
        feed = self.repo.get_feed(feed_id)
        if feed is None:
            raise FeedNotFound(feed_id)
        return feed

    def schedule(self, feed_id: int) -> Optional[dt.datetime]:
        """
        (re)install the feed's registration.
        returns first due time, or None if feed not schedulable.
        """
        feed = self._feed(feed_id)
        if not feed.schedulable:
            self.repo.unregister(feed_id)
            logger.info(f"  Feed {feed_id} not schedulable ({feed.status}, active {feed.is_active})")
            return None

        when = next_due(feed, utc())
        self.repo.register(feed_id, when)
        logger.debug(f"  Feed {feed_id} scheduled {when} every {feed_interval(feed)} min")
        return when

    def unschedule(self, feed_id: int) -> bool:
        removed = self.repo.unregister(feed_id)
        if removed:
            logger.info(f"  Feed {feed_id} unscheduled")
        return removed

    def fetch_now(self, feed_id: int) -> Optional[str]:
        """
        queue a one-off fetch; registration untouched.
        returns job id, or None if feed not schedulable.
        """
        feed = self._feed(feed_id)
        if not feed.schedulable:
            logger.info(f"  Feed {feed_id} fetch-now skipped ({feed.status}, active {feed.is_active})")
            return None
        job_id = f"feed-now-{feed_id}-{int(time.time() * 1000)}"
        queue.enqueue_fetch_now(self.wq, feed_id, job_id, self.task_timeout)
        logger.info(f"  Feed {feed_id} queued {job_id}")
        return job_id

    def schedule_all(self) -> int:
        """
        (re)schedule every schedulable feed; returns count
        """
        count = 0
        for feed_id in self.repo.schedulable_feed_ids():
            try:
                if self.schedule(feed_id):
                    count += 1
            except FeedNotFound:
                pass            # deleted while we were looking
        logger.info(f"scheduled {count} feeds")
        return count

    def rearm(self, feed_id: int) -> Optional[dt.datetime]:
        """
        called by the task after an attempt: advance registration.
        a feed unscheduled in the meantime stays unscheduled.
        """
        feed = self.repo.get_feed(feed_id)
        if feed is None:
            return None
        if not feed.schedulable:
            self.repo.unregister(feed_id)
            return None
        when = next_due(feed, utc())
        if not self.repo.rearm(feed_id, when):
            return None
        return when

    def queue_due_feeds(self, limit: int) -> int:
        """
        push due registrations to the work queue; returns count queued.
        """
        feed_ids = self.repo.claim_due(utc(), limit)
        if not feed_ids:
            return 0
        try:
            queued = queue.enqueue_feeds(self.wq, feed_ids, self.task_timeout)
        except queue.QueueError as exc:
            logger.error(f"enqueue failed: {exc!r}")
            self.repo.unclaim(feed_ids)
            return 0
        logger.info(f"Queued {queued}/{len(feed_ids)} feeds")
        return queued

    def release_strays(self) -> int:
        """
        "stray feed catcher": clear queued flag on registrations
        claimed long ago (lost jobs, killed workers)
        """
        cutoff = utc(-STRAY_TIMEOUTS * self.task_timeout)
        count = self.repo.release_strays(cutoff)
        if count:
            logger.warning(f"stray_catcher reset {count} queued feed(s)")
        return count
