"""
Health tracking: per-attempt log rows plus running aggregates on
the Feed row, and the system wide health summary.
"""

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from feeder.config import conf
from feeder.database.models import Feed, FeedStatus, HealthLog
from feeder.database.repository import FeedRepository
from feeder.errors import ErrorClass, FeedNotFound
from feeder.stats import Stats
from feeder.util import truncate, utc

logger = logging.getLogger(__name__)

# see feeder/config.py for descriptions
HEALTH_LOG_ROWS = conf.HEALTH_LOG_ROWS
MAX_ERROR_LENGTH = conf.MAX_ERROR_LENGTH

SUCCESS_RATE_DAYS = 7
SUCCESS_RATE_ATTEMPTS = 50

BROWSER_STRATEGY = 'browser'

# HealthMonitor alert thresholds
ALERT_FAILURE_RATE_PCT = 50
ALERT_BROWSER_FEEDS = 10
ALERT_BROWSER_SUCCESS_PCT = 50
ALERT_BROWSER_MIN_ATTEMPTS = 10
ALERT_BLOCKED_FEEDS = 5

# health percentage tiers
TIER_GOOD = 80
TIER_WARNING = 50


class Attempt(NamedTuple):
    """one fetch attempt, as recorded"""
    success: bool
    attempted_at: dt.datetime
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    error_class: Optional[ErrorClass] = None
    response_time: Optional[int] = None  # ms
    strategy: Optional[str] = None


def apply_attempt(feed: Feed, attempt: Attempt,
                  max_error: int = MAX_ERROR_LENGTH) -> None:
    """
    update Feed counters, aggregates and timestamps for `attempt`
    """
    total = feed.total_attempts or 0
    rt = attempt.response_time
    if rt is not None:
        if feed.avg_response_time is None:
            feed.avg_response_time = rt
        else:
            feed.avg_response_time = round(
                (feed.avg_response_time * total + rt) / (total + 1))

    feed.total_attempts = total + 1
    feed.last_attempt_at = attempt.attempted_at
    feed.last_status_code = attempt.status_code

    if attempt.success:
        feed.total_successes = (feed.total_successes or 0) + 1
        feed.consecutive_failures = 0
        feed.last_success_at = attempt.attempted_at
        feed.last_fetched_at = attempt.attempted_at
        feed.last_error = None
        feed.last_error_class = None
    else:
        feed.total_failures = (feed.total_failures or 0) + 1
        feed.consecutive_failures = (feed.consecutive_failures or 0) + 1
        feed.failure_count = (feed.failure_count or 0) + 1
        feed.last_error = truncate(attempt.error_message, max_error)
        if attempt.error_class:
            feed.last_error_class = attempt.error_class.value
        else:
            feed.last_error_class = ErrorClass.OTHER.value


def _log_row(feed_id: int, attempt: Attempt, max_error: int) -> HealthLog:
    return HealthLog(
        feed_id=feed_id,
        attempted_at=attempt.attempted_at,
        success=attempt.success,
        status_code=attempt.status_code,
        error_message=truncate(attempt.error_message, max_error),
        error_class=attempt.error_class.value if attempt.error_class else None,
        response_time=attempt.response_time,
        strategy=attempt.strategy)


class HealthTracker:
    def __init__(self, repo: FeedRepository,
                 log_rows: int = HEALTH_LOG_ROWS,
                 max_error: int = MAX_ERROR_LENGTH):
        self.repo = repo
        self.log_rows = log_rows
        self.max_error = max_error

    def record_attempt(self, feed_id: int,
                       attempt: Attempt) -> Tuple[Feed, int]:
        """
        Apply attempt to feed row (locked for the duration),
        append log row and prune history, all in one transaction.
        returns (updated feed, previous consecutive_failures)
        """
        with self.repo.begin() as session:
            feed = self.repo.lock_feed(session, feed_id)
            if feed is None:
                raise FeedNotFound(feed_id)
            prev_failures = feed.consecutive_failures or 0
            apply_attempt(feed, attempt, self.max_error)
            session.add(_log_row(feed_id, attempt, self.max_error))
            session.flush()
            self.repo.prune_health_logs(session, feed_id, self.log_rows)
        return feed, prev_failures

    def success_rate(self, feed_id: int,
                     days: int = SUCCESS_RATE_DAYS,
                     limit: int = SUCCESS_RATE_ATTEMPTS) -> int:
        """
        integer percentage over (at most) `limit` most recent
        attempts within `days`; 0 if none.
        """
        logs = self.repo.recent_health_logs(
            feed_id, limit, since=utc(-days * 24 * 60 * 60))
        if not logs:
            return 0
        successes = sum(1 for log in logs if log.success)
        return round(successes * 100 / len(logs))

    def recent_logs(self, feed_id: int, limit: int = 100) -> List[Dict[str, Any]]:
        return [log.as_dict()
                for log in self.repo.recent_health_logs(feed_id, limit)]

    def metrics(self, feed_id: int) -> Dict[str, Any]:
        feed = self.repo.get_feed(feed_id)
        if feed is None:
            raise FeedNotFound(feed_id)
        return {
            'feed_id': feed.id,
            'status': feed.status,
            'total_attempts': feed.total_attempts,
            'total_successes': feed.total_successes,
            'total_failures': feed.total_failures,
            'consecutive_failures': feed.consecutive_failures,
            'success_rate': self.success_rate(feed_id),
            'avg_response_time': feed.avg_response_time,
            'last_success_at': feed.last_success_at,
            'last_attempt_at': feed.last_attempt_at,
            'last_error': feed.last_error,
            'requires_browser': feed.requires_browser,
            'recent_logs': self.recent_logs(feed_id, 10),
        }

    def browser_stats(self, days: int = SUCCESS_RATE_DAYS) -> Dict[str, int]:
        counts = self.repo.attempt_counts(utc(-days * 24 * 60 * 60),
                                          strategy=BROWSER_STRATEGY)
        total = counts[True] + counts[False]
        return {
            'total_attempts': total,
            'successful_attempts': counts[True],
            'failed_attempts': counts[False],
            'success_rate': round(counts[True] * 100 / total) if total else 0,
            'feeds_using_browser': self.repo.count_feeds(requires_browser=True),
        }


@dataclass
class HealthSummary:
    total: int
    by_status: Dict[str, int]
    health_pct: float
    tier: str                   # good, warning, critical
    failure_rate: int           # percent, last 24h
    browser: Dict[str, int]
    alerts: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.alerts


def health_tier(pct: float) -> str:
    if pct >= TIER_GOOD:
        return 'good'
    if pct >= TIER_WARNING:
        return 'warning'
    return 'critical'


class HealthMonitor:
    """
    system wide health; run periodically by scripts/queue_feeds.py
    """

    def __init__(self, repo: FeedRepository):
        self.repo = repo
        self.tracker = HealthTracker(repo)

    def summary(self) -> HealthSummary:
        counts = self.repo.feed_status_counts()
        by_status = {s.value: counts.get(s.value, 0) for s in FeedStatus}
        total = sum(counts.values())
        active = by_status[FeedStatus.ACTIVE.value]
        health_pct = (active * 100 / total) if total else 100.0

        attempts = self.repo.attempt_counts(utc(-24 * 60 * 60))
        n = attempts[True] + attempts[False]
        failure_rate = round(attempts[False] * 100 / n) if n else 0

        browser = self.tracker.browser_stats()

        alerts = []
        if failure_rate > ALERT_FAILURE_RATE_PCT:
            alerts.append(f"high failure rate: {failure_rate}% of fetches in last 24h failed")
        if browser['feeds_using_browser'] > ALERT_BROWSER_FEEDS:
            alerts.append(f"high browser usage: {browser['feeds_using_browser']} feeds require browser")
        if browser['total_attempts'] > ALERT_BROWSER_MIN_ATTEMPTS and \
                browser['success_rate'] < ALERT_BROWSER_SUCCESS_PCT:
            alerts.append(f"low browser success rate: {browser['success_rate']}%")
        paused = by_status[FeedStatus.PAUSED.value]
        if paused > 0:
            alerts.append(f"{paused} paused feed(s) need attention")
        blocked = by_status[FeedStatus.BLOCKED.value]
        if blocked > ALERT_BLOCKED_FEEDS:
            alerts.append(f"{blocked} feeds blocked")

        return HealthSummary(total, by_status, health_pct,
                             health_tier(health_pct), failure_rate,
                             browser, alerts)

    def report(self, stats: Optional[Stats] = None) -> HealthSummary:
        """
        compute summary, log it, send as gauges
        """
        stats = stats or Stats.get()
        s = self.summary()

        for status, count in s.by_status.items():
            stats.gauge('feeds.status', count, labels=[('status', status)])
        stats.gauge('feeds.health_pct', s.health_pct)
        stats.gauge('feeds.failure_rate', s.failure_rate)
        stats.gauge('feeds.browser', s.browser['feeds_using_browser'])
        stats.gauge('alerts', len(s.alerts))

        logger.info(f"health {s.tier} {s.health_pct:.1f}% of {s.total} feeds active; {s.by_status}")
        for alert in s.alerts:
            logger.warning(f"health alert: {alert}")
        return s
