import datetime as dt
import unittest
from unittest.mock import MagicMock

from feeder.database.models import Feed
from feeder.errors import ErrorClass, FeedNotFound
from feeder.health import (Attempt, HealthMonitor, HealthTracker, apply_attempt,
                           health_tier)
from feeder.test.dbtest import DBTest
from feeder.util import utc


def ok(when, rt=100, strategy='direct'):
    return Attempt(True, when, 200, response_time=rt, strategy=strategy)


def failed(when, error_class=ErrorClass.BLOCKED, code=403, rt=300,
           strategy='direct', message='HTTP 403 Forbidden'):
    return Attempt(False, when, code, message, error_class, rt, strategy)


class TestApplyAttempt(unittest.TestCase):

    def test_counters(self):
        feed = Feed(url='https://example.com/rss', total_attempts=0,
                    total_successes=0, total_failures=0,
                    consecutive_failures=0, failure_count=0)
        t = dt.datetime(2025, 1, 1)
        apply_attempt(feed, ok(t, 100))
        apply_attempt(feed, failed(t, rt=400))
        apply_attempt(feed, failed(t, ErrorClass.TIMEOUT, None, rt=None))
        assert feed.total_attempts == 3
        assert feed.total_successes == 1
        assert feed.total_failures == 2
        assert feed.total_attempts == feed.total_successes + feed.total_failures
        assert feed.consecutive_failures == 2
        assert feed.last_error_class == 'timeout'
        # running mean over attempts with a response time
        assert feed.avg_response_time == 250
        assert feed.last_fetched_at == t

    def test_success_clears_streak(self):
        feed = Feed(url='https://example.com/rss', consecutive_failures=4,
                    failure_count=4, total_attempts=4, total_failures=4,
                    total_successes=0, last_error='boom',
                    last_error_class='blocked')
        t = dt.datetime(2025, 1, 1)
        apply_attempt(feed, ok(t))
        assert feed.consecutive_failures == 0
        assert feed.failure_count == 4
        assert feed.last_error is None
        assert feed.last_error_class is None
        assert feed.last_success_at == t

    def test_error_truncated(self):
        feed = Feed(url='https://example.com/rss')
        apply_attempt(feed, failed(utc(), message='x' * 1000), max_error=500)
        assert len(feed.last_error) == 500


class TestHealthTracker(DBTest):

    def setUp(self):
        super().setUp()
        self.tracker = HealthTracker(self.repo, log_rows=5)

    def test_record_and_prune(self):
        feed = self.add_feed()
        t = dt.datetime(2025, 1, 1)
        for i in range(8):
            a = ok(t) if i % 2 else failed(t)
            updated, prev = self.tracker.record_attempt(feed.id, a)
            t += dt.timedelta(minutes=1)
        assert updated.total_attempts == 8
        assert prev == 1

        logs = self.logs(feed.id)
        assert len(logs) == 5
        # newest kept
        assert logs[0].attempted_at == dt.datetime(2025, 1, 1, 0, 7)
        assert logs[0].strategy == 'direct'

        f = self.feed(feed.id)
        assert f.total_attempts == 8
        assert f.total_successes + f.total_failures == f.total_attempts

    def test_missing_feed(self):
        with self.assertRaises(FeedNotFound):
            self.tracker.record_attempt(123, ok(utc()))

    def test_success_rate(self):
        feed = self.add_feed()
        now = utc()
        assert self.tracker.success_rate(feed.id) == 0
        for a in (ok(now), ok(now), ok(now), failed(now)):
            self.tracker.record_attempt(feed.id, a)
        assert self.tracker.success_rate(feed.id) == 75

    def test_success_rate_ignores_old(self):
        feed = self.add_feed()
        self.tracker.record_attempt(feed.id, failed(utc(-30 * 24 * 60 * 60)))
        self.tracker.record_attempt(feed.id, ok(utc()))
        assert self.tracker.success_rate(feed.id) == 100

    def test_metrics(self):
        feed = self.add_feed()
        self.tracker.record_attempt(feed.id, failed(utc()))
        m = self.tracker.metrics(feed.id)
        assert m['feed_id'] == feed.id
        assert m['total_failures'] == 1
        assert m['consecutive_failures'] == 1
        assert m['success_rate'] == 0
        assert len(m['recent_logs']) == 1
        assert m['recent_logs'][0]['error_class'] == 'blocked'

    def test_browser_stats(self):
        feed = self.add_feed(requires_browser=True)
        now = utc()
        self.tracker.record_attempt(feed.id, ok(now, strategy='browser'))
        self.tracker.record_attempt(feed.id, failed(now, strategy='browser'))
        self.tracker.record_attempt(feed.id, ok(now))
        b = self.tracker.browser_stats()
        assert b['total_attempts'] == 2
        assert b['success_rate'] == 50
        assert b['feeds_using_browser'] == 1


class TestHealthMonitor(DBTest):

    def test_tiers(self):
        assert health_tier(80) == 'good'
        assert health_tier(79.9) == 'warning'
        assert health_tier(49) == 'critical'

    def test_empty(self):
        s = HealthMonitor(self.repo).summary()
        assert s.total == 0
        assert s.health_pct == 100.0
        assert s.healthy

    def test_summary_and_alerts(self):
        tracker = HealthTracker(self.repo)
        for _ in range(3):
            self.add_feed()
        paused = self.add_feed(status='paused', is_active=False)
        self.add_feed(status='blocked')
        now = utc()
        tracker.record_attempt(paused.id, failed(now))
        tracker.record_attempt(paused.id, failed(now))
        tracker.record_attempt(paused.id, ok(now))

        s = HealthMonitor(self.repo).summary()
        assert s.total == 5
        assert s.by_status['active'] == 3
        assert s.by_status['degraded'] == 0
        assert s.health_pct == 60.0
        assert s.tier == 'warning'
        assert s.failure_rate == 67
        assert not s.healthy
        assert any('paused' in a for a in s.alerts)
        assert any('failure rate' in a for a in s.alerts)

    def test_report(self):
        self.add_feed()
        stats = MagicMock()
        s = HealthMonitor(self.repo).report(stats)
        assert s.healthy
        stats.gauge.assert_any_call('feeds.health_pct', 100.0)
        stats.gauge.assert_any_call('alerts', 0)
        stats.gauge.assert_any_call('feeds.status', 1,
                                    labels=[('status', 'active')])
