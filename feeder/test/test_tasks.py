import datetime as dt
import random
from unittest.mock import MagicMock, patch

from feeder.errors import ErrorClass
from feeder.fetch import CACHE, FetchPipeline, FetchResult
from feeder.mirrors import mirror_urls
from feeder.scheduler import FeedScheduler
from feeder.status import StatusMachine
from feeder.tasks import FAILURE, SKIPPED, SUCCESS, FeedIngester, feed_worker
from feeder.test.dbtest import DBTest, FakeQueue
from feeder.test.fakes import RSS_OK, FakeRenderer, FakeResponse, FakeSession
from feeder.util import utc

URL = 'https://example.com/rss.xml'
FORBIDDEN = FakeResponse(403, reason='Forbidden')


class IngestTest(DBTest):

    def setUp(self):
        super().setUp()
        self.wq = FakeQueue()
        self.scheduler = FeedScheduler(self.repo, self.wq, task_timeout=60)
        self.discover = MagicMock()
        self.stats = MagicMock()
        self.session = FakeSession({URL: FakeResponse(200, RSS_OK)})
        self.make_ingester()

    def make_ingester(self, renderer=None, mirrors=False, pipeline=None,
                      cache=None):
        if pipeline is None:
            pipeline = FetchPipeline(self.session, renderer=renderer,
                                     mirrors=mirrors, sleep=lambda s: None,
                                     rng=random.Random(0), delay_range=(0, 0))
        self.ingester = FeedIngester(
            self.repo, pipeline, self.scheduler, cache=cache,
            status_machine=StatusMachine(self.repo, self.discover),
            stats=self.stats)

    def scheduled_feed(self, url=URL, **values):
        feed = self.add_feed(url, **values)
        self.scheduler.schedule(feed.id)
        return feed

    def notification_types(self, feed_id):
        return [fn.type for fn in self.repo.feed_notifications(feed_id)]


class TestSuccess(IngestTest):

    def test_ingest(self):
        feed = self.scheduled_feed()
        r = self.ingester.process(feed.id)
        assert r.outcome == SUCCESS
        assert r.strategy == 'direct'
        assert (r.created, r.updated) == (2, 0)
        assert self.repo.count_items(feed.id) == 2

        f = self.feed(feed.id)
        assert f.rss_title == 'T'
        assert f.total_attempts == 1
        assert f.total_successes == 1
        assert f.last_fetched_at is not None
        assert f.next_fetch_attempt == f.last_fetched_at + dt.timedelta(minutes=180)
        assert not f.queued

        logs = self.logs(feed.id)
        assert len(logs) == 1
        assert logs[0].success
        assert logs[0].strategy == 'direct'
        assert logs[0].status_code == 200

        self.stats.incr.assert_called_with('feeds', 1, labels=[('stat', 'ok')])

    def test_reingest_updates(self):
        feed = self.scheduled_feed()
        self.ingester.process(feed.id)
        r = self.ingester.process(feed.id)
        assert (r.created, r.updated) == (0, 2)
        assert self.repo.count_items(feed.id) == 2
        assert self.feed(feed.id).total_attempts == 2

    def test_fetch_now_leaves_registration(self):
        feed = self.add_feed(URL)
        r = self.ingester.process(feed.id, rearm=False)
        assert r.outcome == SUCCESS
        assert self.feed(feed.id).next_fetch_attempt is None

    def test_mirror(self):
        rss_app = dict(mirror_urls(URL))['rss.app']
        self.session = FakeSession({URL: FORBIDDEN,
                                    rss_app: FakeResponse(200, RSS_OK)})
        self.make_ingester(mirrors=True)
        feed = self.scheduled_feed()
        r = self.ingester.process(feed.id)
        assert r.outcome == SUCCESS
        assert self.logs(feed.id)[0].strategy == 'mirror:rss.app'
        assert self.repo.count_items(feed.id) == 2

    def test_browser_is_sticky(self):
        self.session = FakeSession(default=FORBIDDEN)
        renderer = FakeRenderer()
        self.make_ingester(renderer=renderer)
        feed = self.scheduled_feed()

        r = self.ingester.process(feed.id)
        assert r.strategy == 'browser'
        assert self.feed(feed.id).requires_browser
        n = len(self.session.urls)

        r = self.ingester.process(feed.id)
        assert r.strategy == 'browser'
        assert len(self.session.urls) == n
        assert len(renderer.urls) == 2

    def test_recovery_notification(self):
        feed = self.scheduled_feed(consecutive_failures=2, failure_count=2,
                                   last_error_class='server_error')
        self.ingester.process(feed.id)
        assert self.notification_types(feed.id) == ['success']
        assert self.feed(feed.id).consecutive_failures == 0

    def test_eviction(self):
        feed = self.scheduled_feed()
        self.add_items(feed.id, 5)
        with patch('feeder.tasks.ITEM_RETENTION_CAP', 4):
            self.ingester.process(feed.id)
        assert self.repo.count_items() == 4


class TestCache(IngestTest):

    def setUp(self):
        super().setUp()
        self.cache = MagicMock()
        self.cache.get.return_value = None

    def test_parsed_document_cached(self):
        self.make_ingester(cache=self.cache)
        feed = self.scheduled_feed()
        assert self.ingester.process(feed.id).outcome == SUCCESS
        self.cache.put.assert_called_once()
        url, result = self.cache.put.call_args.args
        assert url == URL
        assert result.strategy == 'direct'

    def test_hit_skips_network(self):
        self.cache.get.return_value = FetchResult(RSS_OK, CACHE, 200)
        self.make_ingester(cache=self.cache)
        feed = self.scheduled_feed()
        r = self.ingester.process(feed.id)
        assert r.outcome == SUCCESS
        assert r.strategy == CACHE
        assert self.session.urls == []
        self.cache.put.assert_not_called()

    def test_challenge_page_not_cached(self):
        self.session = FakeSession(default=FORBIDDEN)
        renderer = FakeRenderer(b"<html><body>Checking your browser...</body></html>")
        self.make_ingester(renderer=renderer, cache=self.cache)
        feed = self.scheduled_feed()
        r = self.ingester.process(feed.id)
        assert r.outcome == FAILURE
        assert not self.feed(feed.id).requires_browser
        self.cache.put.assert_not_called()

        # site recovers: next attempt goes to the network
        self.session.answers[URL] = FakeResponse(200, RSS_OK)
        r = self.ingester.process(feed.id)
        assert r.outcome == SUCCESS
        assert r.strategy == 'direct'
        assert self.feed(feed.id).consecutive_failures == 0


class TestFailure(IngestTest):

    def setUp(self):
        super().setUp()
        self.session = FakeSession(default=FORBIDDEN)
        self.make_ingester()

    def test_blocked(self):
        feed = self.scheduled_feed()
        r = self.ingester.process(feed.id)
        assert r.outcome == FAILURE
        assert r.counter == 'blocked'

        f = self.feed(feed.id)
        assert f.consecutive_failures == 1
        assert f.last_status_code == 403
        assert f.last_error_class == 'blocked'
        assert f.last_fetched_at is None
        assert f.next_fetch_attempt == f.last_attempt_at + dt.timedelta(minutes=240)

        log = self.logs(feed.id)[0]
        assert not log.success
        assert log.error_class == 'blocked'
        assert log.status_code == 403

    def test_escalation_and_auto_pause(self):
        feed = self.scheduled_feed(title='Example')
        for _ in range(2):
            self.ingester.process(feed.id)
        assert self.notification_types(feed.id) == []

        self.ingester.process(feed.id)
        f = self.feed(feed.id)
        assert f.status == 'blocked'
        assert self.notification_types(feed.id) == ['warning']
        self.discover.assert_called_once_with(feed.id)

        self.ingester.process(feed.id)
        self.ingester.process(feed.id)
        f = self.feed(feed.id)
        assert f.consecutive_failures == 5
        assert f.status == 'paused'
        assert not f.is_active
        assert f.next_fetch_attempt is None
        assert self.notification_types(feed.id) == ['warning', 'error']
        assert self.discover.call_count == 1

        # taken out of rotation
        n = len(self.session.urls)
        r = self.ingester.process(feed.id)
        assert r.outcome == SKIPPED
        assert len(self.session.urls) == n
        assert self.feed(feed.id).total_attempts == 5

    def test_gone(self):
        self.session = FakeSession(default=FakeResponse(410, reason='Gone'))
        self.make_ingester()
        feed = self.scheduled_feed()
        r = self.ingester.process(feed.id)
        assert r.counter == 'permanent'
        assert len(self.session.urls) == 1
        f = self.feed(feed.id)
        assert f.next_fetch_attempt == f.last_attempt_at + dt.timedelta(minutes=180)

    def test_not_a_feed(self):
        pipeline = MagicMock()
        pipeline.fetch.return_value = FetchResult(
            b"<!DOCTYPE html><html><body>Just a page</body></html>", 'direct', 200)
        self.make_ingester(pipeline=pipeline)
        feed = self.scheduled_feed()
        r = self.ingester.process(feed.id)
        assert r.counter == 'not_a_feed'
        assert self.logs(feed.id)[0].status_code == 200

    def test_unexpected_exception(self):
        pipeline = MagicMock()
        pipeline.fetch.side_effect = ValueError("surprise")
        self.make_ingester(pipeline=pipeline)
        feed = self.scheduled_feed()
        r = self.ingester.process(feed.id)
        assert r.outcome == FAILURE
        assert r.counter == 'exception'
        f = self.feed(feed.id)
        assert f.consecutive_failures == 1
        assert f.last_error_class == 'other'
        assert 'surprise' in f.last_error
        # still scheduled
        assert f.next_fetch_attempt is not None

    def test_timeout_grows(self):
        feed = self.add_feed(URL, consecutive_failures=2,
                             last_error_class=ErrorClass.TIMEOUT.value)
        assert FeedIngester.fetch_timeout(feed) == 35
        feed = self.add_feed(URL, consecutive_failures=2,
                             last_error_class=ErrorClass.BLOCKED.value)
        assert FeedIngester.fetch_timeout(feed) != 35


class TestSkips(IngestTest):

    def test_invalid_payload(self):
        r = self.ingester.process('not-a-number')
        assert r.outcome == SKIPPED
        assert r.counter == 'invalid'
        assert self.session.urls == []

    def test_digit_string(self):
        feed = self.scheduled_feed()
        r = self.ingester.process(str(feed.id))
        assert r.outcome == SUCCESS

    def test_missing_feed(self):
        r = self.ingester.process(12345)
        assert r.counter == 'not_found'

    def test_paused(self):
        feed = self.add_feed(URL, status='paused', next_fetch_attempt=utc())
        r = self.ingester.process(feed.id)
        assert r.counter == 'paused'
        assert self.session.urls == []
        assert self.feed(feed.id).next_fetch_attempt is None

    def test_throttled(self):
        url = 'https://www.reddit.com/r/python/.rss'
        feed = self.scheduled_feed(url, last_fetched_at=utc(-60))
        r = self.ingester.process(feed.id)
        assert r.counter == 'throttled'
        assert self.session.urls == []
        assert self.feed(feed.id).total_attempts == 0


class TestWorker(IngestTest):

    def test_feed_worker(self):
        feed = self.scheduled_feed()
        with patch('feeder.tasks._ingester', self.ingester):
            feed_worker(feed.id)
        assert self.repo.count_items(feed.id) == 2
