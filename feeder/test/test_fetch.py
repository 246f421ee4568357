import random
import unittest

import requests.exceptions

from feeder.browser import BrowserError
from feeder.errors import ErrorClass, FetchExhausted, PermanentFetchError
from feeder.fetch import (BROWSER, DIRECT, DirectStrategy, FetchPipeline,
                          Outcome, looks_like_feed)
from feeder.mirrors import mirror_urls
from feeder.test.fakes import RSS_OK, FakeRenderer, FakeResponse, FakeSession

URL = 'https://example.com/rss.xml'
HTML = b'<!DOCTYPE html><html><body>Access denied</body></html>'


def mirror_url(name: str) -> str:
    return dict(mirror_urls(URL))[name]


class TestPipeline(unittest.TestCase):

    def pipeline(self, session, renderer=None, mirrors=True):
        self.sleeps = []
        return FetchPipeline(session, renderer=renderer, mirrors=mirrors,
                             sleep=self.sleeps.append,
                             rng=random.Random(42), delay_range=(0, 0))

    def test_direct_success(self):
        session = FakeSession({URL: FakeResponse(200, RSS_OK)})
        result = self.pipeline(session).fetch(URL)
        assert result.strategy == DIRECT
        assert result.content == RSS_OK
        assert session.urls == [URL]
        assert not result.used_browser

    def test_blocked_then_mirror(self):
        session = FakeSession({URL: FakeResponse(403, reason='Forbidden'),
                               mirror_url('rss.app'): FakeResponse(200, RSS_OK)})
        result = self.pipeline(session).fetch(URL)
        assert result.strategy == 'mirror:rss.app'
        assert result.content == RSS_OK
        strategies = [a.strategy for a in result.attempts]
        assert strategies == ['direct', 'alt-profile', 'feed-reader',
                              'mirror:rss.app']
        # later strategies tried only after earlier ones failed
        assert session.urls[-1] == mirror_url('rss.app')
        assert session.urls.count(URL) >= 3

    def test_mirror_falls_through_to_next(self):
        session = FakeSession({URL: FakeResponse(403),
                               mirror_url('rss.app'): FakeResponse(500),
                               mirror_url('fetchrss'): FakeResponse(200, RSS_OK)})
        result = self.pipeline(session).fetch(URL)
        assert result.strategy == 'mirror:fetchrss'

    def test_mirror_html_rejected(self):
        session = FakeSession({URL: FakeResponse(403),
                               mirror_url('rss.app'): FakeResponse(200, HTML),
                               mirror_url('openrss'): FakeResponse(200, RSS_OK)})
        result = self.pipeline(session).fetch(URL)
        assert result.strategy == 'mirror:openrss'

    def test_gone_stops_immediately(self):
        session = FakeSession({URL: FakeResponse(404, reason='Not Found')})
        with self.assertRaises(PermanentFetchError) as cm:
            self.pipeline(session).fetch(URL)
        assert cm.exception.status_code == 404
        assert cm.exception.error_class == ErrorClass.PERMANENT
        assert session.urls == [URL]

    def test_all_blocked(self):
        session = FakeSession(default=FakeResponse(403, reason='Forbidden'))
        with self.assertRaises(FetchExhausted) as cm:
            self.pipeline(session).fetch(URL)
        exc = cm.exception
        assert exc.error_class == ErrorClass.BLOCKED
        assert exc.status_code == 403
        assert exc.strategy == DIRECT
        assert [a.strategy for a in exc.attempts][-1] == 'mirror'

    def test_worst_origin_failure_reported(self):
        session = FakeSession({URL: requests.exceptions.ReadTimeout()},
                              default=FakeResponse(403))
        with self.assertRaises(FetchExhausted) as cm:
            self.pipeline(session).fetch(URL)
        # mirrors' 403s don't describe the origin
        assert cm.exception.error_class == ErrorClass.TIMEOUT

    def test_mirrors_disabled(self):
        session = FakeSession(default=FakeResponse(503))
        with self.assertRaises(FetchExhausted) as cm:
            self.pipeline(session, mirrors=False).fetch(URL)
        assert [a.strategy for a in cm.exception.attempts] == \
            ['direct', 'alt-profile', 'feed-reader']
        assert cm.exception.error_class == ErrorClass.SERVER_ERROR

    def test_browser_last_resort(self):
        session = FakeSession(default=FakeResponse(403))
        renderer = FakeRenderer()
        result = self.pipeline(session, renderer).fetch(URL)
        assert result.strategy == BROWSER
        assert result.used_browser
        assert renderer.urls == [URL]

    def test_requires_browser_skips_http(self):
        session = FakeSession({URL: FakeResponse(200, RSS_OK)})
        renderer = FakeRenderer()
        result = self.pipeline(session, renderer).fetch(URL, requires_browser=True)
        assert result.strategy == BROWSER
        assert session.urls == []

    def test_requires_browser_without_browser(self):
        session = FakeSession({URL: FakeResponse(200, RSS_OK)})
        result = self.pipeline(session).fetch(URL, requires_browser=True)
        assert result.strategy == DIRECT

    def test_browser_timeout(self):
        renderer = FakeRenderer(error=BrowserError("timed out", timed_out=True))
        with self.assertRaises(FetchExhausted) as cm:
            self.pipeline(FakeSession(), renderer).fetch(URL, requires_browser=True)
        assert cm.exception.error_class == ErrorClass.TIMEOUT

    def test_browser_status(self):
        renderer = FakeRenderer(error=BrowserError("HTTP 403", status_code=403))
        with self.assertRaises(FetchExhausted) as cm:
            self.pipeline(FakeSession(), renderer).fetch(URL, requires_browser=True)
        assert cm.exception.error_class == ErrorClass.BLOCKED
        assert cm.exception.status_code == 403

    def test_browser_challenge_page(self):
        renderer = FakeRenderer(b"<html><body>Checking your browser...</body></html>")
        with self.assertRaises(FetchExhausted) as cm:
            self.pipeline(FakeSession(), renderer).fetch(URL, requires_browser=True)
        assert cm.exception.strategy == BROWSER
        assert cm.exception.attempts[-1].message == "not a feed document"
        assert not cm.exception.attempts[-1].ok


class TestDirectStrategy(unittest.TestCase):

    def test_retries_with_delay(self):
        sleeps = []
        session = FakeSession({URL: FakeResponse(500)})
        strategy = DirectStrategy(session, random.Random(1), sleeps.append,
                                  retries=3, retry_delay=1.0)
        result = strategy.run(URL, 10)
        assert result.outcome == Outcome.RETRYABLE
        assert result.error_class == ErrorClass.SERVER_ERROR
        assert len(session.urls) == 3
        assert len(sleeps) == 2
        assert 3.0 <= sleeps[0] <= 6.0
        assert 4.0 <= sleeps[1] <= 7.0

    def test_no_retry_on_permanent(self):
        sleeps = []
        session = FakeSession({URL: FakeResponse(410)})
        strategy = DirectStrategy(session, random.Random(1), sleeps.append,
                                  retries=3)
        result = strategy.run(URL, 10)
        assert result.outcome == Outcome.PERMANENT
        assert sleeps == []

    def test_html_not_accepted(self):
        session = FakeSession({URL: FakeResponse(200, HTML)})
        strategy = DirectStrategy(session, random.Random(1), lambda s: None,
                                  retries=1)
        result = strategy.run(URL, 10)
        assert not result.ok
        assert result.message == "not a feed document"

    def test_request_exception(self):
        session = FakeSession({URL: requests.exceptions.ConnectTimeout()})
        strategy = DirectStrategy(session, random.Random(1), lambda s: None,
                                  retries=1)
        result = strategy.run(URL, 10)
        assert result.error_class == ErrorClass.TIMEOUT
        assert result.message == "connect timeout"

    def test_timeout_passed(self):
        session = FakeSession({URL: FakeResponse(200, RSS_OK)})
        DirectStrategy(session, random.Random(1), retries=1).run(URL, 42)
        assert session.requests[0]['timeout'] == 42
        assert 'User-Agent' in session.requests[0]['headers']

    def test_json_feed_kept_whole(self):
        doc = b'{"version": "https://jsonfeed.org/version/1.1", ' \
              b'"items": [{"content_html": "<p>a <feed> tag</p>"}]}'
        session = FakeSession({URL: FakeResponse(200, doc)})
        result = DirectStrategy(session, random.Random(1), retries=1).run(URL, 10)
        assert result.ok
        assert result.content == doc

    def test_timeout_grows_after_timeout(self):
        session = FakeSession({URL: requests.exceptions.ReadTimeout()})
        DirectStrategy(session, random.Random(1), lambda s: None,
                       retries=3).run(URL, 20)
        assert [r['timeout'] for r in session.requests] == [20, 30, 45]


class TestLooksLikeFeed(unittest.TestCase):

    def test_looks_like_feed(self):
        assert looks_like_feed(RSS_OK)
        assert looks_like_feed(b'{"version": "https://jsonfeed.org/version/1"}')
        assert not looks_like_feed(HTML)


if __name__ == "__main__":
    unittest.main()
