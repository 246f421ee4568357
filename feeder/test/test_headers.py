import random
import unittest

from feeder import headers, mirrors


class TestHeaders(unittest.TestCase):

    def test_chrome_client_hints(self):
        ua = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36'
        h = headers.realistic_headers(ua, random.Random(0))
        assert h['User-Agent'] == ua
        assert h['sec-ch-ua-platform'] == '"Windows"'
        assert h['sec-ch-ua-mobile'] == '?0'
        assert h['Sec-Fetch-Mode'] == 'navigate'
        assert h['Accept-Language'] in headers.ACCEPT_LANGUAGES

    def test_firefox_no_client_hints(self):
        ua = 'Mozilla/5.0 (X11; Linux x86_64; rv:123.0) Gecko/20100101 Firefox/123.0'
        h = headers.realistic_headers(ua, random.Random(0))
        assert 'sec-ch-ua' not in h
        assert h['Accept'] == headers.BROWSER_ACCEPT

    def test_mobile_chrome(self):
        ua = 'Mozilla/5.0 (Linux; Android 14) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.6261.64 Mobile Safari/537.36'
        h = headers.realistic_headers(ua, random.Random(0))
        assert h['sec-ch-ua-mobile'] == '?1'
        assert h['sec-ch-ua-platform'] == '"Linux"'

    def test_rotation(self):
        rng = random.Random(7)
        agents = {headers.realistic_headers(rng=rng)['User-Agent']
                  for _ in range(50)}
        assert len(agents) > 1
        assert agents <= set(headers.USER_AGENTS)

    def test_pool_size(self):
        assert len(headers.USER_AGENTS) >= 40
        assert len(set(headers.USER_AGENTS)) == len(headers.USER_AGENTS)

    def test_feed_reader(self):
        h = headers.feed_reader_headers()
        assert h['User-Agent'] == headers.FEED_READER_UA
        assert 'application/rss+xml' in h['Accept']


class TestMirrors(unittest.TestCase):

    def test_rss_app_unpadded_base64(self):
        urls = dict(mirrors.mirror_urls('https://example.com'))
        assert urls['rss.app'] == \
            'https://rss.app/feeds/aHR0cHM6Ly9leGFtcGxlLmNvbQ'

    def test_quoted(self):
        urls = dict(mirrors.mirror_urls('https://example.com/a?b=c'))
        assert urls['openrss'] == \
            'https://openrss.org/https%3A%2F%2Fexample.com%2Fa%3Fb%3Dc'
        assert urls['fetchrss'].startswith('https://fetchrss.com/rss/https%3A')

    def test_priority_order(self):
        names = [name for name, url in mirrors.mirror_urls('https://example.com')]
        assert names == ['rss.app', 'fetchrss', 'openrss']

    def test_disabled_not_offered(self):
        names = {m.name for m in mirrors.enabled_mirrors()}
        assert 'rss2json' not in names
        assert 'rss-bridge' not in names

    def test_is_likely_blocked(self):
        assert mirrors.is_likely_blocked(403)
        assert mirrors.is_likely_blocked(524)
        assert not mirrors.is_likely_blocked(404)
        assert not mirrors.is_likely_blocked(200)


if __name__ == "__main__":
    unittest.main()
