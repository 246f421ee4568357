import unittest
from unittest.mock import MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from feeder.cache import FetchCache
from feeder.fetch import CACHE, FetchResult

URL = 'https://Example.com/rss.xml'


class TestFetchCache(unittest.TestCase):

    def setUp(self):
        self.rconn = MagicMock()
        self.cache = FetchCache(self.rconn, ttl=300)

    def test_key_normalized(self):
        assert FetchCache.key(URL) == FetchCache.key('https://example.com/rss.xml#x')

    def test_hit(self):
        self.rconn.hgetall.return_value = {b'content': b'<rss/>',
                                           b'strategy': b'direct'}
        result = self.cache.get(URL)
        assert result is not None
        assert result.content == b'<rss/>'
        assert result.strategy == CACHE

    def test_miss(self):
        self.rconn.hgetall.return_value = {}
        assert self.cache.get(URL) is None

    def test_put(self):
        pipe = self.rconn.pipeline.return_value
        self.cache.put(URL, FetchResult(b'<rss/>', 'mirror:rss.app', 200))
        pipe.hset.assert_called_once_with(
            FetchCache.key(URL),
            mapping={'content': b'<rss/>', 'strategy': 'mirror:rss.app'})
        pipe.expire.assert_called_once_with(FetchCache.key(URL), 300)
        pipe.execute.assert_called_once()

    def test_redis_down(self):
        self.rconn.hgetall.side_effect = RedisConnectionError("down")
        self.rconn.pipeline.side_effect = RedisConnectionError("down")
        assert self.cache.get(URL) is None
        # logged, not raised
        self.cache.put(URL, FetchResult(b'<rss/>', 'direct', 200))


if __name__ == "__main__":
    unittest.main()
