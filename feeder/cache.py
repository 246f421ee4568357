"""
Shared cache of fetched feed documents that parsed, in redis.

Concurrent fetches of the same URL within the TTL see the same bytes
instead of hitting the network again.  Purely an optimization:
every redis failure is logged and treated as a cache miss.
"""

import logging
from typing import Optional

# PyPI
from redis import StrictRedis
from redis.exceptions import RedisError

from feeder.config import conf
from feeder.fetch import CACHE, FetchResult
from feeder.util import normalize_url

logger = logging.getLogger(__name__)

KEY_PREFIX = 'feeder:fetch:'


class FetchCache:
    def __init__(self, rconn: StrictRedis,
                 ttl: int = conf.FETCH_CACHE_TTL_SECS):
        self.rconn = rconn
        self.ttl = ttl

    @staticmethod
    def key(url: str) -> str:
        return KEY_PREFIX + normalize_url(url)

    def get(self, url: str) -> Optional[FetchResult]:
        try:
            values = self.rconn.hgetall(self.key(url))
        except RedisError as exc:
            logger.warning(f"   cache get {url}: {exc!r}")
            return None
        if not values or b'content' not in values:
            return None

        strategy = values.get(b'strategy', b'').decode('utf-8', 'replace')
        logger.debug(f"   cache hit {url} ({strategy})")
        return FetchResult(values[b'content'], CACHE, 200)

    def put(self, url: str, result: FetchResult) -> None:
        key = self.key(url)
        try:
            pipe = self.rconn.pipeline()
            pipe.hset(key, mapping={'content': result.content,
                                    'strategy': result.strategy})
            pipe.expire(key, self.ttl)
            pipe.execute()
        except RedisError as exc:
            logger.warning(f"   cache put {url}: {exc!r}")
