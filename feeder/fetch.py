"""
Resilient feed fetching.

An ordered list of strategies, each returning a tagged StrategyResult
(success, retryable failure, permanent failure).  FetchPipeline walks
the list and decides whether to continue; strategies never raise for
network or HTTP failures.

NOTE! Nothing in here touches the database.
"""

import logging
import random
import time
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

# PyPI
import requests
import requests.exceptions
from urllib3.exceptions import InsecureRequestWarning

from feeder.browser import BrowserError, BrowserRenderer
from feeder.config import conf
from feeder.errors import (SEVERITY, ErrorClass, FetchExhausted,
                           PermanentFetchError, classify_request_exception,
                           classify_status)
from feeder.headers import feed_reader_headers, realistic_headers
from feeder.mirrors import is_likely_blocked, mirror_urls
from feeder.retry import adjusted_timeout
from feeder.sanitize import clean_bytes, looks_like_xml_feed

logger = logging.getLogger(__name__)

# see feeder/config.py for descriptions
FETCH_RETRIES = conf.FETCH_RETRIES
FETCH_RETRY_DELAY_SECS = conf.FETCH_RETRY_DELAY_SECS
RSS_FETCH_TIMEOUT_SECS = conf.RSS_FETCH_TIMEOUT_SECS
STRATEGY_DELAY_MAX_SECS = conf.STRATEGY_DELAY_MAX_SECS
STRATEGY_DELAY_MIN_SECS = conf.STRATEGY_DELAY_MIN_SECS
VERIFY_CERTIFICATES = conf.VERIFY_CERTIFICATES

# disable SSL verification warnings w/ requests verify=False
if not VERIFY_CERTIFICATES:
    warnings.simplefilter('ignore', InsecureRequestWarning)

# "human" pause before a retry within the direct strategy
HUMAN_DELAY_MIN_SECS = 2.0
HUMAN_DELAY_MAX_SECS = 5.0

# strategy names (stored in HealthLog.strategy)
DIRECT = 'direct'
ALT_PROFILE = 'alt-profile'
FEED_READER = 'feed-reader'
MIRROR = 'mirror'
BROWSER = 'browser'
CACHE = 'cache'

SleepFunc = Callable[[float], None]


class Outcome(Enum):
    SUCCESS = 'success'
    RETRYABLE = 'retryable'     # try next strategy
    PERMANENT = 'permanent'     # stop now (404/410)


@dataclass
class StrategyResult:
    strategy: str
    outcome: Outcome
    content: Optional[bytes] = None
    status_code: Optional[int] = None
    error_class: Optional[ErrorClass] = None
    message: Optional[str] = None
    elapsed: float = 0.0        # seconds
    # False when a third party (mirror) answered, not the feed's host
    origin: bool = True

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS


@dataclass
class FetchResult:
    content: bytes
    strategy: str
    status_code: Optional[int] = None
    elapsed: float = 0.0
    attempts: List[StrategyResult] = field(default_factory=list)

    @property
    def used_browser(self) -> bool:
        return self.strategy == BROWSER


def looks_like_feed(content: bytes) -> bool:
    """
    cleaned content starts with an XML/feed token, or is a JSON object
    """
    return content.startswith(b'{') or looks_like_xml_feed(content)


def _failure(strategy: str, error_class: ErrorClass, message: str,
             status_code: Optional[int] = None, origin: bool = True,
             elapsed: float = 0.0) -> StrategyResult:
    if error_class == ErrorClass.PERMANENT:
        outcome = Outcome.PERMANENT
    else:
        outcome = Outcome.RETRYABLE
    return StrategyResult(strategy, outcome, status_code=status_code,
                          error_class=error_class, message=message,
                          elapsed=elapsed, origin=origin)


class Strategy:
    """
    base class for fetch strategies
    """
    name = 'unknown'

    def run(self, url: str, timeout: float) -> StrategyResult:
        raise NotImplementedError


class HttpStrategy(Strategy):
    """
    single GET using requests, headers from headers()
    """

    def __init__(self, session: requests.Session,
                 rng: Optional[random.Random] = None):
        self.session = session
        self.rng = rng or random.Random()

    def headers(self) -> Dict[str, str]:
        return realistic_headers(rng=self.rng)

    def accept(self, content: bytes) -> bool:
        return looks_like_feed(content)

    def get(self, url: str, timeout: float, name: Optional[str] = None,
            origin: bool = True) -> StrategyResult:
        name = name or self.name
        t0 = time.monotonic()
        try:
            resp = self.session.get(url, headers=self.headers(),
                                    timeout=timeout,
                                    verify=VERIFY_CERTIFICATES)
        except requests.exceptions.RequestException as exc:
            error_class, descr = classify_request_exception(exc)
            return _failure(name, error_class, descr, origin=origin,
                            elapsed=time.monotonic() - t0)
        elapsed = time.monotonic() - t0

        code = resp.status_code
        if code != 200:
            reason = getattr(resp, 'reason', None)
            msg = f"HTTP {code} {reason}" if reason else f"HTTP {code}"
            return _failure(name, classify_status(code), msg, code,
                            origin=origin, elapsed=elapsed)

        content = clean_bytes(resp.content or b'')
        if not self.accept(content):
            return _failure(name, ErrorClass.OTHER, "not a feed document",
                            code, origin=origin, elapsed=elapsed)
        return StrategyResult(name, Outcome.SUCCESS, content=content,
                              status_code=code, elapsed=elapsed,
                              origin=origin)

    def run(self, url: str, timeout: float) -> StrategyResult:
        return self.get(url, timeout)


class DirectStrategy(HttpStrategy):
    """
    realistic rotating headers, with bounded retries
    (exponential backoff plus a jittered "human" pause)
    """
    name = DIRECT

    def __init__(self, session: requests.Session,
                 rng: Optional[random.Random] = None,
                 sleep: SleepFunc = time.sleep,
                 retries: int = FETCH_RETRIES,
                 retry_delay: float = FETCH_RETRY_DELAY_SECS):
        super().__init__(session, rng)
        self.sleep = sleep
        self.retries = max(retries, 1)
        self.retry_delay = retry_delay

    def run(self, url: str, timeout: float) -> StrategyResult:
        elapsed = 0.0
        for attempt in range(1, self.retries + 1):
            if attempt > 1:
                backoff = self.retry_delay * 2 ** (attempt - 2)
                self.sleep(backoff + self.rng.uniform(HUMAN_DELAY_MIN_SECS,
                                                      HUMAN_DELAY_MAX_SECS))
            result = self.get(url, timeout)
            elapsed += result.elapsed
            result.elapsed = elapsed
            if result.outcome != Outcome.RETRYABLE:
                break
            logger.debug(f"   {self.name} attempt {attempt}/{self.retries} {url}: {result.message}")
            if result.error_class == ErrorClass.TIMEOUT:
                timeout = adjusted_timeout(timeout)
        return result


class AltProfileStrategy(HttpStrategy):
    """
    one more try with a fresh (different) header profile
    """
    name = ALT_PROFILE


class FeedReaderStrategy(HttpStrategy):
    name = FEED_READER

    def headers(self) -> Dict[str, str]:
        return feed_reader_headers()


class MirrorStrategy(HttpStrategy):
    """
    public mirror services, in priority order.
    content only accepted if it starts with an XML/feed prologue.
    """
    name = MIRROR

    def accept(self, content: bytes) -> bool:
        return looks_like_xml_feed(content)

    def run(self, url: str, timeout: float) -> StrategyResult:
        elapsed = 0.0
        failures = []
        for mirror_name, murl in mirror_urls(url):
            name = f"{MIRROR}:{mirror_name}"
            result = self.get(murl, timeout, name=name, origin=False)
            elapsed += result.elapsed
            if result.ok:
                result.elapsed = elapsed
                return result
            failures.append(f"{mirror_name}: {result.message}")
        return _failure(MIRROR, ErrorClass.OTHER,
                        '; '.join(failures) or "no mirrors enabled",
                        origin=False, elapsed=elapsed)


class BrowserStrategy(Strategy):
    """
    headless browser rendering (see feeder/browser.py)
    """
    name = BROWSER

    def __init__(self, renderer: BrowserRenderer):
        self.renderer = renderer

    def run(self, url: str, timeout: float) -> StrategyResult:
        t0 = time.monotonic()
        try:
            page = self.renderer.render(url)
        except BrowserError as exc:
            code = exc.status_code
            if code is not None:
                error_class = classify_status(code)
            elif exc.timed_out:
                error_class = ErrorClass.TIMEOUT
            else:
                error_class = ErrorClass.OTHER
            return _failure(self.name, error_class, str(exc), code,
                            elapsed=time.monotonic() - t0)

        content = clean_bytes(page.content)
        elapsed = time.monotonic() - t0
        if not looks_like_feed(content):
            # challenge or error page rendered in place of the feed
            return _failure(self.name, ErrorClass.OTHER, "not a feed document",
                            page.status_code, elapsed=elapsed)
        return StrategyResult(self.name, Outcome.SUCCESS, content=content,
                              status_code=page.status_code, elapsed=elapsed)


def _worst(attempts: List[StrategyResult]) -> Optional[StrategyResult]:
    """
    most severe origin failure (blocked > timeout > server_error > other)
    """
    worst = None
    for r in attempts:
        if r.ok or not r.origin or r.error_class is None:
            continue
        if worst is None or \
                SEVERITY[r.error_class] > SEVERITY[worst.error_class]:  # type: ignore[index]
            worst = r
    return worst


class FetchPipeline:
    """
    fetch(url) tries strategies in order:
    direct, alt-profile, feed-reader, mirror, browser
    (only browser when the feed is known to require it).
    """

    def __init__(self,
                 session: Optional[requests.Session] = None,
                 renderer: Optional[BrowserRenderer] = None,
                 mirrors: bool = True,
                 sleep: SleepFunc = time.sleep,
                 rng: Optional[random.Random] = None,
                 delay_range: tuple = (STRATEGY_DELAY_MIN_SECS,
                                       STRATEGY_DELAY_MAX_SECS)):
        self.session = session or requests.Session()
        self.renderer = renderer
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.delay_range = delay_range

        self.http_strategies: List[Strategy] = [
            DirectStrategy(self.session, self.rng, sleep),
            AltProfileStrategy(self.session, self.rng),
            FeedReaderStrategy(self.session, self.rng),
        ]
        if mirrors:
            self.http_strategies.append(MirrorStrategy(self.session, self.rng))

        self.browser_strategy: Optional[Strategy] = None
        if renderer is not None:
            self.browser_strategy = BrowserStrategy(renderer)

    def strategies(self, requires_browser: bool) -> List[Strategy]:
        if requires_browser and self.browser_strategy:
            return [self.browser_strategy]
        if self.browser_strategy:
            return self.http_strategies + [self.browser_strategy]
        return list(self.http_strategies)

    def fetch(self, url: str, requires_browser: bool = False,
              timeout: Optional[float] = None) -> FetchResult:
        """
        returns FetchResult on success.
        raises PermanentFetchError on 404/410 from the feed's host,
        FetchExhausted when every strategy failed.
        """
        if timeout is None:
            timeout = RSS_FETCH_TIMEOUT_SECS
        if requires_browser and not self.browser_strategy:
            logger.warning(f"   {url} requires browser, but browser not enabled")

        attempts: List[StrategyResult] = []
        for i, strategy in enumerate(self.strategies(requires_browser)):
            if i > 0:
                self.sleep(self.rng.uniform(*self.delay_range))

            result = strategy.run(url, timeout)
            attempts.append(result)

            if result.ok:
                assert result.content is not None
                return FetchResult(result.content, result.strategy,
                                   result.status_code,
                                   sum(a.elapsed for a in attempts),
                                   attempts)

            logger.debug(f"   {result.strategy} failed {url}: {result.message}")
            if result.origin and result.status_code and \
                    is_likely_blocked(result.status_code):
                logger.info(f"   {url} refusing {result.strategy} (HTTP {result.status_code})")
            if result.outcome == Outcome.PERMANENT and result.origin:
                assert result.status_code is not None
                raise PermanentFetchError(result.message or "gone",
                                          result.status_code,
                                          result.strategy)

        worst = _worst(attempts) or (attempts[-1] if attempts else None)
        if worst is None:
            raise FetchExhausted("no fetch strategies available",
                                 ErrorClass.OTHER, None, None, attempts)
        tried = ', '.join(a.strategy for a in attempts)
        raise FetchExhausted(
            f"all fetch strategies failed ({tried}): {worst.message}",
            worst.error_class or ErrorClass.OTHER,
            worst.status_code, worst.strategy, attempts)
