"""
Feed ingestion task: fetch, parse, store, and record the outcome.

NOTE!! FeedIngester.process is the ONE place that catches ALL
exceptions from a fetch attempt.  Everything below it raises
(typed errors from feeder.errors) and everything above it
(rq) never sees a fetch failure.

The work queue invokes feed_worker / discovery_worker (by name,
see feeder/queue.py).
"""

import logging
import time
from typing import Any, NamedTuple, Optional

# PyPI
import requests.exceptions
from sqlalchemy.exc import SQLAlchemyError

from feeder.autopause import AutoPauseManager
from feeder.browser import BrowserRenderer
from feeder.cache import FetchCache
from feeder.config import conf
from feeder.database.models import Feed
from feeder.database.repository import FeedRepository
from feeder.discovery import FeedDiscovery, discover_and_store
from feeder.errors import (ErrorClass, FeedNotFound, FetchError, NotAFeed,
                           classify_request_exception)
from feeder.fetch import CACHE, FetchPipeline, FetchResult
from feeder.health import Attempt, HealthTracker
from feeder.notifications import Notifier
from feeder.parser import parse
import feeder.queue as queue
from feeder.retry import progressive_timeout
from feeder.scheduler import FeedScheduler, is_throttled
from feeder.stats import Stats
from feeder.status import StatusMachine
from feeder.util import utc

logger = logging.getLogger(__name__)

# see feeder/config.py for descriptions
ITEM_EVICTION_BATCH = conf.ITEM_EVICTION_BATCH
ITEM_RETENTION_CAP = conf.ITEM_RETENTION_CAP
RSS_FETCH_TIMEOUT_SECS = conf.RSS_FETCH_TIMEOUT_SECS
TASK_TIMEOUT_SECONDS = conf.TASK_TIMEOUT_SECONDS

SUCCESS = 'success'
FAILURE = 'failure'
SKIPPED = 'skipped'


class Result(NamedTuple):
    """
    outcome of FeedIngester.process
    """
    counter: str                # stats counter: short, fixed strings
    outcome: str                # SUCCESS, FAILURE, SKIPPED
    strategy: Optional[str] = None
    note: str = ''
    created: int = 0
    updated: int = 0


def Skipped(counter: str, note: str = '') -> Result:
    return Result(counter, SKIPPED, note=note)


def _valid_feed_id(feed_id: Any) -> Optional[int]:
    """
    job payloads are supposed to be integers;
    digit strings (hand queued jobs) tolerated.
    """
    if isinstance(feed_id, bool):
        return None
    if isinstance(feed_id, int):
        return feed_id
    if isinstance(feed_id, str) and feed_id.isdigit():
        return int(feed_id)
    return None


class FeedIngester:
    def __init__(self,
                 repo: FeedRepository,
                 pipeline: FetchPipeline,
                 scheduler: FeedScheduler,
                 cache: Optional[FetchCache] = None,
                 notifier: Optional[Notifier] = None,
                 autopause: Optional[AutoPauseManager] = None,
                 status_machine: Optional[StatusMachine] = None,
                 tracker: Optional[HealthTracker] = None,
                 stats: Optional[Any] = None):
        self.repo = repo
        self.pipeline = pipeline
        self.scheduler = scheduler
        self.cache = cache
        self.notifier = notifier or Notifier(repo)
        self.autopause = autopause or AutoPauseManager(repo, scheduler,
                                                       self.notifier)
        self.status_machine = status_machine or StatusMachine(repo)
        self.tracker = tracker or HealthTracker(repo)
        self.stats = stats

    ################ fetch & store

    @staticmethod
    def fetch_timeout(feed: Feed) -> float:
        """
        per-request timeout: grows while the feed keeps timing out
        """
        if feed.last_error_class == ErrorClass.TIMEOUT.value and \
                feed.consecutive_failures:
            return progressive_timeout(feed.consecutive_failures)
        return RSS_FETCH_TIMEOUT_SECS

    def _fetch(self, feed: Feed) -> FetchResult:
        url = feed.url
        requires_browser = bool(feed.requires_browser)
        timeout = self.fetch_timeout(feed)

        if self.cache:
            cached = self.cache.get(url)
            if cached is not None:
                return cached
        return self.pipeline.fetch(url, requires_browser, timeout)

    def _store(self, feed: Feed, result: FetchResult) -> Result:
        parsed = parse(result.content)

        created = updated = skipped = 0
        for entry in parsed.entries:
            guid = entry.source_guid
            if not entry.url or not entry.title or not guid:
                skipped += 1
                continue
            if self.repo.upsert_item(feed.id, guid,
                                     entry.item_fields()) == 'created':
                created += 1
            else:
                updated += 1

        values: dict = {}
        if result.used_browser and not feed.requires_browser:
            # sticky: from now on, only browser rendering
            logger.info(f"  Feed {feed.id} marked as requiring browser")
            values['requires_browser'] = True
        if parsed.title and parsed.title != feed.rss_title:
            values['rss_title'] = parsed.title
        if values:
            self.repo.update_feed(feed.id, **values)

        # only documents that parsed are shared
        if self.cache and result.strategy != CACHE:
            self.cache.put(feed.url, result)

        note = f"{created} new, {updated} updated"
        if skipped:
            note += f", {skipped} skipped"
        return Result('ok', SUCCESS, result.strategy, note, created, updated)

    ################ task boundary

    def process(self, feed_id: Any, rearm: bool = True) -> Result:
        """
        one ingestion attempt for feed_id.
        `rearm` False for one-off (fetch-now) tasks.
        """
        start = utc()
        t0 = time.monotonic()

        fid = _valid_feed_id(feed_id)
        if fid is None:
            # nothing recorded; job has result_ttl=0, so it's gone
            logger.error(f"invalid feed id {feed_id!r}; dropping job")
            return self._report(feed_id, Skipped('invalid', 'invalid payload'), t0)

        feed = self.repo.get_feed(fid)
        if feed is None:
            self.scheduler.unschedule(fid)
            return self._report(fid, Skipped('not_found', 'feed not found'), t0)

        skip = None
        if not feed.is_active:
            skip = Skipped('inactive', 'inactive')
        elif feed.paused:
            skip = Skipped('paused', 'paused')
        elif is_throttled(feed, start):
            skip = Skipped('throttled', 'fetched too recently')
        if skip:
            if rearm:
                self.scheduler.rearm(fid)
            return self._report(fid, skip, t0)

        status_code = None
        strategy = None
        try:
            fetched = self._fetch(feed)
            status_code = fetched.status_code
            strategy = fetched.strategy
            r = self._store(feed, fetched)
            attempt = Attempt(True, start, status_code,
                              response_time=self._ms(t0),
                              strategy=strategy)
        except FetchError as exc:
            # PermanentFetchError, FetchExhausted
            r = Result(exc.error_class.value, FAILURE, exc.strategy, str(exc))
            attempt = self._failed(start, t0, str(exc), exc.error_class,
                                   exc.status_code, exc.strategy)
        except NotAFeed as exc:
            r = Result('not_a_feed', FAILURE, strategy, f"not a feed: {exc}")
            attempt = self._failed(start, t0, r.note, ErrorClass.OTHER,
                                   status_code, strategy)
        except requests.exceptions.RequestException as exc:
            error_class, descr = classify_request_exception(exc)
            r = Result(descr.replace(' ', '_'), FAILURE, strategy, descr)
            attempt = self._failed(start, t0, descr, error_class,
                                   status_code, strategy)
        except queue.JobTimeoutException:
            r = Result('job_timeout', FAILURE, strategy, 'job timeout')
            attempt = self._failed(start, t0, 'job timeout',
                                   ErrorClass.TIMEOUT, status_code, strategy)
        except Exception as exc:
            # This is the ONE place that catches ALL ingestion
            # exceptions; log the backtrace so the problem can be fixed.
            logger.exception("process")
            r = Result('exception', FAILURE, strategy, repr(exc))
            attempt = self._failed(start, t0, repr(exc), ErrorClass.OTHER,
                                   status_code, strategy)

        try:
            self._record(fid, attempt)
        except FeedNotFound:
            # deleted while being fetched
            return self._report(fid, Skipped('not_found', 'feed deleted'), t0)

        if rearm:
            self.scheduler.rearm(fid)
        return self._report(fid, r, t0)

    @staticmethod
    def _ms(t0: float) -> int:
        return round((time.monotonic() - t0) * 1000)

    def _failed(self, start: Any, t0: float, message: str,
                error_class: ErrorClass, status_code: Optional[int],
                strategy: Optional[str]) -> Attempt:
        return Attempt(False, start, status_code, message, error_class,
                       self._ms(t0), strategy)

    def _record(self, feed_id: int, attempt: Attempt) -> None:
        """
        record attempt, then let notifications, auto-pause,
        and the status machine react.
        """
        feed, prev_failures = self.tracker.record_attempt(feed_id, attempt)

        if not attempt.success:
            self.notifier.check_warning(feed)
            self.autopause.check(feed)
        status = self.status_machine.evaluate(feed_id, attempt)

        if attempt.success:
            feed.status = status.value
            self.notifier.check_recovery(feed, prev_failures)
            self._evict()

    def _evict(self) -> None:
        try:
            n = self.repo.evict_oldest_items(ITEM_RETENTION_CAP,
                                             ITEM_EVICTION_BATCH)
        except SQLAlchemyError as exc:
            logger.error(f"item eviction failed: {exc!r}")
            return
        if n:
            logger.info(f"evicted {n} old items")

    def _report(self, feed_id: Any, r: Result, t0: float) -> Result:
        total_sec = time.monotonic() - t0
        if r.outcome == SKIPPED:
            log = logger.debug if r.counter == 'throttled' else logger.info
            log(f"  Feed {feed_id} {r.outcome} in {total_sec:.03f} sec: {r.note}")
        else:
            log = logger.info if r.outcome == SUCCESS else logger.warning
            log(f"  Feed {feed_id} {r.outcome} via {r.strategy or 'none'}"
                f" in {total_sec:.03f} sec: {r.note}")

        if self.stats:
            self.stats.incr('feeds', 1, labels=[('stat', r.counter)])
            # total time is multi-modal (timeouts), so split by outcome
            self.stats.timing('total', total_sec,
                              labels=[('status', r.outcome)])
        return r


################ worker process plumbing

_ingester: Optional[FeedIngester] = None


def make_ingester(renderer: Optional[BrowserRenderer] = None) -> FeedIngester:
    """
    wire up production collaborators
    """
    # here to avoid requiring DATABASE_URL just to import this module
    from feeder.database.session import Session

    repo = FeedRepository(Session)
    rconn = queue.redis_connection()
    wq = queue.workq(rconn)
    scheduler = FeedScheduler(repo, wq)

    def discover(feed_id: int) -> None:
        queue.enqueue_discovery(wq, feed_id, TASK_TIMEOUT_SECONDS)

    pipeline = FetchPipeline(renderer=renderer,
                             mirrors=conf.MIRRORS_ENABLED)
    return FeedIngester(repo, pipeline, scheduler,
                        cache=FetchCache(rconn),
                        status_machine=StatusMachine(repo, discover),
                        stats=Stats.get())


def install(ingester: FeedIngester) -> None:
    """
    called by scripts/worker.py (and tests)
    """
    global _ingester
    _ingester = ingester


def ingester() -> FeedIngester:
    if _ingester is None:
        install(make_ingester())
    assert _ingester
    return _ingester


def feed_worker(feed_id: Any, rearm: bool = True) -> None:
    """
    work queue entry point: fetch feed_id
    """
    ingester().process(feed_id, rearm)


def discovery_worker(feed_id: int) -> None:
    """
    work queue entry point: discover alternatives for feed_id
    """
    ing = ingester()
    try:
        discover_and_store(ing.repo, feed_id,
                           FeedDiscovery(ing.pipeline.session))
    except FeedNotFound:
        logger.info(f"  Feed {feed_id} not found for discovery")
