"""
worker queue support (rq over redis)
tries to hide all aspects of work queuing system in use.

NOTE! All references to rq belong in this file!
"""

import logging
from typing import Any, List, Optional

# PyPI
from redis import StrictRedis
from redis.exceptions import RedisError
from rq import Queue, SimpleWorker
import rq.timeouts
from sqlalchemy.engine.url import make_url

from feeder.config import conf

WORKQ_NAME = 'workq'            # make configurable?

# referenced by name to avoid import loop (tasks -> scheduler -> queue)
FEED_WORKER = 'feeder.tasks.feed_worker'
DISCOVERY_WORKER = 'feeder.tasks.discovery_worker'

JobTimeoutException = rq.timeouts.JobTimeoutException

logger = logging.getLogger(__name__)

QueueError = RedisError


################
# to allow config fetch, connect after includes complete


def redis_connection() -> StrictRedis:
    u = make_url(conf.REDIS_URL)     # SQLAlchemy URL object
    if not u:
        raise Exception(f"Bad REDIS_URL {conf.REDIS_URL}")
    return StrictRedis(host=u.host, port=u.port or 6379,
                       password=u.password, username=u.username,
                       db=int(u.database or 0))

################


def workq(rconn: Optional[StrictRedis] = None) -> Queue:
    """
    Return RQ Queue for enqueuing work.
    """
    if not rconn:
        rconn = redis_connection()
    return Queue(WORKQ_NAME, connection=rconn)


def feed_job_id(feed_id: int) -> str:
    return f"feed-{feed_id}"


def enqueue_feeds(wq: Any, feed_ids: List[int], timeout: int) -> int:
    """
    Queue repeating-registration fetches; returns number queued.
    raises QueueError.
    """
    job_datas = [
        Queue.prepare_data(
            func=FEED_WORKER,
            args=(feed_id, True),
            result_ttl=0,  # don't care about result
            failure_ttl=0,  # don't care about failures
            job_id=feed_job_id(feed_id),
            timeout=timeout
        ) for feed_id in feed_ids
    ]
    jobs = wq.enqueue_many(job_datas)
    return len(jobs)


def enqueue_fetch_now(wq: Any, feed_id: int, job_id: str, timeout: int) -> str:
    """
    one-off fetch that does not re-arm the registration
    """
    wq.enqueue(FEED_WORKER, feed_id, False,
               job_id=job_id, job_timeout=timeout,
               result_ttl=0, failure_ttl=0)
    return job_id


def enqueue_discovery(wq: Any, feed_id: int, timeout: int) -> str:
    job_id = f"discover-{feed_id}"
    wq.enqueue(DISCOVERY_WORKER, feed_id,
               job_id=job_id, job_timeout=timeout,
               result_ttl=0, failure_ttl=0)
    return job_id


################


def worker(rconn: Optional[StrictRedis] = None) -> None:
    """
    run as worker, called by scripts/worker.py
    """
    if not rconn:
        rconn = redis_connection()

    # NOTE! SimpleWorker reuses same process, so
    # able to use connection pooling (and the browser).
    w = SimpleWorker([WORKQ_NAME], connection=rconn)

    # "The return value indicates whether any jobs were processed."
    w.work()

################
# called from scripts/queue_feeds.py


def queue_length(q: Queue) -> int:
    """
    number of jobs in queue; must exclude jobs currently assigned to a worker
    """
    return q.count or 0


def queue_active(q: Queue) -> int:
    """
    rq "started" jobs ***NOT*** included in queue_length
    """
    return q.started_job_registry.count or 0


def queue_workers(q: Queue) -> int:
    """return number of workers for queue"""
    return len(SimpleWorker.all(queue=q))


def clear_queue(q: Queue) -> None:
    logger.info("Purging work queue.")
    q.empty()
