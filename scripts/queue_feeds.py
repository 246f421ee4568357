"""
Feed queuer: releases due feed registrations to the work queue.

When run with --loop, stays running as daemon,
sending queue stats, refreshing the queue and
periodically reporting system health.
"""

import logging
import sys
import time

# app
from feeder.config import conf
from feeder.database.repository import FeedRepository
from feeder.database.session import Session
from feeder.health import HealthMonitor
from feeder.logargparse import LogArgumentParser
import feeder.queue as queue
from feeder.scheduler import FeedScheduler
from feeder.stats import Stats
from feeder.util import utc

SCRIPT = 'queue_feeds'          # NOTE! used for stats!
logger = logging.getLogger(SCRIPT)


def loop(scheduler: FeedScheduler, monitor: HealthMonitor,
         max_feeds: int, health_mins: int) -> None:
    """
    Once a minute: report queue stats, release due registrations,
    catch strays; every `health_mins` report health summary.
    """
    stats = Stats.get()
    wq = scheduler.wq
    repo = scheduler.repo

    logger.info(f"Starting loop: health summary every {health_mins} min")
    while True:
        t0 = time.time()        # wake time

        # always report queue stats (inexpensive with rq):
        qlen = queue.queue_length(wq)
        active = queue.queue_active(wq)   # jobs in progress
        workers = queue.queue_workers(wq)
        stats.gauge('qlen', qlen)
        stats.gauge('active', active)
        stats.gauge('workers', workers)
        logger.debug(f"qlen {qlen} active {active} workers {workers}")

        # only when queue empty: anything marked queued is suspect
        strays = scheduler.release_strays() if qlen == 0 else 0
        stats.gauge('strays_caught', strays)

        # keep queue short, so database changes are seen quickly
        limit = max(max_feeds - qlen, 0)
        added = scheduler.queue_due_feeds(limit) if limit else 0
        # gauges "stick" at last value, so always set:
        stats.gauge('added', added)
        stats.incr('queued_feeds', added)

        now = utc()
        stats.gauge('db.queued', repo.count_queued())
        stats.gauge('db.due', repo.count_due(now))

        if (int(t0 / 60) % health_mins) == 0:
            monitor.report(stats)

        tnext = (t0 - t0 % 60) + 60  # top of the next minute after wake time
        s = tnext - time.time()      # sleep time
        if s > 0:
            time.sleep(s)


if __name__ == '__main__':
    max_feeds = conf.MAX_FEEDS

    p = LogArgumentParser(SCRIPT, 'Feed Queuing')
    p.add_argument('--clear', action='store_true',
                   help='Clear queue and exit.')
    p.add_argument('--health', action='store_true',
                   help='Report health summary and exit.')
    p.add_argument('--loop', action='store_true',
                   help='Clear queue, schedule all feeds, and run as daemon.')

    # info logging before this call unlikely to be seen:
    args = p.my_parse_args()       # parse logging args, output start message

    wq = queue.workq()
    repo = FeedRepository(Session)
    scheduler = FeedScheduler(repo, wq)
    monitor = HealthMonitor(repo)

    if args.clear:
        queue.clear_queue(wq)
        sys.exit(0)

    if args.health:
        summary = monitor.report()
        sys.exit(0 if summary.healthy else 1)

    if args.loop:
        queue.clear_queue(wq)
        # jobs just discarded: nothing is really queued
        repo.release_strays(utc())
        scheduler.schedule_all()

        loop(scheduler, monitor, max_feeds, conf.HEALTH_SUMMARY_MINS)
        sys.exit(1)             # should not get here

    # run from cron
    scheduler.queue_due_feeds(max_feeds)
