"""
Command line scheduling control:
schedule, unschedule, fetch now, resume feeds by id.
"""

import logging
import sys

from feeder.autopause import AutoPauseManager
from feeder.database.repository import FeedRepository
from feeder.database.session import Session
from feeder.errors import FeedNotFound
from feeder.logargparse import LogArgumentParser
from feeder.notifications import Notifier
import feeder.queue as queue
from feeder.scheduler import FeedScheduler

SCRIPT = 'schedule_feeds'
logger = logging.getLogger(SCRIPT)

ACTIONS = ('schedule', 'unschedule', 'fetch-now', 'resume', 'reset')

if __name__ == '__main__':
    p = LogArgumentParser(SCRIPT, 'Feed scheduling control')
    p.add_argument('--all', action='store_true',
                   help='(Re)schedule all active feeds.')
    p.add_argument('action', nargs='?', choices=ACTIONS, default='schedule',
                   help='action for FEED_IDs [default: schedule]')
    p.add_argument('feeds', metavar='FEED_ID', nargs='*', type=int,
                   help='feed ids')

    # info logging before this call unlikely to be seen:
    args = p.my_parse_args()       # parse logging args, output start message

    repo = FeedRepository(Session)
    scheduler = FeedScheduler(repo, queue.workq())
    autopause = AutoPauseManager(repo, scheduler, Notifier(repo))

    if args.all:
        if args.feeds:
            logger.error('Cannot specify both --all and feed ids')
            sys.exit(1)
        scheduler.schedule_all()
        sys.exit(0)

    errors = 0
    for feed_id in args.feeds:
        try:
            if args.action == 'schedule':
                ret = scheduler.schedule(feed_id)
            elif args.action == 'unschedule':
                ret = scheduler.unschedule(feed_id)
            elif args.action == 'fetch-now':
                ret = scheduler.fetch_now(feed_id)
            elif args.action == 'resume':
                ret = autopause.resume(feed_id)
            else:
                autopause.reset_failures(feed_id)
                ret = None
            logger.info(f"  Feed {feed_id} {args.action}: {ret}")
        except FeedNotFound as exc:
            logger.error(str(exc))
            errors += 1
    sys.exit(1 if errors else 0)
