"""
Services shared across /api areas

Since this file is imported by multiple "router" files,
it shouldn't import from any of them (should be strictly a leaf).
"""

import functools
from typing import NamedTuple

from feeder.autopause import AutoPauseManager
from feeder.database.repository import FeedRepository
from feeder.discovery import FeedDiscovery
from feeder.health import HealthMonitor, HealthTracker
from feeder.notifications import Notifier
import feeder.queue as queue
from feeder.scheduler import FeedScheduler

# default limit of health log rows returned
HEALTH_LOG_LIMIT = 100


class Services(NamedTuple):
    repo: FeedRepository
    scheduler: FeedScheduler
    autopause: AutoPauseManager
    tracker: HealthTracker
    monitor: HealthMonitor
    discovery: FeedDiscovery
    notifier: Notifier


@functools.lru_cache(maxsize=None)
def services() -> Services:
    """
    created on first request (requires DATABASE_URL, REDIS_URL)
    """
    from feeder.database.session import Session

    repo = FeedRepository(Session)
    scheduler = FeedScheduler(repo, queue.workq())
    notifier = Notifier(repo)
    return Services(repo, scheduler,
                    AutoPauseManager(repo, scheduler, notifier),
                    HealthTracker(repo), HealthMonitor(repo),
                    FeedDiscovery(), notifier)
