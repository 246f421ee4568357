"""
Feeder Configuration

Fetch configuration values with defaulting,
optionally log only the ones that are used.
"""

# Goals:
# 0. Log program program specific (optional) banner before config values
# 1. Maintains centralized defaulting of config values
# 2. Logs each variable once, and ONLY if requested
# 3. conf.TYPO causes error rather than silent failure

import logging
import os
import sys
from typing import Any, Dict, List, Optional

# PyPI
from dotenv import load_dotenv

# local
from feeder import VERSION

load_dotenv()  # load config from .env file (local) or env vars (production)

logger = logging.getLogger(__name__)

# Conf variables implemented as property functions.

# conf_thing functions return properties for _Config class members
# used in class definition as MEMBER = conf_....('NAME', ....)

# The "confobj" argument passed to the getter functions
# is the (one) _Conf class instance, since they're being
# called to access properties of that object.


def conf_default(name: str, defval: str) -> property:
    """
    return property function for
    config variable with default (if not set)
    """

    def getter(confobj: '_Config') -> Any:
        if name in confobj.values:
            value = confobj.values[name]  # cached value
        else:
            value = os.environ.get(name, defval)
            confobj._log(name, value)  # log first time only
        return value
    return property(getter)


def conf_bool(name: str, defval: bool) -> property:
    """
    return property function for
    config variable with boolean value
    tries to be liberal in what it accepts:
    True values: non-zero integer, true, t, on (case insensitive)
    """

    def getter(confobj: '_Config') -> bool:
        if name in confobj.values:
            value = bool(confobj.values[name])  # cached value
        else:
            v = os.environ.get(name)
            if v is None:
                value = defval
            else:
                v = v.strip().lower()
                if v.isdigit():
                    value = bool(int(v))
                else:
                    value = v in ['true', 't', 'on']  # be liberal
            confobj._log(name, value)
        return value
    return property(getter)


def conf_int(name: str, defval: int) -> property:
    """
    return property function for
    Integer valued configuration variable, with default value
    """

    def getter(confobj: '_Config') -> int:
        if name in confobj.values:
            value = int(confobj.values[name])  # cached value
        else:
            try:
                value = int(os.environ.get(name, defval))
            except ValueError:
                value = defval
            confobj._log(name, value)  # log first time only
        return value
    return property(getter)


def conf_list(name: str, defval: str) -> property:
    """
    return property function for
    comma separated list valued configuration variable
    """

    def getter(confobj: '_Config') -> List[str]:
        if name in confobj.values:
            value = confobj.values[name]  # cached value
        else:
            raw = os.environ.get(name, defval)
            value = [item.strip().lower()
                     for item in raw.split(',') if item.strip()]
            confobj._log(name, value)  # log first time only
        return value
    return property(getter)


def conf_optional(name: str, hidden: bool = False) -> property:
    """
    return property function for
    optional configuration variable (returns None if not set, does not log)
    """

    def getter(confobj: '_Config') -> Any:
        if name in confobj.values:
            value = confobj.values[name]  # cached value
        else:
            value = os.environ.get(name)
            if value is None:   # optional: log only if set
                confobj._set(name, value)
            else:
                confobj._log(name, value, hidden)  # log first time only
        return value
    return property(getter)


def conf_required(name: str) -> property:
    """
    return property function for required config:
    fatal if Conf.MEMBER referenced, but environment variable not set
    """

    def getter(confobj: '_Config') -> Any:
        if name not in os.environ:
            logger.error(f"{name} not set.")
            sys.exit(1)
        if name in confobj.values:
            value = confobj.values[name]  # cached value
        else:
            value = os.environ.get(name)
            confobj._log(name, value)  # log first time only
        return value
    return property(getter)


# default value for DEFAULT_INTERVAL_MINS if not configured:
_DEFAULT_DEFAULT_INTERVAL_MINS = 3 * 60

# default value for MINIMUM_INTERVAL_MINS if not configured:
_DEFAULT_MINIMUM_INTERVAL_MINS = _DEFAULT_DEFAULT_INTERVAL_MINS

# default value for MAXIMUM_BACKOFF_MINS if not configured:
_DEFAULT_MAXIMUM_BACKOFF_MINS = 48 * 60


class _Config:                  # only instantiated in this file
    """
    Configuration with logging on first access.

    All "members" are property functions
    (only work on an instance of this class)
    and there should only ever be ONE instance of this class!
    """

    def __init__(self) -> None:
        self.values: Dict[str, Any] = {}  # cache
        self.msgs: List[str] = []  # saved initial log messages
        self.logging = False

    def _set(self, name: str, value: Any) -> None:
        self.values[name] = value

    def _log(self, name: str, value: Any, hidden: bool = False) -> None:
        """
        set and log name & value
        """
        self._set(name, value)
        if hidden:
            value = '(hidden)'
        msg = f"{name}: {value}"
        if self.logging:
            logger.info(msg)
        else:
            self.msgs.append(msg)

    def start(self, prog: Optional[str], descr: Optional[str]) -> None:
        """
        Optionally log start message with any saved messages.
        Called from LogArgumentParser.parse_args after logger setup.
        """
        if prog:
            # GIT_REV set by Dokku
            git_rev = os.environ.get('GIT_REV', '(GIT_REV not set)')

            logger.info(
                "------------------------------------------------------------------------")

            logger.info(f"Starting {prog} version {VERSION} {git_rev}")
            for msg in self.msgs:
                logger.info(msg)
            self.logging = True

    # config variable properties in alphabetical order

    # consecutive failures at which a feed is paused
    AUTO_PAUSE_FAILURES = conf_int('AUTO_PAUSE_FAILURES', 5)

    # set False to never fall back to headless browser rendering
    BROWSER_ENABLED = conf_bool('BROWSER_ENABLED', True)

    # concurrent browser pages per worker process
    BROWSER_MAX_PAGES = conf_int('BROWSER_MAX_PAGES', 3)

    # navigation timeout for browser rendering
    BROWSER_TIMEOUT_SECS = conf_int('BROWSER_TIMEOUT_SECS', 30)

    # keep this above the number of workers (initially 2x)
    DB_POOL_SIZE = conf_int('DB_POOL_SIZE', 32)

    # interval for new feeds (if Feed.refresh_interval_minutes not set)
    DEFAULT_INTERVAL_MINS = conf_int('DEFAULT_INTERVAL_MINS',
                                     _DEFAULT_DEFAULT_INTERVAL_MINS)

    # seconds a fetched (and cleaned) feed document stays in redis
    FETCH_CACHE_TTL_SECS = conf_int('FETCH_CACHE_TTL_SECS', 2 * 60 * 60)

    # attempts made by the "direct" strategy
    FETCH_RETRIES = conf_int('FETCH_RETRIES', 2)

    # base delay for exponential backoff between "direct" attempts
    FETCH_RETRY_DELAY_SECS = conf_int('FETCH_RETRY_DELAY_SECS', 2)

    # user/password for Basic Authentication for the control API
    FEEDER_API_USER = conf_optional('FEEDER_API_USER', hidden=True)
    FEEDER_API_PASS = conf_optional('FEEDER_API_PASS', hidden=True)

    # number of feed_health_logs rows to keep for each feed
    HEALTH_LOG_ROWS = conf_int('HEALTH_LOG_ROWS', 100)

    # period for health summary computation in queue_feeds --loop
    HEALTH_SUMMARY_MINS = conf_int('HEALTH_SUMMARY_MINS', 60)

    # items deleted per statement when enforcing ITEM_RETENTION_CAP
    ITEM_EVICTION_BATCH = conf_int('ITEM_EVICTION_BATCH', 1000)

    # total number of items kept (oldest evicted first)
    ITEM_RETENTION_CAP = conf_int('ITEM_RETENTION_CAP', 50000)

    # number of old log files to keep
    LOG_BACKUP_COUNT = conf_int('LOG_BACKUP_COUNT', 7)

    # maximum stored length of Feed.last_error/HealthLog.error_message
    MAX_ERROR_LENGTH = conf_int('MAX_ERROR_LENGTH', 500)

    # maximum number of feeds to queue in one pass
    MAX_FEEDS = conf_int('MAX_FEEDS', 1000)

    # maximum delay when backing off
    MAXIMUM_BACKOFF_MINS = conf_int('MAXIMUM_BACKOFF_MINS',
                                    _DEFAULT_MAXIMUM_BACKOFF_MINS)

    # minimum refresh interval; Feed.refresh_interval_minutes is clamped
    MINIMUM_INTERVAL_MINS = conf_int('MINIMUM_INTERVAL_MINS',
                                     _DEFAULT_MINIMUM_INTERVAL_MINS)

    # set False to skip the public mirror/proxy strategy
    MIRRORS_ENABLED = conf_bool('MIRRORS_ENABLED', True)

    REDIS_URL = conf_default('REDIS_URL', 'redis://localhost:6379')

    # timeout in sec. for fetching a feed document
    RSS_FETCH_TIMEOUT_SECS = conf_int('RSS_FETCH_TIMEOUT_SECS', 10)

    SENTRY_DSN = conf_optional('SENTRY_DSN')
    SENTRY_ENV = conf_optional('SENTRY_ENV')

    SQLALCHEMY_DATABASE_URI = conf_required('DATABASE_URL')

    # Display generated SQL
    SQLALCHEMY_ECHO = conf_bool('SQLALCHEMY_ECHO', False)

    # required if STATSD_URL set
    STATSD_PREFIX = conf_optional('STATSD_PREFIX')

    # set by dokku-graphite plugin
    STATSD_URL = conf_optional('STATSD_URL')

    # consecutive blocked/timeout failures before blocked/unreachable
    STATUS_ESCALATION_FAILURES = conf_int('STATUS_ESCALATION_FAILURES', 3)

    # successes (in STATUS_WINDOW) needed for degraded -> active
    STATUS_RECOVERY_SUCCESSES = conf_int('STATUS_RECOVERY_SUCCESSES', 5)

    # number of recent health log rows examined by the status machine
    STATUS_WINDOW = conf_int('STATUS_WINDOW', 10)

    # jittered pause between fetch strategies
    STRATEGY_DELAY_MAX_SECS = conf_int('STRATEGY_DELAY_MAX_SECS', 5)
    STRATEGY_DELAY_MIN_SECS = conf_int('STRATEGY_DELAY_MIN_SECS', 3)

    # rq default is 180 sec (3m); a full strategy chain can take longer
    TASK_TIMEOUT_SECONDS = conf_int('TASK_TIMEOUT_SECONDS', 10 * 60)

    # hosts never fetched more often than THROTTLED_MIN_MINUTES
    THROTTLED_HOSTS = conf_list('THROTTLED_HOSTS', 'reddit.com')
    THROTTLED_MIN_MINUTES = conf_int('THROTTLED_MIN_MINUTES', 60)

    VERIFY_CERTIFICATES = conf_bool('VERIFY_CERTIFICATES', True)

    # consecutive failures at which a warning notification is created
    WARNING_FAILURES = conf_int('WARNING_FAILURES', 3)


conf = _Config()


def fix_database_url(url: str) -> str:  # select psycopg (3) driver
    # "postgres:" URLs deprecated in SQLAlchemy 1.4 (wants postgresql)
    scheme, path = url.split(':', 1)
    if scheme in ('postgresql', 'postgres'):
        url = 'postgresql+psycopg:' + path
    return url
