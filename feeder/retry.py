"""
Retry/backoff policy: when to try a failing feed again.

Everything here is a pure function of its arguments.
"""

import datetime as dt
import logging
from typing import NamedTuple, Optional

from feeder.errors import ErrorClass

logger = logging.getLogger(__name__)

# per-attempt HTTP timeouts (seconds)
DEFAULT_TIMEOUT_SECS = 15
TIMEOUT_INCREMENT_SECS = 10
MAX_TIMEOUT_SECS = 60


class Policy(NamedTuple):
    """
    delay (minutes) after n consecutive failures:
        min(first * factor**(n-1), ceiling)
    first/ceiling of None mean "refresh interval"
    """
    first: Optional[float]
    factor: float
    ceiling: Optional[float]
    ceiling_intervals: float = 1.0  # ceiling as multiple of interval


POLICIES = {
    ErrorClass.BLOCKED: Policy(4 * 60, 2.0, 48 * 60),
    ErrorClass.TIMEOUT: Policy(2 * 60, 2.0, 24 * 60),
    ErrorClass.SERVER_ERROR: Policy(60, 2.0, 12 * 60),
    ErrorClass.OTHER: Policy(None, 1.25, None, 2.0),
    # 404/410: nothing to be gained by backing off
    ErrorClass.PERMANENT: Policy(None, 1.0, None),
}


def backoff_minutes(error_class: ErrorClass,
                    failures: int,
                    interval_minutes: int,
                    max_backoff_minutes: Optional[int] = None) -> float:
    """
    return delay in minutes before next attempt
    """
    policy = POLICIES[error_class]
    first = policy.first if policy.first is not None else interval_minutes
    if policy.ceiling is not None:
        ceiling = policy.ceiling
    else:
        ceiling = interval_minutes * policy.ceiling_intervals

    # exponent capped to stay away from float overflow
    exponent = min(max(failures, 1) - 1, 32)
    delay = min(first * policy.factor ** exponent, ceiling)
    if max_backoff_minutes is not None:
        delay = min(delay, max_backoff_minutes)
    return delay


def next_attempt_at(error_class: ErrorClass,
                    failures: int,
                    last_attempt: dt.datetime,
                    interval_minutes: int,
                    max_backoff_minutes: Optional[int] = None) -> dt.datetime:
    """
    time of next eligible attempt for a feed with `failures`
    consecutive failures, the last one classified as `error_class`.
    """
    delay = backoff_minutes(error_class, failures, interval_minutes,
                            max_backoff_minutes)
    return last_attempt + dt.timedelta(minutes=delay)


def adjusted_timeout(current: float, timed_out: bool = True) -> int:
    """
    HTTP timeout for the next attempt: up by half after a timeout
    """
    if not timed_out:
        return round(current)
    return min(round(current * 1.5), MAX_TIMEOUT_SECS)


def progressive_timeout(timeouts: int) -> int:
    """
    HTTP timeout after `timeouts` consecutive timeout failures
    """
    return min(DEFAULT_TIMEOUT_SECS + TIMEOUT_INCREMENT_SECS * max(timeouts, 0),
               MAX_TIMEOUT_SECS)
