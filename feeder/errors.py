"""
Failure taxonomy.

Failures are classified where they happen (by the fetch strategy
that saw them) and carried as typed values from there on,
so nothing downstream needs to pick apart error message text.
"""

import logging
from enum import Enum
from typing import Optional, Tuple

# PyPI
import requests.exceptions

logger = logging.getLogger(__name__)


class ErrorClass(Enum):
    # .value stored in Feed.last_error_class and used as stats label
    TIMEOUT = 'timeout'
    BLOCKED = 'blocked'
    SERVER_ERROR = 'server_error'
    OTHER = 'other'
    PERMANENT = 'permanent'     # 404/410


# "blocked" ranks highest: tells the most about what the origin is doing
SEVERITY = {
    ErrorClass.BLOCKED: 4,
    ErrorClass.TIMEOUT: 3,
    ErrorClass.SERVER_ERROR: 2,
    ErrorClass.OTHER: 1,
    ErrorClass.PERMANENT: 0,
}

# access denied, rate limited, Cloudflare "origin unreachable"
BLOCKED_STATUS = {401, 403, 429, 451, 522}

# gateway/proxy timeouts
TIMEOUT_STATUS = {408, 504, 524}

# gone for good: abort whole fetch chain
PERMANENT_STATUS = {404, 410}


def classify_status(status_code: int) -> ErrorClass:
    """
    classify a non-2xx HTTP status code
    """
    if status_code in PERMANENT_STATUS:
        return ErrorClass.PERMANENT
    if status_code in BLOCKED_STATUS:
        return ErrorClass.BLOCKED
    if status_code in TIMEOUT_STATUS:
        return ErrorClass.TIMEOUT
    if 500 <= status_code <= 599:
        return ErrorClass.SERVER_ERROR
    return ErrorClass.OTHER


def classify_request_exception(
        exc: requests.exceptions.RequestException) -> Tuple[ErrorClass, str]:
    """
    decode RequestException into ErrorClass and short description.
    NOTE! description used in logs; keep to fixed strings.
    """
    # ConnectTimeout is a ConnectionError AND a Timeout
    if isinstance(exc, requests.exceptions.Timeout):
        if isinstance(exc, requests.exceptions.ConnectTimeout):
            return ErrorClass.TIMEOUT, "connect timeout"
        return ErrorClass.TIMEOUT, "read timeout"

    if isinstance(exc, requests.exceptions.SSLError):
        return ErrorClass.OTHER, "SSL error"

    if isinstance(exc, requests.exceptions.ConnectionError):
        s = repr(exc)
        # DNS errors appear as negative errno values
        if '[Errno -' in s:
            return ErrorClass.OTHER, "DNS error"
        # urllib3 ReadTimeoutError sometimes arrives wrapped
        if 'timed out' in s:
            return ErrorClass.TIMEOUT, "connection timed out"
        return ErrorClass.OTHER, "connection error"

    if isinstance(exc, requests.exceptions.TooManyRedirects):
        return ErrorClass.OTHER, "too many redirects"

    if isinstance(exc, (requests.exceptions.InvalidURL,
                        requests.exceptions.MissingSchema,
                        requests.exceptions.InvalidSchema)):
        return ErrorClass.OTHER, "bad URL"

    if isinstance(exc, (requests.exceptions.ChunkedEncodingError,
                        requests.exceptions.ContentDecodingError,
                        requests.exceptions.RetryError)):
        return ErrorClass.OTHER, "fetch error"

    logger.debug(f"unclassified RequestException {exc!r}")
    return ErrorClass.OTHER, "unknown"


class FeederError(Exception):
    """base for all errors raised by feeder"""


class FeedNotFound(FeederError):
    def __init__(self, feed_id: int):
        super().__init__(f"Feed {feed_id} not found")
        self.feed_id = feed_id


class NotAFeed(FeederError):
    """
    raised by the parser when input does not resemble a feed at all
    """


class FetchError(FeederError):
    """
    fetch failure, tagged with classification
    """

    def __init__(self, message: str,
                 error_class: ErrorClass,
                 status_code: Optional[int] = None,
                 strategy: Optional[str] = None):
        super().__init__(message)
        self.error_class = error_class
        self.status_code = status_code
        self.strategy = strategy


class PermanentFetchError(FetchError):
    """
    404/410 from the origin: no point in trying other strategies
    """

    def __init__(self, message: str, status_code: int,
                 strategy: Optional[str] = None):
        super().__init__(message, ErrorClass.PERMANENT, status_code, strategy)


class FetchExhausted(FetchError):
    """
    raised after every fetch strategy has failed.
    `attempts` is a list of fetch.StrategyResult
    """

    def __init__(self, message: str,
                 error_class: ErrorClass,
                 status_code: Optional[int],
                 strategy: Optional[str],
                 attempts: list):
        super().__init__(message, error_class, status_code, strategy)
        self.attempts = attempts
