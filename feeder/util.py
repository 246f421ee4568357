import datetime as dt
from typing import Optional
from urllib.parse import urlsplit, urlunsplit


def utc(seconds: float = 0.0) -> dt.datetime:
    """
    Return a (naive) UTC datetime with optional offset of `seconds`
    from current time.  All datetimes in the database are naive UTC.
    """
    d = dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)
    if seconds != 0.0:
        d += dt.timedelta(seconds=seconds)
    return d


def to_naive_utc(d: dt.datetime) -> dt.datetime:
    """
    convert an aware datetime to naive UTC; naive datetimes assumed UTC
    """
    if d.tzinfo is not None:
        d = d.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return d


def is_absolute_url(url: str) -> bool:
    # https://stackoverflow.com/questions/8357098/how-can-i-check-if-a-url-is-absolute-using-python
    try:
        return bool(urlsplit(url).netloc)
    except ValueError:
        # could be an invalid IPv6 URL
        return False


def clean_str(s: Optional[str]) -> str:
    # Some titles had null characters in them, which can't be saved to the DB
    if s is None:
        return ''
    return s.replace("\x00", "")


def truncate(s: Optional[str], length: int) -> Optional[str]:
    if s is None or len(s) <= length:
        return s
    return s[:length]


def hostname(url: str) -> str:
    """
    return lower case hostname (without "www.") or empty string
    """
    try:
        host = urlsplit(url).hostname or ''
    except ValueError:
        return ''
    if host.startswith('www.'):
        host = host[4:]
    return host


def host_matches(url: str, domains: list[str]) -> bool:
    """
    True if the host of `url` is one of `domains`, or a subdomain of one
    """
    host = hostname(url)
    if not host:
        return False
    return any(host == d or host.endswith('.' + d) for d in domains)


def normalize_url(url: str) -> str:
    """
    key for caching: lower case scheme & host, no fragment,
    no trailing slash on path
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url.strip()
    path = parts.path.rstrip('/') or '/'
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(),
                       path, parts.query, ''))
