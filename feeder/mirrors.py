"""
Public mirror/proxy services that re-serve a feed from their own
servers; a way around sites that block data-center addresses.
"""

import base64
from typing import Callable, List, NamedTuple, Tuple
from urllib.parse import quote

# status codes suggesting the origin is refusing us (not the feed itself)
LIKELY_BLOCKED = {403, 429, 503, 522, 524}


class Mirror(NamedTuple):
    name: str
    build_url: Callable[[str], str]
    enabled: bool


def _rss_app(url: str) -> str:
    b64 = base64.b64encode(url.encode('utf-8')).decode('ascii')
    return 'https://rss.app/feeds/' + b64.rstrip('=')


def _fetchrss(url: str) -> str:
    return 'https://fetchrss.com/rss/' + quote(url, safe='')


def _openrss(url: str) -> str:
    return 'https://openrss.org/' + quote(url, safe='')


def _rss2json(url: str) -> str:
    return 'https://api.rss2json.com/v1/api.json?rss_url=' + quote(url, safe='')


def _rss_bridge(url: str) -> str:
    return ('https://rss-bridge.org/bridge01/?action=display'
            '&bridge=FeedExpander&url=' + quote(url, safe='') +
            '&format=Atom')


# in priority order
MIRRORS = [
    Mirror('rss.app', _rss_app, True),
    Mirror('fetchrss', _fetchrss, True),
    Mirror('openrss', _openrss, True),
    # returns JSON, not a feed document:
    Mirror('rss2json', _rss2json, False),
    # needs per-site bridge selection:
    Mirror('rss-bridge', _rss_bridge, False),
]


def enabled_mirrors() -> List[Mirror]:
    return [m for m in MIRRORS if m.enabled]


def mirror_urls(url: str) -> List[Tuple[str, str]]:
    """
    return list of (mirror name, mirror URL) for `url`
    """
    return [(m.name, m.build_url(url)) for m in enabled_mirrors()]


def is_likely_blocked(status_code: int) -> bool:
    return status_code in LIKELY_BLOCKED
