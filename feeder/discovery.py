"""
Alternative feed URL discovery, for feeds that have become
blocked or unreachable.  Candidates are stored on the feed
(Feed.meta['alternatives']) for an operator to review.
"""

import logging
import random
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlsplit

# PyPI
from bs4 import BeautifulSoup
import requests
import requests.exceptions

from feeder.config import conf
from feeder.database.repository import FeedRepository
from feeder.errors import FeedNotFound, NotAFeed, classify_request_exception
from feeder.headers import BROWSER_ACCEPT, realistic_headers
from feeder.parser import parse
from feeder.util import utc

logger = logging.getLogger(__name__)

RSS_FETCH_TIMEOUT_SECS = conf.RSS_FETCH_TIMEOUT_SECS
VERIFY_CERTIFICATES = conf.VERIFY_CERTIFICATES

# common feed locations, relative to site root
COMMON_PATHS = [
    '/rss',
    '/feed',
    '/atom.xml',
    '/rss.xml',
    '/feed.xml',
    '/index.xml',
    '/feeds/posts/default',
    '/blog/feed',
    '/blog/rss',
]

FEED_TYPES = {'application/rss+xml', 'application/atom+xml'}


def site_root(url: str) -> str:
    """scheme://host of url (url itself if unparsable)"""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc}"


def feed_links(html: str, base_url: str) -> List[str]:
    """
    return absolute hrefs of <link> tags that advertise a feed
    (RSS/Atom type, or rel=alternate), in document order
    """
    soup = BeautifulSoup(html, 'html.parser')
    links = []
    for tag in soup.find_all('link'):
        href = tag.get('href')
        if not href:
            continue
        rel = tag.get('rel') or []  # multi-valued attribute: list
        if isinstance(rel, str):
            rel = rel.split()
        ltype = (tag.get('type') or '').strip().lower()
        if ltype in FEED_TYPES or 'alternate' in [r.lower() for r in rel]:
            links.append(urljoin(base_url + '/', href.strip()))
    return links


class FeedDiscovery:
    def __init__(self, session: Optional[requests.Session] = None,
                 rng: Optional[random.Random] = None,
                 timeout: float = RSS_FETCH_TIMEOUT_SECS):
        self.session = session or requests.Session()
        self.rng = rng or random.Random()
        self.timeout = timeout

    def _get(self, url: str, accept: Optional[str] = None) -> requests.Response:
        headers = realistic_headers(rng=self.rng)
        if accept:
            headers['Accept'] = accept
        resp = self.session.get(url, headers=headers, timeout=self.timeout,
                                verify=VERIFY_CERTIFICATES)
        resp.raise_for_status()
        return resp

    def discover(self, url: str) -> List[str]:
        """
        candidate feed URLs for the site serving `url`:
        common feed paths first, then <link> tags on the home page.
        never raises for network errors (homepage scan is skipped).
        """
        root = site_root(url)
        candidates = [root + path for path in COMMON_PATHS]

        try:
            resp = self._get(root, BROWSER_ACCEPT)
            candidates.extend(feed_links(resp.text, root))
        except requests.exceptions.RequestException as exc:
            logger.debug(f"   discovery: could not scan {root}: {exc!r}")

        # preserve order, drop current URL and duplicates
        seen = {url}
        alternatives = []
        for candidate in candidates:
            if candidate not in seen:
                seen.add(candidate)
                alternatives.append(candidate)
        logger.debug(f"   discovery: {len(alternatives)} alternatives for {url}")
        return alternatives

    def test_alternative(self, url: str) -> Dict[str, Any]:
        """
        fetch and parse a candidate URL.
        returns {valid, item_count, title} or {valid, error}
        """
        try:
            resp = self._get(url)
            parsed = parse(resp.content)
        except requests.exceptions.HTTPError as exc:
            return {'valid': False, 'error': str(exc)}
        except requests.exceptions.RequestException as exc:
            _, descr = classify_request_exception(exc)
            return {'valid': False, 'error': descr}
        except NotAFeed as exc:
            return {'valid': False, 'error': f"not a feed: {exc}"}
        return {'valid': True,
                'item_count': len(parsed.entries),
                'title': parsed.title}


def discover_and_store(repo: FeedRepository, feed_id: int,
                       discovery: Optional[FeedDiscovery] = None) -> List[str]:
    """
    discover alternatives for a feed and save them in Feed.meta.
    raises FeedNotFound
    """
    feed = repo.get_feed(feed_id)
    if feed is None:
        raise FeedNotFound(feed_id)

    discovery = discovery or FeedDiscovery()
    alternatives = discovery.discover(feed.url)
    if not repo.set_alternatives(feed_id, alternatives, utc()):
        raise FeedNotFound(feed_id)
    logger.info(f"  Feed {feed_id} {len(alternatives)} alternatives discovered")
    return alternatives
