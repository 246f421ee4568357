"""
Tolerant feed parser.

Locates RSS/Atom structure by tag-scoped pattern matching rather than
with a validating XML parser: real-world feeds routinely violate their
own schema (and XML well-formedness).  Input is repaired first by
feeder.sanitize.sanitize_xml.

JSON Feed documents are handed to feedparser.

parse() is pure: no I/O, no logging side effects that matter.
"""

import datetime as dt
import functools
import html
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urljoin

# PyPI
import dateutil.parser
import feedparser

from feeder.errors import NotAFeed
from feeder.sanitize import clean_bytes, sanitize_html, sanitize_xml
from feeder.util import clean_str, is_absolute_url, to_naive_utc

logger = logging.getLogger(__name__)

# summary synthesized from body text
SUMMARY_LENGTH = 500

RSS = 'rss'
ATOM = 'atom'
JSON = 'json'


@dataclass
class ParsedEntry:
    title: Optional[str] = None
    url: Optional[str] = None
    guid: Optional[str] = None
    summary: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None
    image_url: Optional[str] = None
    published_at: Optional[dt.datetime] = None

    @property
    def source_guid(self) -> Optional[str]:
        """deduplication key: feed supplied guid/id, else link"""
        return self.guid or self.url

    def item_fields(self) -> Dict:
        """Item column values"""
        return {
            'title': self.title,
            'url': self.url,
            'summary': self.summary,
            'content': self.content,
            'author': self.author,
            'image_url': self.image_url,
            'published_at': self.published_at,
        }


@dataclass
class ParsedFeed:
    format: str
    title: Optional[str] = None
    link: Optional[str] = None
    entries: List[ParsedEntry] = field(default_factory=list)


################ low level extraction

_XML_ENCODING_RE = re.compile(rb'^<\?xml[^>]*encoding=["\']([A-Za-z0-9._-]+)')

_ROOT_RE = re.compile(r'<(rss|rdf:RDF|feed|channel)\b', re.I)

_CDATA_RE = re.compile(r'<!\[CDATA\[(.*?)\]\]>', re.S)

# only things that look like tags: "<" followed by letter or "/"
_TAG_RE = re.compile(r'</?[A-Za-z][^<>]*>')

_IMG_SRC_RE = re.compile(r'''<img\b[^>]*?\bsrc\s*=\s*["']([^"']+)["']''', re.I)

# some common US zone abbreviations dateutil doesn't know
_TZINFOS = {
    'UT': 0, 'UTC': 0, 'GMT': 0, 'Z': 0,
    'EST': -5 * 3600, 'EDT': -4 * 3600,
    'CST': -6 * 3600, 'CDT': -5 * 3600,
    'MST': -7 * 3600, 'MDT': -6 * 3600,
    'PST': -8 * 3600, 'PDT': -7 * 3600,
}


@functools.lru_cache(maxsize=None)
def _element_re(tag: str) -> re.Pattern:
    # <tag> or <tag attrs...> up to the first closing </tag>
    t = re.escape(tag)
    return re.compile(rf'<{t}(?:\s[^>]*)?>(.*?)</{t}\s*>', re.S | re.I)


@functools.lru_cache(maxsize=None)
def _start_tag_re(tag: str) -> re.Pattern:
    t = re.escape(tag)
    return re.compile(rf'<{t}(\s[^>]*)?/?>', re.I)


_ATTRS_RE = re.compile(r'''([\w:.-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')''')


def _attrs(attr_text: Optional[str]) -> Dict[str, str]:
    if not attr_text:
        return {}
    return {m.group(1).lower(): html.unescape(m.group(2) if m.group(2) is not None else m.group(3))
            for m in _ATTRS_RE.finditer(attr_text)}


def _blocks(text: str, tag: str) -> List[str]:
    return [m.group(1) for m in _element_re(tag).finditer(text)]


def _first(text: str, *tags: str) -> Optional[str]:
    """
    raw content of first element found, probing tags in priority order
    (empty elements are skipped)
    """
    for tag in tags:
        for m in _element_re(tag).finditer(text):
            if m.group(1).strip():
                return m.group(1)
    return None


def _tag_attrs(text: str, tag: str) -> List[Dict[str, str]]:
    return [_attrs(m.group(1)) for m in _start_tag_re(tag).finditer(text)]


def _xml_text(raw: str) -> str:
    """
    XML character data: CDATA sections literal, everything else unescaped
    """
    out = []
    pos = 0
    for m in _CDATA_RE.finditer(raw):
        out.append(html.unescape(raw[pos:m.start()]))
        out.append(m.group(1))
        pos = m.end()
    out.append(html.unescape(raw[pos:]))
    return ''.join(out)


def _text(raw: Optional[str]) -> Optional[str]:
    """
    plain text: tags stripped, entities decoded, whitespace collapsed
    """
    if raw is None:
        return None
    s = _TAG_RE.sub(' ', _xml_text(raw))
    # NUL characters can't be stored in PostgreSQL text columns
    s = ' '.join(clean_str(html.unescape(s)).split())
    return s or None


def _html(raw: Optional[str]) -> Optional[str]:
    """
    embedded HTML, sanitized
    """
    if raw is None:
        return None
    s = sanitize_html(clean_str(_xml_text(raw)))
    return s or None


def _date(raw: Optional[str]) -> Optional[dt.datetime]:
    """
    parse timestamp to naive UTC; garbage becomes None
    """
    s = _text(raw)
    if not s:
        return None
    try:
        d = dateutil.parser.parse(s, tzinfos=_TZINFOS)
    except (ValueError, OverflowError, TypeError):
        # dateutil.parser.ParserError is a ValueError
        return None
    return to_naive_utc(d)


def _absolute(url: Optional[str], base: Optional[str]) -> Optional[str]:
    if not url:
        return None
    url = url.strip()
    if not is_absolute_url(url) and base:
        url = urljoin(base, url)
    return url or None


def _image(block: str, body: Optional[str]) -> Optional[str]:
    for attrs in _tag_attrs(block, 'media:thumbnail'):
        if attrs.get('url'):
            return attrs['url']
    for attrs in _tag_attrs(block, 'media:content'):
        if attrs.get('url') and (attrs.get('medium') == 'image' or
                                 attrs.get('type', 'image/').startswith('image/')):
            return attrs['url']
    for attrs in _tag_attrs(block, 'enclosure'):
        if attrs.get('url') and attrs.get('type', '').startswith('image/'):
            return attrs['url']
    if body:
        m = _IMG_SRC_RE.search(body)
        if m:
            return html.unescape(m.group(1))
    return None


def _summary(description: Optional[str], content: Optional[str]) -> Optional[str]:
    summary = _text(description)
    if not summary and content:
        summary = _text(content)
        if summary:
            summary = summary[:SUMMARY_LENGTH]
    return summary


################ formats

def _parse_rss(text: str) -> ParsedFeed:
    head = text
    m = re.search(r'<item\b', text, re.I)
    if m:
        head = text[:m.start()]
    pf = ParsedFeed(RSS, title=_text(_first(head, 'title')),
                    link=_text(_first(head, 'link')))

    for block in _blocks(text, 'item'):
        title = _text(_first(block, 'title'))
        guid = _text(_first(block, 'guid'))
        link = _text(_first(block, 'link'))
        if not link and guid and is_absolute_url(guid):
            link = guid         # isPermaLink (the default)
        url = _absolute(link, pf.link)
        if not title or not url:
            continue

        raw_description = _first(block, 'description')
        raw_content = _first(block, 'content:encoded', 'content')
        content = _html(raw_content) or _html(raw_description)
        pf.entries.append(ParsedEntry(
            title=title,
            url=url,
            guid=guid,
            summary=_summary(raw_description, raw_content),
            content=content,
            author=_text(_first(block, 'author', 'dc:creator')),
            image_url=_image(block, content),
            published_at=_date(_first(block, 'pubDate', 'dc:date'))))
    return pf


def _atom_link(block: str) -> Optional[str]:
    """
    rel="alternate" (or no rel) link preferred, else first link with href
    """
    links = [a for a in _tag_attrs(block, 'link') if a.get('href')]
    for a in links:
        if a.get('rel', 'alternate') == 'alternate':
            return a['href']
    if links:
        return links[0]['href']
    return None


def _parse_atom(text: str) -> ParsedFeed:
    head = text
    m = re.search(r'<entry\b', text, re.I)
    if m:
        head = text[:m.start()]
    pf = ParsedFeed(ATOM, title=_text(_first(head, 'title')),
                    link=_atom_link(head))

    for block in _blocks(text, 'entry'):
        title = _text(_first(block, 'title'))
        url = _absolute(_atom_link(block), pf.link)
        if not title or not url:
            continue

        raw_summary = _first(block, 'summary')
        raw_content = _first(block, 'content')
        content = _html(raw_content) or _html(raw_summary)
        author_block = _first(block, 'author')
        author = None
        if author_block:
            author = _text(_first(author_block, 'name')) or _text(author_block)
        pf.entries.append(ParsedEntry(
            title=title,
            url=url,
            guid=_text(_first(block, 'id')),
            summary=_summary(raw_summary, raw_content),
            content=content,
            author=author or _text(_first(block, 'dc:creator')),
            image_url=_image(block, content),
            published_at=_date(_first(block, 'published', 'updated'))))
    return pf


def _struct_time_dt(tm: Optional[time.struct_time]) -> Optional[dt.datetime]:
    """feedparser *_parsed values are UTC struct_time"""
    if not isinstance(tm, time.struct_time):
        return None
    try:
        return dt.datetime(tm.tm_year, tm.tm_mon, tm.tm_mday,
                           tm.tm_hour, tm.tm_min, tm.tm_sec)
    except ValueError:
        return None


def _json_image(entry: Dict, content: Optional[str]) -> Optional[str]:
    image = entry.get('image')
    if isinstance(image, dict):
        image = image.get('href') or image.get('url')
    if isinstance(image, str) and image:
        return image
    return _image('', content)


def _parse_json(text: str) -> ParsedFeed:
    """
    JSON Feed (jsonfeed.org) via feedparser
    """
    # feedparser picks its JSON parser by content type
    d = feedparser.parse(text,
                         response_headers={'content-type': 'application/feed+json'})
    if not str(d.get('version', '')).startswith('json'):
        raise NotAFeed("JSON document is not a JSON Feed")

    pf = ParsedFeed(JSON, title=d.feed.get('title'), link=d.feed.get('link'))
    for e in d.entries:
        title = e.get('title')
        url = _absolute(e.get('link'), pf.link)
        if not title or not url:
            continue
        content = None
        if e.get('content'):
            content = sanitize_html(e.content[0].get('value', '')) or None
        pf.entries.append(ParsedEntry(
            title=' '.join(title.split()),
            url=url,
            guid=e.get('id'),
            summary=_summary(e.get('summary'), content),
            content=content,
            author=e.get('author'),
            image_url=_json_image(e, content),
            published_at=_struct_time_dt(e.get('published_parsed') or
                                         e.get('updated_parsed'))))
    return pf


################ entry point

def decode(raw: bytes) -> str:
    """
    decode document bytes using XML declared encoding (default UTF-8)
    """
    encoding = 'utf-8'
    m = _XML_ENCODING_RE.match(raw[:200])
    if m:
        encoding = m.group(1).decode('ascii')
    try:
        return raw.decode(encoding, errors='replace')
    except LookupError:         # unknown encoding name
        return raw.decode('utf-8', errors='replace')


def parse(raw: bytes | str) -> ParsedFeed:
    """
    extract feed title, link and entries.
    raises NotAFeed only if input does not resemble a feed at all.
    """
    if isinstance(raw, str):
        # already decoded: ignore any declared encoding
        text = clean_bytes(raw.encode("utf-8")).decode("utf-8")
    else:
        text = decode(clean_bytes(raw))

    if text.startswith('{'):
        return _parse_json(text)

    m = _ROOT_RE.search(text)
    if m is None:
        if re.search(r'<item\b', text, re.I):
            m_fmt = RSS         # RSS fragment w/o channel
        else:
            raise NotAFeed("no RSS or Atom root element")
    elif m.group(1).lower() == 'feed':
        m_fmt = ATOM
    else:
        m_fmt = RSS

    text = sanitize_xml(text)
    if m_fmt == ATOM:
        return _parse_atom(text)
    return _parse_rss(text)
