"""
Clean-up passes for feed documents.

Real-world feeds are frequently not well-formed XML: unescaped
ampersands, unterminated comments, HTML-style valueless attributes,
junk before the XML declaration.  These functions repair what can be
repaired before the (regex based) parser in feeder.parser sees the text.

Also HTML sanitization for markup embedded in feed items.
"""

import re

# PyPI
from bs4 import BeautifulSoup

# tokens that can start a feed document
_PROLOGUE_RE = re.compile(rb'<\?xml|<rss|<feed|<rdf:RDF', re.I)

_BOM = b'\xef\xbb\xbf'

# CDATA sections are copied untouched; comments are removed;
# an unterminated comment opener ends the document.
_SECTION_RE = re.compile(
    r'(?P<cdata><!\[CDATA\[.*?\]\]>)|(?P<comment><!--.*?-->)|(?P<open><!--)',
    re.S)

# "&" not starting a predefined, named or numeric entity reference
_BARE_AMP_RE = re.compile(
    r'&(?!(?:amp|lt|gt|quot|apos|#\d+|#[xX][0-9a-fA-F]+|[a-zA-Z][a-zA-Z0-9]*);)')

_ATTR = r'''\s+[^\s=/<>"']+(?:\s*=\s*(?:"[^"]*"|'[^']*'|[^\s"'<>]+))?'''

# start tag with a well-formed (possibly valueless) attribute list
_START_TAG_RE = re.compile(
    r'<([A-Za-z_][\w:.-]*)((?:' + _ATTR + r')+)(\s*/?)>')

_ATTR_RE = re.compile(
    r'''(\s+)([^\s=/<>"']+)(\s*=\s*(?:"[^"]*"|'[^']*'|[^\s"'<>]+))?''')

# removed from embedded HTML, content and all:
_DROP_TAGS = ['script', 'style', 'iframe', 'object', 'embed', 'form']


def clean_bytes(raw: bytes) -> bytes:
    """
    strip byte-order mark and surrounding whitespace, and discard
    anything before the first <?xml / <rss / <feed token (if any).
    JSON documents are returned whole.
    """
    raw = raw.strip()
    if raw.startswith(_BOM):
        raw = raw[len(_BOM):].lstrip()
    if raw.startswith(b'{'):
        return raw
    m = _PROLOGUE_RE.search(raw)
    if m and m.start() > 0:
        raw = raw[m.start():]
    return raw


def looks_like_xml_feed(raw: bytes) -> bool:
    """
    True if (cleaned) document starts with a feed/XML prologue
    """
    return _PROLOGUE_RE.match(raw) is not None


def _fix_attrs(m: re.Match) -> str:
    def fix(am: re.Match) -> str:
        if am.group(3) is None:
            return f'{am.group(1)}{am.group(2)}=""'
        return am.group(0)

    attrs = _ATTR_RE.sub(fix, m.group(2))
    return f"<{m.group(1)}{attrs}{m.group(3)}>"


def _fix_markup(text: str) -> str:
    text = _BARE_AMP_RE.sub('&amp;', text)
    return _START_TAG_RE.sub(_fix_attrs, text)


def sanitize_xml(text: str) -> str:
    """
    * strip well-formed comments, truncate at unterminated comment opener
    * escape bare "&"
    * give valueless attributes an empty value
    CDATA sections are left alone.
    """
    out = []
    pos = 0
    for m in _SECTION_RE.finditer(text):
        out.append(_fix_markup(text[pos:m.start()]))
        if m.lastgroup == 'cdata':
            out.append(m.group(0))
        elif m.lastgroup == 'open':
            return ''.join(out)
        pos = m.end()
    out.append(_fix_markup(text[pos:]))
    return ''.join(out)


def sanitize_html(html: str) -> str:
    """
    remove active content from HTML found in a feed item:
    script-like elements, on* event handler attributes, javascript: URLs
    """
    if '<' not in html:
        return html.strip()

    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup.find_all(_DROP_TAGS):
        tag.decompose()
    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            value = tag.attrs[attr]
            if attr.lower().startswith('on'):
                del tag.attrs[attr]
            elif isinstance(value, str) and \
                    value.strip().lower().startswith('javascript:'):
                del tag.attrs[attr]
    return str(soup).strip()
