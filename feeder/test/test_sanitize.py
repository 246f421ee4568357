import unittest

from feeder.sanitize import (clean_bytes, looks_like_xml_feed, sanitize_html,
                             sanitize_xml)


class TestCleanBytes(unittest.TestCase):

    def test_bom_and_whitespace(self):
        assert clean_bytes(b"\xef\xbb\xbf  <?xml version='1.0'?><rss/>\n") == \
            b"<?xml version='1.0'?><rss/>"

    def test_preamble(self):
        assert clean_bytes(b"Warning: something<br>\n<rss><channel/></rss>") == \
            b"<rss><channel/></rss>"

    def test_no_token(self):
        assert clean_bytes(b"  {\"version\": 1} ") == b"{\"version\": 1}"

    def test_json_kept_whole(self):
        doc = b'{"items": [{"content_html": "<p>see <feed> and <rss> tags</p>"}]}'
        assert clean_bytes(b"\xef\xbb\xbf" + doc + b"\n") == doc

    def test_looks_like_xml_feed(self):
        assert looks_like_xml_feed(b"<?xml version='1.0'?>")
        assert looks_like_xml_feed(b"<feed xmlns='http://www.w3.org/2005/Atom'>")
        assert not looks_like_xml_feed(b"<html><body></body></html>")


class TestSanitizeXML(unittest.TestCase):

    def test_comments_removed(self):
        assert sanitize_xml("<a>1<!-- x & y -->2</a>") == "<a>12</a>"

    def test_unterminated_comment_truncates(self):
        assert sanitize_xml("<a>1</a><!-- never closed <b>2</b>") == "<a>1</a>"

    def test_bare_ampersand(self):
        assert sanitize_xml("<t>A & B</t>") == "<t>A &amp; B</t>"

    def test_entities_kept(self):
        s = "<t>&amp; &lt; &gt; &quot; &apos; &#38; &#x26; &nbsp;</t>"
        assert sanitize_xml(s) == s

    def test_cdata_untouched(self):
        s = "<t><![CDATA[A & B <!-- not a comment -->]]></t>"
        assert sanitize_xml(s) == s

    def test_valueless_attribute(self):
        assert sanitize_xml('<video controls src="x.mp4">') == \
            '<video controls="" src="x.mp4">'

    def test_self_closing(self):
        assert sanitize_xml('<img src="a.png" ismap/>') == \
            '<img src="a.png" ismap=""/>'


class TestSanitizeHTML(unittest.TestCase):

    def test_plain_text(self):
        assert sanitize_html("  just text ") == "just text"

    def test_drops_active_content(self):
        html = ('<div onmouseover="x()"><script>alert(1)</script>'
                '<a href="javascript:evil()">link</a>'
                '<iframe src="https://ads.example"></iframe>'
                '<style>p {}</style><p>kept</p></div>')
        out = sanitize_html(html)
        assert "script" not in out
        assert "onmouseover" not in out
        assert "javascript:" not in out
        assert "iframe" not in out
        assert "style" not in out
        assert "<p>kept</p>" in out
        assert ">link</a>" in out


if __name__ == "__main__":
    unittest.main()
