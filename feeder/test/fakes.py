"""
Stand-ins for requests.Session and BrowserRenderer used by tests.
"""

from typing import Dict, List, Optional, Union

import requests.exceptions

from feeder.browser import BrowserError, RenderedPage

RSS_OK = (b'<?xml version="1.0"?><rss version="2.0"><channel><title>T</title>'
          b'<item><title>One</title><link>https://example.com/1</link>'
          b'<guid>1</guid></item>'
          b'<item><title>Two</title><link>https://example.com/2</link>'
          b'<guid>2</guid></item>'
          b'</channel></rss>')


class FakeResponse:
    def __init__(self, status_code: int = 200, content: bytes = b'',
                 reason: str = ''):
        self.status_code = status_code
        self.content = content
        self.reason = reason
        self.text = content.decode('utf-8', 'replace')

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(
                f"{self.status_code} Error", response=self)


Answer = Union[FakeResponse, Exception]


class FakeSession:
    """
    answers GETs from a dict of url -> FakeResponse (or exception);
    URLs with no entry get `default`.  Records every request.
    """

    def __init__(self, answers: Optional[Dict[str, Answer]] = None,
                 default: Optional[Answer] = None):
        self.answers = answers or {}
        self.default = default or FakeResponse(404, reason='Not Found')
        self.requests: List[dict] = []

    def get(self, url: str, headers=None, timeout=None, verify=True,
            **kwargs) -> FakeResponse:
        self.requests.append({'url': url, 'headers': headers,
                              'timeout': timeout})
        answer = self.answers.get(url, self.default)
        if isinstance(answer, Exception):
            raise answer
        return answer

    @property
    def urls(self) -> List[str]:
        return [r['url'] for r in self.requests]


class FakeRenderer:
    def __init__(self, content: bytes = RSS_OK,
                 error: Optional[BrowserError] = None):
        self.content = content
        self.error = error
        self.urls: List[str] = []

    def render(self, url: str) -> RenderedPage:
        self.urls.append(url)
        if self.error:
            raise self.error
        return RenderedPage(self.content, 200)
