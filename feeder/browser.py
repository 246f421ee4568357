"""
Headless browser rendering (Playwright, Chromium), last resort for
feeds that refuse plain HTTP clients.

A BrowserRenderer is an explicitly constructed service with a
start()/stop() lifecycle, created by the worker process (see
scripts/worker.py) and handed to the fetch pipeline; tests substitute
a fake.

NOTE! Uses the Playwright sync API, which is bound to the thread
that started it; rq SimpleWorker runs jobs in its main thread.
"""

import logging
import threading
from typing import Any, NamedTuple, Optional

# PyPI
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from feeder.config import conf
from feeder.headers import BROWSER_ACCEPT, BROWSER_UA
from feeder.sanitize import clean_bytes, looks_like_xml_feed

logger = logging.getLogger(__name__)

VIEWPORT = {'width': 1920, 'height': 1080}

LAUNCH_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
    '--disable-extensions',
    '--disable-background-networking',
    '--disable-sync',
    '--disable-blink-features=AutomationControlled',
    '--window-size=1920,1080',
]


class BrowserError(Exception):
    def __init__(self, message: str,
                 status_code: Optional[int] = None,
                 timed_out: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out


class RenderedPage(NamedTuple):
    content: bytes
    status_code: Optional[int]


def _target_closed(exc: PlaywrightError) -> bool:
    # browser (or page) went away underneath us
    msg = str(exc).lower()
    return 'target closed' in msg or 'has been closed' in msg


class BrowserRenderer:
    """
    One (lazily launched) Chromium per process, many pages.
    Concurrent pages bounded by a semaphore: render() blocks
    until a page is available.
    """

    def __init__(self,
                 max_pages: int = conf.BROWSER_MAX_PAGES,
                 timeout_secs: int = conf.BROWSER_TIMEOUT_SECS):
        self.timeout_ms = timeout_secs * 1000
        self._pages = threading.BoundedSemaphore(max_pages)
        self._lock = threading.Lock()  # guards launch/close
        self._playwright: Optional[Any] = None
        self._browser: Optional[Any] = None

    def __enter__(self) -> 'BrowserRenderer':
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    def start(self) -> None:
        """
        launch browser now (otherwise launched on first use)
        """
        self._get_browser()

    def stop(self) -> None:
        with self._lock:
            self._close()

    def _close(self) -> None:
        # call with _lock held
        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as exc:
                logger.warning(f"browser close: {exc!r}")
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None
            logger.info("browser stopped")

    def _disconnected(self, browser: Any) -> None:
        logger.info("browser disconnected")
        if self._browser is browser:
            self._browser = None

    def _get_browser(self) -> Any:
        with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            if self._playwright is None:
                self._playwright = sync_playwright().start()
            logger.info("launching browser")
            browser = self._playwright.chromium.launch(headless=True,
                                                       args=LAUNCH_ARGS)
            browser.on('disconnected', self._disconnected)
            self._browser = browser
            return browser

    def restart(self) -> None:
        with self._lock:
            self._close()
        self._get_browser()

    def render(self, url: str) -> RenderedPage:
        """
        navigate to `url`, wait for the network to go quiet.
        returns raw response body if it looks like a feed,
        else the rendered DOM source.
        raises BrowserError.
        """
        with self._pages:
            try:
                return self._render(url)
            except PlaywrightError as exc:
                if not _target_closed(exc):
                    raise BrowserError(f"browser error: {exc}") from exc
                logger.info(f"   browser target closed; restarting: {url}")

            self.restart()
            try:
                return self._render(url)
            except PlaywrightError as exc:
                raise BrowserError(f"browser error: {exc}") from exc

    def _render(self, url: str) -> RenderedPage:
        browser = self._get_browser()
        context = browser.new_context(
            user_agent=BROWSER_UA,
            viewport=VIEWPORT,
            extra_http_headers={
                'Accept-Language': 'en-US,en;q=0.9',
                'Accept': BROWSER_ACCEPT,
            })
        try:
            page = context.new_page()
            try:
                response = page.goto(url, wait_until='networkidle',
                                     timeout=self.timeout_ms)
            except PlaywrightTimeoutError as exc:
                raise BrowserError("navigation timeout",
                                   timed_out=True) from exc
            if response is None:
                raise BrowserError("no response")
            if not response.ok:
                raise BrowserError(f"HTTP {response.status}",
                                   status_code=response.status)

            body = clean_bytes(response.body())
            if looks_like_xml_feed(body) or body.startswith(b'{'):
                return RenderedPage(body, response.status)
            return RenderedPage(page.content().encode('utf-8'),
                                response.status)
        finally:
            context.close()
