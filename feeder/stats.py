"""
Thin shim for statistics gathering.

Meant to be independent of stats gathering protocol/schema AND library.
Everything goes out via statsd (statsd_client package);
labels are folded into dotted names (pre-1.1 graphite).
"""

import logging
from typing import Any, List, Optional, Tuple

# PyPi
import statsd                   # type: ignore[import]
from sqlalchemy.engine.url import make_url

from feeder.config import conf

TAGS = False                    # graphite >= 1.1.0 tags

Labels = List[Tuple[str, Any]]

logger = logging.getLogger(__name__)


class Stats:
    """
    hide protocol and library being used for statistics
    """

    _instance: Optional['Stats'] = None

    @classmethod
    def init(cls, component: str) -> 'Stats':
        """
        called from main program (via LogArgumentParser)
        """
        if cls._instance:
            raise Exception(
                f"Stats.init called twice: {component}/{cls._instance.component}")
        cls._instance = cls(component, _init_ok=True)
        return cls._instance

    @classmethod
    def get(cls) -> 'Stats':
        """
        called from non-main modules
        """
        if not cls._instance:
            raise Exception("Stats.init not called")
        return cls._instance

    def __init__(self, component: str, _init_ok: bool = False):
        if not _init_ok:
            raise Exception("Call Stats.init")

        self.component = component
        self.statsd: Optional[Any] = None
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self.prefix: Optional[str] = None

        # STATSD URL set by dokku-graphite plugin
        e = conf.STATSD_URL
        if e:
            url = make_url(e)   # sqlalchemy URL parser
            self.host = url.host
            self.port = url.port

        prefix = conf.STATSD_PREFIX
        if prefix:
            self.prefix = f"{prefix}.{component}"

        if not self.host or not self.prefix:
            logger.warning("Not sending stats")
        # connect on demand

    def _connect(self) -> bool:
        if self.statsd:
            return True

        if not self.host or not self.prefix:
            return False

        try:
            self.statsd = statsd.StatsdClient(
                self.host, self.port, self.prefix)
            return True
        except OSError as e:
            logger.debug(f"statsd connect failed: {e!r}")
            return False

    @staticmethod
    def _name(name: str, labels: Labels) -> str:
        """
        return a statsd name for `name` (may contain dots)
        and labels (in the prometheus sense), a list of (name, value) pairs,
        sorted by label name for consistent ordering.
        """
        if not labels:
            return name
        if TAGS:
            slabels = ';'.join(f"{lname}={val}"
                               for lname, val in sorted(labels))
            return f"{name};{slabels}"
        slabels = '.'.join(f"{lname}_{val}"
                           for lname, val in sorted(labels))
        return f"{name}.{slabels}"

    def _send(self, method: str, name: str, value: float,
              labels: Labels) -> None:
        # one reconnect attempt (UDP socket can go bad)
        for tries in (1, 2):
            if not self._connect() or not self.statsd:
                return
            try:
                getattr(self.statsd, method)(self._name(name, labels), value)
                return
            except OSError:
                self.statsd = None

    def incr(self, name: str, value: int = 1,
             labels: Labels = []) -> None:
        """
        Increment a counter
        (something that never decreases, like an odometer)

        Please use the convention that counter names end in "s".
        """
        self._send('incr', name, value, labels)

    def gauge(self, name: str, value: float,
              labels: Labels = []) -> None:
        """
        Indicate value of a gauge
        (something that goes up and down, like a thermometer or speedometer)
        """
        self._send('gauge', name, value, labels)

    def timing(self, name: str, sec: float,
               labels: Labels = []) -> None:
        """
        Report a timing (duration) in seconds
        """
        # statsd timings are in ms
        self._send('timing', name, sec * 1000, labels)
