import datetime as dt
import unittest

import requests.exceptions

from feeder.errors import (ErrorClass, classify_request_exception,
                           classify_status)
from feeder.retry import (adjusted_timeout, backoff_minutes, next_attempt_at,
                          progressive_timeout)

INTERVAL = 180


class TestBackoff(unittest.TestCase):

    def test_first_delays(self):
        assert backoff_minutes(ErrorClass.BLOCKED, 1, INTERVAL) == 240
        assert backoff_minutes(ErrorClass.TIMEOUT, 1, INTERVAL) == 120
        assert backoff_minutes(ErrorClass.SERVER_ERROR, 1, INTERVAL) == 60
        assert backoff_minutes(ErrorClass.OTHER, 1, INTERVAL) == INTERVAL
        assert backoff_minutes(ErrorClass.PERMANENT, 1, INTERVAL) == INTERVAL

    def test_doubling(self):
        assert backoff_minutes(ErrorClass.BLOCKED, 2, INTERVAL) == 480
        assert backoff_minutes(ErrorClass.TIMEOUT, 3, INTERVAL) == 480
        assert backoff_minutes(ErrorClass.SERVER_ERROR, 4, INTERVAL) == 480

    def test_ceilings(self):
        assert backoff_minutes(ErrorClass.BLOCKED, 20, INTERVAL) == 48 * 60
        assert backoff_minutes(ErrorClass.TIMEOUT, 20, INTERVAL) == 24 * 60
        assert backoff_minutes(ErrorClass.SERVER_ERROR, 20, INTERVAL) == 12 * 60
        assert backoff_minutes(ErrorClass.OTHER, 20, INTERVAL) == 2 * INTERVAL
        assert backoff_minutes(ErrorClass.PERMANENT, 20, INTERVAL) == INTERVAL

    def test_other_grows_slowly(self):
        assert backoff_minutes(ErrorClass.OTHER, 2, INTERVAL) == INTERVAL * 1.25

    def test_ordering(self):
        for n in range(1, 12):
            blocked = backoff_minutes(ErrorClass.BLOCKED, n, INTERVAL)
            timeout = backoff_minutes(ErrorClass.TIMEOUT, n, INTERVAL)
            server = backoff_minutes(ErrorClass.SERVER_ERROR, n, INTERVAL)
            assert blocked >= timeout >= server, n

    def test_max_backoff_cap(self):
        assert backoff_minutes(ErrorClass.BLOCKED, 20, INTERVAL, 600) == 600

    def test_huge_failure_count(self):
        assert backoff_minutes(ErrorClass.BLOCKED, 10 ** 6, INTERVAL) == 48 * 60

    def test_zero_failures_treated_as_one(self):
        assert backoff_minutes(ErrorClass.TIMEOUT, 0, INTERVAL) == 120

    def test_next_attempt_at(self):
        last = dt.datetime(2025, 6, 1, 12, 0)
        assert next_attempt_at(ErrorClass.BLOCKED, 1, last, INTERVAL) == \
            dt.datetime(2025, 6, 1, 16, 0)
        assert next_attempt_at(ErrorClass.PERMANENT, 7, last, INTERVAL) == \
            dt.datetime(2025, 6, 1, 15, 0)


class TestTimeouts(unittest.TestCase):

    def test_adjusted(self):
        assert adjusted_timeout(10) == 15
        assert adjusted_timeout(50) == 60
        assert adjusted_timeout(10, timed_out=False) == 10

    def test_progressive(self):
        assert progressive_timeout(0) == 15
        assert progressive_timeout(2) == 35
        assert progressive_timeout(10) == 60


class TestClassify(unittest.TestCase):

    def test_status(self):
        for code in (401, 403, 429, 451, 522):
            assert classify_status(code) == ErrorClass.BLOCKED, code
        for code in (408, 504, 524):
            assert classify_status(code) == ErrorClass.TIMEOUT, code
        for code in (500, 502, 503):
            assert classify_status(code) == ErrorClass.SERVER_ERROR, code
        for code in (404, 410):
            assert classify_status(code) == ErrorClass.PERMANENT, code
        assert classify_status(400) == ErrorClass.OTHER

    def test_request_exceptions(self):
        assert classify_request_exception(
            requests.exceptions.ReadTimeout()) == (ErrorClass.TIMEOUT, "read timeout")
        assert classify_request_exception(
            requests.exceptions.ConnectTimeout()) == (ErrorClass.TIMEOUT, "connect timeout")
        assert classify_request_exception(
            requests.exceptions.SSLError())[0] == ErrorClass.OTHER
        assert classify_request_exception(
            requests.exceptions.MissingSchema())[1] == "bad URL"
        assert classify_request_exception(
            requests.exceptions.ConnectionError("[Errno -2] Name or service not known"))[1] == "DNS error"


if __name__ == "__main__":
    unittest.main()
