"""Tests for range checks and the reconnect policy."""

import logging

from mqtt_sweep.exceptions import BrokerError
from mqtt_sweep.policy import check_range, retry_reconnect


class Attempts:
    """Reconnect callable that fails ``failures`` times, then succeeds."""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            if self.error is not None:
                raise self.error
            return False
        return True


class TestCheckRange:

    def test_bounds_are_inclusive(self):
        assert check_range(0, 0, 2, "QoS")
        assert check_range(2, 0, 2, "QoS")

    def test_out_of_range_logs_error(self, caplog):
        with caplog.at_level(logging.ERROR):
            assert not check_range(3, 0, 2, "QoS")
        assert "QoS was not within range [0, 2]: 3" in caplog.text


class TestRetryReconnect:

    def test_succeeds_on_third_attempt(self):
        sleeps = []
        reconnect = Attempts(failures=2)
        assert retry_reconnect(reconnect, retries=3, retry_duration=0.5, sleep=sleeps.append)
        assert reconnect.calls == 3
        assert sleeps == [0.5, 0.5, 0.5]

    def test_gives_up_after_retries(self, caplog):
        sleeps = []
        reconnect = Attempts(failures=10)
        with caplog.at_level(logging.ERROR):
            assert not retry_reconnect(reconnect, retries=3, retry_duration=0.1,
                                       sleep=sleeps.append)
        assert reconnect.calls == 3
        assert len(sleeps) == 3
        assert "Unable to reconnect after 3 attempts" in caplog.text

    def test_broker_error_counts_as_failed_attempt(self):
        reconnect = Attempts(failures=1, error=BrokerError("refused"))
        assert retry_reconnect(reconnect, retries=2, retry_duration=0, sleep=lambda s: None)
        assert reconnect.calls == 2

    def test_zero_retries_never_attempts(self):
        reconnect = Attempts(failures=0)
        assert not retry_reconnect(reconnect, retries=0, retry_duration=1, sleep=lambda s: None)
        assert reconnect.calls == 0

    def test_stop_during_wait_abandons_retries(self, caplog):
        reconnect = Attempts(failures=10)
        with caplog.at_level(logging.INFO):
            assert not retry_reconnect(reconnect, retries=3, retry_duration=1,
                                       sleep=lambda s: True)
        assert reconnect.calls == 0
        assert "Unable to reconnect" not in caplog.text
        assert "Stop requested" in caplog.text
