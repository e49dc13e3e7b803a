"""
Policies shared by the Driver and the Probe.

  check_range      -- validate-or-skip for incoming parameter values
  retry_reconnect  -- bounded reconnect loop after a lost broker link
"""

import logging
import time
from typing import Callable

from .exceptions import BrokerError

log = logging.getLogger("mqtt_sweep.policy")


def check_range(value: int, low: int, high: int, name: str, logger=None) -> bool:
    """
    True when ``low <= value <= high``.

    Out-of-range values are logged at error level and rejected; the caller
    keeps its current state and carries on with the next message.
    """
    if low <= value <= high:
        return True
    (logger or log).error("%s was not within range [%d, %d]: %s", name, low, high, value)
    return False


def retry_reconnect(reconnect: Callable[[], bool], retries: int, retry_duration: float,
                    sleep: Callable[[float], object] = time.sleep, logger=None) -> bool:
    """
    Try ``reconnect`` up to ``retries`` times, sleeping ``retry_duration``
    seconds before each attempt.

    Returns True on the first success, False once every attempt failed.
    A BrokerError raised by ``reconnect`` counts as a failed attempt. A
    ``sleep`` that returns True means a stop was requested: False is
    returned at once without further attempts.
    """
    logger = logger or log
    logger.info("Connection lost. Waiting to retry connection")
    for attempt in range(1, retries + 1):
        if sleep(retry_duration):
            logger.info("Stop requested, abandoning reconnect")
            return False
        try:
            ok = reconnect()
        except BrokerError as e:
            logger.warning("Reconnect attempt %d/%d failed: %s", attempt, retries, e)
            ok = False
        if ok:
            logger.info("Successfully reconnected (attempt %d/%d)", attempt, retries)
            return True
    logger.error("Unable to reconnect after %d attempts", retries)
    return False
