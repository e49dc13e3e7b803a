"""Pieces shared by the Driver and the Probe."""

import threading
from enum import Enum
from typing import Callable, Optional

from .broker import BrokerLink, ConnectOptions
from .control import ActorState, Applied, ControlMessage, apply_control
from .logs import actor_logger


class ActorStatus(Enum):
    IDLE         = "idle"
    CONNECTED    = "connected"
    PUBLISHING   = "publishing"
    SUBSCRIBED   = "subscribed"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


class ActorOutcome(Enum):
    """Why an actor's run loop returned."""
    COMPLETED   = "completed"     # sweep plan exhausted
    PEER_CLOSED = "peer_closed"   # control channel closed by the other side
    LINK_LOST   = "link_lost"     # reconnect policy gave up
    STOPPED     = "stopped"       # stop() was requested


class Actor:
    """
    One side of the sweep: owns a BrokerLink and an ActorState.

    ``listener`` is called with a snapshot of the state after every accepted
    ControlMessage. ``sleep`` returns True when the actor was asked to stop
    while sleeping; it defaults to waiting on the stop event.
    """
    role = "actor"

    def __init__(self, config, link_factory: Callable[..., BrokerLink], client_id: str,
                 logger=None, listener: Optional[Callable[[ActorState], None]] = None,
                 sleep: Optional[Callable[[float], bool]] = None):
        self.config = config
        self.client_id = client_id
        self.link_factory = link_factory
        self.log = logger or actor_logger(role=self.role, client_id=client_id)
        self.listener = listener
        self.link: Optional[BrokerLink] = None
        self.state = ActorState()
        self.status = ActorStatus.IDLE
        self._stop = threading.Event()
        self._sleep = sleep or self._wait

    # -- lifecycle ---
    def connect_options(self) -> ConnectOptions:
        return ConnectOptions.from_config(self.config)

    def connect(self):
        """Open a fresh BrokerLink. A BrokerError here is fatal for the actor."""
        self.link = self.link_factory(self.client_id, self.log)
        self.link.connect(self.connect_options())
        self.status = ActorStatus.CONNECTED

    def disconnect(self):
        if self.link is not None:
            self.link.disconnect()
        self.status = ActorStatus.DISCONNECTED

    def start(self):
        self.connect()

    def stop(self):
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _wait(self, seconds: float) -> bool:
        if seconds <= 0:
            return self._stop.is_set()
        return self._stop.wait(seconds)

    def sleep(self, seconds: float) -> bool:
        return bool(self._sleep(seconds))

    # -- state ---
    def apply(self, msg: ControlMessage) -> Applied:
        result = apply_control(self.state, msg, self.config.sweep.max_delay, self.log)
        if result is not Applied.SKIPPED:
            self.log.debug("Adopted %s -> %s", msg, self.state.as_dict())
            if self.listener is not None:
                self.listener(self.state.snapshot())
        return result
