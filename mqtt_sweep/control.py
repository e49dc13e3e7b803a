"""
The in-process control protocol between Driver and Probe.

A ControlMessage announces exactly one parameter change (QoS or delay).
Each actor keeps its own ActorState and feeds it only through
``apply_control``; topics for a grid point are rendered from a
TopicTemplate holding ``{qos}`` and ``{delay}`` placeholders.
"""

import threading
from collections import deque
from dataclasses import asdict, dataclass, replace
from enum import Enum

from .exceptions import ChannelClosed, TopicTemplateError
from .policy import check_range

QOS_MIN = 0
QOS_MAX = 2
DELAY_MIN = 0

PLACEHOLDERS = ("{qos}", "{delay}")


class Unchanged(Enum):
    """Explicit "no update" marker for a ControlMessage field."""
    UNCHANGED = "unchanged"

    def __repr__(self):
        return "UNCHANGED"


UNCHANGED = Unchanged.UNCHANGED


# --------------------------------------------------------------------------- #
# Messages and state
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class ControlMessage:
    """
    A single parameter change. Exactly one of ``qos`` / ``delay`` is set;
    a combined change is sent as two messages.
    """
    qos:   int | Unchanged = UNCHANGED
    delay: int | Unchanged = UNCHANGED

    def __post_init__(self):
        if (self.qos is UNCHANGED) == (self.delay is UNCHANGED):
            raise ValueError("a ControlMessage carries exactly one of qos or delay, "
                             f"got qos={self.qos!r} delay={self.delay!r}")

    @classmethod
    def for_qos(cls, qos: int) -> "ControlMessage":
        return cls(qos=qos)

    @classmethod
    def for_delay(cls, delay: int) -> "ControlMessage":
        return cls(delay=delay)

    @property
    def is_qos(self) -> bool:
        return self.qos is not UNCHANGED

    def __str__(self):
        if self.is_qos:
            return f"qos={self.qos}"
        return f"delay={self.delay}"


@dataclass
class ActorState:
    """Validated QoS / delay held by one actor. Never shared between threads."""
    current_qos:   int = QOS_MIN
    current_delay: int = DELAY_MIN

    def snapshot(self) -> "ActorState":
        return replace(self)

    def as_dict(self) -> dict:
        return asdict(self)


class Applied(Enum):
    QOS     = "qos"
    DELAY   = "delay"
    SKIPPED = "skipped"


def apply_control(state: ActorState, msg: ControlMessage, max_delay: int, logger=None) -> Applied:
    """Adopt ``msg`` into ``state`` if its value is in range, else log and skip."""
    if msg.is_qos:
        if check_range(msg.qos, QOS_MIN, QOS_MAX, "QoS", logger):
            state.current_qos = msg.qos
            return Applied.QOS
        return Applied.SKIPPED
    if check_range(msg.delay, DELAY_MIN, max_delay, "Delay", logger):
        state.current_delay = msg.delay
        return Applied.DELAY
    return Applied.SKIPPED


# --------------------------------------------------------------------------- #
# Topic templates
# --------------------------------------------------------------------------- #
def is_templated(topic: str) -> bool:
    return any(p in topic for p in PLACEHOLDERS)


@dataclass(frozen=True)
class TopicTemplate:
    template: str

    def __post_init__(self):
        missing = [p for p in PLACEHOLDERS if p not in self.template]
        if missing:
            raise TopicTemplateError(
                f"topic template {self.template!r} is missing {', '.join(missing)}")

    @classmethod
    def first_of(cls, topics, owner: str) -> "TopicTemplate":
        """Template from the first configured topic of ``owner``."""
        if not topics:
            raise TopicTemplateError(f"No topic was specified for the {owner}")
        return cls(topics[0])

    def render(self, state: ActorState) -> str:
        return (self.template
                .replace("{qos}", str(state.current_qos))
                .replace("{delay}", str(state.current_delay)))


# --------------------------------------------------------------------------- #
# Channel
# --------------------------------------------------------------------------- #
class ControlChannel:
    """
    FIFO hand-off of ControlMessages between one producer and one consumer.

    Either side may ``close()``. After that ``send`` raises ChannelClosed and
    ``receive`` drains what is left, then raises ChannelClosed.
    """

    def __init__(self, name: str = "control"):
        self.name = name
        self._queue: deque = deque()
        self._cond = threading.Condition()
        self._closed = False

    def send(self, msg: ControlMessage):
        with self._cond:
            if self._closed:
                raise ChannelClosed(f"{self.name} channel is closed")
            self._queue.append(msg)
            self._cond.notify()

    def receive(self, timeout: float | None = None) -> ControlMessage | None:
        """
        Block until a message arrives or the channel is closed.

        With a timeout, returns None if nothing arrived in time.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._queue or self._closed, timeout)
            if self._queue:
                return self._queue.popleft()
            if self._closed:
                raise ChannelClosed(f"{self.name} channel is closed")
            return None

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._queue)

    def __iter__(self):
        while True:
            try:
                yield self.receive()
            except ChannelClosed:
                return
