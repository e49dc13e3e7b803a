"""The (QoS, delay) grid exercised by a sweep."""

from dataclasses import dataclass
from itertools import product
from typing import Iterator

DEFAULT_QOS_LEVELS = (0, 1, 2)
DEFAULT_DELAYS     = (0, 10, 20, 50, 100, 500)   # ms


@dataclass(frozen=True)
class SweepPlan:
    """
    Ordered Cartesian product of QoS levels and delays, outer QoS / inner delay.

    The plan holds no iteration state: every call to ``points()`` or ``iter()``
    starts again from the first point.
    """
    qos_levels: tuple = DEFAULT_QOS_LEVELS
    delays:     tuple = DEFAULT_DELAYS

    def __post_init__(self):
        object.__setattr__(self, "qos_levels", tuple(self.qos_levels))
        object.__setattr__(self, "delays", tuple(self.delays))

    @classmethod
    def from_settings(cls, settings) -> "SweepPlan":
        return cls(qos_levels=settings.qos_levels, delays=settings.delays)

    def points(self) -> list[tuple[int, int]]:
        return list(product(self.qos_levels, self.delays))

    def __iter__(self) -> Iterator[tuple[int, int]]:
        return iter(self.points())

    def __len__(self) -> int:
        return len(self.qos_levels) * len(self.delays)

    def starts_row(self, index: int) -> bool:
        """True when the point at ``index`` opens a new QoS row."""
        return bool(self.delays) and index % len(self.delays) == 0
