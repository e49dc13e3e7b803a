"""
Burst payloads and per-grid-point delivery reports.

Every payload the Driver sends starts with its zero-based index within the
burst, which lets the Probe spot the final message and count loss,
duplicates and reordering for each (QoS, delay) step.
"""

from dataclasses import dataclass, field


# --------------------------------------------------------------------------- #
# Payloads
# --------------------------------------------------------------------------- #
def make_payload(index: int, qos: int, delay: int) -> str:
    return f"{index} qos={qos} delay={delay}"


def parse_index(payload: str) -> int | None:
    """Leading index of a burst payload, or None if there is none."""
    head = payload.split(maxsplit=1)[:1]
    if not head:
        return None
    try:
        return int(head[0])
    except ValueError:
        return None


# --------------------------------------------------------------------------- #
# Step reports
# --------------------------------------------------------------------------- #
@dataclass
class StepReport:
    qos:            int
    delay:          int
    expected:       int
    received:       int  = 0
    duplicates:     int  = 0
    out_of_order:   int  = 0
    malformed:      int  = 0
    first_oo_index: int  = -1
    completed:      bool = False
    _seen:          set  = field(default_factory=set, repr=False)
    _highest:       int  = field(default=-1, repr=False)

    def record(self, index: int | None):
        if index is None:
            self.malformed += 1
            return
        self.received += 1
        if index in self._seen:
            self.duplicates += 1
            return
        if index < self._highest:
            self.out_of_order += 1
            if self.first_oo_index < 0:
                self.first_oo_index = index
        self._seen.add(index)
        self._highest = max(self._highest, index)

    @property
    def unique(self) -> int:
        return len(self._seen)

    @property
    def missing(self) -> list[int]:
        return sorted(set(range(self.expected)) - self._seen)

    @property
    def loss_pct(self) -> float:
        if self.expected <= 0:
            return 0.0
        lost = len(self.missing)
        return lost / self.expected * 100

    @property
    def in_order(self) -> bool:
        return self.out_of_order == 0


def format_table(reports: list[StepReport]) -> list[str]:
    """Fixed-width comparison table, one line per step."""
    lines = [
        f"{'QoS':>3} {'Delay':>6} {'Exp':>5} {'Recv':>5} {'Dup':>4} "
        f"{'OOO':>4} {'Loss%':>6} {'Done':>5}",
        f"{'-'*3:>3} {'-'*5:>6} {'-'*4:>5} {'-'*4:>5} {'-'*3:>4} "
        f"{'-'*3:>4} {'-'*5:>6} {'-'*4:>5}",
    ]
    for r in reports:
        lines.append(
            f"{r.qos:>3} {r.delay:>6} {r.expected:>5} {r.received:>5} "
            f"{r.duplicates:>4} {r.out_of_order:>4} {r.loss_pct:>5.1f}% "
            f"{'yes' if r.completed else 'no':>5}"
        )
    return lines
