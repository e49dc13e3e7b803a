"""QoS x delay sweep driver for MQTT brokers."""

from .config import SweepConfig, load_config
from .control import ActorState, ControlChannel, ControlMessage, UNCHANGED
from .coordinator import SweepCoordinator, SweepResult, Topology
from .plan import SweepPlan

__version__ = "0.1.0"

__all__ = [
    "ActorState",
    "ControlChannel",
    "ControlMessage",
    "SweepConfig",
    "SweepCoordinator",
    "SweepPlan",
    "SweepResult",
    "Topology",
    "UNCHANGED",
    "load_config",
]
