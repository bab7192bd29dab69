"""
Service Guard - Keeps services alive

Polls each guarded target on its own timer, decides whether it is alive
(native service state, process name or HTTP liveness), and recovers it with a
native restart or a rescue command, without restarting it more often than its
debounce window allows.
"""

__version__ = "1.0.0"

from .config import ConfigurationError, GuardConfig, ProbeKind, TargetConfig
from .executor import BoundedExecutor, ExecutionResult
from .monitor import TargetMonitor, TickOutcome
from .probes import HealthResult, ProbeResult, StatusProbe
from .store import LastActionStore
from .supervisor import MonitorSupervisor

__all__ = [
    "BoundedExecutor",
    "ConfigurationError",
    "ExecutionResult",
    "GuardConfig",
    "HealthResult",
    "LastActionStore",
    "MonitorSupervisor",
    "ProbeKind",
    "ProbeResult",
    "StatusProbe",
    "TargetConfig",
    "TargetMonitor",
    "TickOutcome",
]
