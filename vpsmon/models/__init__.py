from .sample import MetricSample, HostInfo
from .snapshot import Liveness, ServerSnapshot
from .alert import AlertDecision, AlertState, AlertStatus

__all__ = [
    "MetricSample",
    "HostInfo",
    "Liveness",
    "ServerSnapshot",
    "AlertDecision",
    "AlertState",
    "AlertStatus",
]
