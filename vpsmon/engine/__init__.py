from .broadcaster import Broadcaster
from .liveness import resolve_liveness
from .aggregator import SnapshotAggregator
from .notifier import LogNotifier, Notifier, SmtpNotifier, build_notifier
from .alert_evaluator import AlertEvaluator, EvaluationReport, decide

__all__ = [
    "Broadcaster",
    "resolve_liveness",
    "SnapshotAggregator",
    "LogNotifier",
    "Notifier",
    "SmtpNotifier",
    "build_notifier",
    "AlertEvaluator",
    "EvaluationReport",
    "decide",
]
