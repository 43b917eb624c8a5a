"""Escalation engine components for Escalator."""

from .engine import EscalationEngine, ReplyOutcome, ReplyResult
from .executor import EscalationExecutor
from .registry import ConversationCorrelator, StopRegistry, StopSignal
from .scheduler import EscalationScheduler

__all__ = [
    "EscalationEngine",
    "EscalationExecutor",
    "EscalationScheduler",
    "ConversationCorrelator",
    "ReplyOutcome",
    "ReplyResult",
    "StopRegistry",
    "StopSignal",
]
