"""Service layer components for Escalator."""

from .monitoring import MonitoringService
from . import twiml

__all__ = [
    "MonitoringService",
    "twiml",
]
