"""Data models for Escalator."""

from .plan import ContactMethod, DispatchOutcome, NotificationPlan, NotificationStep

__all__ = [
    "ContactMethod",
    "DispatchOutcome",
    "NotificationPlan",
    "NotificationStep",
]
