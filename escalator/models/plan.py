"""Notification plan models."""

import uuid
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from escalator.utils.validation import sanitize_input, validate_phone


class ContactMethod(str, Enum):
    """Contact method enumeration."""

    SMS = "sms"
    PHONE = "phone"


class NotificationStep(BaseModel):
    """One stage of an escalation.

    Every step but the last fires once and waits ``notify_until`` before the
    plan moves on. The last step fires immediately and then again every
    ``notify_every`` until the plan is stopped.
    """

    model_config = ConfigDict(frozen=True)

    method: ContactMethod
    notify_until: timedelta = Field(default=timedelta(minutes=5))
    notify_every: timedelta = Field(default=timedelta(minutes=5))
    message: Optional[str] = None

    @field_validator("notify_until", "notify_every")
    @classmethod
    def validate_positive(cls, v: timedelta) -> timedelta:
        if v.total_seconds() <= 0:
            raise ValueError("step durations must be positive")
        return v


class NotificationPlan(BaseModel):
    """An ordered escalation recipe for notifying one recipient."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    recipient: str
    message: str
    steps: Tuple[NotificationStep, ...]

    @field_validator("recipient")
    @classmethod
    def validate_recipient(cls, v: str) -> str:
        if not validate_phone(v):
            raise ValueError(f"invalid phone number: {v!r}")
        return v.strip()

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        cleaned = sanitize_input(v, max_length=1500)
        if not cleaned:
            raise ValueError("message must not be empty")
        return cleaned

    @field_validator("steps")
    @classmethod
    def validate_steps(cls, v: Tuple[NotificationStep, ...]) -> Tuple[NotificationStep, ...]:
        if not v:
            raise ValueError("a plan needs at least one step")
        return v

    @property
    def plan_id(self) -> str:
        return str(self.id)

    def is_last_step(self, index: int) -> bool:
        return index == len(self.steps) - 1

    def message_for(self, step: NotificationStep) -> str:
        return step.message or self.message


@dataclass
class DispatchOutcome:
    """Result of a single contact attempt."""

    method: ContactMethod
    success: bool
    provider_id: Optional[str] = None
    recipient: Optional[str] = None
    ack_code: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, method: ContactMethod, error: str) -> "DispatchOutcome":
        return cls(method=method, success=False, error=error)
