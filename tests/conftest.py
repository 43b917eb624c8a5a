"""Pytest configuration and fixtures."""

import asyncio
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

import pytest
import pytest_asyncio

from escalator.escalation.engine import EscalationEngine
from escalator.models.plan import (
    ContactMethod,
    DispatchOutcome,
    NotificationPlan,
    NotificationStep,
)

RECIPIENT = "+15551234567"


@dataclass
class Dispatch:
    recipient: str
    content: str
    plan_id: str
    requires_ack: bool
    at: float


class RecordingAction:
    """Contact action that records every attempt instead of calling Twilio."""

    def __init__(
        self,
        method: ContactMethod,
        fail: bool = False,
        raise_error: bool = False,
        delay: float = 0.0
    ):
        self.method = method
        self.fail = fail
        self.raise_error = raise_error
        self.delay = delay
        self.calls: List[Dispatch] = []

    async def perform(self, recipient, content, plan_id, requires_ack=True):
        if self.delay:
            await asyncio.sleep(self.delay)

        self.calls.append(Dispatch(recipient, content, plan_id, requires_ack, time.monotonic()))

        if self.raise_error:
            raise RuntimeError("transport exploded")

        return DispatchOutcome(
            method=self.method,
            success=not self.fail,
            provider_id=f"SID{len(self.calls)}",
            error="provider rejected" if self.fail else None
        )

    def count(self, plan_id: Optional[str] = None) -> int:
        if plan_id is None:
            return len(self.calls)
        return sum(1 for call in self.calls if call.plan_id == plan_id)


def make_plan(*steps: NotificationStep, message: str = "Server room is on fire") -> NotificationPlan:
    return NotificationPlan(recipient=RECIPIENT, message=message, steps=steps)


def sms(until: float = 60.0, every: float = 60.0, message: Optional[str] = None) -> NotificationStep:
    return NotificationStep(
        method=ContactMethod.SMS,
        notify_until=timedelta(seconds=until),
        notify_every=timedelta(seconds=every),
        message=message
    )


def call(until: float = 60.0, every: float = 60.0, message: Optional[str] = None) -> NotificationStep:
    return NotificationStep(
        method=ContactMethod.PHONE,
        notify_until=timedelta(seconds=until),
        notify_every=timedelta(seconds=every),
        message=message
    )


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def sms_action():
    return RecordingAction(ContactMethod.SMS)


@pytest.fixture
def call_action():
    return RecordingAction(ContactMethod.PHONE)


@pytest_asyncio.fixture
async def engine(sms_action, call_action):
    """A running engine wired to recording actions."""
    engine = EscalationEngine(
        actions={ContactMethod.SMS: sms_action, ContactMethod.PHONE: call_action},
        shutdown_timeout=1.0
    )
    await engine.start()
    yield engine
    await engine.shutdown()
