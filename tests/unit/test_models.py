"""Unit tests for plan models."""

import uuid
from datetime import timedelta

import pytest
from pydantic import ValidationError

from escalator.models.plan import ContactMethod, DispatchOutcome, NotificationPlan, NotificationStep

from conftest import RECIPIENT, call, make_plan, sms


class TestNotificationStep:
    """Test the NotificationStep model."""

    def test_defaults(self):
        step = NotificationStep(method=ContactMethod.SMS)

        assert step.notify_until == timedelta(minutes=5)
        assert step.notify_every == timedelta(minutes=5)
        assert step.message is None

    def test_durations_parse_from_seconds(self):
        step = NotificationStep.model_validate(
            {"method": "phone", "notify_until": 90, "notify_every": 30.5}
        )

        assert step.method == ContactMethod.PHONE
        assert step.notify_until == timedelta(seconds=90)
        assert step.notify_every == timedelta(seconds=30.5)

    @pytest.mark.parametrize("field", ["notify_until", "notify_every"])
    def test_non_positive_durations_rejected(self, field):
        with pytest.raises(ValidationError):
            NotificationStep(method=ContactMethod.SMS, **{field: timedelta(0)})

    def test_unknown_method_rejected(self):
        with pytest.raises(ValidationError):
            NotificationStep.model_validate({"method": "pigeon"})

    def test_step_is_immutable(self):
        step = sms()
        with pytest.raises(ValidationError):
            step.message = "changed"


class TestNotificationPlan:
    """Test the NotificationPlan model."""

    def test_plan_creation(self):
        plan = make_plan(sms(until=120), call(every=60))

        assert isinstance(plan.id, uuid.UUID)
        assert plan.plan_id == str(plan.id)
        assert plan.recipient == RECIPIENT
        assert [step.method for step in plan.steps] == [ContactMethod.SMS, ContactMethod.PHONE]

    def test_each_plan_gets_a_fresh_id(self):
        assert make_plan(sms()).id != make_plan(sms()).id

    def test_plan_from_json(self):
        plan_id = uuid.uuid4()
        plan = NotificationPlan.model_validate({
            "id": str(plan_id),
            "recipient": "+1 (555) 123-4567",
            "message": "Disk full on db-1",
            "steps": [
                {"method": "sms", "notify_until": 120},
                {"method": "phone", "notify_every": 60},
            ],
        })

        assert plan.id == plan_id
        assert len(plan.steps) == 2
        assert plan.steps[1].notify_every == timedelta(seconds=60)

    def test_empty_steps_rejected(self):
        with pytest.raises(ValidationError):
            NotificationPlan(recipient=RECIPIENT, message="hi", steps=())

    def test_invalid_recipient_rejected(self):
        with pytest.raises(ValidationError):
            NotificationPlan(recipient="not-a-number", message="hi", steps=(sms(),))

    def test_blank_message_rejected(self):
        with pytest.raises(ValidationError):
            NotificationPlan(recipient=RECIPIENT, message="   ", steps=(sms(),))

    def test_message_is_sanitized(self):
        plan = NotificationPlan(recipient=RECIPIENT, message="<b>Disk</b> full", steps=(sms(),))
        assert plan.message == "Disk full"

    def test_is_last_step(self):
        plan = make_plan(sms(), sms(), call())

        assert plan.is_last_step(0) is False
        assert plan.is_last_step(1) is False
        assert plan.is_last_step(2) is True

    def test_message_for_uses_step_override(self):
        plan = make_plan(sms(), call(message="Call script text"), message="Plan text")

        assert plan.message_for(plan.steps[0]) == "Plan text"
        assert plan.message_for(plan.steps[1]) == "Call script text"


class TestDispatchOutcome:
    """Test the DispatchOutcome helper."""

    def test_failed(self):
        outcome = DispatchOutcome.failed(ContactMethod.SMS, "boom")

        assert outcome.success is False
        assert outcome.error == "boom"
        assert outcome.provider_id is None
