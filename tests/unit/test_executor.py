"""Unit tests for the per-plan escalation executor."""

import asyncio
import time

import pytest

from escalator.escalation.executor import EscalationExecutor
from escalator.escalation.registry import StopRegistry
from escalator.models.plan import ContactMethod

from conftest import RECIPIENT, RecordingAction, call, make_plan, sms, wait_until


def build_executor(plan, *actions):
    registry = StopRegistry()
    signal = registry.register(plan.plan_id)
    executor = EscalationExecutor(
        plan,
        signal,
        registry,
        {action.method: action for action in actions}
    )
    return executor, registry, signal


class TestEscalationExecutor:
    """Test the step timing and stop handling of EscalationExecutor."""

    @pytest.mark.asyncio
    async def test_escalates_then_repeats_final_step(self, sms_action, call_action):
        plan = make_plan(sms(until=0.2), call(every=0.1))
        executor, registry, signal = build_executor(plan, sms_action, call_action)

        task = asyncio.create_task(executor.run())
        await asyncio.sleep(0.55)
        signal.send()
        await asyncio.wait_for(task, 1.0)

        assert sms_action.count() == 1
        assert 3 <= call_action.count() <= 5
        assert executor.stopped is True
        assert registry.is_active(plan.plan_id) is False

    @pytest.mark.asyncio
    async def test_stop_during_first_wait_skips_later_steps(self, sms_action, call_action):
        plan = make_plan(sms(until=0.3), call(every=0.1))
        executor, _, signal = build_executor(plan, sms_action, call_action)

        task = asyncio.create_task(executor.run())
        await asyncio.sleep(0.1)
        signal.send()
        await asyncio.wait_for(task, 1.0)

        assert sms_action.count() == 1
        assert call_action.count() == 0
        assert executor.current_step == 0

    @pytest.mark.asyncio
    async def test_stop_before_start_dispatches_nothing(self, sms_action):
        plan = make_plan(sms())
        executor, registry, signal = build_executor(plan, sms_action)

        signal.send()
        await asyncio.wait_for(executor.run(), 1.0)

        assert sms_action.count() == 0
        assert executor.stopped is True
        assert registry.is_active(plan.plan_id) is False

    @pytest.mark.asyncio
    async def test_two_step_scenario_call_count(self, sms_action, call_action):
        # SMS at 0, call at 0.4 and 0.6, stop at 0.7 before the 0.8 tick
        plan = make_plan(sms(until=0.4), call(every=0.2))
        executor, _, signal = build_executor(plan, sms_action, call_action)

        task = asyncio.create_task(executor.run())
        await asyncio.sleep(0.7)
        signal.send()
        await asyncio.wait_for(task, 1.0)
        await asyncio.sleep(0.3)

        assert sms_action.count() == 1
        assert call_action.count() == 2

    @pytest.mark.asyncio
    async def test_no_dispatch_after_stop(self, call_action):
        plan = make_plan(call(every=0.05))
        executor, _, signal = build_executor(plan, call_action)

        task = asyncio.create_task(executor.run())
        await wait_until(lambda: call_action.count() >= 2)
        signal.send()
        await asyncio.wait_for(task, 1.0)
        count_at_stop = call_action.count()

        await asyncio.sleep(0.2)

        assert call_action.count() == count_at_stop

    @pytest.mark.asyncio
    async def test_single_step_plan_repeats(self, sms_action):
        plan = make_plan(sms(every=0.05))
        executor, _, signal = build_executor(plan, sms_action)

        task = asyncio.create_task(executor.run())
        assert await wait_until(lambda: sms_action.count() >= 3)
        signal.send()
        await asyncio.wait_for(task, 1.0)

        assert executor.current_step == 0

    @pytest.mark.asyncio
    async def test_failed_contact_still_escalates(self, call_action):
        failing_sms = RecordingAction(ContactMethod.SMS, fail=True)
        plan = make_plan(sms(until=0.05), call(every=1.0))
        executor, _, signal = build_executor(plan, failing_sms, call_action)

        task = asyncio.create_task(executor.run())
        assert await wait_until(lambda: call_action.count() == 1)
        signal.send()
        await asyncio.wait_for(task, 1.0)

        assert failing_sms.count() == 1
        assert executor.dispatch_count == 2

    @pytest.mark.asyncio
    async def test_raising_contact_still_escalates(self, call_action):
        exploding_sms = RecordingAction(ContactMethod.SMS, raise_error=True)
        plan = make_plan(sms(until=0.05), call(every=1.0))
        executor, _, signal = build_executor(plan, exploding_sms, call_action)

        task = asyncio.create_task(executor.run())
        assert await wait_until(lambda: call_action.count() == 1)
        signal.send()
        await asyncio.wait_for(task, 1.0)

        assert exploding_sms.count() == 1
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_missing_action_is_logged_and_skipped(self, sms_action):
        plan = make_plan(call(until=0.05), sms(every=1.0))
        executor, _, signal = build_executor(plan, sms_action)

        task = asyncio.create_task(executor.run())
        assert await wait_until(lambda: sms_action.count() == 1)
        signal.send()
        await asyncio.wait_for(task, 1.0)

        assert executor.dispatch_count == 2
        assert executor.last_outcome.success is True

    @pytest.mark.asyncio
    async def test_stop_during_slow_dispatch(self):
        slow_call = RecordingAction(ContactMethod.PHONE, delay=0.2)
        plan = make_plan(call(every=0.05))
        executor, _, signal = build_executor(plan, slow_call)

        task = asyncio.create_task(executor.run())
        await asyncio.sleep(0.05)
        signal.send()
        await asyncio.wait_for(task, 1.0)

        # The in-flight attempt completes, nothing is sent afterwards
        assert slow_call.count() == 1

    @pytest.mark.asyncio
    async def test_cancellation_unregisters(self, sms_action):
        plan = make_plan(sms(every=10.0))
        executor, registry, _ = build_executor(plan, sms_action)

        task = asyncio.create_task(executor.run())
        assert await wait_until(lambda: sms_action.count() == 1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert registry.is_active(plan.plan_id) is False

    @pytest.mark.asyncio
    async def test_step_message_and_ack_flag_passed_to_action(self, sms_action, call_action):
        plan = make_plan(sms(until=0.05), call(every=1.0, message="Call text"), message="Plan text")
        executor, _, signal = build_executor(plan, sms_action, call_action)

        task = asyncio.create_task(executor.run())
        assert await wait_until(lambda: call_action.count() == 1)
        signal.send()
        await asyncio.wait_for(task, 1.0)

        sent = sms_action.calls[0]
        assert sent.recipient == RECIPIENT
        assert sent.content == "Plan text"
        assert sent.plan_id == plan.plan_id
        assert sent.requires_ack is True
        assert call_action.calls[0].content == "Call text"

    @pytest.mark.asyncio
    async def test_slow_contact_does_not_delay_escalation(self, call_action):
        slow_sms = RecordingAction(ContactMethod.SMS, delay=0.4)
        plan = make_plan(sms(until=0.5), call(every=0.5))
        executor, _, signal = build_executor(plan, slow_sms, call_action)

        started = time.monotonic()
        task = asyncio.create_task(executor.run())
        assert await wait_until(lambda: call_action.count() == 1)
        signal.send()
        await asyncio.wait_for(task, 1.0)

        first_call_at = call_action.calls[0].at - started
        assert 0.45 <= first_call_at < 0.65

    @pytest.mark.asyncio
    async def test_slow_contact_does_not_delay_first_repeat(self):
        slow_call = RecordingAction(ContactMethod.PHONE, delay=0.2)
        plan = make_plan(call(every=0.5))
        executor, _, signal = build_executor(plan, slow_call)

        started = time.monotonic()
        task = asyncio.create_task(executor.run())
        assert await wait_until(lambda: slow_call.count() == 2)
        signal.send()
        await asyncio.wait_for(task, 1.0)

        # Second attempt starts at 0.5 and records after its 0.2 delay
        second_at = slow_call.calls[1].at - started
        assert 0.65 <= second_at < 0.85
