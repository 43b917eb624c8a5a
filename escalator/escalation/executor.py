"""Per-plan escalation executor."""

import asyncio
from typing import Dict, Mapping, Optional

from escalator.connectors.base import ContactAction
from escalator.escalation.registry import StopRegistry, StopSignal
from escalator.models.plan import ContactMethod, DispatchOutcome, NotificationPlan, NotificationStep
from escalator.utils.logging import PlanContext, get_logger, log_escalation_event
from escalator.utils.security import sanitize_phone

logger = get_logger(__name__)


class EscalationExecutor:
    """Walks one plan's steps until the plan is stopped.

    Non-final steps contact the recipient once and wait ``notify_until``
    before escalating. The final step contacts the recipient immediately and
    then on a fixed-rate ``notify_every`` interval, forever, until the stop
    signal is observed. The executor removes its own registry entry when it
    exits, whatever the reason.

    Contact failures are logged and never interrupt the schedule: the engine
    decides *when* to escalate, not whether the previous attempt landed.
    """

    def __init__(
        self,
        plan: NotificationPlan,
        signal: StopSignal,
        registry: StopRegistry,
        actions: Mapping[ContactMethod, ContactAction]
    ):
        self.plan = plan
        self.signal = signal
        self.registry = registry
        self.actions: Dict[ContactMethod, ContactAction] = dict(actions)

        self.current_step: Optional[int] = None
        self.dispatch_count = 0
        self.stopped = False
        self.last_outcome: Optional[DispatchOutcome] = None

    @property
    def plan_id(self) -> str:
        return self.plan.plan_id

    async def run(self) -> None:
        with PlanContext(self.plan_id):
            logger.info(
                "Escalation started",
                recipient=sanitize_phone(self.plan.recipient),
                step_count=len(self.plan.steps)
            )
            try:
                await self._run_steps()
            finally:
                self.registry.unregister(self.plan_id)
                logger.info(
                    "Escalation finished",
                    stopped=self.stopped,
                    dispatch_count=self.dispatch_count
                )

    async def _run_steps(self) -> None:
        loop = asyncio.get_running_loop()

        for index, step in enumerate(self.plan.steps):
            self.current_step = index

            if self.signal.is_set():
                self._mark_stopped(index, step)
                return

            # Step timers run from step entry, not from when the attempt returns
            started = loop.time()
            await self._dispatch(index, step)

            if not self.plan.is_last_step(index):
                delay = step.notify_until.total_seconds()
                logger.info("Waiting before escalating", step=index + 1, wait_seconds=delay)

                if await self.signal.wait(max(0.0, started + delay - loop.time())):
                    self._mark_stopped(index, step)
                    return

                logger.info("Step timer expired, escalating", step=index + 1)
                continue

            interval = step.notify_every.total_seconds()
            next_tick = started + interval
            logger.info("Repeating final step", step=index + 1, interval_seconds=interval)

            while True:
                if await self.signal.wait(max(0.0, next_tick - loop.time())):
                    self._mark_stopped(index, step)
                    return

                await self._dispatch(index, step, retry=True)

                next_tick += interval
                now = loop.time()
                # Drop ticks missed while a slow dispatch was in flight
                while next_tick <= now:
                    next_tick += interval

    async def _dispatch(
        self,
        index: int,
        step: NotificationStep,
        retry: bool = False
    ) -> DispatchOutcome:
        self.dispatch_count += 1
        action = self.actions.get(step.method)

        if action is None:
            outcome = DispatchOutcome.failed(step.method, "no contact action configured")
        else:
            try:
                outcome = await action.perform(
                    self.plan.recipient,
                    self.plan.message_for(step),
                    self.plan_id,
                    requires_ack=True
                )
            except Exception as e:
                logger.error(
                    "Contact attempt raised",
                    step=index + 1,
                    method=step.method.value,
                    error=str(e),
                    exc_info=True
                )
                outcome = DispatchOutcome.failed(step.method, str(e))

        self.last_outcome = outcome
        log_escalation_event(
            logger,
            self.plan_id,
            index + 1,
            step.method.value,
            "sent" if outcome.success else "failed",
            attempt=self.dispatch_count,
            retry=retry,
            provider_id=outcome.provider_id,
            error=outcome.error
        )
        return outcome

    def _mark_stopped(self, index: int, step: NotificationStep) -> None:
        self.stopped = True
        log_escalation_event(
            logger,
            self.plan_id,
            index + 1,
            step.method.value,
            "stopped"
        )
