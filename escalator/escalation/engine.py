"""Escalation engine: accepts plans, runs executors, routes stop requests."""

import asyncio
import threading
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set

from escalator.config import settings
from escalator.connectors.base import ContactAction
from escalator.escalation.exceptions import EngineNotRunningError, PlanAlreadyRegisteredError
from escalator.escalation.executor import EscalationExecutor
from escalator.escalation.registry import ConversationCorrelator, StopRegistry
from escalator.models.plan import ContactMethod, NotificationPlan
from escalator.utils.logging import get_logger
from escalator.utils.security import sanitize_phone
from escalator.utils.validation import extract_ack_code

logger = get_logger(__name__)


class ReplyOutcome(str, Enum):
    """What an inbound SMS reply turned out to be."""

    ACKNOWLEDGED = "acknowledged"
    STALE = "stale"
    UNRECOGNIZED = "unrecognized"


@dataclass
class ReplyResult:
    outcome: ReplyOutcome
    plan_id: Optional[str] = None


class EscalationEngine:
    """Single control loop that owns every in-flight escalation.

    New plans and stop requests arrive on two queues. Each plan is registered
    with the stop registry before its executor task is created, so a stop
    request can never be handled before the plan it names is known. Neither
    submitting nor stopping waits for the executor.
    """

    def __init__(
        self,
        actions: Optional[Mapping[ContactMethod, ContactAction]] = None,
        code_digits: Optional[int] = None,
        shutdown_timeout: Optional[float] = None
    ):
        self._lock = threading.Lock()
        self.stop_registry = StopRegistry(self._lock)
        self.correlator = ConversationCorrelator(
            self._lock,
            code_digits=code_digits or settings.ACK_CODE_DIGITS
        )
        self.actions: Dict[ContactMethod, ContactAction] = dict(actions or {})
        self.shutdown_timeout = (
            settings.SHUTDOWN_TIMEOUT_SECONDS if shutdown_timeout is None else shutdown_timeout
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._plan_queue: Optional[asyncio.Queue] = None
        self._stop_queue: Optional[asyncio.Queue] = None
        self._executors: Dict[str, EscalationExecutor] = {}
        # Submitted ids the control loop has not registered yet
        self._pending_ids: Set[str] = set()
        self._pending_lock = threading.Lock()
        self._tasks: Dict[str, asyncio.Task] = {}
        self.is_running = False

    def register_action(self, action: ContactAction) -> None:
        """Make a contact method available to plans started from now on."""
        self.actions[action.method] = action

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Escalation engine already running")
            return

        self._loop = asyncio.get_running_loop()
        self._plan_queue = asyncio.Queue()
        self._stop_queue = asyncio.Queue()
        self._loop_task = asyncio.create_task(self._run(), name="escalation-engine")
        self.is_running = True

        logger.info(
            "Escalation engine started",
            contact_methods=[method.value for method in self.actions]
        )

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop accepting work, stop every executor and wait for them to exit.

        Executors still running after ``timeout`` seconds are cancelled.
        """
        if not self.is_running:
            return

        timeout = self.shutdown_timeout if timeout is None else timeout
        self.is_running = False

        if self._loop_task:
            self._loop_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._loop_task

        dropped = self._plan_queue.qsize() if self._plan_queue else 0
        with self._pending_lock:
            self._pending_ids.clear()
        signalled = self.stop_registry.signal_all()

        pending: Set[asyncio.Task] = set()
        tasks = list(self._tasks.values())
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info(
            "Escalation engine stopped",
            signalled=signalled,
            forced=len(pending),
            dropped_submissions=dropped
        )

    def submit(self, plan: NotificationPlan) -> str:
        """Queue a plan for execution; returns its id.

        Raises ``PlanAlreadyRegisteredError`` if a plan with the same id is
        already queued or in flight.
        """
        plan_id = plan.plan_id
        with self._pending_lock:
            if plan_id in self._pending_ids or self.stop_registry.is_active(plan_id):
                raise PlanAlreadyRegisteredError(plan_id)
            self._pending_ids.add(plan_id)

        try:
            self._put(self._plan_queue, plan)
        except EngineNotRunningError:
            self._release_pending(plan_id)
            raise
        return plan_id

    def _release_pending(self, plan_id: str) -> None:
        with self._pending_lock:
            self._pending_ids.discard(plan_id)

    def request_stop(self, plan_id: str) -> None:
        """Queue a stop request. Ids that are not in flight are ignored."""
        self._put(self._stop_queue, plan_id)

    def _put(self, queue: Optional[asyncio.Queue], item: Any) -> None:
        if not self.is_running or queue is None:
            raise EngineNotRunningError("Escalation engine is not running")

        try:
            on_loop = asyncio.get_running_loop() is self._loop
        except RuntimeError:
            on_loop = False

        if on_loop:
            queue.put_nowait(item)
        else:
            self._loop.call_soon_threadsafe(queue.put_nowait, item)

    async def _run(self) -> None:
        plan_get = asyncio.ensure_future(self._plan_queue.get())
        stop_get = asyncio.ensure_future(self._stop_queue.get())

        try:
            while True:
                done, _ = await asyncio.wait(
                    {plan_get, stop_get},
                    return_when=asyncio.FIRST_COMPLETED
                )

                if plan_get in done:
                    self._start_plan(plan_get.result())
                    plan_get = asyncio.ensure_future(self._plan_queue.get())

                if stop_get in done:
                    self._stop_plan(stop_get.result())
                    stop_get = asyncio.ensure_future(self._stop_queue.get())
        finally:
            plan_get.cancel()
            stop_get.cancel()

    def _start_plan(self, plan: NotificationPlan) -> None:
        plan_id = plan.plan_id

        try:
            signal = self.stop_registry.register(plan_id)
        except PlanAlreadyRegisteredError:
            logger.error("Plan already in flight, ignoring submission", plan_id=plan_id)
            return
        finally:
            # Released only after registration so submit always sees one of them
            self._release_pending(plan_id)

        executor = EscalationExecutor(plan, signal, self.stop_registry, self.actions)
        task = asyncio.create_task(executor.run(), name=f"escalation-{plan_id}")
        self._executors[plan_id] = executor
        self._tasks[plan_id] = task
        task.add_done_callback(self._forget)

        logger.info(
            "Plan accepted",
            plan_id=plan_id,
            recipient=sanitize_phone(plan.recipient),
            methods=[step.method.value for step in plan.steps]
        )

    def _stop_plan(self, plan_id: str) -> None:
        if self.stop_registry.signal_stop(plan_id):
            logger.info("Stop signalled", plan_id=plan_id)
        else:
            logger.info("Ignoring stop for inactive plan", plan_id=plan_id)

    def _forget(self, task: asyncio.Task) -> None:
        plan_id = next((pid for pid, t in self._tasks.items() if t is task), None)
        if plan_id is None:
            return

        del self._tasks[plan_id]
        self._executors.pop(plan_id, None)

        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Executor exited with error",
                plan_id=plan_id,
                error=str(task.exception())
            )

    def acknowledge_reply(self, sender: str, body: str) -> ReplyResult:
        """Correlate an inbound SMS reply with the plan that issued its code."""
        code = extract_ack_code(body)
        if code is None:
            logger.info("Reply carried no acknowledgment code", sender=sanitize_phone(sender))
            return ReplyResult(ReplyOutcome.UNRECOGNIZED)

        plan_id = self.correlator.resolve(sender, code)
        if plan_id is None:
            logger.info("Reply matched no pending conversation", sender=sanitize_phone(sender))
            return ReplyResult(ReplyOutcome.UNRECOGNIZED)

        active = self.stop_registry.is_active(plan_id)
        # A stale code still requests a stop; it is a no-op for a finished plan.
        self.request_stop(plan_id)

        if not active:
            logger.info("Reply for plan that is no longer active", plan_id=plan_id)
            return ReplyResult(ReplyOutcome.STALE, plan_id)

        logger.info("Acknowledgment received by SMS", plan_id=plan_id)
        return ReplyResult(ReplyOutcome.ACKNOWLEDGED, plan_id)

    def acknowledge_key_press(self, plan_id: str) -> bool:
        """Stop ``plan_id`` after a key press; False if it is not in flight."""
        if not self.stop_registry.is_active(plan_id):
            logger.info("Key press for plan that is no longer active", plan_id=plan_id)
            return False

        logger.info("Acknowledgment received by key press", plan_id=plan_id)
        self.request_stop(plan_id)
        return True

    def is_active(self, plan_id: str) -> bool:
        return self.stop_registry.is_active(plan_id)

    def get_plan(self, plan_id: str) -> Optional[NotificationPlan]:
        executor = self._executors.get(plan_id)
        if executor is None or not self.stop_registry.is_active(plan_id):
            return None
        return executor.plan

    def get_executor(self, plan_id: str) -> Optional[EscalationExecutor]:
        return self._executors.get(plan_id)

    def current_message(self, plan_id: str) -> Optional[str]:
        """Message for the step ``plan_id`` is currently on, if in flight."""
        plan = self.get_plan(plan_id)
        if plan is None:
            return None

        executor = self._executors.get(plan_id)
        index = executor.current_step if executor and executor.current_step is not None else 0
        return plan.message_for(plan.steps[index])

    def active_plan_ids(self) -> List[str]:
        return self.stop_registry.active_ids()

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "active_plans": len(self.stop_registry),
            "pending_conversations": self.correlator.pending_count(),
            "contact_methods": [method.value for method in self.actions],
        }
