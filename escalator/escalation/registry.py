"""In-flight plan bookkeeping: stop signals and SMS conversation keys.

Both registries are process-scoped and share one lock. Critical sections are
plain dictionary operations; the lock is never held across an ``await``.
"""

import asyncio
import secrets
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from escalator.escalation.exceptions import PlanAlreadyRegisteredError
from escalator.utils.logging import get_logger
from escalator.utils.validation import normalize_phone

logger = get_logger(__name__)


class StopSignal:
    """Level-triggered cancellation signal for one executor.

    Sending is non-blocking and idempotent, so a second stop, or a stop that
    arrives after the executor has exited, is harmless.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._event = asyncio.Event()

    def send(self) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._event.set()
            return

        try:
            self._loop.call_soon_threadsafe(self._event.set)
        except RuntimeError:
            # Loop already closed; nothing is left running to stop.
            logger.debug("Stop signal sent after event loop closed")

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the signal; returns False if ``timeout`` elapsed first."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return self._event.is_set()
        return True


class StopRegistry:
    """Maps plan ids to the stop signal of the executor running them."""

    def __init__(self, lock: Optional[threading.Lock] = None):
        self._lock = lock or threading.Lock()
        self._signals: Dict[str, StopSignal] = {}

    def register(self, plan_id: str) -> StopSignal:
        with self._lock:
            if plan_id in self._signals:
                raise PlanAlreadyRegisteredError(plan_id)
            signal = StopSignal()
            self._signals[plan_id] = signal
        return signal

    def signal_stop(self, plan_id: str) -> bool:
        """Ask the executor for ``plan_id`` to stop. Unknown ids are ignored."""
        with self._lock:
            signal = self._signals.get(plan_id)
        if signal is None:
            logger.debug("Stop requested for inactive plan", plan_id=plan_id)
            return False
        signal.send()
        return True

    def unregister(self, plan_id: str) -> None:
        with self._lock:
            self._signals.pop(plan_id, None)

    def is_active(self, plan_id: str) -> bool:
        with self._lock:
            return plan_id in self._signals

    def active_ids(self) -> List[str]:
        with self._lock:
            return list(self._signals)

    def signal_all(self) -> int:
        with self._lock:
            signals = list(self._signals.values())
        for signal in signals:
            signal.send()
        return len(signals)

    def __len__(self) -> int:
        with self._lock:
            return len(self._signals)


class ConversationCorrelator:
    """Maps (recipient, acknowledgment code) pairs back to plan ids.

    A fresh code is issued for every acknowledgment-eligible SMS. Resolving a
    key removes it, so a duplicated or replayed reply is not resolved twice.
    """

    def __init__(
        self,
        lock: Optional[threading.Lock] = None,
        code_digits: int = 3,
        clock: Callable[[], float] = time.monotonic
    ):
        self._lock = lock or threading.Lock()
        self._code_digits = code_digits
        self._clock = clock
        # key -> (plan_id, created_at)
        self._conversations: Dict[Tuple[str, str], Tuple[str, float]] = {}

    def new_code(self) -> str:
        low = 10 ** (self._code_digits - 1)
        high = 10 ** self._code_digits
        return str(low + secrets.randbelow(high - low))

    def remember(self, recipient: str, code: str, plan_id: str) -> None:
        key = (normalize_phone(recipient), code)
        with self._lock:
            if key in self._conversations:
                logger.warning(
                    "Conversation key collision, replacing older entry",
                    code=code,
                    previous_plan_id=self._conversations[key][0],
                    plan_id=plan_id
                )
            self._conversations[key] = (plan_id, self._clock())

    def resolve(self, recipient: str, code: str) -> Optional[str]:
        key = (normalize_phone(recipient), code)
        with self._lock:
            entry = self._conversations.pop(key, None)
        return entry[0] if entry else None

    def sweep(self, max_age_seconds: float) -> int:
        """Drop entries older than ``max_age_seconds``; returns how many."""
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            stale = [
                key for key, (_, created_at) in self._conversations.items()
                if created_at < cutoff
            ]
            for key in stale:
                del self._conversations[key]
        return len(stale)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._conversations)
