"""Escalation engine errors."""


class EscalatorError(Exception):
    """Base class for escalation engine errors."""


class PlanAlreadyRegisteredError(EscalatorError):
    """Raised when a plan id is registered while already in flight."""

    def __init__(self, plan_id: str):
        super().__init__(f"Plan {plan_id} is already registered")
        self.plan_id = plan_id


class EngineNotRunningError(EscalatorError):
    """Raised when work is handed to an engine that has not been started."""
