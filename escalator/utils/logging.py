"""Structured logging configuration using structlog."""

import logging
import sys
import time
from typing import Any, Optional

import structlog
from structlog.types import FilteringBoundLogger

from escalator.config import settings


def setup_logging() -> None:
    """Configure structured logging for the application."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.CallsiteParameterAdder(
                parameters={
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                }
            ),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    # Reduce noise from external libraries
    logging.getLogger("twilio.http_client").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> FilteringBoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name or __name__)


class PlanContext:
    """Binds a plan id to every log line emitted by the current task."""

    def __init__(self, plan_id: str):
        self.plan_id = plan_id

    def __enter__(self):
        structlog.contextvars.bind_contextvars(plan_id=self.plan_id)
        return self.plan_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        structlog.contextvars.unbind_contextvars("plan_id")


def log_escalation_event(
    logger: FilteringBoundLogger,
    plan_id: str,
    step_number: int,
    channel: str,
    status: str,
    **kwargs: Any
) -> None:
    """Log escalation events with consistent format."""
    logger.info(
        f"Escalation {status}: Step {step_number} via {channel}",
        plan_id=plan_id,
        escalation_step=step_number,
        escalation_channel=channel,
        escalation_status=status,
        **kwargs
    )


def elapsed_ms(start: float) -> float:
    """Milliseconds since a time.monotonic() reading."""
    return round((time.monotonic() - start) * 1000, 2)


def log_external_api_call(
    logger: FilteringBoundLogger,
    service: str,
    operation: str,
    success: bool,
    duration_ms: float,
    **kwargs: Any
) -> None:
    """Log external API calls with consistent format."""
    level = "info" if success else "error"
    getattr(logger, level)(
        f"{service} API call: {operation}",
        external_service=service,
        operation=operation,
        success=success,
        duration_ms=duration_ms,
        **kwargs
    )
