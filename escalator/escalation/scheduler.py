"""Housekeeping scheduler for the escalation engine."""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from escalator.config import settings
from escalator.escalation.engine import EscalationEngine
from escalator.utils.logging import get_logger

logger = get_logger(__name__)


class EscalationScheduler:
    """Runs periodic maintenance jobs alongside the engine."""

    def __init__(
        self,
        engine: EscalationEngine,
        sweep_interval_seconds: Optional[int] = None,
        conversation_ttl_minutes: Optional[int] = None
    ):
        self.engine = engine
        self.scheduler = AsyncIOScheduler()
        self.sweep_interval_seconds = sweep_interval_seconds or settings.SWEEP_INTERVAL_SECONDS
        self.conversation_ttl_minutes = (
            conversation_ttl_minutes or settings.CONVERSATION_TTL_MINUTES
        )
        self.is_running = False

    async def start(self) -> None:
        """Start the housekeeping scheduler."""
        if self.is_running:
            logger.warning("Escalation scheduler already running")
            return

        try:
            self.scheduler.add_job(
                self.sweep_conversations,
                trigger=IntervalTrigger(seconds=self.sweep_interval_seconds),
                id="sweep_conversations",
                name="Sweep Stale Conversations",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=30
            )

            self.scheduler.add_job(
                self._log_status,
                trigger=IntervalTrigger(seconds=self.sweep_interval_seconds),
                id="escalation_status",
                name="Escalation Status Report",
                max_instances=1,
                coalesce=True
            )

            self.scheduler.start()
            self.is_running = True

            logger.info("Escalation scheduler started")

        except Exception as e:
            logger.error("Error starting escalation scheduler", error=str(e))
            raise

    async def stop(self) -> None:
        """Stop the housekeeping scheduler."""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Escalation scheduler stopped")

        except Exception as e:
            logger.error("Error stopping escalation scheduler", error=str(e))

    async def sweep_conversations(self) -> int:
        """Forget SMS conversations nobody answered within the TTL."""
        removed = self.engine.correlator.sweep(self.conversation_ttl_minutes * 60)
        if removed:
            logger.info("Swept stale conversations", count=removed)
        return removed

    async def _log_status(self) -> None:
        logger.info("Escalation status", **self.engine.status())

    def get_job_status(self) -> dict:
        """Get status of scheduled jobs."""
        if not self.is_running:
            return {"status": "stopped", "jobs": []}

        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger)
            })

        return {
            "status": "running",
            "jobs": jobs
        }
