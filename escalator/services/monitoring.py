"""Monitoring and health check service."""

import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import psutil

from escalator.config import settings
from escalator.escalation.engine import EscalationEngine
from escalator.escalation.scheduler import EscalationScheduler
from escalator.utils.logging import get_logger

logger = get_logger(__name__)


class MonitoringService:
    """Service for engine health reporting."""

    def __init__(
        self,
        engine: EscalationEngine,
        scheduler: Optional[EscalationScheduler] = None
    ):
        self.engine = engine
        self.scheduler = scheduler

    def get_system_health(self) -> Dict[str, Any]:
        """Get health status of the engine and its collaborators."""
        try:
            health_status = {
                "overall_status": "healthy",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "engine": self._check_engine_health(),
                    "twilio": self._check_twilio_config(),
                },
                "metrics": self._get_process_metrics(),
                "alerts": []
            }

            if self.scheduler is not None:
                health_status["components"]["scheduler"] = self.scheduler.get_job_status()

            component_statuses = [
                comp.get("status") for comp in health_status["components"].values()
            ]
            if "critical" in component_statuses:
                health_status["overall_status"] = "critical"
            elif "degraded" in component_statuses:
                health_status["overall_status"] = "degraded"

            health_status["alerts"] = self._generate_alerts(health_status)
            return health_status

        except Exception as e:
            logger.error("Error getting system health", error=str(e))
            return {
                "overall_status": "critical",
                "timestamp": datetime.utcnow().isoformat(),
                "error": str(e)
            }

    def _check_engine_health(self) -> Dict[str, Any]:
        status = self.engine.status()
        status["status"] = "healthy" if status["running"] else "critical"
        return status

    def _check_twilio_config(self) -> Dict[str, Any]:
        configured = bool(settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN)
        return {
            "status": "healthy" if configured else "degraded",
            "configured": configured,
            "from_number_set": bool(settings.TWILIO_FROM_NUMBER),
        }

    def _get_process_metrics(self) -> Dict[str, Any]:
        process = psutil.Process(os.getpid())
        memory = process.memory_info()
        return {
            "rss_mb": round(memory.rss / (1024 * 1024), 2),
            "threads": process.num_threads(),
            "cpu_percent": process.cpu_percent(interval=None),
        }

    def _generate_alerts(self, health_status: Dict[str, Any]) -> List[Dict[str, Any]]:
        alerts = []
        for name, component in health_status["components"].items():
            if component.get("status") in ("critical", "degraded"):
                alerts.append({
                    "component": name,
                    "severity": component["status"],
                    "message": f"{name} is {component['status']}",
                })
        return alerts
