"""Main FastAPI application for Escalator."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Form, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from escalator.config import settings
from escalator.connectors import build_contact_actions
from escalator.escalation.engine import EscalationEngine, ReplyOutcome
from escalator.escalation.exceptions import EngineNotRunningError, PlanAlreadyRegisteredError
from escalator.escalation.scheduler import EscalationScheduler
from escalator.models.plan import NotificationPlan
from escalator.services import twiml
from escalator.services.monitoring import MonitoringService
from escalator.utils.logging import get_logger, setup_logging
from escalator.utils.security import sanitize_phone, validate_twilio_signature

# Setup logging
setup_logging()
logger = get_logger(__name__)

# Global service instances
escalation_engine: Optional[EscalationEngine] = None
escalation_scheduler: Optional[EscalationScheduler] = None
monitoring_service: Optional[MonitoringService] = None

XML_MEDIA_TYPE = "application/xml"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global escalation_engine, escalation_scheduler, monitoring_service

    logger.info("Starting Escalator")

    try:
        escalation_engine = EscalationEngine()
        for action in build_contact_actions(escalation_engine.correlator).values():
            escalation_engine.register_action(action)

        await escalation_engine.start()

        escalation_scheduler = EscalationScheduler(escalation_engine)
        await escalation_scheduler.start()

        monitoring_service = MonitoringService(escalation_engine, escalation_scheduler)

        logger.info("Escalator started successfully")

    except Exception as e:
        logger.error("Failed to start application", error=str(e))
        raise

    yield

    logger.info("Shutting down Escalator")

    try:
        if escalation_scheduler:
            await escalation_scheduler.stop()

        if escalation_engine:
            await escalation_engine.shutdown()

        logger.info("Escalator shutdown completed")

    except Exception as e:
        logger.error("Error during shutdown", error=str(e))


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Escalating SMS and voice notifications until acknowledged",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None
)


def get_engine() -> EscalationEngine:
    if escalation_engine is None or not escalation_engine.is_running:
        raise HTTPException(status_code=503, detail="Escalation engine not initialized")
    return escalation_engine


def get_monitoring_service() -> MonitoringService:
    if monitoring_service is None:
        raise HTTPException(status_code=503, detail="Monitoring service not initialized")
    return monitoring_service


async def verify_twilio_request(
    request: Request,
    x_twilio_signature: Optional[str] = Header(default=None)
) -> None:
    """Reject webhook calls that were not signed by Twilio, when enabled."""
    if not settings.TWILIO_VALIDATE_SIGNATURES:
        return

    form = await request.form()
    if not validate_twilio_signature(str(request.url), form, x_twilio_signature):
        logger.warning("Rejected webhook with bad signature", path=request.url.path)
        raise HTTPException(status_code=403, detail="Invalid Twilio signature")


def xml_response(content: str) -> Response:
    return Response(content=content, media_type=XML_MEDIA_TYPE)


# Health check endpoints
@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT
    }


@app.get("/health/detailed")
async def detailed_health_check(monitoring: MonitoringService = Depends(get_monitoring_service)):
    """Detailed health check with component status."""
    health_status = monitoring.get_system_health()

    if health_status["overall_status"] == "critical":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


# Plan endpoints
@app.post(f"{settings.API_V1_STR}/plans", status_code=202)
async def submit_plan(plan: NotificationPlan, engine: EscalationEngine = Depends(get_engine)):
    """Start escalating a notification plan."""
    try:
        plan_id = engine.submit(plan)
    except PlanAlreadyRegisteredError:
        raise HTTPException(status_code=409, detail=f"Plan {plan.plan_id} is already active")

    return {
        "id": plan_id,
        "message": "Plan accepted",
        "timestamp": datetime.utcnow().isoformat()
    }


@app.get(f"{settings.API_V1_STR}/plans")
async def list_plans(engine: EscalationEngine = Depends(get_engine)):
    """List the plans currently escalating."""
    return {"plans": engine.active_plan_ids()}


@app.get(f"{settings.API_V1_STR}/plans/{{plan_id}}")
async def get_plan(plan_id: str, engine: EscalationEngine = Depends(get_engine)):
    """Get progress of an active plan."""
    plan = engine.get_plan(plan_id)
    executor = engine.get_executor(plan_id)
    if plan is None or executor is None:
        raise HTTPException(status_code=404, detail="No active notifications for this id")

    return {
        "id": plan_id,
        "recipient": sanitize_phone(plan.recipient),
        "step_count": len(plan.steps),
        "current_step": executor.current_step,
        "dispatch_count": executor.dispatch_count,
    }


@app.delete(f"{settings.API_V1_STR}/plans/{{plan_id}}", status_code=202)
async def stop_plan(plan_id: str, engine: EscalationEngine = Depends(get_engine)):
    """Request that a plan stop. Unknown ids are accepted and ignored."""
    engine.request_stop(plan_id)
    return {
        "id": plan_id,
        "message": "Stop requested",
        "timestamp": datetime.utcnow().isoformat()
    }


# Twilio webhooks
@app.post(
    f"{settings.API_V1_STR}/twilio/sms",
    dependencies=[Depends(verify_twilio_request)]
)
async def receive_sms_reply(
    sender: Optional[str] = Form(default=None, alias="From"),
    body: str = Form(default="", alias="Body"),
    engine: EscalationEngine = Depends(get_engine)
):
    """Stop the plan whose acknowledgment code the recipient replied with."""
    if not sender:
        logger.warning("SMS reply without 'From' parameter")
        raise HTTPException(status_code=400, detail="'From' parameter was not provided")

    result = engine.acknowledge_reply(sender, body)

    if result.outcome == ReplyOutcome.ACKNOWLEDGED:
        return xml_response(twiml.sms_reply(settings.ACK_CONFIRMATION_MESSAGE))

    if result.outcome == ReplyOutcome.STALE:
        raise HTTPException(status_code=404, detail="No active notifications for this id")

    return xml_response(twiml.sms_reply(settings.UNRECOGNIZED_REPLY_MESSAGE))


@app.post(
    f"{settings.API_V1_STR}/plans/{{plan_id}}/digits",
    dependencies=[Depends(verify_twilio_request)]
)
async def receive_digits(
    plan_id: str,
    digits: str = Form(default="", alias="Digits"),
    call_sid: str = Form(default="", alias="CallSid"),
    engine: EscalationEngine = Depends(get_engine)
):
    """Any key pressed during a notification call acknowledges the plan."""
    if not digits:
        return xml_response(twiml.hangup_script())

    if not engine.acknowledge_key_press(plan_id):
        raise HTTPException(status_code=404, detail="No active notifications for this id")

    logger.info("Call acknowledged", plan_id=plan_id, call_sid=call_sid)
    return xml_response(twiml.acknowledged_call_script())


@app.post(
    f"{settings.API_V1_STR}/plans/{{plan_id}}/twiml/{{action}}",
    dependencies=[Depends(verify_twilio_request)]
)
async def generate_twiml(
    plan_id: str,
    action: str,
    answered_by: Optional[str] = Form(default=None, alias="AnsweredBy"),
    engine: EscalationEngine = Depends(get_engine)
):
    """Serve the call script Twilio asks for."""
    if action == "notify":
        message = engine.current_message(plan_id)
        if message is None:
            raise HTTPException(status_code=404, detail="No active notifications for this id")

        if answered_by and answered_by.startswith("machine"):
            logger.info("Call answered by machine, hanging up", plan_id=plan_id)
            return xml_response(twiml.hangup_script())

        return xml_response(twiml.notify_call_script(plan_id, message))

    if action == "acknowledged":
        return xml_response(twiml.acknowledged_call_script())

    raise HTTPException(status_code=404, detail=f"Unknown TwiML action: {action}")


@app.post(
    f"{settings.API_V1_STR}/plans/{{plan_id}}/callback",
    dependencies=[Depends(verify_twilio_request)]
)
async def receive_callback(
    plan_id: str,
    message_status: Optional[str] = Form(default=None, alias="MessageStatus"),
    call_status: Optional[str] = Form(default=None, alias="CallStatus")
):
    """Delivery progress callbacks from Twilio."""
    logger.info(
        "Delivery status callback",
        plan_id=plan_id,
        message_status=message_status,
        call_status=call_status
    )
    return {"uuid": plan_id, "message": "Callback received"}


# Error handlers
@app.exception_handler(EngineNotRunningError)
async def engine_not_running_handler(request, exc):
    logger.warning("Request while engine is not running", path=request.url.path)
    return JSONResponse(
        status_code=503,
        content={
            "error": str(exc),
            "timestamp": datetime.utcnow().isoformat(),
            "path": str(request.url.path)
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Handle HTTP exceptions with structured logging."""
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "timestamp": datetime.utcnow().isoformat(),
            "path": str(request.url.path)
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle general exceptions with structured logging."""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        path=request.url.path,
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "timestamp": datetime.utcnow().isoformat(),
            "path": str(request.url.path)
        }
    )


def run() -> None:
    uvicorn.run(
        "escalator.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )


if __name__ == "__main__":
    run()
