"""Twilio voice connector for notification calls."""

import asyncio
import time
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from escalator.config import settings
from escalator.models.plan import ContactMethod, DispatchOutcome
from escalator.utils.logging import elapsed_ms, get_logger, log_external_api_call
from escalator.utils.security import sanitize_phone
from escalator.utils.validation import validate_phone

logger = get_logger(__name__)


class TwilioVoiceConnector:
    """Places notification calls.

    The call itself only points Twilio at the plan's TwiML endpoint; the
    spoken message is served from there when the recipient picks up.
    """

    method = ContactMethod.PHONE

    def __init__(self, client: Optional[Client] = None):
        self.account_sid = settings.TWILIO_ACCOUNT_SID
        self.auth_token = settings.TWILIO_AUTH_TOKEN
        self.from_number = settings.TWILIO_FROM_NUMBER

        if client is not None:
            self.client = client
        elif self.account_sid and self.auth_token:
            self.client = Client(self.account_sid, self.auth_token)
        else:
            self.client = None
            logger.warning("Twilio credentials not configured")

    async def perform(
        self,
        recipient: str,
        content: str,
        plan_id: str,
        requires_ack: bool = True
    ) -> DispatchOutcome:
        # Calls always gather a key press, so requires_ack does not change the script
        return await self.place_call(recipient, plan_id)

    async def place_call(self, to_number: str, plan_id: str) -> DispatchOutcome:
        """Ring ``to_number`` and play the notify script for ``plan_id``."""
        if not self.client:
            logger.error("Twilio client not initialized")
            return DispatchOutcome.failed(self.method, "Twilio client not initialized")

        if not validate_phone(to_number):
            logger.error("Invalid phone number format", phone=sanitize_phone(to_number))
            return DispatchOutcome.failed(self.method, "invalid phone number")

        start = time.monotonic()
        try:
            call = await asyncio.to_thread(
                self.client.calls.create,
                to=to_number,
                from_=self.from_number,
                url=f"{settings.CALLBACK_URL_BASE}/{plan_id}/twiml/notify",
                timeout=settings.CALL_TIMEOUT_SECONDS,
                machine_detection="Enable"
            )
        except TwilioException as e:
            log_external_api_call(
                logger,
                "twilio",
                "place_call",
                False,
                elapsed_ms(start),
                to_number=sanitize_phone(to_number),
                error_code=getattr(e, "code", None),
                error=str(e)
            )
            return DispatchOutcome.failed(self.method, str(e))
        except Exception as e:
            logger.error(
                "Unexpected error placing call",
                to_number=sanitize_phone(to_number),
                error=str(e)
            )
            return DispatchOutcome.failed(self.method, str(e))

        log_external_api_call(
            logger,
            "twilio",
            "place_call",
            True,
            elapsed_ms(start),
            to_number=sanitize_phone(to_number),
            call_sid=call.sid
        )

        return DispatchOutcome(
            method=self.method,
            success=True,
            provider_id=call.sid,
            recipient=getattr(call, "to", None) or to_number
        )
