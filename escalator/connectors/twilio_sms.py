"""Twilio SMS connector for sending acknowledgment-tracked text alerts."""

import asyncio
import time
from typing import TYPE_CHECKING, Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from escalator.config import settings
from escalator.models.plan import ContactMethod, DispatchOutcome
from escalator.utils.logging import elapsed_ms, get_logger, log_external_api_call
from escalator.utils.security import sanitize_phone
from escalator.utils.validation import validate_phone

if TYPE_CHECKING:
    from escalator.escalation.registry import ConversationCorrelator

logger = get_logger(__name__)

MAX_SMS_LENGTH = 1600


class TwilioSMSConnector:
    """Sends plan notifications by SMS.

    When an acknowledgment is required, a fresh code is appended to the body
    and, once Twilio accepts the message, the (recipient, code) pair is
    remembered so the reply can be traced back to the plan.
    """

    method = ContactMethod.SMS

    def __init__(
        self,
        correlator: "ConversationCorrelator",
        client: Optional[Client] = None
    ):
        self.correlator = correlator
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
        return await self.send_message(recipient, content, plan_id, requires_ack)

    async def send_message(
        self,
        to_number: str,
        message: str,
        plan_id: Optional[str] = None,
        requires_ack: bool = True
    ) -> DispatchOutcome:
        """Send an SMS, optionally asking the recipient to reply with a code."""
        if not self.client:
            logger.error("Twilio client not initialized")
            return DispatchOutcome.failed(self.method, "Twilio client not initialized")

        if not validate_phone(to_number):
            logger.error("Invalid phone number format", phone=sanitize_phone(to_number))
            return DispatchOutcome.failed(self.method, "invalid phone number")

        code = self.correlator.new_code() if requires_ack and plan_id else None

        create_kwargs = {
            "body": self.build_body(message, code),
            "from_": self.from_number,
            "to": to_number,
        }
        if plan_id:
            create_kwargs["status_callback"] = f"{settings.CALLBACK_URL_BASE}/{plan_id}/callback"

        start = time.monotonic()
        try:
            message_obj = await asyncio.to_thread(self.client.messages.create, **create_kwargs)
        except TwilioException as e:
            log_external_api_call(
                logger,
                "twilio",
                "send_sms",
                False,
                elapsed_ms(start),
                to_number=sanitize_phone(to_number),
                error_code=getattr(e, "code", None),
                error=str(e)
            )
            return DispatchOutcome.failed(self.method, str(e))
        except Exception as e:
            logger.error(
                "Unexpected error sending SMS",
                to_number=sanitize_phone(to_number),
                error=str(e)
            )
            return DispatchOutcome.failed(self.method, str(e))

        # Replies arrive from Twilio's normalised form of the number
        delivered_to = getattr(message_obj, "to", None) or to_number
        if code:
            self.correlator.remember(delivered_to, code, plan_id)

        log_external_api_call(
            logger,
            "twilio",
            "send_sms",
            True,
            elapsed_ms(start),
            to_number=sanitize_phone(delivered_to),
            message_sid=message_obj.sid,
            ack_requested=code is not None
        )

        return DispatchOutcome(
            method=self.method,
            success=True,
            provider_id=message_obj.sid,
            recipient=delivered_to,
            ack_code=code
        )

    @staticmethod
    def build_body(message: str, code: Optional[str]) -> str:
        if code is None:
            return message[:MAX_SMS_LENGTH]

        suffix = f' - Reply with "{code}" to acknowledge'
        return message[:MAX_SMS_LENGTH - len(suffix)] + suffix
