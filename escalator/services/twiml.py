"""TwiML documents for notification calls and SMS replies."""

from twilio.twiml.messaging_response import MessagingResponse
from twilio.twiml.voice_response import Gather, VoiceResponse

from escalator.config import settings


def notify_call_script(plan_id: str, message: str) -> str:
    """Script played when the recipient answers a notification call.

    Any key pressed while the message plays is posted to the plan's
    ``/digits`` callback and counts as an acknowledgment.
    """
    response = VoiceResponse()
    response.say(f"This is {settings.SENDER_NAME} with a message for you.", voice="woman")

    gather = Gather(
        action=f"{settings.CALLBACK_URL_BASE}/{plan_id}/digits",
        method="POST",
        timeout=settings.GATHER_TIMEOUT_SECONDS,
        num_digits=1
    )
    gather.say(message, voice="man")
    gather.say("Press any key to acknowledge receipt of this message", voice="woman")
    response.append(gather)

    return str(response)


def acknowledged_call_script() -> str:
    response = VoiceResponse()
    response.say("Thank you. This message has been acknowledged. Goodbye!", voice="woman")
    response.hangup()
    return str(response)


def hangup_script() -> str:
    response = VoiceResponse()
    response.hangup()
    return str(response)


def sms_reply(text: str) -> str:
    response = MessagingResponse()
    response.message(text)
    return str(response)
