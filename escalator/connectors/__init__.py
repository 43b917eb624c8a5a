"""Messaging connectors for Escalator."""

from typing import TYPE_CHECKING, Dict

from escalator.models.plan import ContactMethod

from .base import ContactAction
from .twilio_sms import TwilioSMSConnector
from .twilio_voice import TwilioVoiceConnector

if TYPE_CHECKING:
    from escalator.escalation.registry import ConversationCorrelator


def build_contact_actions(correlator: "ConversationCorrelator") -> Dict[ContactMethod, ContactAction]:
    """Twilio-backed actions for every supported contact method."""
    actions = [TwilioSMSConnector(correlator), TwilioVoiceConnector()]
    return {action.method: action for action in actions}


__all__ = [
    "ContactAction",
    "TwilioSMSConnector",
    "TwilioVoiceConnector",
    "build_contact_actions",
]
