"""Twilio SMS and voice delivery for urgent and critical alerts."""

import logging
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from ..config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# Twilio rejects message bodies over 1600 characters
SMS_MAX_LENGTH = 1500


def build_call_twiml(message: str) -> str:
    """TwiML that reads ``message`` out, pauses, then reads it once more."""
    response = VoiceResponse()
    response.say(f"Trailing stop guardian alert. {message}")
    response.pause(length=2)
    response.say(f"Once more. {message}")
    return str(response)


class TwilioClient:
    """Texts and calls the operator's phone."""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings
        self.enabled = self.config.twilio_enabled
        self.client: Optional[Client] = None

    def connect(self):
        """Create the REST client and check the account credentials.

        Raises:
            TwilioRestException: if the account cannot be fetched; Twilio
                delivery stays disabled
        """
        if not self.enabled:
            logger.warning("Twilio not configured, SMS and call alerts disabled")
            return

        account_sid = self.config.twilio_account_sid
        try:
            self.client = Client(account_sid, self.config.twilio_auth_token)
            account = self.client.api.accounts(account_sid).fetch()
        except TwilioRestException as e:
            logger.error(f"Twilio credentials rejected: {e}")
            self.client = None
            self.enabled = False
            raise
        logger.info(f"Twilio ready for account {account.friendly_name}")

    def send_sms(self, message: str) -> Optional[str]:
        """Text ``message`` to the alert number. Returns the message SID, or None."""
        if len(message) > SMS_MAX_LENGTH:
            message = message[:SMS_MAX_LENGTH - 3] + "..."
        return self._create("SMS", "messages", body=message)

    def make_call(self, message: str) -> Optional[str]:
        """Ring the alert number and read ``message``. Returns the call SID, or None."""
        return self._create("call", "calls", twiml=build_call_twiml(message))

    def _create(self, kind: str, resource: str, **kwargs) -> Optional[str]:
        if not self.enabled or self.client is None:
            logger.warning(f"Twilio not connected, {kind} alert not sent")
            return None
        try:
            created = getattr(self.client, resource).create(
                from_=self.config.twilio_phone_number,
                to=self.config.alert_phone_number,
                **kwargs,
            )
        except TwilioRestException as e:
            logger.error(f"Twilio {kind} failed: {e}")
            return None
        logger.info(f"Twilio {kind} sent: {created.sid}")
        return created.sid
