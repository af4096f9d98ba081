"""Alert dispatcher routing alerts to channels by severity."""

import logging
from decimal import Decimal
from typing import List, Optional

from ..models import Alert, AlertChannel, AlertType, Severity
from .twilio_client import TwilioClient
from .telegram_client import TelegramClient

logger = logging.getLogger(__name__)


class AlertDispatcher:
    """Dispatches alerts: Telegram always, SMS for urgent, SMS + call for critical."""

    def __init__(
        self,
        twilio_client: TwilioClient,
        telegram_client: TelegramClient,
    ):
        self.twilio = twilio_client
        self.telegram = telegram_client

    def dispatch(self, alert: Alert) -> bool:
        """Send an alert on every channel its severity calls for.

        Returns:
            True if at least one channel delivered the alert
        """
        channels = self._get_channels(alert.severity)
        message = alert.format_message()

        delivered: List[AlertChannel] = []
        for channel in channels:
            try:
                if channel == AlertChannel.TELEGRAM:
                    sent = self.telegram.send_alert(message)
                elif channel == AlertChannel.SMS:
                    sent = self.twilio.send_sms(message) is not None
                else:
                    # TTS is slow, keep calls short
                    sent = self.twilio.make_call(message[:200]) is not None
            except Exception as e:
                logger.error(f"Alert delivery via {channel.value} raised: {e}")
                sent = False
            if sent:
                delivered.append(channel)

        success = bool(delivered)
        log_level = logging.INFO if success else logging.ERROR
        logger.log(
            log_level,
            f"Alert {'sent' if success else 'FAILED'}: {alert.alert_type.value} for {alert.symbol} "
            f"via {', '.join(c.value for c in delivered) or 'no channel'}"
        )
        return success

    def _get_channels(self, severity: Severity) -> List[AlertChannel]:
        if severity == Severity.CRITICAL:
            return [AlertChannel.TELEGRAM, AlertChannel.SMS, AlertChannel.PHONE_CALL]
        if severity == Severity.URGENT:
            return [AlertChannel.TELEGRAM, AlertChannel.SMS]
        return [AlertChannel.TELEGRAM]

    def send_placement_failed_alert(
        self,
        symbol: str,
        position_id: str,
        stop_price: Decimal,
        error: Optional[str],
        close_succeeded: bool,
    ) -> bool:
        """Stop could not be placed; the position was force-closed."""
        if close_succeeded:
            message = f"Could not place stop at {stop_price}. Position was closed to avoid unprotected exposure."
            action = "Verify the position is flat at the broker"
        else:
            message = f"Could not place stop at {stop_price} AND the close request failed. Position may be UNPROTECTED."
            action = "Close the position or set a stop manually NOW"

        alert = Alert(
            alert_type=AlertType.STOP_PLACEMENT_FAILED,
            severity=Severity.CRITICAL,
            symbol=symbol,
            position_id=position_id,
            message=message,
            details={"stop_price": stop_price, "error": error},
            suggested_action=action,
        )
        return self.dispatch(alert)

    def send_retracement_close_alert(
        self,
        symbol: str,
        position_id: str,
        stop_price: Decimal,
        close: Decimal,
        close_succeeded: bool,
    ) -> bool:
        """Price already crossed the due stop; the position was closed outright."""
        if close_succeeded:
            severity = Severity.WARNING
            message = "Price retraced through the trailing stop. Position closed."
        else:
            severity = Severity.URGENT
            message = "Price retraced through the trailing stop but the close request failed."

        alert = Alert(
            alert_type=AlertType.RETRACEMENT_CLOSE,
            severity=severity,
            symbol=symbol,
            position_id=position_id,
            message=message,
            details={"stop_price": stop_price, "close": close},
        )
        return self.dispatch(alert)

    def send_degraded_alert(self, symbol: str, message: str) -> bool:
        alert = Alert(
            alert_type=AlertType.SERVICE_DEGRADED,
            severity=Severity.URGENT,
            symbol=symbol,
            message=message,
            suggested_action="Check guardian logs immediately",
        )
        return self.dispatch(alert)
