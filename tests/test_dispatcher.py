"""Tests for AlertDispatcher channel routing."""

import unittest
import unittest.mock
from decimal import Decimal

from trailing_stop_guardian.alerting.dispatcher import AlertDispatcher
from trailing_stop_guardian.models import Alert, AlertType, Severity


class TestAlertDispatcher(unittest.TestCase):

    def setUp(self):
        self.twilio = unittest.mock.MagicMock()
        self.telegram = unittest.mock.MagicMock()
        self.twilio.send_sms.return_value = "SM1"
        self.twilio.make_call.return_value = "CA1"
        self.telegram.send_alert.return_value = True
        self.dispatcher = AlertDispatcher(twilio_client=self.twilio, telegram_client=self.telegram)

    def _alert(self, severity):
        return Alert(
            alert_type=AlertType.RETRACEMENT_CLOSE,
            severity=severity,
            symbol="BTC-USD",
            message="test",
        )

    def test_warning_goes_to_telegram_only(self):
        self.assertTrue(self.dispatcher.dispatch(self._alert(Severity.WARNING)))
        self.telegram.send_alert.assert_called_once()
        self.twilio.send_sms.assert_not_called()
        self.twilio.make_call.assert_not_called()

    def test_urgent_adds_sms(self):
        self.dispatcher.dispatch(self._alert(Severity.URGENT))
        self.twilio.send_sms.assert_called_once()
        self.twilio.make_call.assert_not_called()

    def test_critical_uses_every_channel(self):
        self.dispatcher.dispatch(self._alert(Severity.CRITICAL))
        self.telegram.send_alert.assert_called_once()
        self.twilio.send_sms.assert_called_once()
        self.twilio.make_call.assert_called_once()

    def test_any_delivered_channel_counts_as_success(self):
        self.telegram.send_alert.return_value = False
        self.assertTrue(self.dispatcher.dispatch(self._alert(Severity.URGENT)))

    def test_nothing_delivered_is_failure(self):
        self.telegram.send_alert.side_effect = RuntimeError("network down")
        self.assertFalse(self.dispatcher.dispatch(self._alert(Severity.WARNING)))

    def test_placement_failed_alert_is_critical(self):
        self.dispatcher.send_placement_failed_alert(
            symbol="BTC-USD",
            position_id="P1",
            stop_price=Decimal("100"),
            error="rejected",
            close_succeeded=False,
        )

        self.twilio.make_call.assert_called_once()
        message = self.telegram.send_alert.call_args[0][0]
        self.assertIn("CRITICAL", message)
        self.assertIn("UNPROTECTED", message)
        self.assertIn("Position: P1", message)
        self.assertIn("Error: rejected", message)

    def test_retracement_close_alert_is_warning_when_closed(self):
        self.dispatcher.send_retracement_close_alert(
            symbol="BTC-USD",
            position_id="P1",
            stop_price=Decimal("103"),
            close=Decimal("104"),
            close_succeeded=True,
        )

        self.twilio.send_sms.assert_not_called()
        message = self.telegram.send_alert.call_args[0][0]
        self.assertIn("Stop: 103", message)
        self.assertIn("Close: 104", message)


if __name__ == "__main__":
    unittest.main()
