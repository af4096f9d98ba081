"""Alerting module for Trailing Stop Guardian."""

from .twilio_client import TwilioClient
from .telegram_client import TelegramClient
from .dispatcher import AlertDispatcher

__all__ = ["TwilioClient", "TelegramClient", "AlertDispatcher"]
