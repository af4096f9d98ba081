"""Configuration for Trailing Stop Guardian service."""

import re
from datetime import timedelta
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError

_PERIOD_RE = re.compile(r"^(\d+)([mhdw])$")
_PERIOD_UNITS = {"m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def parse_period(value: str) -> timedelta:
    """Parse a bar period such as ``15m``, ``4h`` or ``1d``."""
    match = _PERIOD_RE.match(value.strip().lower())
    if not match:
        raise ValueError(f"Invalid period '{value}' (expected e.g. 15m, 4h, 1d)")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError(f"Period must be positive, got '{value}'")
    return timedelta(**{_PERIOD_UNITS[match.group(2)]: amount})


class Settings(BaseSettings):
    """Trailing Stop Guardian configuration."""

    # Trailing stop
    symbol: Optional[str] = Field(default=None, alias="SYMBOL")
    period: str = Field(default="4h", alias="PERIOD")
    bar_lag: int = Field(default=2, ge=0, alias="BAR_LAG")

    # Redis - bridge to the broker (bars, positions, orders)
    redis_host: str = Field(default="redis", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_db: int = Field(default=0, alias="REDIS_DB")
    bars_channel_prefix: str = Field(default="bars", alias="BARS_CHANNEL_PREFIX")
    positions_channel: str = Field(default="positions:events", alias="POSITIONS_CHANNEL")
    open_positions_key: str = Field(default="positions:open", alias="OPEN_POSITIONS_KEY")
    open_orders_key_prefix: str = Field(default="orders:open", alias="OPEN_ORDERS_KEY_PREFIX")
    order_commands_key: str = Field(default="orders:commands", alias="ORDER_COMMANDS_KEY")
    order_replies_prefix: str = Field(default="orders:replies", alias="ORDER_REPLIES_PREFIX")
    order_reply_timeout_seconds: int = Field(default=10, ge=1, alias="ORDER_REPLY_TIMEOUT_SECONDS")

    # Twilio - Urgent alerts (SMS + Phone)
    twilio_account_sid: Optional[str] = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_phone_number: Optional[str] = Field(default=None, alias="TWILIO_PHONE_NUMBER")
    alert_phone_number: str = Field(default="", alias="ALERT_PHONE_NUMBER")

    # Telegram - Routine alerts
    telegram_bot_token: Optional[str] = Field(default=None, alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: Optional[str] = Field(default=None, alias="TELEGRAM_CHAT_ID")

    # Logging / health
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    health_port: int = Field(default=8080, alias="HEALTH_PORT")

    @field_validator("period")
    @classmethod
    def _validate_period(cls, value: str) -> str:
        parse_period(value)
        return value.strip().lower()

    @property
    def period_duration(self) -> timedelta:
        return parse_period(self.period)

    def require_symbol(self) -> str:
        """Return the configured symbol.

        Raises:
            ConfigurationError: if SYMBOL is unset or blank
        """
        if not self.symbol or not self.symbol.strip():
            raise ConfigurationError("SYMBOL must be set")
        return self.symbol

    @property
    def twilio_enabled(self) -> bool:
        return all([self.twilio_account_sid, self.twilio_auth_token, self.twilio_phone_number, self.alert_phone_number])

    @property
    def telegram_enabled(self) -> bool:
        return all([self.telegram_bot_token, self.telegram_chat_id])

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }


settings = Settings()
