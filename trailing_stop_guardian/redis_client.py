"""Redis connection and message codec for the broker bridge."""

import json
import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

import redis

from .config import Settings, settings as default_settings
from .models import Bar, Order, OrderSide, OrderType, Position, Side

logger = logging.getLogger(__name__)

# Errors raised by the parse_* helpers on malformed payloads
MALFORMED_PAYLOAD_ERRORS = (KeyError, TypeError, ValueError, AttributeError, InvalidOperation)


class RedisClient:
    """Shared Redis connection used by the feeds and the order gateway."""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings
        self.client: Optional[redis.Redis] = None

    def connect(self):
        """Establish Redis connection."""
        try:
            self.client = redis.Redis(
                host=self.config.redis_host,
                port=self.config.redis_port,
                db=self.config.redis_db,
                decode_responses=True,
            )
            self.client.ping()
            logger.info("Connected to Redis")
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    def close(self):
        """Close Redis connection."""
        if self.client:
            self.client.close()
            self.client = None

    def listen(self, channel: str, on_message: Callable[[Dict[str, Any]], None]) -> "RedisSubscription":
        """Deliver decoded JSON messages from ``channel`` on a worker thread.

        Messages that are not valid JSON objects are logged and dropped.
        """
        def _handler(message):
            try:
                payload = json.loads(message["data"])
            except (TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed message on {channel}: {e}")
                return
            if not isinstance(payload, dict):
                logger.warning(f"Dropping non-object message on {channel}")
                return
            try:
                on_message(payload)
            except Exception as e:
                logger.error(f"Error handling message on {channel}: {e}", exc_info=True)

        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(**{channel: _handler})
        thread = pubsub.run_in_thread(sleep_time=0.1, daemon=True)
        logger.info(f"Subscribed to {channel}")
        return RedisSubscription(channel, pubsub, thread)


class RedisSubscription:
    """A pub/sub listener that can be torn down.

    The redis-py worker closes its own pubsub connection once its loop
    exits, so teardown only stops the worker and waits for it.
    """

    # Seconds to wait for the worker to finish an in-flight message
    _JOIN_TIMEOUT_SECONDS = 5.0

    def __init__(self, channel: str, pubsub, thread):
        self.channel = channel
        self._pubsub = pubsub
        self._thread = thread
        self._closed = False
        self._lock = threading.Lock()

    def unsubscribe(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._thread.stop()

        # Called from a message handler: the worker exits once the handler returns
        if self._thread is threading.current_thread():
            logger.info(f"Unsubscribing from {self.channel} from its own worker")
            return

        self._thread.join(timeout=self._JOIN_TIMEOUT_SECONDS)
        if self._thread.is_alive():
            logger.warning(
                f"Listener for {self.channel} still running after {self._JOIN_TIMEOUT_SECONDS}s"
            )
            return
        logger.info(f"Unsubscribed from {self.channel}")


# ----------------------------------------------------------------------
# Codec
# ----------------------------------------------------------------------

def _parse_time(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_side(value: str) -> Side:
    value = value.lower()
    if value in ("long", "buy"):
        return Side.LONG
    if value in ("short", "sell"):
        return Side.SHORT
    raise ValueError(f"Unknown position side '{value}'")


def parse_bar(data: Dict[str, Any]) -> Bar:
    """Raises one of MALFORMED_PAYLOAD_ERRORS on malformed input."""
    return Bar(
        symbol=data.get("symbol"),
        open_time=_parse_time(data["open_time"]),
        open=Decimal(str(data["open"])),
        high=Decimal(str(data["high"])),
        low=Decimal(str(data["low"])),
        close=Decimal(str(data["close"])),
        time_right=_parse_time(data["time_right"]),
    )


def parse_position(data: Dict[str, Any]) -> Position:
    """Raises one of MALFORMED_PAYLOAD_ERRORS on malformed input."""
    return Position(
        id=str(data["id"]),
        symbol=data["symbol"],
        account=str(data.get("account", "")),
        side=_parse_side(data["side"]),
        quantity=Decimal(str(data["quantity"])),
    )


def parse_order(data: Dict[str, Any]) -> Order:
    """Raises one of MALFORMED_PAYLOAD_ERRORS on malformed input."""
    trigger = data.get("trigger_price")
    return Order(
        id=str(data["id"]),
        symbol=data["symbol"],
        side=OrderSide(data["side"].lower()),
        order_type=OrderType(data["order_type"].lower()),
        trigger_price=Decimal(str(trigger)) if trigger is not None else None,
    )
