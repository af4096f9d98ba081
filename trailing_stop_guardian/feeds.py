"""Redis pub/sub bar clock and position feed."""

import json
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

import redis

from .config import Settings, settings as default_settings
from .interfaces import BarCallback, PositionCallback
from .redis_client import (
    MALFORMED_PAYLOAD_ERRORS,
    RedisClient,
    RedisSubscription,
    parse_bar,
    parse_position,
)
from .models import Position

logger = logging.getLogger(__name__)


def format_period(period: timedelta) -> str:
    """Channel suffix for a period: 15m, 4h, 1d, 1w."""
    seconds = int(period.total_seconds())
    for unit, size in (("w", 604800), ("d", 86400), ("h", 3600), ("m", 60)):
        if seconds % size == 0:
            return f"{seconds // size}{unit}"
    raise ValueError(f"Period {period} is not a whole number of minutes")


class RedisBarClock:
    """Closed bars published by the bridge on ``bars:{symbol}:{period}``."""

    def __init__(self, redis_client: RedisClient, config: Optional[Settings] = None):
        self.redis = redis_client
        self.config = config or default_settings

    def channel(self, symbol: str, period: timedelta) -> str:
        return f"{self.config.bars_channel_prefix}:{symbol}:{format_period(period)}"

    def subscribe(self, symbol: str, period: timedelta, callback: BarCallback) -> RedisSubscription:
        def _on_message(payload: Dict[str, Any]):
            try:
                bar = parse_bar(payload)
            except MALFORMED_PAYLOAD_ERRORS as e:
                logger.warning(f"Dropping malformed bar for {symbol}: {e}")
                return
            callback(bar)

        return self.redis.listen(self.channel(symbol, period), _on_message)


class RedisPositionFeed:
    """Position open/close events and the open-position snapshot."""

    def __init__(self, redis_client: RedisClient, config: Optional[Settings] = None):
        self.redis = redis_client
        self.config = config or default_settings

    def subscribe(self, on_opened: PositionCallback, on_closed: PositionCallback) -> RedisSubscription:
        def _on_message(payload: Dict[str, Any]):
            event = payload.get("event")
            try:
                position = parse_position(payload["position"])
            except MALFORMED_PAYLOAD_ERRORS as e:
                logger.warning(f"Dropping malformed position event: {e}")
                return

            if event == "opened":
                on_opened(position)
            elif event == "closed":
                on_closed(position)
            else:
                logger.warning(f"Unknown position event '{event}' for {position.id}")

        return self.redis.listen(self.config.positions_channel, _on_message)

    def list_open_positions(self, symbol: str) -> List[Position]:
        """Open positions for ``symbol`` from the bridge snapshot hash.

        Entries that cannot be parsed are skipped.
        """
        try:
            raw_positions = self.redis.client.hgetall(self.config.open_positions_key)
        except redis.RedisError as e:
            logger.error(f"Failed to get open positions from Redis: {e}")
            return []

        positions = []
        for position_id, data_str in raw_positions.items():
            try:
                position = parse_position(json.loads(data_str))
            except MALFORMED_PAYLOAD_ERRORS as e:
                logger.warning(f"Failed to parse position data for {position_id}: {e}")
                continue
            if position.symbol == symbol:
                positions.append(position)

        return positions
