"""Order gateway over a Redis request/reply queue.

The broker bridge pops commands from ``ORDER_COMMANDS_KEY`` and pushes one
JSON reply per command onto ``{ORDER_REPLIES_PREFIX}:{request_id}``. A reply
that does not arrive within ``ORDER_REPLY_TIMEOUT_SECONDS`` is a failure.
"""

import json
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

import redis

from .config import Settings, settings as default_settings
from .exceptions import GatewayError
from .models import Order, OrderResult, OrderSide, OrderType, TimeInForce
from .redis_client import MALFORMED_PAYLOAD_ERRORS, RedisClient, parse_order

logger = logging.getLogger(__name__)


class RedisOrderGateway:
    """Places, cancels and closes through the broker bridge.

    Every command returns an OrderResult; Redis errors, timeouts and
    malformed replies are reported as failed results, never raised.
    """

    def __init__(self, redis_client: RedisClient, config: Optional[Settings] = None):
        self.redis = redis_client
        self.config = config or default_settings

    def place_stop_order(
        self,
        account: str,
        symbol: str,
        position_id: str,
        side: OrderSide,
        trigger_price: Decimal,
        quantity: Decimal,
        time_in_force: TimeInForce = TimeInForce.GTC,
    ) -> OrderResult:
        return self._command(
            "place_stop_order",
            {
                "account": account,
                "symbol": symbol,
                "position_id": position_id,
                "side": side.value,
                "order_type": OrderType.STOP.value,
                "trigger_price": str(trigger_price),
                "quantity": str(quantity),
                "time_in_force": time_in_force.value,
            },
        )

    def cancel_order(self, order_id: str) -> OrderResult:
        return self._command("cancel_order", {"order_id": order_id})

    def close_position(self, position_id: str) -> OrderResult:
        return self._command("close_position", {"position_id": position_id})

    def list_open_orders(self, symbol: str) -> List[Order]:
        """Open orders for ``symbol`` from the bridge snapshot hash."""
        key = f"{self.config.open_orders_key_prefix}:{symbol}"
        try:
            raw_orders = self.redis.client.hgetall(key)
        except redis.RedisError as e:
            logger.error(f"Failed to get open orders for {symbol} from Redis: {e}")
            return []

        orders = []
        for order_id, data_str in raw_orders.items():
            try:
                orders.append(parse_order(json.loads(data_str)))
            except MALFORMED_PAYLOAD_ERRORS as e:
                logger.warning(f"Failed to parse order data for {order_id}: {e}")
        return orders

    def _command(self, action: str, args: Dict[str, Any]) -> OrderResult:
        try:
            reply = self._request(action, args)
        except (GatewayError, redis.RedisError) as e:
            logger.warning(f"{action} failed: {e}")
            return OrderResult.failed(str(e))

        if not isinstance(reply.get("success"), bool):
            return OrderResult.failed(f"{action}: malformed reply {reply!r}")
        if reply["success"]:
            order_id = reply.get("order_id")
            return OrderResult.ok(str(order_id) if order_id is not None else None)
        return OrderResult.failed(str(reply.get("error") or "rejected"))

    def _request(self, action: str, args: Dict[str, Any]) -> Dict[str, Any]:
        """Push a command and block for its reply.

        Raises:
            GatewayError: on timeout or an unparseable reply
        """
        request_id = uuid.uuid4().hex
        reply_key = f"{self.config.order_replies_prefix}:{request_id}"
        command = {"request_id": request_id, "action": action, **args}

        self.redis.client.lpush(self.config.order_commands_key, json.dumps(command))
        logger.debug(f"Sent {action} ({request_id})")

        reply = self.redis.client.blpop(reply_key, timeout=self.config.order_reply_timeout_seconds)
        if reply is None:
            raise GatewayError(f"{action} timed out after {self.config.order_reply_timeout_seconds}s")

        _, data_str = reply
        try:
            data = json.loads(data_str)
        except ValueError as e:
            raise GatewayError(f"{action}: unparseable reply: {e}") from e
        if not isinstance(data, dict):
            raise GatewayError(f"{action}: reply is not an object")
        return data
