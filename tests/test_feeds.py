"""Tests for the Redis bar clock and position feed."""

import json
import unittest
import unittest.mock
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from trailing_stop_guardian.config import Settings
from trailing_stop_guardian.feeds import RedisBarClock, RedisPositionFeed, format_period
from trailing_stop_guardian.models import Side


class _ListeningClient:
    """Captures the handler registered through RedisClient.listen."""

    def __init__(self):
        self.client = unittest.mock.MagicMock()
        self.channel = None
        self.handler = None
        self.subscription = unittest.mock.MagicMock()

    def listen(self, channel, on_message):
        self.channel = channel
        self.handler = on_message
        return self.subscription


class TestFormatPeriod(unittest.TestCase):

    def test_formats(self):
        self.assertEqual(format_period(timedelta(minutes=15)), "15m")
        self.assertEqual(format_period(timedelta(hours=4)), "4h")
        self.assertEqual(format_period(timedelta(days=1)), "1d")
        self.assertEqual(format_period(timedelta(weeks=1)), "1w")
        self.assertEqual(format_period(timedelta(minutes=90)), "90m")

    def test_sub_minute_period_rejected(self):
        with self.assertRaises(ValueError):
            format_period(timedelta(seconds=30))


class TestRedisBarClock(unittest.TestCase):

    def setUp(self):
        self.redis_client = _ListeningClient()
        self.clock = RedisBarClock(self.redis_client, config=Settings(SYMBOL="BTC-USD"))

    def test_subscribe_decodes_bars(self):
        received = []
        sub = self.clock.subscribe("BTC-USD", timedelta(hours=4), received.append)

        self.assertIs(sub, self.redis_client.subscription)
        self.assertEqual(self.redis_client.channel, "bars:BTC-USD:4h")

        self.redis_client.handler({
            "symbol": "BTC-USD",
            "open_time": "2026-01-05T00:00:00+00:00",
            "open": "101",
            "high": "110",
            "low": "100",
            "close": "105.25",
            "time_right": "2026-01-05T04:00:00",
        })

        self.assertEqual(len(received), 1)
        bar = received[0]
        self.assertEqual(bar.low, Decimal("100"))
        self.assertEqual(bar.close, Decimal("105.25"))
        self.assertEqual(bar.time_right, datetime(2026, 1, 5, 4, tzinfo=timezone.utc))

    def test_malformed_bar_dropped(self):
        received = []
        self.clock.subscribe("BTC-USD", timedelta(hours=4), received.append)

        self.redis_client.handler({"symbol": "BTC-USD", "low": "abc"})
        self.redis_client.handler({
            "open_time": "2026-01-05T00:00:00+00:00", "open": "x", "high": "1",
            "low": "1", "close": "1", "time_right": "2026-01-05T04:00:00+00:00",
        })

        self.assertEqual(received, [])


class TestRedisPositionFeed(unittest.TestCase):

    def setUp(self):
        self.redis_client = _ListeningClient()
        self.feed = RedisPositionFeed(self.redis_client, config=Settings(SYMBOL="BTC-USD"))
        self.opened = []
        self.closed = []
        self.feed.subscribe(self.opened.append, self.closed.append)

    def _position(self, **overrides):
        data = {"id": "P1", "symbol": "BTC-USD", "account": "ACC1", "side": "buy", "quantity": "0.5"}
        data.update(overrides)
        return data

    def test_routes_events(self):
        self.assertEqual(self.redis_client.channel, "positions:events")

        self.redis_client.handler({"event": "opened", "position": self._position()})
        self.redis_client.handler({"event": "closed", "position": self._position(side="sell")})

        self.assertEqual(len(self.opened), 1)
        self.assertEqual(self.opened[0].side, Side.LONG)
        self.assertEqual(self.opened[0].quantity, Decimal("0.5"))
        self.assertEqual(self.closed[0].side, Side.SHORT)

    def test_unknown_event_and_bad_position_ignored(self):
        self.redis_client.handler({"event": "modified", "position": self._position()})
        self.redis_client.handler({"event": "opened"})
        self.redis_client.handler({"event": "opened", "position": "P1"})

        self.assertEqual(self.opened, [])
        self.assertEqual(self.closed, [])

    def test_list_open_positions_filters_symbol(self):
        self.redis_client.client.hgetall.return_value = {
            "P1": json.dumps(self._position()),
            "P2": json.dumps(self._position(id="P2", symbol="ETH-USD")),
            "P3": "garbage",
        }

        positions = self.feed.list_open_positions("BTC-USD")

        self.redis_client.client.hgetall.assert_called_once_with("positions:open")
        self.assertEqual([p.id for p in positions], ["P1"])


if __name__ == "__main__":
    unittest.main()
