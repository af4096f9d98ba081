"""Tests for RedisClient.listen and subscription teardown."""

import json
import threading
import unittest
import unittest.mock

from trailing_stop_guardian.config import Settings
from trailing_stop_guardian.redis_client import RedisClient, RedisSubscription


class TestRedisSubscription(unittest.TestCase):

    def setUp(self):
        self.pubsub = unittest.mock.MagicMock()
        self.thread = unittest.mock.MagicMock()
        self.thread.is_alive.return_value = False
        self.subscription = RedisSubscription("bars:BTC-USD:4h", self.pubsub, self.thread)

    def test_unsubscribe_stops_and_joins_worker(self):
        self.subscription.unsubscribe()

        self.thread.stop.assert_called_once()
        self.thread.join.assert_called_once_with(timeout=RedisSubscription._JOIN_TIMEOUT_SECONDS)

    def test_worker_owns_pubsub_teardown(self):
        self.subscription.unsubscribe()

        self.pubsub.close.assert_not_called()
        self.pubsub.unsubscribe.assert_not_called()

    def test_unsubscribe_is_idempotent(self):
        self.subscription.unsubscribe()
        self.subscription.unsubscribe()

        self.thread.stop.assert_called_once()
        self.thread.join.assert_called_once()

    def test_worker_still_alive_is_logged(self):
        self.thread.is_alive.return_value = True

        with self.assertLogs("trailing_stop_guardian.redis_client", level="WARNING"):
            self.subscription.unsubscribe()

    def test_unsubscribe_from_own_worker_does_not_join(self):
        with unittest.mock.patch.object(threading, "current_thread", return_value=self.thread):
            self.subscription.unsubscribe()

        self.thread.stop.assert_called_once()
        self.thread.join.assert_not_called()


class TestListen(unittest.TestCase):

    def setUp(self):
        self.redis_client = RedisClient(config=Settings(SYMBOL="BTC-USD"))
        self.redis_client.client = unittest.mock.MagicMock()
        self.pubsub = self.redis_client.client.pubsub.return_value
        self.received = []
        self.subscription = self.redis_client.listen("positions:events", self.received.append)
        self.handler = self.pubsub.subscribe.call_args[1]["positions:events"]

    def test_runs_pubsub_on_worker_thread(self):
        self.pubsub.run_in_thread.assert_called_once_with(sleep_time=0.1, daemon=True)
        self.assertIsInstance(self.subscription, RedisSubscription)

    def test_decodes_json_objects(self):
        self.handler({"data": json.dumps({"event": "opened"})})
        self.assertEqual(self.received, [{"event": "opened"}])

    def test_drops_malformed_payloads(self):
        self.handler({"data": "not json"})
        self.handler({"data": json.dumps([1, 2])})
        self.assertEqual(self.received, [])

    def test_callback_error_does_not_escape_worker(self):
        subscription = self.redis_client.listen("bars:BTC-USD:4h", unittest.mock.Mock(side_effect=RuntimeError))
        handler = self.pubsub.subscribe.call_args[1]["bars:BTC-USD:4h"]

        handler({"data": json.dumps({"close": "1"})})

        self.assertIsInstance(subscription, RedisSubscription)


if __name__ == "__main__":
    unittest.main()
