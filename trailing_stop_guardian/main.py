"""Trailing Stop Guardian - Entry Point.

Watches every open position on one symbol and, each time a bar closes,
moves its stop to the wick extreme of an earlier bar. Stops only tighten.
A position whose stop cannot be placed is closed rather than left naked.
"""

import json
import logging
import signal
import sys
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

from .alerting import AlertDispatcher, TelegramClient, TwilioClient
from .config import settings
from .engine import ReconciliationEngine
from .exceptions import ConfigurationError
from .feeds import RedisBarClock, RedisPositionFeed
from .order_gateway import RedisOrderGateway
from .redis_client import RedisClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)

logger = logging.getLogger(__name__)

engine: Optional[ReconciliationEngine] = None
redis_client: Optional[RedisClient] = None
_shutdown = threading.Event()


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.info(f"Received signal {signum}, shutting down...")
    _shutdown.set()


def _start_health_server() -> None:
    """Serve /health and /status on a daemon thread."""

    class _Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            if self.path == "/health":
                self.send_response(200)
                self.end_headers()
                self.wfile.write(b"ok")
            elif self.path == "/status" and engine is not None:
                body = json.dumps(engine.status()).encode()
                self.send_response(200)
                self.send_header("Content-Type", "application/json")
                self.end_headers()
                self.wfile.write(body)
            else:
                self.send_response(404)
                self.end_headers()

        def log_message(self, *args):
            pass  # suppress HTTP access logs

    server = HTTPServer(("", settings.health_port), _Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    logger.info(f"Health server listening on :{settings.health_port}/health")


def _shutdown_services():
    if engine:
        engine.stop()
    if redis_client:
        redis_client.close()


def main():
    """Main entry point."""
    global engine, redis_client

    logger.info("=" * 60)
    logger.info("TRAILING STOP GUARDIAN")
    logger.info("=" * 60)

    logger.info(f"Symbol: {settings.symbol}")
    logger.info(f"Period: {settings.period}")
    logger.info(f"Bar lag: {settings.bar_lag}")
    logger.info(f"Redis: {settings.redis_host}:{settings.redis_port}")
    logger.info(f"Twilio enabled: {settings.twilio_enabled}")
    logger.info(f"Telegram enabled: {settings.telegram_enabled}")

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        # Fail before any connection or listener is opened
        settings.require_symbol()

        redis_client = RedisClient()
        redis_client.connect()

        twilio = TwilioClient()
        if settings.twilio_enabled:
            twilio.connect()

        engine = ReconciliationEngine(
            bar_clock=RedisBarClock(redis_client),
            position_feed=RedisPositionFeed(redis_client),
            gateway=RedisOrderGateway(redis_client),
            dispatcher=AlertDispatcher(twilio_client=twilio, telegram_client=TelegramClient()),
        )
        _start_health_server()
        engine.start()

        _shutdown.wait()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        _shutdown_services()


if __name__ == "__main__":
    main()
