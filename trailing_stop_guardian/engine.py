"""Reconciliation Engine - moves every watched stop once per closed bar.

For each closed bar, every watched position gets its lag buffer advanced,
its due stop computed, its old stop cancelled and a new one placed. A
position that cannot be protected is closed: it is never left open without
a stop.
"""

import logging
import threading
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from .alerting.dispatcher import AlertDispatcher
from .config import Settings, settings as default_settings
from .exceptions import ConfigurationError
from .interfaces import BarClock, OrderGateway, PositionFeed, Subscription
from .models import Bar, Order, OrderResult, OrderType, Position, TimeInForce, WatchedPosition
from .registry import PositionRegistry
from .stop_planner import StopPlanner

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    """Owns the watched positions for one symbol and keeps their stops trailing.

    Bar events and position lifecycle events may arrive on different threads
    (redis-py delivers pub/sub messages on its own worker). Every entry point
    takes ``self._lock``, so a reconciliation pass never overlaps another pass
    or a lifecycle event.
    """

    # Consecutive skipped bars before the operator is told the feed is broken.
    _SKIPPED_BAR_ALERT_THRESHOLD = 3

    def __init__(
        self,
        bar_clock: BarClock,
        position_feed: PositionFeed,
        gateway: OrderGateway,
        dispatcher: Optional[AlertDispatcher] = None,
        config: Optional[Settings] = None,
        registry: Optional[PositionRegistry] = None,
        planner: Optional[StopPlanner] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config or default_settings
        self.bar_clock = bar_clock
        self.position_feed = position_feed
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.registry = registry or PositionRegistry()
        self.planner = planner or StopPlanner(bar_lag=self.config.bar_lag)
        self.clock = clock

        self._lock = threading.RLock()
        self._running = False
        self._bar_subscription: Optional[Subscription] = None
        self._position_subscription: Optional[Subscription] = None
        self._last_bar: Optional[Bar] = None
        self._consecutive_skipped_bars = 0
        # Alerts raised during a pass, sent once the lock is released
        self._pending_alerts: List[Callable[[], Any]] = []

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Subscribe to positions and bars and begin trailing.

        Raises:
            ConfigurationError: if no symbol is configured. Nothing is
                subscribed in that case.
        """
        with self._lock:
            if self._running:
                logger.debug("Engine already running")
                return

            try:
                symbol = self.config.require_symbol()
            except ConfigurationError:
                logger.error("Symbol is not configured, refusing to start")
                raise

            period = self.config.period_duration
            logger.info(f"Starting trailing stops for {symbol} ({self.config.period}, bar lag {self.planner.bar_lag})")

            self.registry.clear()
            self._last_bar = None
            self._consecutive_skipped_bars = 0
            self._running = True

            try:
                self._position_subscription = self.position_feed.subscribe(
                    self.on_position_opened,
                    self.on_position_closed,
                )

                # Rebuild the registry from what is already open
                for position in self.position_feed.list_open_positions(symbol):
                    self.on_position_opened(position)

                self._bar_subscription = self.bar_clock.subscribe(symbol, period, self.on_bar_closed)
            except Exception:
                logger.error("Failed to start engine, releasing subscriptions", exc_info=True)
                self.stop()
                raise

            logger.info(f"Engine started, watching {len(self.registry)} position(s)")

    def stop(self):
        """Unsubscribe from both feeds and drop all watched state.

        Safe to call multiple times. Live stop orders are left in place at
        the broker; they keep protecting the positions.

        Subscriptions are released after the lock is dropped: a feed worker
        blocked on the lock inside a callback could otherwise never exit.
        """
        with self._lock:
            if not self._running and self._bar_subscription is None and self._position_subscription is None:
                return
            logger.info("Stopping reconciliation engine...")
            self._running = False

            subscriptions = (
                ("bar", self._bar_subscription),
                ("position", self._position_subscription),
            )
            self._bar_subscription = None
            self._position_subscription = None
            self.registry.clear()
            self._pending_alerts = []

        for name, subscription in subscriptions:
            if subscription is None:
                continue
            try:
                subscription.unsubscribe()
            except Exception as e:
                logger.warning(f"Failed to release {name} subscription: {e}")

        logger.info("Reconciliation engine stopped")

    def status(self) -> Dict[str, Any]:
        """Read-only diagnostics snapshot."""
        with self._lock:
            positions = self.registry.all()
            return {
                "running": self._running,
                "symbol": self.config.symbol,
                "period": self.config.period,
                "bar_lag": self.planner.bar_lag,
                "watched_positions": len(positions),
                "last_bar_time": self._last_bar.time_right.isoformat() if self._last_bar else None,
                "last_bar": self._last_bar.to_dict() if self._last_bar else None,
                "positions": [p.summary() for p in positions],
            }

    # ------------------------------------------------------------------
    # Position lifecycle
    # ------------------------------------------------------------------

    def on_position_opened(self, position: Position):
        """Start watching a newly opened position, adopting any stop it already has."""
        with self._lock:
            if not self._running:
                logger.debug(f"Engine not running, ignoring opened position {position.id}")
                return
            if position.symbol != self.config.symbol:
                logger.debug(f"Ignoring position {position.id} for {position.symbol}")
                return
            if position.id in self.registry:
                logger.debug(f"Position {position.id} already watched")
                return

            watched = WatchedPosition.from_position(position)

            existing = self._find_adoptable_stop(watched)
            if existing is not None:
                watched.active_stop_order_id = existing.id
                watched.last_stop_price = existing.trigger_price
                watched.lag_buffer = self.planner.seed(existing.trigger_price)
                logger.info(f"Position {position.id}: adopted stop {existing.id} @ {existing.trigger_price}")

            self.registry.add(watched)

    def on_position_closed(self, position: Position):
        """Stop watching a closed position and cancel its stop."""
        with self._lock:
            if not self._running:
                logger.debug(f"Engine not running, ignoring closed position {position.id}")
                return
            logger.info(f"Trying to remove {position.id}")
            watched = self.registry.get(position.id)
            if watched is None:
                return
            self._cancel_stop(watched)
            self.registry.remove(watched.id)

    def _find_adoptable_stop(self, watched: WatchedPosition) -> Optional[Order]:
        """First live stop on the protective side not already owned by another position."""
        try:
            orders = self.gateway.list_open_orders(watched.symbol)
        except Exception as e:
            logger.warning(f"Could not list open orders for {watched.symbol}, starting {watched.id} fresh: {e}")
            return None

        claimed = {p.active_stop_order_id for p in self.registry.all() if p.active_stop_order_id}
        for order in orders:
            if (
                order.order_type == OrderType.STOP
                and order.side == watched.side.stop_side
                and order.trigger_price is not None
                and order.id not in claimed
            ):
                return order
        return None

    # ------------------------------------------------------------------
    # Bar processing
    # ------------------------------------------------------------------

    def on_bar_closed(self, bar: Bar):
        """Reconcile every watched position against a newly closed bar.

        Alerts raised during the pass go out only after the pass finishes and
        the lock is released. A slow SMS or call never delays the stops of
        the remaining positions, nor the next lifecycle event.
        """
        with self._lock:
            if not self._running:
                logger.debug("Engine not running, ignoring bar")
                return
            try:
                self._process_bar(bar)
            finally:
                alerts, self._pending_alerts = self._pending_alerts, []

        self._send_alerts(alerts)

    def _process_bar(self, bar: Bar):
        problem = self._validate_bar(bar)
        if problem:
            self._skip_bar(problem)
            return

        self._last_bar = bar
        self._consecutive_skipped_bars = 0
        logger.info(f"New \"{self.config.period}\" candle -- {bar.open_time.isoformat()} "
                    f"O={bar.open} H={bar.high} L={bar.low} C={bar.close}")

        for position_id in self.registry.ids():
            watched = self.registry.get(position_id)
            if watched is None:
                continue
            try:
                self._reconcile(watched, bar)
            except Exception as e:
                logger.error(f"Error reconciling position {position_id}: {e}", exc_info=True)

        logger.info(f"Reconciled bar, {len(self.registry)} position(s) watched")

    def _queue_alert(self, send: Callable[..., Any], **kwargs):
        self._pending_alerts.append(partial(send, **kwargs))

    def _send_alerts(self, alerts: List[Callable[[], Any]]):
        for send in alerts:
            try:
                send()
            except Exception as e:
                logger.error(f"Failed to send alert: {e}", exc_info=True)

    def _validate_bar(self, bar: Bar) -> Optional[str]:
        """Return why ``bar`` is not the latest completed bar, or None if it is."""
        now = self.clock()
        period = self.config.period_duration

        if bar.symbol and bar.symbol != self.config.symbol:
            return f"bar for {bar.symbol}, expected {self.config.symbol}"
        if bar.time_right > now:
            return f"bar closing at {bar.time_right.isoformat()} has not completed"
        if bar.time_right - bar.open_time != period:
            return f"bar {bar.open_time.isoformat()}-{bar.time_right.isoformat()} does not span {self.config.period}"
        if self._last_bar is not None and bar.open_time <= self._last_bar.open_time:
            return f"bar {bar.open_time.isoformat()} is not newer than {self._last_bar.open_time.isoformat()}"
        if now - bar.time_right > period:
            return f"bar closed at {bar.time_right.isoformat()} is stale"
        if not (bar.low <= bar.close <= bar.high and bar.low <= bar.open <= bar.high):
            return f"bar {bar.open_time.isoformat()} has inconsistent OHLC"
        return None

    def _skip_bar(self, reason: str):
        self._consecutive_skipped_bars += 1
        logger.warning(f"Failed to find completed bar ({reason}), skipping cycle")

        if self._consecutive_skipped_bars == self._SKIPPED_BAR_ALERT_THRESHOLD and self.dispatcher:
            logger.critical(
                f"{self._consecutive_skipped_bars} consecutive bars skipped. Stops are NOT trailing."
            )
            self._queue_alert(
                self.dispatcher.send_degraded_alert,
                symbol=self.config.symbol or "",
                message=f"{self._consecutive_skipped_bars} consecutive bars skipped. "
                f"Stops are not trailing. Last reason: {reason}",
            )

    def _reconcile(self, watched: WatchedPosition, bar: Bar):
        """Replace one position's stop with the one due on ``bar``."""
        plan = self.planner.plan(watched.side, watched.lag_buffer, bar, watched.last_stop_price)
        watched.lag_buffer = plan.lag_buffer
        watched.elapsed_bars += 1

        if plan.breached:
            self._close_on_retracement(watched, plan.stop_price, bar)
            return

        self._cancel_stop(watched)

        result = self._call_gateway(
            "place_stop_order",
            self.gateway.place_stop_order,
            account=watched.account,
            symbol=watched.symbol,
            position_id=watched.id,
            side=watched.side.stop_side,
            trigger_price=plan.stop_price,
            quantity=watched.quantity,
            time_in_force=TimeInForce.GTC,
        )

        if result.success and not result.order_id:
            result = OrderResult.failed("stop accepted without an order id")

        if result.success:
            watched.active_stop_order_id = result.order_id
            watched.last_stop_price = plan.stop_price
            logger.info(f"Position {watched.id}: stop {result.order_id} @ {plan.stop_price}")
            return

        self._close_on_placement_failure(watched, plan.stop_price, result)

    def _close_on_retracement(self, watched: WatchedPosition, stop_price, bar: Bar):
        closed = self._call_gateway("close_position", self.gateway.close_position, watched.id)
        if closed.success:
            # The old stop no longer protects anything
            self._cancel_stop(watched)
        else:
            logger.error(f"Position {watched.id}: close after retracement failed: {closed.error}")
        self.registry.remove(watched.id)

        logger.warning(
            f"Position {watched.id}: stop {stop_price} already crossed by close {bar.close}, position closed"
        )
        if self.dispatcher:
            self._queue_alert(
                self.dispatcher.send_retracement_close_alert,
                symbol=watched.symbol,
                position_id=watched.id,
                stop_price=stop_price,
                close=bar.close,
                close_succeeded=closed.success,
            )

    def _close_on_placement_failure(self, watched: WatchedPosition, stop_price, result: OrderResult):
        closed = self._call_gateway("close_position", self.gateway.close_position, watched.id)
        self.registry.remove(watched.id)

        logger.error(
            f"Unable to set stop loss for {watched.id} @ {stop_price} ({result.error}). "
            f"Position {'closed' if closed.success else 'close FAILED'}"
        )
        if self.dispatcher:
            self._queue_alert(
                self.dispatcher.send_placement_failed_alert,
                symbol=watched.symbol,
                position_id=watched.id,
                stop_price=stop_price,
                error=result.error,
                close_succeeded=closed.success,
            )

    def _cancel_stop(self, watched: WatchedPosition):
        """Best-effort cancel of the active stop. The field is cleared either way."""
        order_id = watched.active_stop_order_id
        if order_id is None:
            return
        watched.active_stop_order_id = None
        result = self._call_gateway("cancel_order", self.gateway.cancel_order, order_id)
        if not result.success:
            logger.debug(f"Cancel of stop {order_id} for {watched.id} not confirmed: {result.error}")

    def _call_gateway(self, action: str, call: Callable[..., OrderResult], *args, **kwargs) -> OrderResult:
        """Invoke a gateway command, turning exceptions and empty replies into failures."""
        try:
            result = call(*args, **kwargs)
        except Exception as e:
            logger.warning(f"Gateway {action} raised: {e}")
            return OrderResult.failed(str(e))
        if result is None:
            return OrderResult.failed(f"{action} returned no result")
        return result
