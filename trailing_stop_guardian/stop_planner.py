"""Stop Planner - computes the next lagged trailing stop for a position."""

import logging
from collections import deque
from decimal import Decimal
from typing import Deque, Iterable, Optional

from .config import settings
from .models import Bar, Side, StopPlan

logger = logging.getLogger(__name__)


class StopPlanner:
    """Computes trailing stops from bar wicks with a lag buffer.

    Every bar contributes a candidate at its adverse extreme (the low for a
    long, the high for a short). Candidates wait in a buffer for ``bar_lag``
    bars before they are placed, so a single noisy bar cannot drag the stop.

    Candidates are ratcheted when they are queued: a long candidate is never
    below the previous queued (or last placed) stop, a short candidate never
    above it. Since the buffer is therefore monotone, the stops dequeued from
    it are monotone too.

    Nothing here mutates its inputs; the engine stores the returned buffer.
    """

    def __init__(self, bar_lag: Optional[int] = None):
        self.bar_lag = settings.bar_lag if bar_lag is None else bar_lag
        if self.bar_lag < 0:
            raise ValueError(f"bar_lag must be >= 0, got {self.bar_lag}")

    @property
    def depth(self) -> int:
        """Buffer depth. A lag of 0 places the just-closed bar's extreme, like 1."""
        return max(self.bar_lag, 1)

    def plan(
        self,
        side: Side,
        lag_buffer: Iterable[Decimal],
        bar: Bar,
        last_stop_price: Optional[Decimal] = None,
    ) -> StopPlan:
        """Fill the buffer from ``bar``, then dequeue the stop due this bar.

        Args:
            side: Position side
            lag_buffer: Queued candidates, oldest first
            bar: The bar that has just closed
            last_stop_price: Last stop placed or adopted; ratchet reference
                when the buffer is empty

        Returns:
            StopPlan with the stop to place, the remaining buffer and whether
            the stop is already breached by the bar's close
        """
        buffer: Deque[Decimal] = deque(lag_buffer)

        while len(buffer) < self.depth:
            prior = buffer[-1] if buffer else last_stop_price
            buffer.append(self.tighten(side, self.raw_candidate(side, bar), prior))

        stop_price = buffer.popleft()
        breached = self.is_breached(side, stop_price, bar.close)

        if breached:
            logger.debug(f"{side.value} stop {stop_price} already breached by close {bar.close}")

        return StopPlan(stop_price=stop_price, lag_buffer=buffer, breached=breached)

    def seed(self, adopted_price: Optional[Decimal]) -> Deque[Decimal]:
        """Initial buffer for a new position, optionally seeded by an existing stop.

        At depth 1 the buffer must start empty: a seeded entry would be
        emitted in place of the first bar's wick. The adopted price still
        bounds that wick through the ratchet against ``last_stop_price``.
        """
        if adopted_price is None or self.depth <= 1:
            return deque()
        return deque([adopted_price])

    @staticmethod
    def raw_candidate(side: Side, bar: Bar) -> Decimal:
        return bar.low if side is Side.LONG else bar.high

    @staticmethod
    def tighten(side: Side, candidate: Decimal, prior: Optional[Decimal]) -> Decimal:
        """Pick the tighter of ``candidate`` and ``prior`` (never loosen)."""
        if prior is None:
            return candidate
        if side is Side.LONG:
            return max(candidate, prior)
        return min(candidate, prior)

    @staticmethod
    def is_breached(side: Side, stop_price: Decimal, close: Decimal) -> bool:
        """True if the stop would trigger immediately against ``close``."""
        if side is Side.LONG:
            return stop_price >= close
        return stop_price <= close
