"""In-memory registry of watched positions."""

import logging
from typing import Dict, List, Optional

from .models import WatchedPosition

logger = logging.getLogger(__name__)


class PositionRegistry:
    """Positions under management, keyed by position id.

    Pure bookkeeping: nothing here talks to the order gateway. Callers are
    responsible for serialising access (the engine holds its lock).
    """

    def __init__(self):
        self._positions: Dict[str, WatchedPosition] = {}

    def add(self, position: WatchedPosition) -> bool:
        """Register a position. Returns False if the id is already watched."""
        if position.id in self._positions:
            logger.info(f"Position {position.id} already watched, ignoring duplicate")
            return False
        self._positions[position.id] = position
        logger.info(
            f"Added position -- ID: {position.id}, Side: {position.side.value}, "
            f"Stop: {position.active_stop_order_id or 'None'}"
        )
        return True

    def remove(self, position_id: str) -> Optional[WatchedPosition]:
        """Remove and return the entry, or None if it is not watched."""
        position = self._positions.pop(position_id, None)
        if position is not None:
            logger.info(f"Removed position -- ID: {position.id}, Side: {position.side.value}")
        return position

    def get(self, position_id: str) -> Optional[WatchedPosition]:
        return self._positions.get(position_id)

    def all(self) -> List[WatchedPosition]:
        """Snapshot of all entries; safe to iterate while the registry changes."""
        return list(self._positions.values())

    def ids(self) -> List[str]:
        return list(self._positions.keys())

    def clear(self):
        self._positions.clear()

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._positions
