"""Tests for PositionRegistry."""

from decimal import Decimal

from trailing_stop_guardian.models import Side, WatchedPosition
from trailing_stop_guardian.registry import PositionRegistry


def _watched(position_id: str = "P1") -> WatchedPosition:
    return WatchedPosition(
        id=position_id,
        symbol="BTC-USD",
        account="ACC1",
        side=Side.LONG,
        quantity=Decimal("1"),
    )


class TestPositionRegistry:

    def setup_method(self):
        self.registry = PositionRegistry()

    def test_add_and_get(self):
        watched = _watched()
        assert self.registry.add(watched) is True
        assert self.registry.get("P1") is watched
        assert "P1" in self.registry
        assert len(self.registry) == 1

    def test_duplicate_id_is_ignored(self):
        first = _watched()
        self.registry.add(first)

        assert self.registry.add(_watched()) is False
        assert self.registry.get("P1") is first
        assert len(self.registry) == 1

    def test_remove_returns_entry(self):
        watched = _watched()
        self.registry.add(watched)

        assert self.registry.remove("P1") is watched
        assert "P1" not in self.registry

    def test_remove_missing_is_noop(self):
        assert self.registry.remove("nope") is None

    def test_remove_twice_is_safe(self):
        self.registry.add(_watched())
        self.registry.remove("P1")
        assert self.registry.remove("P1") is None

    def test_all_is_a_snapshot(self):
        for pid in ("P1", "P2", "P3"):
            self.registry.add(_watched(pid))

        seen = []
        for watched in self.registry.all():
            seen.append(watched.id)
            self.registry.remove(watched.id)

        assert seen == ["P1", "P2", "P3"]
        assert len(self.registry) == 0

    def test_clear(self):
        self.registry.add(_watched())
        self.registry.clear()
        assert self.registry.ids() == []
