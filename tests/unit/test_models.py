"""
Unit tests for domain model parsing and invariants.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from recon_helpers import NOW, make_position
from position_recon.domain.models import Position, PositionStatus, Side, to_decimal


class TestPosition:

    def test_serialization_round_trip(self):
        position = make_position("p1", side=Side.SHORT)
        position.closed_at = NOW
        position.exit_reason = "ghost_position_purge"
        assert Position.from_dict(position.to_dict()) == position

    @pytest.mark.parametrize("symbol,expected,valid", [
        ("BTCUSDT", "1.0", True),
        (None, "1.0", False),
        ("", "1.0", False),
        ("BTCUSDT", "0", False),
        ("BTCUSDT", "-1", False),
        ("BTCUSDT", None, False),
        ("BTCUSDT", "NaN", False),
    ])
    def test_identity_invariant(self, symbol, expected, valid):
        assert make_position(symbol=symbol, expected=expected).has_valid_identity is valid

    def test_reconcilable_statuses(self):
        assert make_position(status=PositionStatus.OPEN).is_reconcilable
        assert make_position(status=PositionStatus.TRAILING).is_reconcilable
        assert not make_position(status=PositionStatus.CLOSED).is_reconcilable

    def test_age_with_naive_created_at(self):
        position = make_position()
        position.created_at = datetime(2026, 1, 15, 10, 0, 0)
        assert position.age_seconds(NOW) == pytest.approx(7200)

    def test_from_dict_defaults(self):
        position = Position.from_dict({"id": 7, "symbol": "BTCUSDT", "created_at": "2026-01-14T12:00:00Z"})
        assert position.id == "7"
        assert position.status == PositionStatus.OPEN
        assert position.side == Side.LONG
        assert position.expected_quantity is None
        assert position.created_at == NOW - timedelta(days=1)

    def test_sell_side_alias(self):
        assert Position.from_dict({"id": "p", "side": "SELL"}).side == Side.SHORT

    def test_entry_order_side(self):
        assert Side.LONG.entry_order_side == "buy"
        assert Side.SHORT.entry_order_side == "sell"


@pytest.mark.parametrize("value,expected", [
    ("1.5", Decimal("1.5")),
    (2, Decimal("2")),
    (0.1, Decimal("0.1")),
    (None, None),
    ("", None),
    ("abc", None),
])
def test_to_decimal(value, expected):
    assert to_decimal(value) == expected


def test_aware_timestamps_preserved():
    position = Position.from_dict({"id": "p", "created_at": "2026-01-15T12:00:00+02:00"})
    assert position.created_at.utcoffset() == timedelta(hours=2)
    assert position.created_at == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)
