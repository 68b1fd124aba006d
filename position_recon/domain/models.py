"""
Domain models for the reconciliation engine.

These are the core business objects shared by the engine and its collaborators.
All timestamps use UTC timezone-aware datetimes.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional


class PositionStatus(str, Enum):
    """Lifecycle status of a locally tracked position."""
    OPEN = "open"
    TRAILING = "trailing"
    CLOSED = "closed"


RECONCILABLE_STATUSES = frozenset({PositionStatus.OPEN, PositionStatus.TRAILING})


class Side(str, Enum):
    """Position side."""
    LONG = "long"
    SHORT = "short"

    @property
    def entry_order_side(self) -> str:
        """Exchange order side that opens a position of this side."""
        return "buy" if self is Side.LONG else "sell"


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a numeric value into Decimal, returning None for missing/garbage input."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _decimal_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class Position:
    """
    Locally tracked position.

    Owned by the local position store. The reconciliation engine only reads it,
    and mutates it through the store when a ghost is cleaned up.
    """
    id: str
    symbol: Optional[str]
    expected_quantity: Optional[Decimal]
    entry_price: Optional[Decimal]
    current_price: Optional[Decimal]
    status: PositionStatus
    created_at: datetime

    wallet_id: Optional[str] = None
    trading_mode: Optional[str] = None
    side: Side = Side.LONG

    # Set when the position leaves open/trailing
    closed_at: Optional[datetime] = None
    exit_reason: Optional[str] = None

    @property
    def is_reconcilable(self) -> bool:
        """Only open/trailing positions are reconciliation candidates."""
        return self.status in RECONCILABLE_STATUSES

    @property
    def has_valid_identity(self) -> bool:
        """
        Open/trailing positions must carry a symbol and a positive expected quantity.

        A violation means the record itself is corrupt.
        """
        if not self.symbol:
            return False
        qty = self.expected_quantity
        return qty is not None and qty.is_finite() and qty > 0

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return (now - created_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON storage and audit snapshots."""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "expected_quantity": _decimal_str(self.expected_quantity),
            "entry_price": _decimal_str(self.entry_price),
            "current_price": _decimal_str(self.current_price),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "wallet_id": self.wallet_id,
            "trading_mode": self.trading_mode,
            "side": self.side.value,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "exit_reason": self.exit_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        """Build a Position from a stored dict. Tolerates missing numeric fields."""
        side_raw = str(data.get("side") or "long").lower()
        return cls(
            id=str(data["id"]),
            symbol=data.get("symbol") or None,
            expected_quantity=to_decimal(data.get("expected_quantity")),
            entry_price=to_decimal(data.get("entry_price")),
            current_price=to_decimal(data.get("current_price")),
            status=PositionStatus(str(data.get("status") or "open").lower()),
            created_at=_parse_timestamp(data.get("created_at")) or datetime.now(timezone.utc),
            wallet_id=data.get("wallet_id"),
            trading_mode=data.get("trading_mode"),
            side=Side.SHORT if side_raw in ("short", "sell") else Side.LONG,
            closed_at=_parse_timestamp(data.get("closed_at")),
            exit_reason=data.get("exit_reason"),
        )


@dataclass(frozen=True)
class TradeRecord:
    """A recorded fill referencing a local position."""
    trade_id: str
    position_id: str
    symbol: str
    side: str
    quantity: Decimal
    price: Decimal
    timestamp: datetime

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeRecord":
        return cls(
            trade_id=str(data["trade_id"]),
            position_id=str(data["position_id"]),
            symbol=str(data.get("symbol") or ""),
            side=str(data.get("side") or ""),
            quantity=to_decimal(data.get("quantity")) or Decimal("0"),
            price=to_decimal(data.get("price")) or Decimal("0"),
            timestamp=_parse_timestamp(data.get("timestamp")) or datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class OrderRecord:
    """Historical order as reported by the exchange."""
    order_id: str
    symbol: str
    side: str
    quantity: Decimal
    filled_quantity: Decimal
    status: str
    timestamp: datetime
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_filled(self) -> bool:
        return self.filled_quantity > 0
