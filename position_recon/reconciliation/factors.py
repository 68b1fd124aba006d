"""
Per-position reconciliation factors.

Computed fresh for each position on each pass and discarded after
classification. Nothing here is persisted.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class Evidence(str, Enum):
    """Outcome of a lookup that may fail."""
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class QuantityMatch:
    """Held vs expected quantity. ratio is None when holdings could not be fetched."""
    expected: Optional[Decimal]
    held: Optional[Decimal]
    ratio: Optional[Decimal]
    detail: str = ""

    @property
    def is_known(self) -> bool:
        return self.ratio is not None


@dataclass(frozen=True)
class PositionAge:
    age_hours: float
    is_old: bool


@dataclass(frozen=True)
class PriceValidity:
    entry_price: Optional[Decimal]
    current_price: Optional[Decimal]
    is_valid: bool


@dataclass(frozen=True)
class HistoryPresence:
    """Trade or order history lookup result."""
    evidence: Evidence
    count: int = 0
    detail: str = ""

    @property
    def present(self) -> bool:
        return self.evidence is Evidence.PRESENT

    @property
    def absent(self) -> bool:
        return self.evidence is Evidence.ABSENT

    @property
    def unknown(self) -> bool:
        return self.evidence is Evidence.UNKNOWN


@dataclass(frozen=True)
class ReconciliationFactors:
    """The five independent checks for one position, plus the derived ghost score."""
    position_id: str
    symbol: Optional[str]
    integrity_ok: bool
    quantity_match: QuantityMatch
    position_age: PositionAge
    price_validity: PriceValidity
    trade_history: HistoryPresence
    order_history: HistoryPresence
    ghost_score: float = 0.0

    @property
    def unknown_count(self) -> int:
        """Number of remote factors that could not be determined."""
        return sum((
            not self.quantity_match.is_known,
            self.trade_history.unknown,
            self.order_history.unknown,
        ))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for logging and reports."""
        qm = self.quantity_match
        return {
            "position_id": self.position_id,
            "symbol": self.symbol,
            "integrity_ok": self.integrity_ok,
            "quantity_ratio": str(qm.ratio) if qm.ratio is not None else None,
            "expected_quantity": str(qm.expected) if qm.expected is not None else None,
            "held_quantity": str(qm.held) if qm.held is not None else None,
            "age_hours": round(self.position_age.age_hours, 2),
            "is_old": self.position_age.is_old,
            "price_valid": self.price_validity.is_valid,
            "trade_history": self.trade_history.evidence.value,
            "order_history": self.order_history.evidence.value,
            "unknown_factors": self.unknown_count,
            "ghost_score": round(self.ghost_score, 1),
        }
