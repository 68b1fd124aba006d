"""
Result types returned by the reconciliation engine.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from position_recon.domain.models import Position
from position_recon.reconciliation.classifier import ClassificationResult
from position_recon.reconciliation.factors import ReconciliationFactors


class ReconcileStatus(str, Enum):
    OK = "ok"
    THROTTLED = "throttled"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


@dataclass(frozen=True)
class PositionAssessment:
    """A position together with its factors and verdict for one pass."""
    position: Position
    factors: ReconciliationFactors
    classification: ClassificationResult

    @property
    def is_ghost(self) -> bool:
        return self.classification.verdict.is_ghost

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.factors.to_dict(),
            "verdict": self.classification.verdict.value,
            "reason": self.classification.reason,
        }


@dataclass(frozen=True)
class CleanupError:
    position_id: str
    symbol: Optional[str]
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"position_id": self.position_id, "symbol": self.symbol, "error": self.error}


@dataclass
class CleanupReport:
    """Outcome of one cleanup batch."""
    cleaned_ids: List[str] = field(default_factory=list)
    errors: List[CleanupError] = field(default_factory=list)
    snapshot_written: bool = False
    snapshot_label: Optional[str] = None

    @property
    def cleaned(self) -> int:
        return len(self.cleaned_ids)


@dataclass
class ReconciliationReport:
    """
    Result of a reconcile() call.

    throttled / suppressed reports carry no assessments and zero counts.
    """
    status: ReconcileStatus
    wallet_id: str
    trading_mode: str
    ghosts_found: int = 0
    ghosts_cleaned: int = 0
    legitimate_count: int = 0
    errors: List[str] = field(default_factory=list)
    assessments: List[PositionAssessment] = field(default_factory=list)
    reason: Optional[str] = None
    duration_seconds: float = 0.0

    def to_dict(self, include_positions: bool = False) -> Dict[str, Any]:
        result = {
            "status": self.status.value,
            "wallet_id": self.wallet_id,
            "trading_mode": self.trading_mode,
            "ghosts_found": self.ghosts_found,
            "ghosts_cleaned": self.ghosts_cleaned,
            "legitimate_count": self.legitimate_count,
            "errors": list(self.errors),
            "reason": self.reason,
            "duration_seconds": round(self.duration_seconds, 3),
        }
        if include_positions:
            result["positions"] = [a.to_dict() for a in self.assessments]
        return result


@dataclass(frozen=True)
class ReconcileStatusView:
    """Snapshot returned by get_status()."""
    wallet_id: str
    trading_mode: str
    last_reconcile_time: Optional[float]
    attempt_count: int
    throttle_ms: int
    max_attempts: int
    in_flight: bool
    last_outcome: Optional[str]

    @property
    def suppressed(self) -> bool:
        return self.attempt_count >= self.max_attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet_id": self.wallet_id,
            "trading_mode": self.trading_mode,
            "last_reconcile_time": self.last_reconcile_time,
            "attempt_count": self.attempt_count,
            "throttle_ms": self.throttle_ms,
            "max_attempts": self.max_attempts,
            "in_flight": self.in_flight,
            "last_outcome": self.last_outcome,
            "suppressed": self.suppressed,
        }
