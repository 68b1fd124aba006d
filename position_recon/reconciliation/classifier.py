"""
Ghost classifier: deterministic decision policy over reconciliation factors.

Rules, first match wins:

1. GHOST_HIGH   corrupt record, invalid price, or held/expected < high_confidence_ratio
2. LEGITIMATE   not enough evidence (holdings unknown, or too many unknown lookups)
3. GHOST_MEDIUM held/expected < detection_threshold AND no local trade history
                AND old AND no matching exchange order history
4. LEGITIMATE   everything else

The medium path needs every corroborating signal to agree so that a single
noisy input (a quantity mismatch alone) can never trigger deletion.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from position_recon import constants
from position_recon.reconciliation.factors import ReconciliationFactors


class GhostVerdict(str, Enum):
    """Classification outcome."""
    GHOST_HIGH = "ghost-high"
    GHOST_MEDIUM = "ghost-medium"
    LEGITIMATE = "legitimate"

    @property
    def is_ghost(self) -> bool:
        return self is not GhostVerdict.LEGITIMATE


@dataclass(frozen=True)
class ClassificationResult:
    verdict: GhostVerdict
    reason: str


class GhostClassifier:
    """
    Pure function of its inputs; no I/O.
    """

    def __init__(
        self,
        detection_threshold: float = constants.DEFAULT_DETECTION_THRESHOLD,
        high_confidence_ratio: float = constants.DEFAULT_HIGH_CONFIDENCE_RATIO,
        max_unknown_factors: int = constants.DEFAULT_MAX_UNKNOWN_FACTORS,
    ):
        if high_confidence_ratio >= detection_threshold:
            raise ValueError("high_confidence_ratio must be below detection_threshold")
        self.detection_threshold = Decimal(str(detection_threshold))
        self.high_confidence_ratio = Decimal(str(high_confidence_ratio))
        self.max_unknown_factors = max_unknown_factors

    def classify(self, factors: ReconciliationFactors) -> ClassificationResult:
        qm = factors.quantity_match

        # Rule 1: certain corruption, fail toward cleanup
        if not factors.integrity_ok:
            return ClassificationResult(
                GhostVerdict.GHOST_HIGH, "Corrupt record: missing symbol or non-positive expected quantity"
            )
        if not factors.price_validity.is_valid:
            return ClassificationResult(GhostVerdict.GHOST_HIGH, "Invalid or missing price data")
        if qm.is_known and qm.ratio < self.high_confidence_ratio:
            return ClassificationResult(
                GhostVerdict.GHOST_HIGH,
                f"Severe quantity mismatch: {qm.ratio * 100:.1f}% of expected held",
            )

        # Rule 2: insufficient evidence, fail toward keeping the position
        if not qm.is_known or factors.unknown_count >= self.max_unknown_factors:
            return ClassificationResult(
                GhostVerdict.LEGITIMATE,
                f"Insufficient evidence ({factors.unknown_count} lookups unknown)",
            )

        # Rule 3: triple corroboration
        mismatched = qm.ratio < self.detection_threshold
        if (
            mismatched
            and factors.trade_history.absent
            and factors.position_age.is_old
            and not factors.order_history.present
        ):
            return ClassificationResult(
                GhostVerdict.GHOST_MEDIUM,
                "Old position with no trade history and quantity mismatch",
            )

        # Rule 4
        if not mismatched:
            return ClassificationResult(GhostVerdict.LEGITIMATE, "Quantity matches within threshold")
        if factors.trade_history.present:
            return ClassificationResult(GhostVerdict.LEGITIMATE, "Quantity mismatch explained by trade history")
        if factors.order_history.present:
            return ClassificationResult(GhostVerdict.LEGITIMATE, "Quantity mismatch explained by exchange order history")
        if not factors.position_age.is_old:
            return ClassificationResult(GhostVerdict.LEGITIMATE, "Recent position, fills may still be in flight")
        return ClassificationResult(GhostVerdict.LEGITIMATE, "Quantity mismatch not corroborated")
