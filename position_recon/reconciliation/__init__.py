"""
Ghost position reconciliation.

ARCHITECTURE:
    ReconciliationScheduler (throttle + single-flight gate)
        │
        ├── AttemptTracker (per-wallet retry cap)
        │
        ├── PositionAnalyzer (five factors + ghost score)
        │       ├── ExchangeStateClient (holdings, order history)
        │       └── LocalPositionStore (trade history)
        │
        ├── GhostClassifier (ghost-high / ghost-medium / legitimate)
        │
        └── CleanupExecutor (audit snapshot, delete or close, notify)
"""
from position_recon.reconciliation.analyzer import PositionAnalyzer
from position_recon.reconciliation.attempt_tracker import AttemptTracker, ReconciliationAttemptState
from position_recon.reconciliation.classifier import ClassificationResult, GhostClassifier, GhostVerdict
from position_recon.reconciliation.cleanup import CleanupExecutor
from position_recon.reconciliation.factors import Evidence, ReconciliationFactors
from position_recon.reconciliation.report import (
    CleanupReport,
    PositionAssessment,
    ReconcileStatus,
    ReconcileStatusView,
    ReconciliationReport,
)
from position_recon.reconciliation.scheduler import ReconciliationScheduler, build_scheduler

__all__ = [
    "AttemptTracker",
    "ClassificationResult",
    "CleanupExecutor",
    "CleanupReport",
    "Evidence",
    "GhostClassifier",
    "GhostVerdict",
    "PositionAnalyzer",
    "PositionAssessment",
    "ReconcileStatus",
    "ReconcileStatusView",
    "ReconciliationAttemptState",
    "ReconciliationFactors",
    "ReconciliationReport",
    "ReconciliationScheduler",
    "build_scheduler",
]
