"""
ReconciliationScheduler: gated entry point for reconciliation passes.

Guarantees, per (wallet_id, trading_mode):
- At most one pass in flight
- No pass starts within throttle_seconds of the previous pass ending
- No pass runs once the attempt tracker has hit max_attempts

Usage:
    scheduler = build_scheduler(config, store, exchange, audit_sink, bus)

    report = await scheduler.reconcile("wallet-1", "live")
    if report.status is ReconcileStatus.FAILED:
        ...

reconcile() never raises; faults become a "failed" report.
"""
import asyncio
import time
from typing import Callable, Dict, List, Optional, Tuple

from position_recon import constants
from position_recon.monitoring.logger import get_logger, reconcile_context
from position_recon.reconciliation.analyzer import PositionAnalyzer
from position_recon.reconciliation.attempt_tracker import AttemptTracker
from position_recon.reconciliation.classifier import GhostClassifier
from position_recon.reconciliation.cleanup import CleanupExecutor
from position_recon.reconciliation.collaborators import (
    AuditSink,
    ExchangeStateClient,
    LocalPositionStore,
    NotificationBus,
)
from position_recon.reconciliation.report import (
    CleanupReport,
    PositionAssessment,
    ReconcileStatus,
    ReconcileStatusView,
    ReconciliationReport,
)

logger = get_logger(__name__)

WalletKey = Tuple[str, str]

REASON_DISABLED = "disabled"
REASON_IN_FLIGHT = "in_flight"
REASON_THROTTLE_WINDOW = "throttle_window"
REASON_MAX_ATTEMPTS = "max_attempts"


class ReconciliationScheduler:
    """
    Owns the throttle/lock table. Domain state lives in the AttemptTracker.
    """

    def __init__(
        self,
        store: LocalPositionStore,
        analyzer: PositionAnalyzer,
        classifier: GhostClassifier,
        executor: CleanupExecutor,
        tracker: AttemptTracker,
        *,
        throttle_seconds: float = constants.DEFAULT_THROTTLE_SECONDS,
        slow_pass_warning_seconds: float = constants.DEFAULT_SLOW_PASS_WARNING_SECONDS,
        list_timeout_seconds: float = constants.DEFAULT_LOOKUP_TIMEOUT_SECONDS,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.analyzer = analyzer
        self.classifier = classifier
        self.executor = executor
        self.tracker = tracker
        self.throttle_seconds = throttle_seconds
        self.slow_pass_warning_seconds = slow_pass_warning_seconds
        self.list_timeout_seconds = list_timeout_seconds
        self.enabled = enabled
        self._clock = clock

        self._locks: Dict[WalletKey, asyncio.Lock] = {}
        self._last_run: Dict[WalletKey, float] = {}

    async def reconcile(self, wallet_id: str, trading_mode: str) -> ReconciliationReport:
        key = (wallet_id, trading_mode)

        if not self.enabled:
            return self._skipped(key, ReconcileStatus.SUPPRESSED, REASON_DISABLED)

        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        if lock.locked():
            return self._skipped(key, ReconcileStatus.THROTTLED, REASON_IN_FLIGHT)

        last = self._last_run.get(key)
        if last is not None and self._clock() - last < self.throttle_seconds:
            return self._skipped(key, ReconcileStatus.THROTTLED, REASON_THROTTLE_WINDOW)

        if not self.tracker.can_attempt(wallet_id, trading_mode):
            return self._skipped(key, ReconcileStatus.SUPPRESSED, REASON_MAX_ATTEMPTS)

        async with lock:
            with reconcile_context(wallet_id, trading_mode):
                started = time.monotonic()
                try:
                    report = await self._run_pass(wallet_id, trading_mode)
                except Exception as e:
                    self.tracker.record_failure(wallet_id, trading_mode, str(e))
                    report = ReconciliationReport(
                        status=ReconcileStatus.FAILED,
                        wallet_id=wallet_id,
                        trading_mode=trading_mode,
                        errors=[str(e)],
                        reason=type(e).__name__,
                    )
                    logger.error(
                        "RECONCILE_FAILED",
                        wallet_id=wallet_id,
                        trading_mode=trading_mode,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                finally:
                    self._last_run[key] = self._clock()

                report.duration_seconds = time.monotonic() - started
                if report.duration_seconds > self.slow_pass_warning_seconds:
                    logger.warning(
                        "RECONCILE_SLOW",
                        wallet_id=wallet_id,
                        trading_mode=trading_mode,
                        duration_seconds=round(report.duration_seconds, 3),
                        threshold_seconds=self.slow_pass_warning_seconds,
                    )
                return report

    async def _run_pass(self, wallet_id: str, trading_mode: str) -> ReconciliationReport:
        logger.info("RECONCILE_START", wallet_id=wallet_id, trading_mode=trading_mode)

        positions = await asyncio.wait_for(
            self.store.list_open_positions(wallet_id, trading_mode),
            timeout=self.list_timeout_seconds,
        )
        candidates = [p for p in positions if p.is_reconcilable]

        factors = await self.analyzer.analyze_all(candidates)
        assessments = [
            PositionAssessment(position=p, factors=f, classification=self.classifier.classify(f))
            for p, f in zip(candidates, factors)
        ]
        ghosts = [a for a in assessments if a.is_ghost]

        for a in ghosts:
            logger.info(
                "GHOST_DETECTED",
                wallet_id=wallet_id,
                trading_mode=trading_mode,
                verdict=a.classification.verdict.value,
                reason=a.classification.reason,
                **a.factors.to_dict(),
            )

        cleanup = CleanupReport()
        if ghosts:
            cleanup = await self.executor.cleanup(ghosts, wallet_id, trading_mode)

        self.tracker.record_attempt(wallet_id, trading_mode, ghosts_found=len(ghosts))
        state = self.tracker.get_state(wallet_id, trading_mode)

        report = ReconciliationReport(
            status=ReconcileStatus.OK,
            wallet_id=wallet_id,
            trading_mode=trading_mode,
            ghosts_found=len(ghosts),
            ghosts_cleaned=cleanup.cleaned,
            legitimate_count=len(assessments) - len(ghosts),
            errors=[f"{err.position_id}: {err.error}" for err in cleanup.errors],
            assessments=assessments,
        )
        logger.info(
            "RECONCILE_SUMMARY",
            wallet_id=wallet_id,
            trading_mode=trading_mode,
            positions=len(assessments),
            ghosts_found=report.ghosts_found,
            ghosts_cleaned=report.ghosts_cleaned,
            legitimate=report.legitimate_count,
            cleanup_errors=len(cleanup.errors),
            snapshot_written=cleanup.snapshot_written,
            attempt_count=state.attempt_count,
        )
        return report

    def _skipped(self, key: WalletKey, status: ReconcileStatus, reason: str) -> ReconciliationReport:
        wallet_id, trading_mode = key
        logger.debug("Reconcile skipped", wallet_id=wallet_id, trading_mode=trading_mode, status=status.value, reason=reason)
        return ReconciliationReport(status=status, wallet_id=wallet_id, trading_mode=trading_mode, reason=reason)

    def get_status(self, wallet_id: str, trading_mode: str) -> ReconcileStatusView:
        key = (wallet_id, trading_mode)
        state = self.tracker.get_state(wallet_id, trading_mode)
        lock = self._locks.get(key)
        return ReconcileStatusView(
            wallet_id=wallet_id,
            trading_mode=trading_mode,
            last_reconcile_time=self._last_run.get(key),
            attempt_count=state.attempt_count,
            throttle_ms=int(self.throttle_seconds * 1000),
            max_attempts=self.tracker.max_attempts,
            in_flight=bool(lock and lock.locked()),
            last_outcome=state.last_outcome,
        )

    def reset_attempts(self, wallet_id: str, trading_mode: str) -> bool:
        self.tracker.reset(wallet_id, trading_mode)
        return True

    def reset_stale_attempts(self, older_than_seconds: float) -> List[WalletKey]:
        return self.tracker.reset_stale(older_than_seconds, now=self._clock())


def build_scheduler(
    config,
    store: LocalPositionStore,
    exchange: ExchangeStateClient,
    audit_sink: AuditSink,
    bus: Optional[NotificationBus] = None,
) -> ReconciliationScheduler:
    """Wire a scheduler from a loaded Config."""
    rc = config.reconciliation
    analyzer = PositionAnalyzer(
        exchange,
        store,
        old_position_hours=rc.old_position_hours,
        lookup_timeout_seconds=rc.lookup_timeout_seconds,
        order_history_slack_minutes=rc.order_history_slack_minutes,
    )
    classifier = GhostClassifier(
        detection_threshold=rc.detection_threshold,
        high_confidence_ratio=rc.high_confidence_ratio,
        max_unknown_factors=rc.max_unknown_factors,
    )
    executor = CleanupExecutor(store, audit_sink, bus, cleanup_action=rc.cleanup_action)
    tracker = AttemptTracker(max_attempts=rc.max_attempts)
    return ReconciliationScheduler(
        store,
        analyzer,
        classifier,
        executor,
        tracker,
        throttle_seconds=rc.throttle_seconds,
        slow_pass_warning_seconds=rc.slow_pass_warning_seconds,
        list_timeout_seconds=rc.lookup_timeout_seconds,
        enabled=rc.reconcile_enabled,
    )
