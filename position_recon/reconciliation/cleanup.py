"""
Cleanup executor: backup then remove (or close) ghost positions.
"""
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from position_recon import constants
from position_recon.monitoring.logger import get_logger
from position_recon.reconciliation.collaborators import AuditSink, LocalPositionStore, NotificationBus
from position_recon.reconciliation.report import CleanupError, CleanupReport, PositionAssessment

logger = get_logger(__name__)

CLEANUP_DELETE = "delete"
CLEANUP_MARK_CLOSED = "mark_closed"


def audit_label(wallet_id: str, trading_mode: str, now: datetime) -> str:
    """ghost-positions-backup-<wallet>-<mode>-<UTC timestamp>"""
    stamp = now.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{constants.AUDIT_LABEL_PREFIX}-{wallet_id}-{trading_mode}-{stamp}"


class CleanupExecutor:
    """
    Applies cleanup to positions classified as ghosts.

    Legitimate positions are never touched. The audit snapshot is attempted
    before any mutation; a failed snapshot is logged but does not block cleanup.
    """

    def __init__(
        self,
        store: LocalPositionStore,
        audit_sink: AuditSink,
        bus: Optional[NotificationBus] = None,
        cleanup_action: str = CLEANUP_DELETE,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if cleanup_action not in (CLEANUP_DELETE, CLEANUP_MARK_CLOSED):
            raise ValueError(f"Unknown cleanup_action: {cleanup_action}")
        self.store = store
        self.audit_sink = audit_sink
        self.bus = bus
        self.cleanup_action = cleanup_action
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def cleanup(
        self,
        assessments: Sequence[PositionAssessment],
        wallet_id: str,
        trading_mode: str,
    ) -> CleanupReport:
        report = CleanupReport()
        ghosts = [a for a in assessments if a.is_ghost]
        if not ghosts:
            return report

        label = audit_label(wallet_id, trading_mode, self._clock())
        records = [
            {**a.position.to_dict(), "verdict": a.classification.verdict.value, "reason": a.classification.reason}
            for a in ghosts
        ]
        try:
            await self.audit_sink.snapshot(records, label)
            report.snapshot_written = True
            report.snapshot_label = label
        except Exception as e:
            logger.error(
                "Ghost backup snapshot failed, continuing cleanup",
                wallet_id=wallet_id,
                trading_mode=trading_mode,
                label=label,
                error=str(e),
            )

        for assessment in ghosts:
            position = assessment.position
            try:
                if self.cleanup_action == CLEANUP_MARK_CLOSED:
                    await self.store.mark_closed(position.id)
                else:
                    await self.store.delete(position.id)
                report.cleaned_ids.append(position.id)
                logger.info(
                    "GHOST_CLEANED",
                    wallet_id=wallet_id,
                    trading_mode=trading_mode,
                    position_id=position.id,
                    symbol=position.symbol,
                    verdict=assessment.classification.verdict.value,
                    reason=assessment.classification.reason,
                    ghost_score=round(assessment.factors.ghost_score, 1),
                    action=self.cleanup_action,
                )
            except Exception as e:
                report.errors.append(CleanupError(position_id=position.id, symbol=position.symbol, error=str(e)))
                logger.warning(
                    "Ghost cleanup failed for position",
                    wallet_id=wallet_id,
                    trading_mode=trading_mode,
                    position_id=position.id,
                    symbol=position.symbol,
                    error=str(e),
                )

        self._publish(wallet_id, trading_mode, len(ghosts), report)
        return report

    def _publish(self, wallet_id: str, trading_mode: str, ghosts_found: int, report: CleanupReport) -> None:
        if self.bus is None:
            return
        payload = {
            "wallet_id": wallet_id,
            "trading_mode": trading_mode,
            "ghosts_found": ghosts_found,
            "ghosts_cleaned": report.cleaned,
            "cleaned_ids": list(report.cleaned_ids),
            "errors": len(report.errors),
            "action": self.cleanup_action,
            "snapshot_label": report.snapshot_label,
        }
        try:
            self.bus.publish(constants.GHOSTS_CLEANED_EVENT, payload)
        except Exception as e:
            logger.warning("Failed to publish cleanup notification", error=str(e))
