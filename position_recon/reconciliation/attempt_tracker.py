"""
Per-wallet reconciliation attempt bookkeeping.

A pass that finds ghosts counts as an attempt. Once attempt_count reaches
max_attempts the wallet is suppressed until a clean pass or an explicit
reset. This is what stops detect -> delete -> redetect loops.

State is in-memory and lost on restart.
"""
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from position_recon import constants
from position_recon.monitoring.logger import get_logger

logger = get_logger(__name__)

WalletKey = Tuple[str, str]

OUTCOME_CLEAN = "clean"
OUTCOME_GHOSTS = "ghosts_found"
OUTCOME_FAILED = "failed"
OUTCOME_RESET = "reset"


@dataclass
class ReconciliationAttemptState:
    last_reconcile_timestamp: Optional[float] = None
    attempt_count: int = 0
    last_outcome: Optional[str] = None


class AttemptTracker:
    """
    Tracks attempt counts keyed by (wallet_id, trading_mode).

    Entries are created lazily on first record.
    """

    def __init__(
        self,
        max_attempts: int = constants.DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self._clock = clock
        self._states: Dict[WalletKey, ReconciliationAttemptState] = {}

    def _state(self, wallet_id: str, trading_mode: str) -> ReconciliationAttemptState:
        key = (wallet_id, trading_mode)
        state = self._states.get(key)
        if state is None:
            state = ReconciliationAttemptState()
            self._states[key] = state
        return state

    def record_attempt(self, wallet_id: str, trading_mode: str, ghosts_found: int) -> ReconciliationAttemptState:
        """Increment on ghosts found; reset to zero on a clean pass."""
        state = self._state(wallet_id, trading_mode)
        state.last_reconcile_timestamp = self._clock()
        if ghosts_found > 0:
            state.attempt_count = min(state.attempt_count + 1, self.max_attempts)
            state.last_outcome = OUTCOME_GHOSTS
            if state.attempt_count >= self.max_attempts:
                logger.warning(
                    "RECONCILE_ATTEMPTS_EXHAUSTED",
                    wallet_id=wallet_id,
                    trading_mode=trading_mode,
                    attempt_count=state.attempt_count,
                    max_attempts=self.max_attempts,
                )
        else:
            if state.attempt_count:
                logger.info(
                    "Reconcile attempts reset after clean pass",
                    wallet_id=wallet_id,
                    trading_mode=trading_mode,
                    previous_count=state.attempt_count,
                )
            state.attempt_count = 0
            state.last_outcome = OUTCOME_CLEAN
        return state

    def record_failure(self, wallet_id: str, trading_mode: str, error: str) -> ReconciliationAttemptState:
        """A failed pass counts as an attempt."""
        state = self._state(wallet_id, trading_mode)
        state.last_reconcile_timestamp = self._clock()
        state.attempt_count = min(state.attempt_count + 1, self.max_attempts)
        state.last_outcome = OUTCOME_FAILED
        logger.debug(
            "Reconcile failure recorded",
            wallet_id=wallet_id,
            trading_mode=trading_mode,
            attempt_count=state.attempt_count,
            error=error,
        )
        return state

    def can_attempt(self, wallet_id: str, trading_mode: str) -> bool:
        state = self._states.get((wallet_id, trading_mode))
        return state is None or state.attempt_count < self.max_attempts

    def reset(self, wallet_id: str, trading_mode: str) -> None:
        """Administrative override: clear the attempt count for one wallet."""
        state = self._state(wallet_id, trading_mode)
        previous = state.attempt_count
        state.attempt_count = 0
        state.last_outcome = OUTCOME_RESET
        logger.info(
            "Reconcile attempts reset",
            wallet_id=wallet_id,
            trading_mode=trading_mode,
            previous_count=previous,
        )

    def reset_stale(self, older_than_seconds: float, now: Optional[float] = None) -> List[WalletKey]:
        """
        Reset every capped wallet whose last attempt is older than older_than_seconds.

        Returns the keys that were reset.
        """
        now = self._clock() if now is None else now
        reset_keys: List[WalletKey] = []
        for key, state in self._states.items():
            if state.attempt_count < self.max_attempts:
                continue
            last = state.last_reconcile_timestamp
            if last is not None and now - last <= older_than_seconds:
                continue
            state.attempt_count = 0
            state.last_outcome = OUTCOME_RESET
            reset_keys.append(key)
        if reset_keys:
            logger.info(
                "Stale reconcile attempts reset",
                wallets=[f"{w}:{m}" for w, m in reset_keys],
                older_than_seconds=older_than_seconds,
            )
        return reset_keys

    def get_state(self, wallet_id: str, trading_mode: str) -> ReconciliationAttemptState:
        """Read-only copy of the wallet's state (default state if never seen)."""
        state = self._states.get((wallet_id, trading_mode))
        if state is None:
            return ReconciliationAttemptState()
        return ReconciliationAttemptState(
            last_reconcile_timestamp=state.last_reconcile_timestamp,
            attempt_count=state.attempt_count,
            last_outcome=state.last_outcome,
        )

    def snapshot(self) -> Dict[str, Dict]:
        """All tracked wallets, keyed "wallet:mode"."""
        return {
            f"{wallet_id}:{mode}": {
                "last_reconcile_timestamp": state.last_reconcile_timestamp,
                "attempt_count": state.attempt_count,
                "last_outcome": state.last_outcome,
            }
            for (wallet_id, mode), state in self._states.items()
        }
