"""
Position analyzer: computes reconciliation factors for local positions.

Each factor is computed independently. The three remote lookups (exchange
holdings, local trade history, exchange order history) run concurrently per
position under a timeout; a stalled or failing lookup degrades to "unknown"
instead of blocking or aborting the pass. The analyzer scores but never
decides ghost status (see classifier.py).
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from position_recon import constants
from position_recon.data.symbol_utils import extract_base_asset, normalize_symbol
from position_recon.domain.models import OrderRecord, Position, to_decimal
from position_recon.monitoring.logger import get_logger
from position_recon.reconciliation.collaborators import ExchangeStateClient, LocalPositionStore
from position_recon.reconciliation.factors import (
    Evidence,
    HistoryPresence,
    PositionAge,
    PriceValidity,
    QuantityMatch,
    ReconciliationFactors,
)

logger = get_logger(__name__)


def _is_positive_finite(value: Optional[Decimal]) -> bool:
    return value is not None and value.is_finite() and value > 0


def check_quantity_match(
    expected: Optional[Decimal],
    held: Optional[Decimal],
    unknown_detail: str = "holdings unknown",
) -> QuantityMatch:
    """
    ratio = held / expected.

    An invalid expected quantity yields ratio 0 (the record is unusable).
    Unknown or non-finite holdings yield ratio None.
    """
    if not _is_positive_finite(expected):
        return QuantityMatch(expected=expected, held=held, ratio=Decimal("0"), detail="invalid expected quantity")
    if held is None:
        return QuantityMatch(expected=expected, held=None, ratio=None, detail=unknown_detail)
    if not held.is_finite():
        return QuantityMatch(expected=expected, held=None, ratio=None, detail="non-finite holdings")
    if held < 0:
        held = Decimal("0")
    return QuantityMatch(expected=expected, held=held, ratio=held / expected)


def check_position_age(position: Position, now: datetime, old_after_hours: float) -> PositionAge:
    age_hours = max(0.0, position.age_seconds(now) / 3600.0)
    return PositionAge(age_hours=age_hours, is_old=age_hours > old_after_hours)


def check_price_validity(position: Position) -> PriceValidity:
    """entry > 0, current > 0 and current finite."""
    return PriceValidity(
        entry_price=position.entry_price,
        current_price=position.current_price,
        is_valid=_is_positive_finite(position.entry_price) and _is_positive_finite(position.current_price),
    )


def compute_ghost_score(
    integrity_ok: bool,
    quantity_match: QuantityMatch,
    position_age: PositionAge,
    price_validity: PriceValidity,
    trade_history: HistoryPresence,
    order_history: HistoryPresence,
) -> float:
    """
    Confidence in [0, 100] that a position is a ghost.

    Corrupt records score the maximum. Otherwise the quantity shortfall
    carries half the weight and each piece of missing corroboration adds to it.
    Unknown factors contribute nothing.
    """
    if not integrity_ok or not price_validity.is_valid:
        return constants.SCORE_MAX

    score = 0.0
    if quantity_match.is_known:
        ratio = min(float(quantity_match.ratio), 1.0)
        score += constants.SCORE_QUANTITY_WEIGHT * (1.0 - ratio)
    if trade_history.absent:
        score += constants.SCORE_NO_TRADE_HISTORY
    if order_history.absent:
        score += constants.SCORE_NO_ORDER_HISTORY
    if position_age.is_old:
        score += constants.SCORE_OLD_POSITION
    return min(constants.SCORE_MAX, score)


def order_history_matches(position: Position, orders: Sequence[OrderRecord], since: datetime) -> List[OrderRecord]:
    """Filled orders on the same market and entry side at or after since."""
    symbol = normalize_symbol(position.symbol or "")
    entry_side = position.side.entry_order_side
    return [
        o for o in orders
        if normalize_symbol(o.symbol) == symbol
        and (o.side or "").lower() == entry_side
        and o.is_filled
        and o.timestamp >= since
    ]


def warn_oversubscribed_holdings(factors: Sequence[ReconciliationFactors]) -> List[str]:
    """
    Flag base assets whose holdings cannot back every local position on them.

    Holdings are account-wide per base asset, so each position is compared
    against the full amount. Two positions of 1.0 against 1.0 held both match
    individually. This check logs the shortfall without changing any verdict.
    Returns the oversubscribed base assets.
    """
    groups: dict = {}
    for f in factors:
        qm = f.quantity_match
        if not f.symbol or qm.held is None or qm.expected is None:
            continue
        if qm.expected.is_finite() and qm.expected > 0:
            groups.setdefault(extract_base_asset(f.symbol), []).append(f)

    flagged = []
    for base, group in sorted(groups.items()):
        if len(group) < 2:
            continue
        expected_total = sum((f.quantity_match.expected for f in group), Decimal("0"))
        held = group[0].quantity_match.held
        if held < expected_total:
            flagged.append(base)
            logger.warning(
                "HOLDINGS_OVERSUBSCRIBED",
                base_asset=base,
                position_ids=[f.position_id for f in group],
                expected_total=str(expected_total),
                held=str(held),
            )
    return flagged


class PositionAnalyzer:
    """
    Computes ReconciliationFactors for positions of one wallet.
    """

    def __init__(
        self,
        exchange: ExchangeStateClient,
        store: LocalPositionStore,
        *,
        old_position_hours: float = constants.DEFAULT_OLD_POSITION_HOURS,
        lookup_timeout_seconds: float = constants.DEFAULT_LOOKUP_TIMEOUT_SECONDS,
        order_history_slack_minutes: int = constants.DEFAULT_ORDER_HISTORY_SLACK_MINUTES,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.exchange = exchange
        self.store = store
        self.old_position_hours = old_position_hours
        self.lookup_timeout_seconds = lookup_timeout_seconds
        self.order_history_slack = timedelta(minutes=order_history_slack_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def analyze_all(self, positions: Sequence[Position]) -> List[ReconciliationFactors]:
        """
        Analyze positions concurrently. Output order matches input order.

        A position whose analysis raises is reported with every remote factor
        unknown, which the classifier treats as insufficient evidence.
        """
        now = self._clock()
        results = await asyncio.gather(
            *(self.analyze(p, now=now) for p in positions),
            return_exceptions=True,
        )
        factors: List[ReconciliationFactors] = []
        for position, result in zip(positions, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error(
                    "Position analysis failed",
                    position_id=position.id,
                    symbol=position.symbol,
                    error=str(result),
                )
                factors.append(self._unanalyzable(position, now, str(result)))
            else:
                factors.append(result)
        warn_oversubscribed_holdings(factors)
        return factors

    async def analyze(self, position: Position, now: Optional[datetime] = None) -> ReconciliationFactors:
        """Compute all five factors for a single position."""
        now = now or self._clock()
        integrity_ok = position.has_valid_identity
        price_validity = check_price_validity(position)
        position_age = check_position_age(position, now, self.old_position_hours)

        holdings_result, trades_result, orders_result = await asyncio.gather(
            self._fetch_holdings(position),
            self._lookup("trade_history", position, lambda: self.store.get_trade_history(position.id)),
            self._fetch_order_history(position),
        )

        held_ok, held, held_detail = holdings_result
        quantity_match = check_quantity_match(
            position.expected_quantity,
            to_decimal(held) if held_ok else None,
            unknown_detail=held_detail or "holdings unknown",
        )

        trade_history = self._presence(trades_result)
        order_history = self._order_presence(position, orders_result)

        return ReconciliationFactors(
            position_id=position.id,
            symbol=position.symbol,
            integrity_ok=integrity_ok,
            quantity_match=quantity_match,
            position_age=position_age,
            price_validity=price_validity,
            trade_history=trade_history,
            order_history=order_history,
            ghost_score=compute_ghost_score(
                integrity_ok, quantity_match, position_age, price_validity, trade_history, order_history
            ),
        )

    # ------------------------------------------------------------------
    # Remote lookups
    # ------------------------------------------------------------------

    async def _fetch_holdings(self, position: Position) -> Tuple[bool, Any, str]:
        if not position.symbol:
            return (False, None, "missing symbol")
        return await self._lookup("holdings", position, lambda: self.exchange.get_holdings(position.symbol))

    async def _fetch_order_history(self, position: Position) -> Tuple[bool, Any, str]:
        if not position.symbol:
            return (False, None, "missing symbol")
        since = position.created_at - self.order_history_slack
        return await self._lookup(
            "order_history", position, lambda: self.exchange.get_order_history(position.symbol, since)
        )

    async def _lookup(
        self,
        name: str,
        position: Position,
        call: Callable[[], Awaitable[Any]],
    ) -> Tuple[bool, Any, str]:
        """
        Run one collaborator call under the lookup timeout.

        Returns (ok, value, detail). Never raises except on cancellation.
        """
        try:
            value = await asyncio.wait_for(call(), timeout=self.lookup_timeout_seconds)
            return (True, value, "")
        except asyncio.TimeoutError:
            logger.warning(
                "Reconcile lookup timed out",
                lookup=name,
                position_id=position.id,
                symbol=position.symbol,
                timeout_seconds=self.lookup_timeout_seconds,
            )
            return (False, None, f"{name} timed out after {self.lookup_timeout_seconds}s")
        except Exception as e:
            logger.warning(
                "Reconcile lookup failed",
                lookup=name,
                position_id=position.id,
                symbol=position.symbol,
                error=str(e),
            )
            return (False, None, f"{name} failed: {e}")

    @staticmethod
    def _presence(result: Tuple[bool, Any, str]) -> HistoryPresence:
        ok, records, detail = result
        if not ok:
            return HistoryPresence(evidence=Evidence.UNKNOWN, detail=detail)
        count = len(records or [])
        return HistoryPresence(
            evidence=Evidence.PRESENT if count else Evidence.ABSENT,
            count=count,
        )

    def _order_presence(self, position: Position, result: Tuple[bool, Any, str]) -> HistoryPresence:
        ok, orders, detail = result
        if not ok:
            return HistoryPresence(evidence=Evidence.UNKNOWN, detail=detail)
        since = position.created_at - self.order_history_slack
        matches = order_history_matches(position, orders or [], since)
        return HistoryPresence(
            evidence=Evidence.PRESENT if matches else Evidence.ABSENT,
            count=len(matches),
        )

    def _unanalyzable(self, position: Position, now: datetime, error: str) -> ReconciliationFactors:
        unknown = HistoryPresence(evidence=Evidence.UNKNOWN, detail=error)
        integrity_ok = position.has_valid_identity
        quantity_match = QuantityMatch(expected=position.expected_quantity, held=None, ratio=None, detail=error)
        position_age = check_position_age(position, now, self.old_position_hours)
        price_validity = check_price_validity(position)
        return ReconciliationFactors(
            position_id=position.id,
            symbol=position.symbol,
            integrity_ok=integrity_ok,
            quantity_match=quantity_match,
            position_age=position_age,
            price_validity=price_validity,
            trade_history=unknown,
            order_history=unknown,
            ghost_score=compute_ghost_score(
                integrity_ok, quantity_match, position_age, price_validity, unknown, unknown
            ),
        )
