"""
Collaborator interfaces consumed by the reconciliation engine.

The engine depends only on these protocols. Reference implementations live in
position_recon.data (exchange), position_recon.storage (store, audit sink) and
position_recon.monitoring.notifier (notification bus).
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Protocol, Sequence, runtime_checkable

from position_recon.domain.models import OrderRecord, Position, TradeRecord


@runtime_checkable
class ExchangeStateClient(Protocol):
    """Read-only view of exchange holdings. Must be safe to call concurrently per symbol."""

    async def get_holdings(self, symbol: str) -> Decimal:
        """Quantity currently held for the symbol's base asset."""
        ...

    async def get_order_history(self, symbol: str, since: datetime) -> List[OrderRecord]:
        """Orders on symbol placed at or after since."""
        ...


@runtime_checkable
class LocalPositionStore(Protocol):
    """Local record of positions and their fills."""

    async def list_open_positions(self, wallet_id: str, trading_mode: str) -> List[Position]:
        ...

    async def get_trade_history(self, position_id: str) -> List[TradeRecord]:
        ...

    async def mark_closed(self, position_id: str) -> None:
        ...

    async def delete(self, position_id: str) -> None:
        ...


@runtime_checkable
class AuditSink(Protocol):
    """Immutable backup of records about to be mutated."""

    async def snapshot(self, records: Sequence[Dict[str, Any]], label: str) -> None:
        ...


@runtime_checkable
class NotificationBus(Protocol):
    """Fire-and-forget event publication. publish() must never block or raise."""

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        ...
