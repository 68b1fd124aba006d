"""
ccxt-backed exchange state client.

Handles:
- Spot holdings per base asset (free + used), cached briefly
- Closed order history per symbol
- Retry of transient network errors with backoff
"""
import asyncio
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import ccxt
import ccxt.async_support as ccxt_async

from position_recon import constants
from position_recon.data.symbol_utils import extract_base_asset, to_unified_symbol
from position_recon.domain.models import OrderRecord, to_decimal
from position_recon.exceptions import ExchangeStateError
from position_recon.monitoring.logger import get_logger
from position_recon.utils.retry import retry_on_transient_errors

logger = get_logger(__name__)

# Order statuses that can carry fills
_FILLED_STATUSES = ("closed", "filled", "canceled", "cancelled", "expired")


def order_from_ccxt(raw: Dict[str, Any]) -> OrderRecord:
    """Map a ccxt unified order dict to an OrderRecord."""
    ts_ms = raw.get("timestamp")
    if ts_ms is not None:
        timestamp = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)
    else:
        timestamp = datetime.fromtimestamp(0, tz=timezone.utc)
    return OrderRecord(
        order_id=str(raw.get("id") or ""),
        symbol=str(raw.get("symbol") or ""),
        side=str(raw.get("side") or "").lower(),
        quantity=to_decimal(raw.get("amount")) or Decimal("0"),
        filled_quantity=to_decimal(raw.get("filled")) or Decimal("0"),
        status=str(raw.get("status") or ""),
        timestamp=timestamp,
        raw=raw,
    )


class CcxtExchangeStateClient:
    """
    Read-only exchange view used by the reconciliation analyzer.

    Safe to call concurrently: the balance fetch is shared across concurrent
    holdings lookups through a lock-guarded cache.
    """

    def __init__(
        self,
        exchange_id: str = "binance",
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        use_testnet: bool = False,
        *,
        quote_asset: str = constants.DEFAULT_QUOTE_ASSET,
        holdings_cache_seconds: float = constants.DEFAULT_HOLDINGS_CACHE_SECONDS,
        request_timeout_ms: int = constants.DEFAULT_API_TIMEOUT_MS,
        exchange: Optional[Any] = None,
    ):
        """
        Args:
            exchange_id: ccxt exchange id (binance, kraken, ...)
            api_key: API key (read-only permissions are sufficient)
            api_secret: API secret
            use_testnet: Enable ccxt sandbox mode
            quote_asset: Quote currency excluded from holdings
            holdings_cache_seconds: TTL for the fetched balance
            request_timeout_ms: ccxt request timeout
            exchange: Pre-built ccxt exchange instance (tests)
        """
        self.exchange_id = exchange_id
        self.api_key = api_key
        self.api_secret = api_secret
        self.use_testnet = use_testnet
        self.quote_asset = quote_asset.upper()
        self.holdings_cache_seconds = holdings_cache_seconds
        self.request_timeout_ms = request_timeout_ms

        self.exchange = exchange
        self._balance_cache: Optional[tuple] = None  # (ts, holdings)
        self._balance_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, exchange_config) -> "CcxtExchangeStateClient":
        return cls(
            exchange_id=exchange_config.exchange_id,
            api_key=exchange_config.api_key,
            api_secret=exchange_config.api_secret,
            use_testnet=exchange_config.use_testnet,
            quote_asset=exchange_config.quote_asset,
            holdings_cache_seconds=exchange_config.holdings_cache_seconds,
            request_timeout_ms=exchange_config.request_timeout_ms,
        )

    def has_valid_credentials(self) -> bool:
        """Check if API keys are present and not unresolved ${VAR} placeholders."""
        return bool(self.api_key and self.api_secret and not self.api_key.startswith("${"))

    async def initialize(self):
        """
        Lazy initialization of the ccxt exchange.
        MUST be called inside the running event loop.
        """
        if self.exchange:
            return
        exchange_cls = getattr(ccxt_async, self.exchange_id, None)
        if exchange_cls is None:
            raise ExchangeStateError(f"Unsupported exchange: {self.exchange_id}")
        params: Dict[str, Any] = {
            "enableRateLimit": True,
            "timeout": self.request_timeout_ms,
        }
        if self.has_valid_credentials():
            params["apiKey"] = self.api_key
            params["secret"] = self.api_secret
        else:
            logger.warning("Exchange credentials missing, private endpoints will fail", exchange=self.exchange_id)
        self.exchange = exchange_cls(params)
        if self.use_testnet:
            self.exchange.set_sandbox_mode(True)
        logger.info("Exchange state client initialized", exchange=self.exchange_id, testnet=self.use_testnet)

    async def get_holdings(self, symbol: str) -> Decimal:
        """Free + locked quantity of the symbol's base asset."""
        base = extract_base_asset(symbol, self.quote_asset)
        if not base:
            raise ExchangeStateError(f"Cannot derive base asset from symbol: {symbol!r}")
        holdings = await self._get_holdings_map()
        return holdings.get(base, Decimal("0"))

    async def get_order_history(self, symbol: str, since: datetime) -> List[OrderRecord]:
        """Closed orders on symbol at or after since."""
        if not self.exchange:
            await self.initialize()
        unified = to_unified_symbol(symbol, self.quote_asset)
        since_ms = int(since.timestamp() * 1000)
        try:
            raw_orders = await self._fetch_closed_orders(unified, since_ms)
        except ccxt.BaseError as e:
            logger.error("Failed to fetch order history", symbol=unified, error=str(e))
            raise ExchangeStateError(f"Order history error for {unified}: {e}") from e
        return [
            order_from_ccxt(o) for o in raw_orders or []
            if str(o.get("status") or "").lower() in _FILLED_STATUSES
        ]

    async def _get_holdings_map(self) -> Dict[str, Decimal]:
        if not self.exchange:
            await self.initialize()
        async with self._balance_lock:
            now = time.time()
            if self._balance_cache is not None:
                ts, data = self._balance_cache
                if (now - ts) < self.holdings_cache_seconds:
                    return data
            try:
                balance = await self._fetch_balance()
            except ccxt.BaseError as e:
                logger.error("Failed to fetch balance", exchange=self.exchange_id, error=str(e))
                raise ExchangeStateError(f"Balance error: {e}") from e
            holdings = self._holdings_from_balance(balance)
            self._balance_cache = (now, holdings)
            logger.debug("Fetched exchange holdings", assets=len(holdings))
            return holdings

    def _holdings_from_balance(self, balance: Dict[str, Any]) -> Dict[str, Decimal]:
        """
        ccxt balance -> {asset: free + used}. Quote asset and zero rows excluded.
        """
        free = balance.get("free") or {}
        used = balance.get("used") or {}
        holdings: Dict[str, Decimal] = {}
        for asset in set(free) | set(used):
            if asset.upper() == self.quote_asset:
                continue
            total = (to_decimal(free.get(asset)) or Decimal("0")) + (to_decimal(used.get(asset)) or Decimal("0"))
            if total > 0:
                holdings[asset.upper()] = total
        return holdings

    @retry_on_transient_errors(transient_errors=(ccxt.NetworkError,))
    async def _fetch_balance(self) -> Dict[str, Any]:
        return await self.exchange.fetch_balance()

    @retry_on_transient_errors(transient_errors=(ccxt.NetworkError,))
    async def _fetch_closed_orders(self, symbol: str, since_ms: int) -> List[Dict[str, Any]]:
        return await self.exchange.fetch_closed_orders(symbol, since=since_ms)

    def invalidate_cache(self) -> None:
        self._balance_cache = None

    async def close(self):
        """Cleanup resources."""
        if self.exchange:
            await self.exchange.close()
            self.exchange = None
