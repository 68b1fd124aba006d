"""
Shared symbol helpers.

Local positions store symbols in whatever shape the trading path used
(BTCUSDT, BTC/USDT, btc-usdt). Exchange balances are keyed by base asset and
ccxt order endpoints want the unified BASE/QUOTE form. Compare symbols through
these helpers rather than ad-hoc string munging.
"""
from __future__ import annotations

from position_recon.constants import DEFAULT_QUOTE_ASSET

# Quotes tried (longest first) when a symbol carries no separator
_KNOWN_QUOTES = ("FDUSD", "USDT", "USDC", "BUSD", "TUSD", "USD", "EUR", "BTC", "ETH", "BNB")


def normalize_symbol(symbol: str) -> str:
    """
    Canonical form for "same market" comparison across formats.

    BTC/USDT, BTCUSDT, btc-usdt, BTC_USDT, BTC/USDT:USDT -> BTCUSDT.
    """
    if not symbol:
        return ""
    s = str(symbol).upper().strip()
    s = s.split(":")[0]
    return s.replace("/", "").replace("-", "").replace("_", "")


def split_symbol(symbol: str, quote_asset: str = DEFAULT_QUOTE_ASSET) -> tuple[str, str]:
    """
    Split a symbol into (base, quote).

    Separated forms split on the separator. Concatenated forms strip the
    configured quote first, then any known quote suffix. A symbol with no
    recognizable quote is returned whole as the base with an empty quote.
    """
    if not symbol:
        return "", ""
    s = str(symbol).upper().strip().split(":")[0]
    for sep in ("/", "-", "_"):
        if sep in s:
            base, _, quote = s.partition(sep)
            return base, quote

    quote_asset = (quote_asset or "").upper()
    candidates = (quote_asset,) + tuple(q for q in _KNOWN_QUOTES if q != quote_asset) if quote_asset else _KNOWN_QUOTES
    for quote in candidates:
        if quote and s.endswith(quote) and len(s) > len(quote):
            return s[: -len(quote)], quote
    return s, ""


def extract_base_asset(symbol: str, quote_asset: str = DEFAULT_QUOTE_ASSET) -> str:
    """
    Extract the base asset from any symbol format.

    BTCUSDT, BTC/USDT, btc-usdt -> BTC.
    """
    return split_symbol(symbol, quote_asset)[0]


def to_unified_symbol(symbol: str, quote_asset: str = DEFAULT_QUOTE_ASSET) -> str:
    """BTCUSDT -> BTC/USDT (ccxt unified form). Falls back to the configured quote."""
    base, quote = split_symbol(symbol, quote_asset)
    return f"{base}/{quote or quote_asset.upper()}"
