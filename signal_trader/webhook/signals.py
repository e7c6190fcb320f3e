"""
Inbound webhook signal validation and symbol normalization.
"""

import re
from typing import Any, Dict, Optional

from signal_trader.execution.order_engine import TradeSignal


BUY_ACTION = "BUY"

# Separators and exchange prefixes seen in alert payloads ("UPBIT:ETHKRW", "ETH/KRW", ...)
_EXCHANGE_PREFIX = re.compile(r"^[A-Z0-9_]+:")
_SEPARATORS = re.compile(r"[-/_\s]")


class InvalidSignal(ValueError):
    """Payload is not a buy signal."""


class UnsupportedSymbol(InvalidSignal):
    """Symbol does not map to the configured trading pair."""


def normalize_symbol(symbol: Optional[str], market: str) -> Optional[str]:
    """
    Map a webhook symbol onto an exchange market identifier.

    Args:
        symbol: Symbol from the payload, e.g. "ETHKRW" or "UPBIT:KRW-ETH"
        market: Supported market in exchange notation, e.g. "KRW-ETH"

    Returns:
        ``market`` if the symbol names the same pair, else None
    """
    if not symbol or not isinstance(symbol, str):
        return None

    quote, base = market.upper().split("-", 1)
    compact = _SEPARATORS.sub("", _EXCHANGE_PREFIX.sub("", symbol.strip().upper()))

    if compact in (base + quote, quote + base):
        return market
    return None


def parse_signal(payload: Optional[Dict[str, Any]], market: str) -> TradeSignal:
    """
    Validate a webhook payload.

    Raises:
        InvalidSignal: Missing payload or action other than "BUY"
        UnsupportedSymbol: Symbol not tradable
    """
    if not payload or not isinstance(payload, dict):
        raise InvalidSignal("Empty or malformed signal payload")

    if payload.get("action") != BUY_ACTION:
        raise InvalidSignal(f"Invalid buy signal: action={payload.get('action')!r}")

    raw_symbol = payload.get("symbol")
    normalized = normalize_symbol(raw_symbol, market)
    if normalized is None:
        raise UnsupportedSymbol(f"Unsupported symbol: {raw_symbol!r}")

    return TradeSignal(action=BUY_ACTION, market=normalized, raw_symbol=raw_symbol, payload=dict(payload))
