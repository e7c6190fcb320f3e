# Webhook module
"""
Webhook-Eingang.

Enthält:
- Signal-Validierung und Symbol-Normalisierung
- Flask App (signal_trader.webhook.app)
"""

from .signals import InvalidSignal, TradeSignal, UnsupportedSymbol, normalize_symbol, parse_signal

__all__ = ['InvalidSignal', 'TradeSignal', 'UnsupportedSymbol', 'normalize_symbol', 'parse_signal']
