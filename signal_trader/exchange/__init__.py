# Exchange module for the Upbit REST API
"""
Exchange-Anbindung.

Enthält:
- UpbitClient: Signierte REST-Aufrufe (HS512 JWT + Query-Hash)
- ExchangeClient: Abstrakte Schnittstelle für die Execution Engine
- Exceptions: Typisierte Fehler für Exchange-Aufrufe
"""

from .base import ExchangeClient
from .exceptions import (
    ConfigurationError,
    ExchangeCallFailed,
    MalformedResponse,
    OrderRejected,
    TradingError,
)
from .models import Balance, Order, OrderSide, OrderState, SignedRequest
from .upbit_client import UpbitClient, build_query_string, compute_query_hash

__all__ = [
    'ExchangeClient', 'UpbitClient', 'build_query_string', 'compute_query_hash',
    'Balance', 'Order', 'OrderSide', 'OrderState', 'SignedRequest',
    'TradingError', 'ConfigurationError', 'ExchangeCallFailed', 'MalformedResponse', 'OrderRejected'
]
