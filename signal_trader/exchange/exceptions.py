"""
Typed exception hierarchy for exchange and trading operations.
"""

from typing import Any, Optional


class TradingError(Exception):
    """Base class for all trading-related errors."""


class ConfigurationError(TradingError):
    """Missing or invalid configuration (e.g. credentials). Fatal at startup."""


class ExchangeCallFailed(TradingError):
    """Non-2xx response or transport failure on an exchange call."""

    def __init__(
        self,
        endpoint: str,
        status_code: Optional[int] = None,
        body: Any = None,
        message: Optional[str] = None
    ):
        self.endpoint = endpoint
        self.status_code = status_code
        self.body = body

        if message is None:
            message = f"Exchange call failed: {endpoint}"
            if status_code is not None:
                message += f" (HTTP {status_code})"
            if body:
                message += f" - {body}"

        super().__init__(message)


class MalformedResponse(TradingError):
    """Exchange response is missing expected fields or is not valid JSON."""

    def __init__(self, endpoint: str, detail: str):
        self.endpoint = endpoint
        self.detail = detail
        super().__init__(f"Malformed response from {endpoint}: {detail}")


class OrderRejected(TradingError):
    """Order refused before or by the exchange."""

    BELOW_MINIMUM = "below_minimum"

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"Order rejected ({reason}){': ' + detail if detail else ''}")
