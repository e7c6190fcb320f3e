"""
Abstract exchange client interface.

The execution engine depends only on this contract, so tests can
substitute an in-memory client without network access.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List

from .models import Order


class ExchangeClient(ABC):
    """Operations the order execution engine needs from an exchange."""

    @abstractmethod
    def get_current_price(self, market: str) -> Decimal:
        """
        Latest trade price for a market.

        Raises:
            ExchangeCallFailed: If the call fails or the market is unknown.
            MalformedResponse: If no ticker entry is returned.
        """

    @abstractmethod
    def get_krw_balance(self) -> Decimal:
        """
        Available KRW balance. Zero if the account holds no KRW entry.

        Raises:
            ExchangeCallFailed: If the call fails.
        """

    @abstractmethod
    def place_buy_order(self, market: str, price_amount: int) -> Order:
        """
        Market buy spending exactly ``price_amount`` KRW.

        Raises:
            OrderRejected: If the amount is below the exchange minimum.
            ExchangeCallFailed: If the exchange refuses the order.
        """

    @abstractmethod
    def get_recent_orders(self, market: str, window_hours: float) -> List[Order]:
        """
        Done/cancelled orders created within the trailing window, newest first.

        Raises:
            ExchangeCallFailed: If the call fails.
        """
