"""
Data models for exchange responses and outgoing requests.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

from .exceptions import MalformedResponse


class OrderSide(Enum):
    """Order side as reported by the exchange."""
    BID = "bid"
    ASK = "ask"


class OrderState(Enum):
    """Order state as reported by the exchange."""
    WAIT = "wait"
    WATCH = "watch"
    DONE = "done"
    CANCEL = "cancel"


def to_decimal(value: Any, endpoint: str, name: str) -> Decimal:
    """Convert an exchange numeric string to Decimal."""
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise MalformedResponse(endpoint, f"invalid {name}: {value!r}") from e


def parse_timestamp(value: str, endpoint: str) -> datetime:
    """
    Parse an ISO-8601 timestamp from the exchange.

    Timestamps without offset are treated as UTC.
    """
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise MalformedResponse(endpoint, f"invalid created_at: {value!r}") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class SignedRequest:
    """HTTP request ready to be sent. Built per call, never persisted."""
    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Balance:
    """Account balance snapshot for one currency."""
    currency: str
    amount: Decimal

    @classmethod
    def from_api(cls, data: Dict, endpoint: str = "/v1/accounts") -> "Balance":
        try:
            currency = data["currency"]
            raw_amount = data["balance"]
        except (KeyError, TypeError) as e:
            raise MalformedResponse(endpoint, f"account entry missing {e}") from e

        return cls(currency=currency, amount=to_decimal(raw_amount, endpoint, "balance"))


@dataclass
class Order:
    """Order as returned by the exchange."""
    id: str
    market: str
    side: OrderSide
    state: OrderState
    created_at: datetime
    price: Optional[Decimal] = None
    raw: Dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: Dict, endpoint: str = "/v1/orders") -> "Order":
        if not isinstance(data, dict):
            raise MalformedResponse(endpoint, f"expected order object, got {type(data).__name__}")

        try:
            order_id = data["uuid"]
            side = OrderSide(data["side"])
            state = OrderState(data["state"])
            created_at = parse_timestamp(data["created_at"], endpoint)
        except KeyError as e:
            raise MalformedResponse(endpoint, f"order missing {e}") from e
        except ValueError as e:
            raise MalformedResponse(endpoint, str(e)) from e

        price = data.get("price")
        return cls(
            id=order_id,
            market=data.get("market", ""),
            side=side,
            state=state,
            created_at=created_at,
            price=to_decimal(price, endpoint, "price") if price is not None else None,
            raw=data
        )

    @classmethod
    def from_created(
        cls,
        data: Dict,
        market: str,
        endpoint: str = "/v1/orders"
    ) -> "Order":
        """
        Parse the response of an accepted order submission.

        Only ``uuid`` is required: the order already exists on the exchange,
        so missing or unknown optional fields fall back to a fresh bid.
        """
        if not isinstance(data, dict) or not data.get("uuid"):
            raise MalformedResponse(endpoint, "created order missing 'uuid'")

        try:
            side = OrderSide(data.get("side", OrderSide.BID.value))
        except ValueError:
            side = OrderSide.BID
        try:
            state = OrderState(data.get("state", OrderState.WAIT.value))
        except ValueError:
            state = OrderState.WAIT
        try:
            created_at = parse_timestamp(data["created_at"], endpoint)
        except (KeyError, MalformedResponse):
            created_at = datetime.now(timezone.utc)
        try:
            price = to_decimal(data["price"], endpoint, "price") if data.get("price") is not None else None
        except MalformedResponse:
            price = None

        return cls(
            id=data["uuid"],
            market=data.get("market") or market,
            side=side,
            state=state,
            created_at=created_at,
            price=price,
            raw=data
        )

    @property
    def is_filled_buy(self) -> bool:
        return self.side == OrderSide.BID and self.state == OrderState.DONE
