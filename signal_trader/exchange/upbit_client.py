"""
Upbit REST API client.

Builds signed requests (HS512 bearer tokens bound to a SHA-512 hash of
the query string) and exposes the handful of operations the order
execution engine needs: ticker, balances, order history and market buy.
"""

import hashlib
import time
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import jwt
import requests
from loguru import logger

from .base import ExchangeClient
from .exceptions import ConfigurationError, ExchangeCallFailed, MalformedResponse, OrderRejected
from .models import Balance, Order, SignedRequest, to_decimal


# Characters encodeURIComponent leaves untouched (besides alphanumerics and "-_.~")
_QUERY_SAFE_CHARS = "!*'()"

# Status codes worth retrying on idempotent requests
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def build_query_string(params: Dict[str, Any]) -> str:
    """
    Canonical query string: ``key=urlencoded(value)`` joined by ``&``.

    Keeps the mapping's insertion order; the exchange hashes the exact
    same string, so reordering breaks signature verification.
    """
    return "&".join(
        f"{key}={quote(str(value), safe=_QUERY_SAFE_CHARS)}"
        for key, value in params.items()
    )


def compute_query_hash(query_string: str) -> str:
    """Hex-encoded SHA-512 of the query string."""
    return hashlib.sha512(query_string.encode("utf-8")).hexdigest()


class UpbitClient(ExchangeClient):
    """
    Signed client for the Upbit REST API.

    GET requests are retried on transport errors and 429/5xx responses.
    Order placement is never retried: repeating a price-type buy after
    an ambiguous failure could spend twice.
    """

    DEFAULT_BASE_URL = "https://api.upbit.com"
    QUERY_HASH_ALG = "SHA512"
    RECENT_ORDERS_LIMIT = 100

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        min_order_amount: int = 5000,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None
    ):
        """
        Args:
            access_key: Upbit access key
            secret_key: Upbit secret key (HS512 signing key)
            base_url: Override the API base URL
            timeout: Request timeout in seconds
            min_order_amount: Smallest order size in KRW
            retry_attempts: Attempts for idempotent (GET) requests
            retry_delay: Base delay between retries in seconds
            session: Optional requests session (for connection reuse or tests)
        """
        if not access_key:
            raise ConfigurationError("Upbit access key is not configured")
        if not secret_key:
            raise ConfigurationError("Upbit secret key is not configured")

        self._access_key = access_key
        self._secret_key = secret_key
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.min_order_amount = min_order_amount
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._session = session or requests.Session()

        logger.info(f"UpbitClient initialized ({self.base_url})")

    @classmethod
    def from_settings(cls, settings, session: Optional[requests.Session] = None) -> "UpbitClient":
        """
        Create a client from a Settings instance.

        Raises:
            ConfigurationError: If credentials are missing
        """
        access_key, secret_key = settings.require_credentials()
        return cls(
            access_key=access_key,
            secret_key=secret_key,
            base_url=settings.exchange.api_url,
            timeout=settings.exchange.timeout_seconds,
            min_order_amount=settings.trading.min_order_amount,
            retry_attempts=settings.trading.retry_attempts,
            retry_delay=settings.trading.retry_delay,
            session=session
        )

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def generate_token(self, query_hash: Optional[str] = None) -> str:
        """
        Build a signed bearer token.

        Every token carries a fresh UUID nonce, so no two tokens are alike.
        """
        payload = {
            "access_key": self._access_key,
            "nonce": str(uuid.uuid4()),
        }
        if query_hash:
            payload["query_hash"] = query_hash
        payload["query_hash_alg"] = self.QUERY_HASH_ALG

        token = jwt.encode(payload, self._secret_key, algorithm="HS512")
        return f"Bearer {token}"

    def sign_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        requires_auth: bool = False
    ) -> SignedRequest:
        """
        Build the request for an API call.

        Args:
            method: HTTP method
            endpoint: API path, e.g. "/v1/orders"
            params: Query (GET) or body (other methods) parameters
            requires_auth: Attach a signed Authorization header

        Returns:
            SignedRequest
        """
        method = method.upper()
        params = params or {}
        url = f"{self.base_url}{endpoint}"
        headers = {"Content-Type": "application/json"}
        body = None

        query_string = build_query_string(params)

        if method == "GET":
            if query_string:
                url = f"{url}?{query_string}"
        elif params:
            # Non-GET parameters go in the body but are hashed as a query string
            body = dict(params)

        if requires_auth:
            query_hash = compute_query_hash(query_string) if query_string else None
            headers["Authorization"] = self.generate_token(query_hash)

        return SignedRequest(method=method, url=url, headers=headers, body=body)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def execute(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        requires_auth: bool = False
    ) -> Any:
        """
        Perform an API call and return the parsed JSON.

        Raises:
            ExchangeCallFailed: Non-2xx response or transport error
            MalformedResponse: Response body is not JSON
        """
        attempts = self.retry_attempts if method.upper() == "GET" else 1

        for attempt in range(1, attempts + 1):
            # Re-sign on every attempt so nonces are never reused
            request = self.sign_request(method, endpoint, params, requires_auth)
            try:
                return self._send(request, endpoint)
            except ExchangeCallFailed as e:
                if not self._is_retryable(e) or attempt == attempts:
                    raise
                logger.warning(f"Retrying {endpoint} (attempt {attempt}/{attempts}): {e}")
                time.sleep(self.retry_delay * attempt)

    @staticmethod
    def _is_retryable(error: ExchangeCallFailed) -> bool:
        return error.status_code is None or error.status_code in _RETRYABLE_STATUS

    def _send(self, request: SignedRequest, endpoint: str) -> Any:
        try:
            response = self._session.request(
                request.method,
                request.url,
                headers=request.headers,
                json=request.body,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"API request failed: {endpoint} - {e}")
            raise ExchangeCallFailed(endpoint, message=f"Request to {endpoint} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            logger.error(f"API request failed: {endpoint} (HTTP {response.status_code}) {body}")
            raise ExchangeCallFailed(endpoint, status_code=response.status_code, body=body)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse(endpoint, "response is not valid JSON") from e

        logger.debug(f"API request succeeded: {endpoint}")
        return data

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_current_price(self, market: str) -> Decimal:
        endpoint = "/v1/ticker"
        data = self.execute("GET", endpoint, {"markets": market})

        if not isinstance(data, list) or not data:
            raise MalformedResponse(endpoint, f"no ticker entry for {market}")

        entry = data[0]
        if not isinstance(entry, dict) or "trade_price" not in entry:
            raise MalformedResponse(endpoint, "ticker entry missing trade_price")

        return to_decimal(entry["trade_price"], endpoint, "trade_price")

    def get_accounts(self) -> List[Balance]:
        """All account balances."""
        endpoint = "/v1/accounts"
        data = self.execute("GET", endpoint, requires_auth=True)

        if not isinstance(data, list):
            raise MalformedResponse(endpoint, "expected a list of accounts")

        return [Balance.from_api(entry, endpoint) for entry in data]

    def get_krw_balance(self) -> Decimal:
        for balance in self.get_accounts():
            if balance.currency == "KRW":
                return balance.amount
        return Decimal("0")

    def place_buy_order(self, market: str, price_amount: int) -> Order:
        if price_amount < self.min_order_amount:
            raise OrderRejected(
                OrderRejected.BELOW_MINIMUM,
                f"{price_amount} KRW is below the minimum order of {self.min_order_amount} KRW"
            )

        endpoint = "/v1/orders"
        params = {
            "market": market,
            "side": "bid",
            "ord_type": "price",
            "price": str(price_amount),
        }

        logger.info(f"Placing market buy: {market} for {price_amount} KRW")
        data = self.execute("POST", endpoint, params, requires_auth=True)
        order = Order.from_created(data, market, endpoint)
        logger.info(f"Buy order accepted: {order.id} ({order.state.value})")

        return order

    def get_recent_orders(
        self,
        market: str,
        window_hours: float,
        now: Optional[datetime] = None
    ) -> List[Order]:
        endpoint = "/v1/orders"
        params = {
            "market": market,
            "states": "done,cancel",
            "limit": self.RECENT_ORDERS_LIMIT,
        }
        data = self.execute("GET", endpoint, params, requires_auth=True)

        if not isinstance(data, list):
            raise MalformedResponse(endpoint, "expected a list of orders")

        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=window_hours)

        orders = []
        for entry in data:
            try:
                order = Order.from_api(entry, endpoint)
            except MalformedResponse as e:
                logger.warning(f"Skipping unparseable order history entry: {e}")
                continue
            if order.created_at >= cutoff:
                orders.append(order)

        return orders
