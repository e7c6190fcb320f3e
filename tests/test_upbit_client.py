"""
Unit Tests für den Upbit Client.
"""

import hashlib
import pytest
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import jwt
import requests

# Projekt-Root zum Pfad hinzufügen
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from signal_trader.exchange.exceptions import (
    ConfigurationError,
    ExchangeCallFailed,
    MalformedResponse,
    OrderRejected,
)
from signal_trader.exchange.models import OrderSide, OrderState
from signal_trader.exchange.upbit_client import UpbitClient, build_query_string, compute_query_hash


ACCESS_KEY = "test-access-key"
SECRET_KEY = "test-secret-key-with-enough-length-for-hs512-signing-0123456789-abcdefghij"


def make_response(status_code=200, json_data=None, text=""):
    """Erstellt eine Fake-HTTP-Antwort."""
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


def decode_token(authorization: str) -> dict:
    """Prüft und dekodiert den Bearer-Token."""
    assert authorization.startswith("Bearer ")
    return jwt.decode(authorization[len("Bearer "):], SECRET_KEY, algorithms=["HS512"])


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return UpbitClient(
        access_key=ACCESS_KEY,
        secret_key=SECRET_KEY,
        retry_attempts=3,
        retry_delay=0,
        session=session
    )


class TestQueryString:
    """Tests für Query-String und Query-Hash."""

    def test_keeps_insertion_order(self):
        """Test Reihenfolge der Parameter."""
        assert build_query_string({"market": "KRW-ETH", "limit": "100"}) == "market=KRW-ETH&limit=100"
        assert build_query_string({"limit": "100", "market": "KRW-ETH"}) == "limit=100&market=KRW-ETH"

    def test_encodes_values(self):
        """Test URL-Encoding der Werte."""
        assert build_query_string({"states": "done,cancel"}) == "states=done%2Ccancel"
        assert build_query_string({"note": "a b"}) == "note=a%20b"
        assert build_query_string({"limit": 100}) == "limit=100"

    def test_empty_params(self):
        assert build_query_string({}) == ""

    def test_query_hash(self):
        """Test SHA-512 Query-Hash."""
        query_string = build_query_string({"market": "KRW-ETH", "limit": "100"})
        expected = hashlib.sha512(b"market=KRW-ETH&limit=100").hexdigest()

        assert compute_query_hash(query_string) == expected


class TestSigning:
    """Tests für signierte Requests."""

    def test_missing_secret_key(self, session):
        """Test fehlender Secret Key."""
        with pytest.raises(ConfigurationError):
            UpbitClient(access_key=ACCESS_KEY, secret_key="", session=session)

    def test_missing_access_key(self, session):
        with pytest.raises(ConfigurationError):
            UpbitClient(access_key="", secret_key=SECRET_KEY, session=session)

    def test_token_verifies_and_differs_only_in_nonce(self, client):
        """Test Token-Determinismus bis auf Nonce."""
        params = {"market": "KRW-ETH", "limit": "100"}
        first = client.sign_request("GET", "/v1/orders", params, requires_auth=True)
        second = client.sign_request("GET", "/v1/orders", params, requires_auth=True)

        claims_first = decode_token(first.headers["Authorization"])
        claims_second = decode_token(second.headers["Authorization"])

        assert claims_first["nonce"] != claims_second["nonce"]
        assert first.headers["Authorization"] != second.headers["Authorization"]

        claims_first.pop("nonce")
        claims_second.pop("nonce")
        assert claims_first == claims_second

    def test_token_claims(self, client):
        """Test Token-Inhalt."""
        request = client.sign_request("GET", "/v1/orders", {"market": "KRW-ETH", "limit": "100"}, requires_auth=True)
        token = request.headers["Authorization"][len("Bearer "):]
        claims = decode_token(request.headers["Authorization"])

        assert jwt.get_unverified_header(token)["alg"] == "HS512"
        assert claims["access_key"] == ACCESS_KEY
        assert claims["query_hash"] == hashlib.sha512(b"market=KRW-ETH&limit=100").hexdigest()
        assert claims["query_hash_alg"] == "SHA512"

    def test_token_without_params_has_no_query_hash(self, client):
        request = client.sign_request("GET", "/v1/accounts", {}, requires_auth=True)
        claims = decode_token(request.headers["Authorization"])

        assert "query_hash" not in claims
        assert request.url == "https://api.upbit.com/v1/accounts"

    def test_get_appends_query_string(self, client):
        """Test GET: Parameter in der URL."""
        request = client.sign_request("GET", "/v1/orders", {"market": "KRW-ETH", "states": "done,cancel"}, requires_auth=True)

        assert request.url == "https://api.upbit.com/v1/orders?market=KRW-ETH&states=done%2Ccancel"
        assert request.body is None

    def test_post_sends_body_but_hashes_query_string(self, client):
        """Test POST: Parameter im Body, Hash über Query-String."""
        params = {"market": "KRW-ETH", "side": "bid", "ord_type": "price", "price": "5000"}
        request = client.sign_request("POST", "/v1/orders", params, requires_auth=True)
        claims = decode_token(request.headers["Authorization"])

        assert request.url == "https://api.upbit.com/v1/orders"
        assert request.body == params
        expected = hashlib.sha512(b"market=KRW-ETH&side=bid&ord_type=price&price=5000").hexdigest()
        assert claims["query_hash"] == expected

    def test_public_request_is_unsigned(self, client):
        """Test öffentlicher Request ohne Signatur."""
        request = client.sign_request("GET", "/v1/ticker", {"markets": "KRW-ETH"})

        assert "Authorization" not in request.headers
        assert request.url == "https://api.upbit.com/v1/ticker?markets=KRW-ETH"


class TestExecute:
    """Tests für HTTP-Ausführung und Fehlerbehandlung."""

    def test_returns_json(self, client, session):
        session.request.return_value = make_response(json_data=[{"currency": "KRW", "balance": "1"}])

        assert client.execute("GET", "/v1/accounts", requires_auth=True) == [{"currency": "KRW", "balance": "1"}]

    def test_http_error_raises(self, client, session):
        """Test Non-2xx Antwort."""
        error_body = {"error": {"name": "invalid_query_payload", "message": "bad"}}
        session.request.return_value = make_response(400, error_body)

        with pytest.raises(ExchangeCallFailed) as exc_info:
            client.execute("GET", "/v1/orders", {"market": "KRW-ETH"}, requires_auth=True)

        assert exc_info.value.status_code == 400
        assert exc_info.value.body == error_body
        assert exc_info.value.endpoint == "/v1/orders"
        # 4xx wird nicht wiederholt
        assert session.request.call_count == 1

    def test_http_error_with_text_body(self, client, session):
        session.request.return_value = make_response(404, ValueError("no json"), text="Not Found")

        with pytest.raises(ExchangeCallFailed) as exc_info:
            client.execute("GET", "/v1/ticker", {"markets": "KRW-XXX"})

        assert exc_info.value.body == "Not Found"

    def test_transport_error_raises(self, client, session):
        """Test Netzwerkfehler."""
        session.request.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(ExchangeCallFailed) as exc_info:
            client.execute("GET", "/v1/accounts", requires_auth=True)

        assert exc_info.value.status_code is None
        assert session.request.call_count == 3

    def test_get_retried_on_server_error(self, client, session):
        """Test Retry bei 503 für GET."""
        session.request.side_effect = [
            make_response(503, ValueError("no json"), text="unavailable"),
            make_response(json_data=[]),
        ]

        assert client.execute("GET", "/v1/accounts", requires_auth=True) == []
        assert session.request.call_count == 2

        # Jeder Versuch bekommt einen neuen Token
        first_auth = session.request.call_args_list[0].kwargs["headers"]["Authorization"]
        second_auth = session.request.call_args_list[1].kwargs["headers"]["Authorization"]
        assert first_auth != second_auth

    def test_post_never_retried(self, client, session):
        """Test: Orders werden nie wiederholt."""
        session.request.side_effect = requests.Timeout("read timeout")

        with pytest.raises(ExchangeCallFailed):
            client.execute("POST", "/v1/orders", {"market": "KRW-ETH"}, requires_auth=True)

        assert session.request.call_count == 1

    def test_invalid_json_raises_malformed(self, client, session):
        session.request.return_value = make_response(200, ValueError("bad json"))

        with pytest.raises(MalformedResponse):
            client.execute("GET", "/v1/ticker", {"markets": "KRW-ETH"})


class TestOperations:
    """Tests für Balance, Ticker, Orders."""

    def test_get_current_price(self, client, session):
        session.request.return_value = make_response(json_data=[{"market": "KRW-ETH", "trade_price": 3500000.0}])

        assert client.get_current_price("KRW-ETH") == Decimal("3500000.0")
        assert session.request.call_args.args[1] == "https://api.upbit.com/v1/ticker?markets=KRW-ETH"

    def test_get_current_price_empty(self, client, session):
        session.request.return_value = make_response(json_data=[])

        with pytest.raises(MalformedResponse):
            client.get_current_price("KRW-ETH")

    def test_get_krw_balance(self, client, session):
        """Test KRW-Kontostand."""
        session.request.return_value = make_response(json_data=[
            {"currency": "ETH", "balance": "0.5"},
            {"currency": "KRW", "balance": "123456.789"},
        ])

        assert client.get_krw_balance() == Decimal("123456.789")

    def test_get_krw_balance_absent_is_zero(self, client, session):
        """Test: Kein KRW-Konto bedeutet Kontostand 0."""
        session.request.return_value = make_response(json_data=[{"currency": "ETH", "balance": "0.5"}])

        assert client.get_krw_balance() == Decimal("0")

    def test_get_accounts_malformed(self, client, session):
        session.request.return_value = make_response(json_data=[{"currency": "KRW"}])

        with pytest.raises(MalformedResponse):
            client.get_accounts()

    def test_place_buy_order_below_minimum(self, client, session):
        """Test Mindestbetrag ohne Netzwerkaufruf."""
        with pytest.raises(OrderRejected) as exc_info:
            client.place_buy_order("KRW-ETH", 4999)

        assert exc_info.value.reason == OrderRejected.BELOW_MINIMUM
        session.request.assert_not_called()

    def test_place_buy_order(self, client, session):
        """Test Market-Buy."""
        session.request.return_value = make_response(201, {
            "uuid": "abc-123",
            "side": "bid",
            "ord_type": "price",
            "price": "5000",
            "state": "wait",
            "market": "KRW-ETH",
            "created_at": "2024-05-01T12:00:00+09:00",
        })

        order = client.place_buy_order("KRW-ETH", 5000)

        assert order.id == "abc-123"
        assert order.side == OrderSide.BID
        assert order.state == OrderState.WAIT
        assert order.price == Decimal("5000")

        call = session.request.call_args
        assert call.args[0] == "POST"
        assert call.args[1] == "https://api.upbit.com/v1/orders"
        assert call.kwargs["json"] == {"market": "KRW-ETH", "side": "bid", "ord_type": "price", "price": "5000"}
        assert "Authorization" in call.kwargs["headers"]

    def test_place_buy_order_rejected_by_exchange(self, client, session):
        error_body = {"error": {"name": "insufficient_funds_bid", "message": "not enough KRW"}}
        session.request.return_value = make_response(400, error_body)

        with pytest.raises(ExchangeCallFailed) as exc_info:
            client.place_buy_order("KRW-ETH", 5000)

        assert exc_info.value.body == error_body

    def test_get_recent_orders_filters_window(self, client, session):
        """Test Zeitfenster-Filter."""
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        session.request.return_value = make_response(json_data=[
            {"uuid": "recent", "side": "bid", "state": "done", "market": "KRW-ETH",
             "created_at": (now - timedelta(minutes=30)).isoformat()},
            {"uuid": "old", "side": "bid", "state": "done", "market": "KRW-ETH",
             "created_at": (now - timedelta(minutes=90)).isoformat()},
        ])

        orders = client.get_recent_orders("KRW-ETH", 1, now=now)

        assert [order.id for order in orders] == ["recent"]
        assert session.request.call_args.args[1] == (
            "https://api.upbit.com/v1/orders?market=KRW-ETH&states=done%2Ccancel&limit=100"
        )

    def test_get_recent_orders_keeps_exchange_order(self, client, session):
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        session.request.return_value = make_response(json_data=[
            {"uuid": "b", "side": "ask", "state": "cancel", "created_at": "2024-05-01T20:50:00+09:00"},
            {"uuid": "a", "side": "bid", "state": "done", "created_at": "2024-05-01T20:40:00+09:00"},
        ])

        orders = client.get_recent_orders("KRW-ETH", 1, now=now)

        assert [order.id for order in orders] == ["b", "a"]


class TestOrderResponses:
    """Tests für knappe und fehlerhafte Order-Antworten."""

    def test_created_order_with_uuid_only(self, client, session):
        """Test: Order-Antwort nur mit uuid gilt als angenommen."""
        session.request.return_value = make_response(201, {"uuid": "abc-123"})

        order = client.place_buy_order("KRW-ETH", 5000)

        assert order.id == "abc-123"
        assert order.market == "KRW-ETH"
        assert order.side == OrderSide.BID
        assert order.state == OrderState.WAIT
        assert order.created_at.tzinfo is not None

    def test_created_order_without_uuid(self, client, session):
        session.request.return_value = make_response(201, {"side": "bid", "state": "wait"})

        with pytest.raises(MalformedResponse):
            client.place_buy_order("KRW-ETH", 5000)

        assert session.request.call_count == 1

    def test_unparseable_history_entry_skipped(self, client, session):
        """Test: Fehlerhafte Einträge werden übersprungen, gültige bleiben."""
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        session.request.return_value = make_response(json_data=[
            {"uuid": "valid", "side": "bid", "state": "done", "market": "KRW-ETH",
             "created_at": (now - timedelta(minutes=30)).isoformat()},
            {"uuid": "broken", "side": "bid", "state": "cancel", "market": "KRW-ETH", "created_at": None},
            {"uuid": "odd-side", "side": "???", "state": "done", "created_at": now.isoformat()},
        ])

        orders = client.get_recent_orders("KRW-ETH", 1, now=now)

        assert [order.id for order in orders] == ["valid"]


class TestEngineWithUpbitClient:
    """Tests: Execution Engine über den echten Client mit gemockter Session."""

    @pytest.fixture
    def engine(self, client):
        from signal_trader.config.settings import TradingConfig
        from signal_trader.execution.order_engine import OrderExecutionEngine

        config = TradingConfig(symbol="KRW-ETH", buy_percentage=0.1, min_order_amount=5000, duplicate_prevention_hours=1)
        return OrderExecutionEngine(client, config)

    def test_buy_with_minimal_order_response(self, engine, session):
        """Test Ende-zu-Ende: Order-Antwort {uuid} ergibt Erfolg."""
        session.request.side_effect = [
            make_response(json_data=[{"currency": "KRW", "balance": "50000"}]),
            make_response(json_data=[]),
            make_response(201, {"uuid": "abc-123"}),
        ]

        result = engine.execute_buy()

        assert result.success
        assert result.order_id == "abc-123"
        assert result.amount == 5000

        post = session.request.call_args_list[2]
        assert post.args[0] == "POST"
        assert post.kwargs["json"] == {"market": "KRW-ETH", "side": "bid", "ord_type": "price", "price": "5000"}

    def test_duplicate_found_despite_broken_history_row(self, engine, session):
        """Test: Ein fehlerhafter Eintrag schaltet den Duplikat-Schutz nicht ab."""
        recent = (datetime.now(timezone.utc) - timedelta(minutes=30)).isoformat()
        session.request.side_effect = [
            make_response(json_data=[{"currency": "KRW", "balance": "50000"}]),
            make_response(json_data=[
                {"uuid": "filled", "side": "bid", "state": "done", "market": "KRW-ETH", "created_at": recent},
                {"uuid": "broken", "side": "bid", "state": "cancel", "market": "KRW-ETH", "created_at": None},
            ]),
        ]

        result = engine.execute_buy()

        assert not result.success
        assert result.reason == "duplicate_prevented"
        assert result.warnings == []
        assert session.request.call_count == 2


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
