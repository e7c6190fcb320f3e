"""
Order Execution Engine.

Führt pro Signal genau einen Kaufversuch aus:
- KRW-Kontostand abfragen
- Ordergröße berechnen (fester Prozentsatz)
- Duplikat-Schutz über ein Zeitfenster
- Market-Buy platzieren und Ergebnis melden
"""

import math
import secrets
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from signal_trader.config.settings import TradingConfig
from signal_trader.exchange.base import ExchangeClient
from signal_trader.exchange.exceptions import TradingError


DUPLICATE_PREVENTED = "duplicate_prevented"
INSUFFICIENT_FUNDS = "insufficient_funds"


@dataclass
class TradeSignal:
    """Akzeptiertes Kaufsignal."""
    action: str
    market: str
    raw_symbol: str
    payload: Dict[str, Any] = field(default_factory=dict, repr=False)


class ExecutionState(Enum):
    """Zustände eines Kaufversuchs."""
    START = "start"
    BALANCE_CHECKED = "balance_checked"
    SIZE_COMPUTED = "size_computed"
    DUPLICATE_CHECKED = "duplicate_checked"
    ORDER_PLACED = "order_placed"
    FAILED = "failed"


@dataclass
class ExecutionResult:
    """Ergebnis eines Kaufversuchs."""
    success: bool
    order_id: Optional[str] = None
    amount: Optional[int] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    execution_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.success and (self.order_id is None or self.amount is None):
            raise ValueError("successful result requires order_id and amount")
        if not self.success and self.reason is None and self.error is None:
            raise ValueError("failed result requires reason or error")

    @classmethod
    def succeeded(cls, order_id: str, amount: int, **kwargs) -> "ExecutionResult":
        return cls(success=True, order_id=order_id, amount=amount, **kwargs)

    @classmethod
    def failed(
        cls,
        reason: Optional[str] = None,
        error: Optional[str] = None,
        **kwargs
    ) -> "ExecutionResult":
        return cls(success=False, reason=reason, error=error, **kwargs)

    def to_dict(self) -> Dict:
        """Response-Body für den Webhook."""
        data = {
            'success': self.success,
            'orderId': self.order_id,
            'amount': self.amount,
            'reason': self.reason,
            'error': self.error,
            'executionId': self.execution_id,
        }
        data = {key: value for key, value in data.items() if value is not None}
        if self.warnings:
            data['warnings'] = list(self.warnings)
        return data


def compute_buy_amount(balance: Decimal, buy_percentage: float) -> int:
    """Abgerundeter KRW-Betrag: floor(balance * buy_percentage)."""
    return math.floor(Decimal(balance) * Decimal(str(buy_percentage)))


class OrderExecutionEngine:
    """
    Execution Engine für signalbasierte Market-Buys.

    Garantien:
    - Höchstens ein Order-Aufruf pro execute_buy()
    - Keine automatischen Retries der Order-Platzierung
    - Keine Exception verlässt execute_buy()

    Zwei gleichzeitige Ausführungen auf demselben Konto können beide den
    Duplikat-Check bestehen. Mit ``serialize_executions`` wird die Sequenz
    Kontostand -> Duplikat-Check -> Order pro Markt in-process serialisiert.
    """

    def __init__(self, client: ExchangeClient, config: TradingConfig):
        """
        Args:
            client: Exchange Client
            config: Unveränderliche Trading-Konfiguration
        """
        self.client = client
        self.config = config

        self._market_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        logger.info(
            f"OrderExecutionEngine initialized for {config.symbol} "
            f"({config.buy_percentage:.0%} per buy, min {config.min_order_amount} KRW)"
        )

    def _lock_for(self, market: str) -> threading.Lock:
        with self._locks_guard:
            return self._market_locks.setdefault(market, threading.Lock())

    def execute_buy(self, signal: Optional[TradeSignal] = None) -> ExecutionResult:
        """
        Führt einen Kaufversuch aus.

        Args:
            signal: Akzeptiertes Kaufsignal (nur für Logging)

        Returns:
            ExecutionResult
        """
        execution_id = secrets.token_hex(8)
        market = self.config.symbol
        logger.info(
            f"[{execution_id}] Buy execution started "
            f"(signal symbol: {signal.raw_symbol if signal else '-'}, market: {market})"
        )

        try:
            if self.config.serialize_executions:
                with self._lock_for(market):
                    return self._run(execution_id, market)
            return self._run(execution_id, market)

        except Exception as e:
            logger.exception(f"[{execution_id}] Unexpected error during buy execution: {e}")
            return ExecutionResult.failed(error=str(e) or type(e).__name__, execution_id=execution_id)

    def _run(self, execution_id: str, market: str) -> ExecutionResult:
        state = ExecutionState.START

        # Start -> BalanceChecked
        try:
            balance = self.client.get_krw_balance()
        except TradingError as e:
            return self._fail(execution_id, state, error=str(e))

        state = self._transition(execution_id, state, ExecutionState.BALANCE_CHECKED, f"KRW balance: {balance}")

        # BalanceChecked -> SizeComputed
        buy_amount = compute_buy_amount(balance, self.config.buy_percentage)
        if buy_amount < self.config.min_order_amount:
            return self._fail(
                execution_id, state,
                reason=INSUFFICIENT_FUNDS,
                error=f"Insufficient balance: {buy_amount} KRW (minimum {self.config.min_order_amount} KRW)"
            )

        state = self._transition(execution_id, state, ExecutionState.SIZE_COMPUTED, f"Buy amount: {buy_amount} KRW")

        # SizeComputed -> DuplicateChecked
        is_duplicate, warning = self._check_duplicate(execution_id, market)
        warnings = [warning] if warning else []
        if is_duplicate:
            return self._fail(execution_id, state, reason=DUPLICATE_PREVENTED, warnings=warnings)

        state = self._transition(execution_id, state, ExecutionState.DUPLICATE_CHECKED, "No recent buy found")

        # DuplicateChecked -> OrderPlaced
        try:
            order = self.client.place_buy_order(market, buy_amount)
        except TradingError as e:
            return self._fail(execution_id, state, error=str(e), warnings=warnings)

        self._transition(execution_id, state, ExecutionState.ORDER_PLACED, f"Order {order.id} for {buy_amount} KRW")
        return ExecutionResult.succeeded(
            order_id=order.id,
            amount=buy_amount,
            execution_id=execution_id,
            warnings=warnings
        )

    def _check_duplicate(self, execution_id: str, market: str) -> Tuple[bool, Optional[str]]:
        """
        Prüft auf ausgeführte Käufe im Duplikat-Fenster.

        Fehler beim Abruf gelten als "kein Duplikat" (fail-open).

        Returns:
            (is_duplicate, warning)
        """
        try:
            recent_orders = self.client.get_recent_orders(market, self.config.duplicate_prevention_hours)
        except Exception as e:
            logger.warning(f"[{execution_id}] Duplicate check failed, proceeding: {e}")
            return False, f"duplicate_check_failed: {e}"

        filled_buys = [order for order in recent_orders if order.is_filled_buy]
        if filled_buys:
            logger.info(
                f"[{execution_id}] Duplicate buy prevented: {filled_buys[0].id} "
                f"at {filled_buys[0].created_at.isoformat()}"
            )
            return True, None

        return False, None

    def _transition(
        self,
        execution_id: str,
        current: ExecutionState,
        target: ExecutionState,
        detail: str
    ) -> ExecutionState:
        logger.debug(f"[{execution_id}] {current.value} -> {target.value}")
        logger.info(f"[{execution_id}] {detail}")
        return target

    def _fail(
        self,
        execution_id: str,
        state: ExecutionState,
        reason: Optional[str] = None,
        error: Optional[str] = None,
        warnings: Optional[List[str]] = None
    ) -> ExecutionResult:
        if error:
            logger.error(f"[{execution_id}] Buy execution failed after {state.value}: {error}")
        else:
            logger.info(f"[{execution_id}] Buy skipped after {state.value}: {reason}")

        return ExecutionResult.failed(
            reason=reason,
            error=error,
            execution_id=execution_id,
            warnings=warnings or []
        )
