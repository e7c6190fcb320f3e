# Execution module for signal-driven buys
"""
Order-Ausführung.

Enthält:
- OrderExecutionEngine: Ein Kaufversuch pro Signal
- ExecutionResult: Strukturiertes Ergebnis ohne Exceptions
"""

from .order_engine import ExecutionResult, ExecutionState, OrderExecutionEngine, TradeSignal, compute_buy_amount

__all__ = ['ExecutionResult', 'ExecutionState', 'OrderExecutionEngine', 'TradeSignal', 'compute_buy_amount']
