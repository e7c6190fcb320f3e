"""
Signal Trader: webhook-driven market buys on Upbit.
"""

__version__ = "0.1.0"
