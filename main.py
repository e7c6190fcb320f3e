#!/usr/bin/env python3
"""
Main entry point for the Signal Trader.

Usage:
    python main.py serve      # Run the webhook server
    python main.py balance    # Show the KRW balance
    python main.py price      # Show the current price of the trading pair
    python main.py buy        # Execute one buy attempt immediately
"""

import argparse
import json
import sys

from signal_trader.config.settings import get_settings
from signal_trader.exchange.exceptions import ConfigurationError, TradingError
from signal_trader.utils.logger import setup_logger, get_logger


def build_engine():
    """Create the exchange client and execution engine from settings."""
    from signal_trader.exchange.upbit_client import UpbitClient
    from signal_trader.execution.order_engine import OrderExecutionEngine

    settings = get_settings()
    client = UpbitClient.from_settings(settings)
    return OrderExecutionEngine(client, settings.trading)


def serve():
    """Run the webhook server."""
    from signal_trader.webhook.app import create_app

    logger = get_logger()
    settings = get_settings()

    app = create_app(build_engine())
    logger.info(f"Server listening on {settings.server.host}:{settings.server.port}")
    app.run(host=settings.server.host, port=settings.server.port)


def show_balance():
    """Print the KRW balance."""
    logger = get_logger()
    engine = build_engine()

    balance = engine.client.get_krw_balance()
    logger.info(f"KRW balance: {balance}")


def show_price():
    """Print the current price of the configured trading pair."""
    logger = get_logger()
    engine = build_engine()

    market = engine.config.symbol
    price = engine.client.get_current_price(market)
    logger.info(f"{market}: {price}")


def buy_now():
    """Run one buy attempt outside the webhook."""
    engine = build_engine()
    result = engine.execute_buy()
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.success else 1


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Webhook-driven Upbit market buys",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        "command",
        choices=["serve", "balance", "price", "buy"],
        help="Command to execute"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config file"
    )

    args = parser.parse_args()

    # Load settings before anything else reads them
    get_settings(args.config)
    setup_logger()
    logger = get_logger()

    commands = {
        "serve": serve,
        "balance": show_balance,
        "price": show_price,
        "buy": buy_now,
    }

    try:
        return commands[args.command]() or 0
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except TradingError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
