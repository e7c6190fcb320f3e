"""
Webhook server.

Receives trading alerts and hands accepted buy signals to the
order execution engine.
"""

from datetime import datetime, timezone

from flask import Flask, jsonify, request
from loguru import logger

from signal_trader.execution.order_engine import OrderExecutionEngine
from signal_trader.webhook.signals import InvalidSignal, UnsupportedSymbol, parse_signal


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_app(engine: OrderExecutionEngine) -> Flask:
    """
    Build the Flask application.

    Args:
        engine: Engine used for every accepted signal

    Returns:
        Flask app
    """
    app = Flask(__name__)
    market = engine.config.symbol

    @app.get("/")
    def health():
        return jsonify({
            "status": "healthy",
            "message": f"Signal trader for {market} is ready",
            "timestamp": _timestamp()
        })

    @app.post("/")
    def webhook():
        payload = request.get_json(silent=True)
        if payload is None:
            payload = request.form.to_dict()
        logger.info(f"Webhook received: {payload}")

        try:
            signal = parse_signal(payload, market)
        except UnsupportedSymbol as e:
            logger.warning(str(e))
            return jsonify({"error": "unsupported_symbol", "message": str(e)}), 400
        except InvalidSignal as e:
            logger.warning(str(e))
            return jsonify({"error": "invalid_signal", "message": str(e)}), 400

        try:
            result = engine.execute_buy(signal)
        except Exception as e:
            logger.exception(f"Webhook handling failed: {e}")
            return jsonify({"error": "server_error", "message": str(e)}), 500

        return jsonify({
            "success": True,
            "result": result.to_dict(),
            "timestamp": _timestamp()
        })

    return app
