"""Status/control HTTP surface.

JSON endpoints for status, logs, start and stop, plus a Server-Sent Events
stream that replays the log buffer and current status on connect and then
pushes every new log entry and status snapshot.
"""
import json
from typing import Optional

from flask import Flask, Response, jsonify
from flask_cors import CORS

from . import log
from .bot import LiquidBot
from .events import BotStatus, EventBus, LogEntry

NOT_INITIALIZED = "Bot not initialized - check .env file"
HEARTBEAT_SEC = 15


def _sse(event: str, payload) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, default=str)}\n\n"

def _jsonable(payload):
    if isinstance(payload, (LogEntry, BotStatus)):
        return payload.to_dict()
    if isinstance(payload, list):
        return [_jsonable(p) for p in payload]
    return payload


def event_stream(bus: EventBus, bot: Optional[LiquidBot], heartbeat: float = HEARTBEAT_SEC):
    """SSE frames for one client; the subscription is dropped when the client goes away."""
    if bot is None:
        yield _sse("botError", {"error": NOT_INITIALIZED})
        return
    with bus.subscribe() as sub:
        first = sub.get(timeout=0)
        yield _sse("logs", _jsonable(first.payload if first else []))
        pending = sub.get(timeout=0)
        if pending is not None and pending.kind == "status":
            yield _sse("status", _jsonable(pending.payload))
            pending = None
        else:
            yield _sse("status", _jsonable(bot.get_status()))
        yield _sse("config", bot.config.public_view())
        yield _sse("botReady", {"tokenMint": bot.config.token_mint, "wallet": bot.get_wallet_address()})
        if pending is not None:
            yield _sse(pending.kind, _jsonable(pending.payload))
        while True:
            event = sub.get(timeout=heartbeat)
            if event is None:
                yield ": heartbeat\n\n"
                continue
            yield _sse(event.kind, _jsonable(event.payload))


def create_app(bot: Optional[LiquidBot] = None, bus: Optional[EventBus] = None) -> Flask:
    app = Flask(__name__)
    CORS(app)
    if bus is None:
        bus = bot.bus if bot is not None else EventBus()

    def _no_bot():
        return jsonify({"success": False, "error": NOT_INITIALIZED})

    @app.route("/api/status")
    def status():
        if bot is None:
            return _no_bot()
        return jsonify({
            "success": True,
            "status": bot.get_status().to_dict(),
            "config": bot.config.public_view(),
        })

    @app.route("/api/logs")
    def logs():
        return jsonify({"success": True, "logs": [e.to_dict() for e in bus.logs()]})

    @app.route("/api/start", methods=["POST"])
    def start():
        if bot is None:
            return _no_bot()
        bot.start()
        return jsonify({"success": True, "message": "Bot started"})

    @app.route("/api/stop", methods=["POST"])
    def stop():
        if bot is None:
            return _no_bot()
        bot.stop()
        return jsonify({"success": True, "message": "Bot stopped"})

    @app.route("/api/stream")
    def stream():
        log.dbg("sse_client_connected")
        return Response(event_stream(bus, bot), mimetype="text/event-stream",
                        headers={"Cache-Control": "no-cache"})

    return app


def run_server(app: Flask, host: str = "0.0.0.0", port: int = 3000):
    log.info("server_start", url=f"http://{host}:{port}")
    app.run(host=host, port=port, debug=False, threaded=True)
