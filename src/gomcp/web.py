"""
Minimal Flask API that puts the tool orchestrator behind HTTP.

Endpoints:
- POST /api/chat     {message}  -> {reply}; 401 when the endpoint rejects the API key
- POST /api/api-key  {apiKey}   -> swap the in-memory key (not persisted)
- GET  /api/api-key             -> {hasValidKey}

The orchestrator is async and lives on a background event-loop thread (LoopThread);
handlers hand it coroutines with run_coroutine_threadsafe.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Optional, TypeVar

from flask import Flask, jsonify, request

from .config import Credentials
from .errors import UpstreamAuthFailure

T = TypeVar("T")

log = logging.getLogger("web")


class LoopThread:
    """Runs an asyncio event loop in a daemon thread."""

    def __init__(self, name: str = "gomcp-loop"):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> "LoopThread":
        self._thread.start()
        return self

    def run(self, coro: Awaitable[T], timeout: Optional[float] = None) -> T:
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def stop(self) -> None:
        if self._thread.is_alive():
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join(timeout=5)
        self.loop.close()


def create_app(process: Callable[[str], str], credentials: Credentials) -> Flask:
    """Build the app. ``process`` turns one user message into the assistant's reply."""
    app = Flask(__name__)

    @app.route("/api/chat", methods=["POST"])
    def chat():
        payload = request.get_json(silent=True) or {}
        message = payload.get("message")
        if not isinstance(message, str) or not message.strip():
            return jsonify({"error": "message is required"}), 400
        try:
            reply = process(message)
        except UpstreamAuthFailure as e:
            return jsonify({"error": "upstream_auth_failure", "message": str(e)}), 401
        except Exception as e:
            log.exception("Failed to process chat message")
            return jsonify({"error": "internal_error", "message": str(e)}), 500
        return jsonify({"reply": reply})

    @app.route("/api/api-key", methods=["POST"])
    def save_api_key():
        payload = request.get_json(silent=True) or {}
        api_key = payload.get("apiKey")
        if not isinstance(api_key, str) or not api_key.strip():
            return jsonify({"error": "apiKey must not be empty"}), 400
        credentials.swap(api_key)
        log.info("API key replaced")
        return jsonify({"success": True, "message": "API key updated"})

    @app.route("/api/api-key", methods=["GET"])
    def check_api_key():
        return jsonify({"hasValidKey": credentials.has_valid_key()})

    @app.after_request
    def add_cors_headers(response):
        response.headers["Access-Control-Allow-Origin"] = request.headers.get("Origin", "*")
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Cache-Control"] = "no-store, max-age=0"
        return response

    return app
