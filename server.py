"""
Minimal Flask API that exposes the interactive session controller to a board UI.

Endpoints:
- POST   /api/sessions                    -> create a session and start a game {side, oracle_enabled, depth, fen}
- GET    /api/sessions/<id>               -> current state snapshot
- DELETE /api/sessions/<id>               -> drop a session
- POST   /api/sessions/<id>/click         -> board click {square}
- POST   /api/sessions/<id>/deselect      -> clear the current selection
- POST   /api/sessions/<id>/promotion     -> promotion choice {piece}
- POST   /api/sessions/<id>/new-game      -> restart {side, fen}
- POST   /api/sessions/<id>/config        -> {oracle_enabled, depth}
- POST   /api/sessions/<id>/flip          -> toggle board orientation
- POST   /api/sessions/<id>/oracle-move   -> ask the oracle to move now
- GET    /api/sessions/<id>/pgn           -> PGN of the current game

All sessions live on one background asyncio loop. Each request hands its command to that
loop, so commands still run one at a time. Command endpoints wait for the oracle's reply
before answering unless the body carries "wait": false (then poll GET for progress).
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import time
import uuid
from typing import Callable, Dict, Optional

from flask import Flask, Response, jsonify, request

from src.oracle_chess.config import SETTINGS
from src.oracle_chess.oracle_client import OracleClient
from src.oracle_chess.session import SessionConfig, SessionController

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = Flask(__name__)
sessions_lock = threading.Lock()

SESSIONS: Dict[str, dict] = {}
SESSION_TTL_S = SETTINGS.session_ttl_s  # drop idle sessions to avoid leaks
COMMAND_TIMEOUT_S = SETTINGS.oracle_timeout_s * (SETTINGS.oracle_retries + 1) + 5
ORACLE_CLIENT = OracleClient()


class _LoopThread:
    """Background event loop that owns every session."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self.loop.run_forever, name="session-loop", daemon=True)
        self._thread.start()

    def run(self, coro, timeout: float):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)


LOOP = _LoopThread()


def _cleanup_stale_sessions(max_age_s: int = SESSION_TTL_S):
    now = time.time()
    with sessions_lock:
        expired = [sid for sid, sess in SESSIONS.items() if now - sess.get("updated_at", now) > max_age_s]
        for sid in expired:
            SESSIONS.pop(sid, None)
    if expired:
        logging.info("Dropped %d idle sessions", len(expired))


def _get_session(session_id: str) -> Optional[dict]:
    with sessions_lock:
        return SESSIONS.get(session_id)


def _payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _require(data: dict, key: str):
    val = data.get(key)
    if val is None or val == "":
        raise ValueError(f"{key} is required")
    return val


def _flag(data: dict, key: str, default: Optional[bool]) -> Optional[bool]:
    val = data.get(key, default)
    if val is None or isinstance(val, bool):
        return val
    if isinstance(val, str) and val.strip().lower() in ("true", "false"):
        return val.strip().lower() == "true"
    raise ValueError(f"{key} must be a boolean")


def _run_command(session: dict, fn: Callable[[SessionController], object], wait: bool) -> dict:
    """Run fn against the session's controller on the session loop and return its state."""
    controller: SessionController = session["controller"]

    async def _command():
        fn(controller)
        if wait:
            await controller.wait_for_oracle()
        return controller.state()

    async def _snapshot():
        return controller.state()

    session["updated_at"] = time.time()
    try:
        return LOOP.run(_command(), COMMAND_TIMEOUT_S)
    except concurrent.futures.TimeoutError:
        logging.warning("Session %s: oracle still thinking after %.0fs; returning current state", session["id"], COMMAND_TIMEOUT_S)
        return LOOP.run(_snapshot(), COMMAND_TIMEOUT_S)


def _session_command(session_id: str, fn: Callable[[SessionController, dict], object]):
    _cleanup_stale_sessions()
    session = _get_session(session_id)
    if not session:
        return jsonify({"error": "not found"}), 404
    data = _payload()
    try:
        state = _run_command(session, lambda c: fn(c, data), wait=_flag(data, "wait", True))
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(dict(state, session_id=session_id))


@app.route("/api/sessions", methods=["POST"])
def create_session():
    """Create a session and start its first game (the oracle opens when the human plays Black)."""
    _cleanup_stale_sessions()
    data = _payload()
    session_id = data.get("session_id") or f"session_{int(time.time())}_{uuid.uuid4().hex[:6]}"
    try:
        cfg = SessionConfig(oracle_enabled=_flag(data, "oracle_enabled", True))
        if data.get("depth") is not None:
            cfg.search_depth = cfg.clamp_depth(data["depth"])
        session = {
            "id": session_id,
            "controller": SessionController(oracle_client=ORACLE_CLIENT, cfg=cfg),
            "created_at": time.time(),
            "updated_at": time.time(),
        }
        state = _run_command(
            session,
            lambda c: c.new_game(data.get("side", "white"), data.get("fen")),
            wait=_flag(data, "wait", True),
        )
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    with sessions_lock:
        SESSIONS[session_id] = session
    logging.info("Created session %s", session_id)
    return jsonify(dict(state, session_id=session_id)), 201


@app.route("/api/sessions/<session_id>", methods=["GET"])
def get_session(session_id: str):
    session = _get_session(session_id)
    if not session:
        return jsonify({"error": "not found"}), 404
    state = _run_command(session, lambda c: None, wait=False)
    return jsonify(dict(state, session_id=session_id))


@app.route("/api/sessions/<session_id>", methods=["DELETE"])
def delete_session(session_id: str):
    with sessions_lock:
        removed = SESSIONS.pop(session_id, None)
    if not removed:
        return jsonify({"error": "not found"}), 404
    return jsonify({"deleted": session_id})


@app.route("/api/sessions/<session_id>/click", methods=["POST"])
def session_click(session_id: str):
    return _session_command(session_id, lambda c, d: c.select_or_move(_require(d, "square")))


@app.route("/api/sessions/<session_id>/deselect", methods=["POST"])
def session_deselect(session_id: str):
    return _session_command(session_id, lambda c, d: c.clear_selection())


@app.route("/api/sessions/<session_id>/promotion", methods=["POST"])
def session_promotion(session_id: str):
    return _session_command(session_id, lambda c, d: c.choose_promotion(_require(d, "piece")))


@app.route("/api/sessions/<session_id>/new-game", methods=["POST"])
def session_new_game(session_id: str):
    return _session_command(session_id, lambda c, d: c.new_game(d.get("side", "white"), d.get("fen")))


@app.route("/api/sessions/<session_id>/config", methods=["POST"])
def session_config(session_id: str):
    return _session_command(
        session_id,
        lambda c, d: c.update_config(oracle_enabled=_flag(d, "oracle_enabled", None), search_depth=d.get("depth")),
    )


@app.route("/api/sessions/<session_id>/flip", methods=["POST"])
def session_flip(session_id: str):
    return _session_command(session_id, lambda c, d: c.toggle_orientation())


@app.route("/api/sessions/<session_id>/oracle-move", methods=["POST"])
def session_oracle_move(session_id: str):
    return _session_command(session_id, lambda c, d: c.request_oracle_move_now())


@app.route("/api/sessions/<session_id>/pgn", methods=["GET"])
def session_pgn(session_id: str):
    session = _get_session(session_id)
    if not session:
        return jsonify({"error": "not found"}), 404

    async def _pgn():
        return session["controller"].pgn()

    return Response(LOOP.run(_pgn(), COMMAND_TIMEOUT_S), mimetype="application/x-chess-pgn")


@app.route("/health")
def health():
    return jsonify({"ok": True})


@app.after_request
def add_cors_headers(response):
    response.headers["Access-Control-Allow-Origin"] = request.headers.get("Origin", "*")
    response.headers["Access-Control-Allow-Credentials"] = "true"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
    # Board state changes on every command; never cache it
    response.headers["Cache-Control"] = "no-store, max-age=0"
    return response


@app.route("/api/<path:path>", methods=["OPTIONS"])
def cors_preflight(path: str):
    resp = app.make_response(("", 204))
    resp.headers["Access-Control-Allow-Origin"] = request.headers.get("Origin", "*")
    resp.headers["Access-Control-Allow-Credentials"] = "true"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
    return resp


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8000, debug=False)
