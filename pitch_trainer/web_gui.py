"""Flask JSON API for a browser front-end.

The browser renders the activities and produces the sound itself; the server
owns the game logic.  Every round is returned as a *timeline* of notes with
MIDI numbers and durations in milliseconds so the client can schedule them.
The server side :class:`~pitch_trainer.activities.ActivityStateMachine` uses
a silent audio engine and does not advance rounds on its own
(``auto_advance=False``); the client asks for the next round when it has
shown the feedback.

Endpoints
---------
``GET  /api/progress``        progress summary
``POST /api/progress/reset``  forget all progress
``POST /api/mode``            ``{"mode": "memory_game"}``
``POST /api/round``           new round, or ``{"replay": true}`` for the current one
``POST /api/answer``          ``{"answer": ...}`` judged against the current round
``POST /api/parse``           ``{"notes": "C4 G4:h"}`` parsed into tokens
``GET  /api/melodies``        the known melody catalogue

The application factory follows the usual deployment safeguards:

* ``FLASK_SECRET`` is required unless the app runs in debug mode.
* ``MAX_UPLOAD_KB`` bounds the request size (HTTP 413 beyond it).
* ``RATE_LIMIT_PER_MINUTE`` enables an in-memory per-IP throttle that answers
  HTTP 429 with a ``Retry-After`` header.
"""

from __future__ import annotations

import logging
import math
import os
import secrets
from threading import Lock
from time import monotonic
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, current_app, jsonify, make_response, request

from .activities import ActivityStateMachine, Judgment, Round
from .difficulty import DifficultyController
from .events import ActivityMode
from .melodies import KNOWN_MELODIES
from .note_utils import NoteToken, ParseError, parse_melody, render_note
from .playback import SilentAudioEngine
from .storage import JsonFileStore, ProgressRepository

__all__ = ["create_app", "rate_limit", "REQUEST_LOG", "RATE_LIMIT_WINDOW"]

logger = logging.getLogger(__name__)

# Maps client IP to ``(window_start, count)`` for the current window.
REQUEST_LOG: Dict[str, Tuple[float, int]] = {}
REQUEST_LOCK = Lock()
RATE_LIMIT_WINDOW = 60.0


def rate_limit() -> Optional[Response]:
    """Enforce a naive per-IP request limit.

    Registered as a ``before_request`` hook. Missing, invalid or non-positive
    ``RATE_LIMIT_PER_MINUTE`` configuration disables the limiter.

    Returns:
        Optional[Response]: ``429`` response when the limit is exceeded,
        otherwise ``None`` to let the request through.
    """

    limit_raw = current_app.config.get("RATE_LIMIT_PER_MINUTE")
    if limit_raw is None:
        return None

    try:
        limit = int(limit_raw)
    except (TypeError, ValueError):
        logger.warning("Invalid RATE_LIMIT_PER_MINUTE %r; disabling rate limiting", limit_raw)
        return None

    if limit <= 0:
        if limit < 0:
            logger.warning(
                "RATE_LIMIT_PER_MINUTE must be positive; disabling rate limiting (received %r)",
                limit_raw,
            )
        return None

    now = monotonic()
    ip_addr = request.remote_addr or "unknown"

    with REQUEST_LOCK:
        expired = [ip for ip, (start, _) in REQUEST_LOG.items() if now - start >= RATE_LIMIT_WINDOW]
        for ip in expired:
            del REQUEST_LOG[ip]

        window_start, count = REQUEST_LOG.get(ip_addr, (now, 0))

        if now - window_start >= RATE_LIMIT_WINDOW:
            REQUEST_LOG[ip_addr] = (now, 1)
            return None

        if count >= limit:
            remaining = math.ceil(max(0.0, RATE_LIMIT_WINDOW - (now - window_start)))
            response = make_response(jsonify(error="Too many requests"), 429)
            response.headers["Retry-After"] = str(remaining)
            return response

        REQUEST_LOG[ip_addr] = (window_start, count + 1)

    return None


def _error(message: str, status: int = 400, **extra: Any):
    return jsonify(error=message, **extra), status


def _token_json(token: NoteToken, duration_ms: Optional[float] = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "note": render_note(token),
        "name": token.name,
        "pitch_class": token.pitch_class.value,
        "octave": token.octave,
        "duration": token.duration.value,
        "midi": token.midi,
    }
    if duration_ms is not None:
        data["duration_ms"] = duration_ms
    return data


def _round_json(rnd: Round) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "mode": rnd.mode.value,
        "timeline": [_token_json(note, ms) for note, ms in rnd.sequence],
    }
    if rnd.pattern is not None:
        data["pattern"] = rnd.pattern.kind.value
    if rnd.melody_id is not None:
        data["melody"] = KNOWN_MELODIES[rnd.melody_id].name()
    return data


def _judgment_json(judgment: Judgment) -> Dict[str, Any]:
    return {
        "mode": judgment.mode.value,
        "correct": judgment.correct,
        "complete": judgment.complete,
        "expected": judgment.expected,
        "given": judgment.given,
        "feedback": judgment.feedback,
        "unlocks": [
            {"kind": unlock.kind.value, "message": unlock.message, "progress": unlock.progress}
            for unlock in judgment.unlocks
        ],
    }


def _payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _machine() -> ActivityStateMachine:
    return current_app.config["MACHINE"]


def progress():
    return jsonify(_machine().summary())


def reset_progress():
    with current_app.config["MACHINE_LOCK"]:
        _machine().reset_progress()
    return jsonify(_machine().summary())


def select_mode():
    mode = _payload().get("mode")
    try:
        new_mode = ActivityMode(mode)
    except ValueError:
        return _error(f"Unknown mode: {mode!r}")
    with current_app.config["MACHINE_LOCK"]:
        previous = _machine().switch_mode(new_mode)
    return jsonify(mode=new_mode.value, previous=previous.value)


def new_round():
    machine = _machine()
    with current_app.config["MACHINE_LOCK"]:
        if machine.mode is ActivityMode.IDLE:
            return _error("Select a mode first", 409)
        if _payload().get("replay") and machine.current_round is not None:
            rnd = machine.current_round
        elif machine.mode is ActivityMode.DRAW_MELODY:
            rnd = machine.set_challenge(True)
        else:
            rnd = machine.next_round()
        # The browser plays every timeline it receives.
        rnd.played = True
    return jsonify(_round_json(rnd))


def answer():
    machine = _machine()
    data = _payload()
    if "answer" not in data:
        return _error("Missing 'answer'")
    value = data["answer"]
    extra: Dict[str, Any] = {}
    with current_app.config["MACHINE_LOCK"]:
        try:
            if machine.mode is ActivityMode.DRAW_MELODY and isinstance(value, dict):
                drawn, judgment = machine.submit_drawing(value.get("points") or [], float(value.get("height", 0)))
                extra["drawn"] = [_token_json(note) for note in drawn]
            elif machine.mode is ActivityMode.DRAW_MELODY:
                judgment = machine.answer(parse_melody(value))
            elif machine.mode is ActivityMode.MEMORY_GAME and isinstance(value, list):
                judgment = None
                for note in value:
                    judgment = machine.answer(note)
                    if judgment is None or judgment.complete:
                        break
            else:
                judgment = machine.answer(value)
        except ParseError as exc:
            return _error(str(exc), kind=exc.kind.value)
        except (TypeError, ValueError) as exc:
            return _error(str(exc))
    if judgment is None:
        return jsonify(ignored=True, **extra)
    result = _judgment_json(judgment)
    result.update(extra)
    return jsonify(result)


def parse():
    data = _payload()
    notes = data.get("notes", data.get("token"))
    if not notes:
        return _error("Missing 'notes'")
    if not isinstance(notes, (str, list)):
        return _error("'notes' must be a string or a list of note tokens")
    try:
        tokens = parse_melody(notes)
    except ParseError as exc:
        return _error(str(exc), kind=exc.kind.value, token=exc.text)
    return jsonify(tokens=[_token_json(t) for t in tokens])


def melodies():
    return jsonify(
        melodies=[
            {
                "id": m.melody_id,
                "names": dict(m.names),
                "quarter_ms": m.quarter_ms,
                "notes": list(m.notes),
            }
            for m in KNOWN_MELODIES.values()
        ]
    )


def create_app(machine: Optional[ActivityStateMachine] = None) -> Flask:
    """Build and configure the Flask application instance.

    Parameters:
        machine: State machine serving the requests. By default one with a
            silent audio engine and the JSON state file is created.

    Returns:
        Flask: Configured application ready for use by a WSGI server.

    Raises:
        RuntimeError: If ``FLASK_SECRET`` is missing while debug mode is
            disabled.
    """

    app = Flask(__name__)

    secret = os.environ.get("FLASK_SECRET")
    try:
        max_kb = int(os.environ.get("MAX_UPLOAD_KB", "64"))
    except ValueError:
        max_kb = 64
        logger.warning("Invalid MAX_UPLOAD_KB value; defaulting to 64 KB.")
    rate_limit_env = os.environ.get("RATE_LIMIT_PER_MINUTE")
    try:
        rate_limit_per_minute = int(rate_limit_env) if rate_limit_env else None
    except ValueError:
        logger.warning("RATE_LIMIT_PER_MINUTE must be an integer. Disabling rate limiting.")
        rate_limit_per_minute = None

    if not app.debug and not secret:
        logger.critical("FLASK_SECRET environment variable must be set in production.")
        raise RuntimeError("Missing FLASK_SECRET")

    if not secret:
        secret = secrets.token_urlsafe(32)
        logger.warning(
            "FLASK_SECRET environment variable not set. "
            "Using a randomly generated key; sessions will not persist across restarts."
        )
    app.secret_key = secret
    app.config["MAX_CONTENT_LENGTH"] = max_kb * 1024
    app.config["RATE_LIMIT_PER_MINUTE"] = rate_limit_per_minute

    if machine is None:
        machine = ActivityStateMachine(
            SilentAudioEngine(),
            DifficultyController(ProgressRepository(JsonFileStore())),
            auto_advance=False,
        )
    app.config["MACHINE"] = machine
    app.config["MACHINE_LOCK"] = Lock()

    app.add_url_rule("/api/progress", view_func=progress, methods=["GET"])
    app.add_url_rule("/api/progress/reset", view_func=reset_progress, methods=["POST"])
    app.add_url_rule("/api/mode", view_func=select_mode, methods=["POST"])
    app.add_url_rule("/api/round", view_func=new_round, methods=["POST"])
    app.add_url_rule("/api/answer", view_func=answer, methods=["POST"])
    app.add_url_rule("/api/parse", view_func=parse, methods=["POST"])
    app.add_url_rule("/api/melodies", view_func=melodies, methods=["GET"])

    app.before_request(rate_limit)

    @app.errorhandler(413)
    def handle_request_too_large(_err):
        """Return a concise message when the client sends too much data."""
        return _error("Request exceeds configured size limit.", 413)

    return app
