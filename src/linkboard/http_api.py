"""HTTP API — the session service over JSON.

Routes:
    POST   /api/sessions/start
    POST   /api/sessions/{sessionId}/join
    POST   /api/sessions/{aliasKey}/update
    GET    /api/sessions/lookup/{channelId}/{userId}
    GET    /api/sessions/{sessionId}
    DELETE /api/sessions/{sessionId}
    GET    /api/gamestate/{roomId}/{date}
    GET    /api/gamestate/{roomId}/{date}/{userId}
    POST   /api/gamestate/{roomId}/{date}/complete
    DELETE /api/gamestate/{roomId}/{date}/{userId}
    GET    /api/puzzles/{date}
    POST   /api/chat/start                      (needs a ChatHost)
    POST   /api/chat/click                      (needs a ChatHost)
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import unquote

from linkboard.chat.client import ChatError
from linkboard.core.progress import history_from_dicts
from linkboard.core.registry import DuplicateSessionError, UpdateStatus
from linkboard.core.schemas import validation_error
from linkboard.core.service import SessionService

logger = logging.getLogger(__name__)

_SEG = r"([^/]+)"
_DATE = r"(?P<date>\d{4}-\d{2}-\d{2})"

_ROUTES: list[tuple[str, re.Pattern, str]] = [
    ("POST", re.compile(r"^/api/sessions/start$"), "_start"),
    ("POST", re.compile(rf"^/api/sessions/{_SEG}/join$"), "_join"),
    ("POST", re.compile(rf"^/api/sessions/{_SEG}/update$"), "_update"),
    ("GET", re.compile(rf"^/api/sessions/lookup/{_SEG}/{_SEG}$"), "_lookup"),
    ("GET", re.compile(rf"^/api/sessions/{_SEG}$"), "_fetch"),
    ("DELETE", re.compile(rf"^/api/sessions/{_SEG}$"), "_end"),
    ("GET", re.compile(rf"^/api/gamestate/{_SEG}/{_DATE}$"), "_game_state"),
    ("POST", re.compile(rf"^/api/gamestate/{_SEG}/{_DATE}/complete$"), "_complete"),
    ("GET", re.compile(rf"^/api/gamestate/{_SEG}/{_DATE}/{_SEG}$"), "_has_played"),
    ("DELETE", re.compile(rf"^/api/gamestate/{_SEG}/{_DATE}/{_SEG}$"), "_erase"),
    ("GET", re.compile(rf"^/api/puzzles/{_DATE}$"), "_puzzle"),
    ("POST", re.compile(r"^/api/chat/start$"), "_chat_start"),
    ("POST", re.compile(r"^/api/chat/click$"), "_chat_click"),
]


class _BadRequest(Exception):
    pass


def _is_date(value: str | None) -> bool:
    if value is None:
        return True
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


class ApiHandler(BaseHTTPRequestHandler):
    service: SessionService  # set on subclass by make_server
    chat_host = None  # optional ChatHost for inbound chat events

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def do_DELETE(self):
        self._dispatch("DELETE")

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, method: str) -> None:
        path = self.path.split("?", 1)[0]
        for route_method, pattern, handler_name in _ROUTES:
            if route_method != method:
                continue
            m = pattern.match(path)
            if m:
                args = [unquote(g) for g in m.groups()]
                if not _is_date(m.groupdict().get("date")):
                    self._send_json(400, {"error": f"Invalid date: {m.group('date')}"})
                    return
                try:
                    getattr(self, handler_name)(*args)
                except _BadRequest as exc:
                    self._send_json(400, {"error": str(exc)})
                return
        self._send_json(404, {"error": "Not found"})

    def _read_json(self, schema_name: str) -> dict:
        length = int(self.headers.get("Content-Length") or 0)
        raw = self.rfile.read(length) if length else b""
        try:
            body = json.loads(raw or b"{}")
        except json.JSONDecodeError as exc:
            raise _BadRequest(f"Malformed JSON: {exc}") from exc
        error = validation_error(schema_name, body)
        if error:
            raise _BadRequest(error)
        return body

    def _read_history(self, raw):
        error = validation_error("guess_history", raw or [])
        if error:
            raise _BadRequest(error)
        return history_from_dicts(raw)

    def _send_json(self, status: int, body: dict) -> None:
        data = json.dumps(body, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _start(self):
        body = self._read_json("session_start")
        try:
            session_id = self.service.start_session(
                body["roomId"],
                body["channelId"],
                body.get("date"),
                session_id=body.get("sessionId"),
                parent_session_id=body.get("parentSessionId"),
            )
        except DuplicateSessionError:
            self._send_json(409, {"error": "Session already exists"})
            return
        session = self.service.fetch(session_id)
        self._send_json(
            200, {"success": True, "sessionId": session_id, "session": session.to_dict()}
        )

    def _join(self, session_id):
        body = self._read_json("session_join")
        result = self.service.join(
            session_id,
            body["userId"],
            body["username"],
            body.get("avatarUrl"),
            body["roomId"],
            body.get("date"),
        )
        if result is None:
            self._send_json(404, {"error": "Session not found"})
            return
        self._send_json(200, {
            "success": True,
            "aliasKey": result.alias_key,
            "sessionId": result.session_id,
        })

    def _update(self, alias_key):
        body = self._read_json("session_update")
        history = self._read_history(body["guessHistory"])
        status = self.service.update_progress(alias_key, history)
        if status in (UpdateStatus.SESSION_NOT_FOUND, UpdateStatus.PLAYER_NOT_FOUND):
            self._send_json(404, {"error": status.value})
        elif status is UpdateStatus.INVALID:
            self._send_json(400, {"error": "Guess history does not match the puzzle"})
        else:
            self._send_json(200, {"success": True, "status": status.value})

    def _lookup(self, channel_id, user_id):
        result = self.service.lookup(channel_id, user_id)
        if result is None:
            self._send_json(200, {"found": False})
            return
        self._send_json(200, {
            "found": True,
            "sessionId": result.session_id,
            "guessHistory": [a.to_dict() for a in result.history],
        })

    def _fetch(self, session_id):
        session = self.service.fetch(session_id)
        if session is None:
            self._send_json(404, {"error": "Session not found"})
            return
        self._send_json(200, session.to_dict())

    def _end(self, session_id):
        self.service.end(session_id)
        self._send_json(200, {"success": True})

    # ------------------------------------------------------------------
    # Completion ledger
    # ------------------------------------------------------------------

    def _game_state(self, room_id, puzzle_date):
        self._send_json(200, self._scoreboard(room_id, puzzle_date))

    def _has_played(self, room_id, puzzle_date, user_id):
        played = self.service.has_played(room_id, user_id, puzzle_date)
        self._send_json(200, {"played": played})

    def _complete(self, room_id, puzzle_date):
        body = self._read_json("completion")
        history = self._read_history(body.get("guessHistory"))
        self.service.record_completion(
            room_id,
            body["userId"],
            puzzle_date,
            body["score"],
            body["mistakes"],
            history,
            display_name=body.get("username"),
            avatar_url=body.get("avatar"),
        )
        self._send_json(200, {
            "success": True, "gameState": self._scoreboard(room_id, puzzle_date),
        })

    def _erase(self, room_id, puzzle_date, user_id):
        self.service.erase(room_id, user_id, puzzle_date)
        self._send_json(200, {
            "success": True, "gameState": self._scoreboard(room_id, puzzle_date),
        })

    def _scoreboard(self, room_id, puzzle_date) -> dict:
        records = self.service.scoreboard(room_id, puzzle_date)
        return {
            "date": puzzle_date,
            "players": {r.user_id: r.to_dict() for r in records},
        }

    # ------------------------------------------------------------------
    # Puzzles
    # ------------------------------------------------------------------

    def _puzzle(self, puzzle_date):
        puzzle = self.service.puzzle(puzzle_date)
        if puzzle is None:
            self._send_json(404, {"error": "Game not found for this date"})
            return
        self._send_json(200, puzzle.to_dict())

    # ------------------------------------------------------------------
    # Inbound chat events (relayed by the bot gateway)
    # ------------------------------------------------------------------

    def _chat_start(self):
        if self.chat_host is None:
            self._send_json(404, {"error": "Chat host not configured"})
            return
        body = self._read_json("chat_start")
        try:
            session_id = self.chat_host.start_game(
                body["roomId"], body["channelId"], body.get("date")
            )
        except ChatError as exc:
            self._send_json(502, {"error": str(exc)})
            return
        self._send_json(200, {"success": True, "sessionId": session_id})

    def _chat_click(self):
        if self.chat_host is None:
            self._send_json(404, {"error": "Chat host not configured"})
            return
        body = self._read_json("chat_click")
        result = self.chat_host.handle_click(
            body["customId"],
            body["roomId"],
            body["channelId"],
            body["userId"],
            body["username"],
            body.get("avatarUrl"),
        )
        if result is None:
            self._send_json(404, {"error": "Not a playable session"})
            return
        self._send_json(200, {
            "success": True,
            "sessionId": result.session_id,
            "aliasKey": result.alias_key,
            "joined": result.joined,
            "replySession": result.reply_session,
        })


def make_server(
    service: SessionService, host: str, port: int, chat_host=None
) -> ThreadingHTTPServer:
    """Bind a threaded HTTP server whose handlers share *service*."""
    handler = type(
        "BoundApiHandler", (ApiHandler,), {"service": service, "chat_host": chat_host}
    )
    return ThreadingHTTPServer((host, port), handler)
