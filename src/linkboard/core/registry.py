"""Session registry and alias index — the only shared mutable state.

SessionRegistry maps a chat-message identity (the session id) to the
aggregate progress of every player who joined through that message.
SessionAliasIndex maps a player's own identity (room, user, date) back to
the session they joined, because a player's client never learns which chat
message it came through.

Both stores guard their maps with a single lock and hand out copies, so
callers never hold references into shared state.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum

from linkboard.core.progress import GuessAttempt, PlayerProgress

logger = logging.getLogger(__name__)


class DuplicateSessionError(KeyError):
    """Raised when a session id is registered twice."""


class UpdateStatus(Enum):
    OK = "ok"
    UNCHANGED = "unchanged"
    SESSION_NOT_FOUND = "session_not_found"
    PLAYER_NOT_FOUND = "player_not_found"
    INVALID = "invalid"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class GameSession:
    """One chat-posted game invitation and the players who joined through it."""

    session_id: str
    room_id: str
    channel_id: str
    puzzle_date: str
    players: dict[str, PlayerProgress] = field(default_factory=dict)
    last_update: int = field(default_factory=_now_ms)
    parent_session_id: str | None = None

    def is_complete(self) -> bool:
        """Non-empty and every player is terminal."""
        return bool(self.players) and all(
            p.is_terminal() for p in self.players.values()
        )

    def copy(self) -> GameSession:
        return GameSession(
            session_id=self.session_id,
            room_id=self.room_id,
            channel_id=self.channel_id,
            puzzle_date=self.puzzle_date,
            players={
                uid: PlayerProgress(
                    user_id=p.user_id,
                    display_name=p.display_name,
                    avatar_url=p.avatar_url,
                    history=list(p.history),
                )
                for uid, p in self.players.items()
            },
            last_update=self.last_update,
            parent_session_id=self.parent_session_id,
        )

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "roomId": self.room_id,
            "channelId": self.channel_id,
            "date": self.puzzle_date,
            "players": {uid: p.to_dict() for uid, p in self.players.items()},
            "lastUpdate": self.last_update,
            "parentSessionId": self.parent_session_id,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> GameSession:
        return cls(
            session_id=raw["sessionId"],
            room_id=raw.get("roomId", ""),
            channel_id=raw.get("channelId", ""),
            puzzle_date=raw.get("date", ""),
            players={
                uid: PlayerProgress.from_dict(uid, p)
                for uid, p in (raw.get("players") or {}).items()
            },
            last_update=raw.get("lastUpdate") or 0,
            parent_session_id=raw.get("parentSessionId"),
        )


@dataclass(frozen=True)
class ProgressUpdate:
    """Outcome of replacing one player's history."""

    status: UpdateStatus
    player: PlayerProgress | None = None
    became_terminal: bool = False


class SessionRegistry:
    """Authoritative in-memory map of active sessions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, GameSession] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(
        self,
        session_id: str,
        room_id: str,
        channel_id: str,
        puzzle_date: str,
        parent_session_id: str | None = None,
    ) -> GameSession:
        """Insert an empty session. Raises DuplicateSessionError if present."""
        with self._lock:
            if session_id in self._sessions:
                raise DuplicateSessionError(session_id)
            session = GameSession(
                session_id=session_id,
                room_id=room_id,
                channel_id=channel_id,
                puzzle_date=puzzle_date,
                parent_session_id=parent_session_id,
            )
            self._sessions[session_id] = session
            return session.copy()

    def add_player(
        self,
        session_id: str,
        user_id: str,
        display_name: str,
        avatar_url: str | None = None,
    ) -> UpdateStatus:
        """Add a zero-progress player. Rejoining is a no-op (UNCHANGED)."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return UpdateStatus.SESSION_NOT_FOUND
            if user_id in session.players:
                return UpdateStatus.UNCHANGED
            session.players[user_id] = PlayerProgress(
                user_id=user_id,
                display_name=display_name,
                avatar_url=avatar_url,
            )
            session.last_update = _now_ms()
            return UpdateStatus.OK

    def update_player_progress(
        self,
        session_id: str,
        user_id: str,
        history: list[GuessAttempt],
    ) -> ProgressUpdate:
        """Replace a player's history wholesale (last write wins)."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return ProgressUpdate(UpdateStatus.SESSION_NOT_FOUND)
            player = session.players.get(user_id)
            if player is None:
                return ProgressUpdate(UpdateStatus.PLAYER_NOT_FOUND)
            was_terminal = player.is_terminal()
            changed = player.replace_history(history)
            if changed:
                session.last_update = _now_ms()
            snapshot = PlayerProgress(
                user_id=player.user_id,
                display_name=player.display_name,
                avatar_url=player.avatar_url,
                history=list(player.history),
            )
            return ProgressUpdate(
                status=UpdateStatus.OK if changed else UpdateStatus.UNCHANGED,
                player=snapshot,
                became_terminal=not was_terminal and player.is_terminal(),
            )

    def remove(self, session_id: str) -> bool:
        """Drop a session. Removing an absent session is not an error."""
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def get(self, session_id: str) -> GameSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.copy() if session is not None else None

    def find_for_user(self, channel_id: str, user_id: str) -> GameSession | None:
        """First active session in *channel_id* that *user_id* has joined."""
        with self._lock:
            for session in self._sessions.values():
                if session.channel_id == channel_id and user_id in session.players:
                    return session.copy()
        return None

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)


@dataclass(frozen=True)
class SessionAlias:
    room_id: str
    user_id: str
    puzzle_date: str
    session_id: str

    @property
    def key(self) -> str:
        return alias_key(self.room_id, self.user_id, self.puzzle_date)


def alias_key(room_id: str, user_id: str, puzzle_date: str) -> str:
    """Player-centric session key handed to the player's client."""
    return f"{room_id}_{user_id}_{puzzle_date}"


class SessionAliasIndex:
    """(room, user, date) -> session id, at most one live mapping per key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._aliases: dict[str, SessionAlias] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._aliases)

    def register(
        self, room_id: str, user_id: str, puzzle_date: str, session_id: str
    ) -> str:
        """Point the player's key at *session_id*, replacing any prior alias."""
        alias = SessionAlias(room_id, user_id, puzzle_date, session_id)
        with self._lock:
            previous = self._aliases.get(alias.key)
            self._aliases[alias.key] = alias
        if previous is not None and previous.session_id != session_id:
            logger.info(
                "Alias %s moved from session %s to %s",
                alias.key, previous.session_id, session_id,
            )
        return alias.key

    def resolve(self, room_id: str, user_id: str, puzzle_date: str) -> str | None:
        alias = self.lookup(alias_key(room_id, user_id, puzzle_date))
        return alias.session_id if alias is not None else None

    def lookup(self, key: str) -> SessionAlias | None:
        with self._lock:
            return self._aliases.get(key)

    def prune(self, oldest_date: str) -> int:
        """Drop aliases for puzzle dates before *oldest_date*. Returns count."""
        with self._lock:
            stale = [
                k for k, a in self._aliases.items() if a.puzzle_date < oldest_date
            ]
            for k in stale:
                del self._aliases[k]
        return len(stale)
