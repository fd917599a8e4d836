"""Reconciler — periodic push of authoritative session state into chat.

The reconciler keeps a local mirror of every session it is responsible for,
with the guess count last shown in chat for each player. Every tick it walks
a snapshot of that mirror in order and, per session:

    fetch -> diff guess counts (either way) -> render + edit -> advance cursors
          -> record completions -> drop the session once everyone is done

Sessions started without a chat message (plain API clients) are never
edited, but each tick still records and ends them once every player is done.

The cursor for a player only advances after the chat edit succeeded, so a
failed edit is re-attempted on the next tick with the same or a newer
delta. A transport error skips the session for this tick; a fetch that
reports the session missing drops it from the mirror.

Edits are serialized through one lock, shared with ``refresh`` (used when a
player joins), so two edits never race on the same message.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

from linkboard.chat.client import ChatClient, ChatError, PlayButton
from linkboard.chat.render import format_player_message, render_progress_image
from linkboard.core.progress import PlayerProgress
from linkboard.core.registry import GameSession

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """The session source could not be reached."""


# ----------------------------------------------------------------------
# Session sources
# ----------------------------------------------------------------------

class SessionSource(ABC):
    """Where the reconciler reads authoritative session state from."""

    @abstractmethod
    def fetch(self, session_id: str) -> GameSession | None:
        """Current session state, None if the session is gone."""

    @abstractmethod
    def session_ids(self) -> list[str]:
        """Ids of every active session, tracked in chat or not."""

    @abstractmethod
    def end(self, session_id: str) -> None:
        """Remove a finished session from the active registry."""

    @abstractmethod
    def record_completions(self, session: GameSession) -> None:
        """Persist every terminal player's result (idempotent)."""


class LocalSessionSource(SessionSource):
    """Reads straight from an in-process SessionService."""

    def __init__(self, service) -> None:
        self._service = service

    def fetch(self, session_id):
        return self._service.fetch(session_id)

    def session_ids(self):
        return self._service.session_ids()

    def end(self, session_id):
        self._service.end(session_id)

    def record_completions(self, session):
        self._service.complete_terminal_players(session)


# ----------------------------------------------------------------------
# Local mirror
# ----------------------------------------------------------------------

@dataclass
class TrackedSession:
    """What chat currently shows for one session."""

    session_id: str
    channel_id: str
    label: str
    players: dict[str, PlayerProgress] = field(default_factory=dict)
    shown_counts: dict[str, int] = field(default_factory=dict)

    def player_list(self) -> list[PlayerProgress]:
        return list(self.players.values())


Renderer = Callable[[list[PlayerProgress], str], bytes]


class Reconciler:
    """Polls sessions and edits their chat messages when progress advances."""

    def __init__(
        self,
        source: SessionSource,
        chat: ChatClient,
        *,
        renderer: Renderer = render_progress_image,
        interval_s: float = 5.0,
        maintenance: Callable[[], object] | None = None,
    ) -> None:
        self._source = source
        self._chat = chat
        self._render = renderer
        self._interval_s = interval_s
        self._maintenance = maintenance
        self._sessions: dict[str, TrackedSession] = {}
        self._lock = threading.Lock()
        self._edit_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Mirror management
    # ------------------------------------------------------------------

    def track(self, session_id: str, channel_id: str, label: str,
              players: list[PlayerProgress] | None = None) -> TrackedSession:
        tracked = TrackedSession(session_id=session_id, channel_id=channel_id, label=label)
        for p in players or []:
            tracked.players[p.user_id] = p
            tracked.shown_counts[p.user_id] = p.guess_count
        with self._lock:
            self._sessions[session_id] = tracked
        return tracked

    def untrack(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def tracked(self, session_id: str) -> TrackedSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def tracked_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def add_player(self, session_id: str, player: PlayerProgress) -> bool:
        """Mirror a newly joined player. False if unknown or already present."""
        with self._lock:
            tracked = self._sessions.get(session_id)
            if tracked is None or player.user_id in tracked.players:
                return False
            tracked.players[player.user_id] = player
            tracked.shown_counts[player.user_id] = player.guess_count
            return True

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """One pass over a snapshot of tracked sessions, in order."""
        ids = self.tracked_ids()
        if ids:
            logger.debug("Polling %d active session(s)", len(ids))
        for session_id in ids:
            self._reconcile(session_id)
        self._sweep_untracked()
        if self._maintenance is not None:
            try:
                self._maintenance()
            except Exception as exc:
                logger.warning("Reconciler maintenance failed: %s", exc)

    def refresh(self, session_id: str) -> bool:
        """Re-render the mirror as-is (e.g. after a join). True on success."""
        tracked = self.tracked(session_id)
        if tracked is None:
            return False
        try:
            self._publish(tracked, tracked.player_list())
        except ChatError as exc:
            logger.warning("Failed to refresh message %s: %s", session_id, exc)
            return False
        return True

    def _reconcile(self, session_id: str) -> None:
        tracked = self.tracked(session_id)
        if tracked is None:
            return

        try:
            session = self._source.fetch(session_id)
        except TransportError as exc:
            logger.warning("Skipping session %s this tick: %s", session_id, exc)
            return
        if session is None:
            logger.info("Session %s no longer exists; dropping it", session_id)
            self.untrack(session_id)
            return

        advanced = [
            uid for uid, p in session.players.items()
            if p.guess_count != tracked.shown_counts.get(uid, 0)
        ]
        complete = session.is_complete()
        if not advanced and not complete:
            return
        for uid in advanced:
            logger.debug(
                "Player %s: %d -> %d guesses", uid,
                tracked.shown_counts.get(uid, 0), session.players[uid].guess_count,
            )

        # Keep mirror join order; append players first seen on the server
        players = {uid: session.players.get(uid, p) for uid, p in tracked.players.items()}
        for uid, p in session.players.items():
            players.setdefault(uid, p)

        try:
            self._publish(tracked, list(players.values()), complete=complete)
        except ChatError as exc:
            logger.warning("Failed to edit message for %s: %s", session_id, exc)
            return

        with self._lock:
            tracked.players = players
            for uid, p in players.items():
                tracked.shown_counts[uid] = p.guess_count

        try:
            self._source.record_completions(session)
        except TransportError as exc:
            logger.warning("Could not record completions for %s: %s", session_id, exc)

        if complete:
            logger.info("Session %s complete: all players done", session_id)
            self.untrack(session_id)
            try:
                self._source.end(session_id)
            except TransportError as exc:
                logger.warning("Could not end session %s: %s", session_id, exc)

    def _sweep_untracked(self) -> None:
        """Record and end complete sessions that have no chat message to edit."""
        try:
            active = self._source.session_ids()
        except TransportError as exc:
            logger.warning("Could not list sessions: %s", exc)
            return
        tracked = set(self.tracked_ids())
        for session_id in active:
            if session_id in tracked:
                continue
            try:
                session = self._source.fetch(session_id)
                if session is None or not session.is_complete():
                    continue
                self._source.record_completions(session)
                self._source.end(session_id)
            except TransportError as exc:
                logger.warning("Skipping untracked session %s: %s", session_id, exc)
                continue
            logger.info("Untracked session %s complete: all players done", session_id)

    def _publish(self, tracked: TrackedSession, players: list[PlayerProgress],
                 complete: bool = False) -> None:
        with self._edit_lock:
            image = self._render(players, tracked.label)
            text = format_player_message(
                [p.display_name for p in players], tracked.label, complete=complete
            )
            self._chat.edit_message(
                tracked.channel_id, tracked.session_id, text, image,
                PlayButton(tracked.session_id),
            )

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="reconciler",
        )
        self._thread.start()

    def stop(self, timeout: float = 10.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval_s):
            try:
                self.tick()
            except Exception:
                logger.exception("Reconciler tick failed")
