"""SessionService — the core-exposed surface.

Owns the session registry, the alias index, and the completion ledger, and
is injected into both the HTTP handlers and the reconciliation task. Every
operation returns an explicit value for missing data; only duplicate
session ids raise.

Operation map:
    start_session       session.start
    join                session.join
    update_progress     session.updateProgress
    lookup              session.lookup
    fetch               session.fetch
    end                 session.end
    has_played          completion.hasPlayed
    record_completion   completion.record
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable

from linkboard.core.ledger import CompletionRecord, CompletionStore
from linkboard.core.progress import (
    GuessAttempt,
    InvalidGuessError,
    PlayerProgress,
    validate_history,
)
from linkboard.core.puzzle import Puzzle
from linkboard.core.puzzle_source import PuzzleStore
from linkboard.core.registry import (
    GameSession,
    SessionAliasIndex,
    SessionRegistry,
    UpdateStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    alias_key: str
    session_id: str
    added: bool


@dataclass(frozen=True)
class LookupResult:
    session_id: str
    history: list[GuessAttempt] = field(default_factory=list)


def _today() -> str:
    return date.today().isoformat()


class SessionService:
    """Single owner of all shared session state."""

    def __init__(
        self,
        ledger: CompletionStore,
        puzzles: PuzzleStore | None = None,
        *,
        validate_guesses: bool = True,
        today: Callable[[], str] = _today,
        registry: SessionRegistry | None = None,
        aliases: SessionAliasIndex | None = None,
    ) -> None:
        self.registry = registry or SessionRegistry()
        self.aliases = aliases or SessionAliasIndex()
        self.ledger = ledger
        self.puzzles = puzzles
        self._validate_guesses = validate_guesses
        self._today = today

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(
        self,
        room_id: str,
        channel_id: str,
        puzzle_date: str | None = None,
        session_id: str | None = None,
        parent_session_id: str | None = None,
    ) -> str:
        """Register a new session. Raises DuplicateSessionError on reuse."""
        session_id = session_id or uuid.uuid4().hex
        puzzle_date = puzzle_date or self._today()
        self.registry.create(
            session_id, room_id, channel_id, puzzle_date,
            parent_session_id=parent_session_id,
        )
        logger.info(
            "Session %s started in room %s channel %s for %s",
            session_id, room_id, channel_id, puzzle_date,
        )
        return session_id

    def join(
        self,
        session_id: str,
        user_id: str,
        display_name: str,
        avatar_url: str | None,
        room_id: str,
        puzzle_date: str | None = None,
    ) -> JoinResult | None:
        """Add a player and point their alias at this session.

        Returns None when the session does not exist.
        """
        status = self.registry.add_player(
            session_id, user_id, display_name, avatar_url
        )
        if status is UpdateStatus.SESSION_NOT_FOUND:
            logger.warning("Join for unknown session %s by %s", session_id, user_id)
            return None
        puzzle_date = puzzle_date or self._session_date(session_id)
        key = self.aliases.register(room_id, user_id, puzzle_date, session_id)
        added = status is UpdateStatus.OK
        if added:
            logger.info("Player %s (%s) joined session %s", display_name, user_id, session_id)
        return JoinResult(alias_key=key, session_id=session_id, added=added)

    def update_progress(
        self, alias_key: str, history: list[GuessAttempt]
    ) -> UpdateStatus:
        """Replace the aliased player's history with the client's full copy."""
        alias = self.aliases.lookup(alias_key)
        if alias is None:
            logger.warning("No session mapped for alias %s", alias_key)
            return UpdateStatus.SESSION_NOT_FOUND

        if self._validate_guesses and self.puzzles is not None:
            puzzle = self.puzzles.get(alias.puzzle_date)
            if puzzle is not None:
                try:
                    validate_history(puzzle, history)
                except InvalidGuessError as exc:
                    logger.warning("Rejected history for %s: %s", alias_key, exc)
                    return UpdateStatus.INVALID

        update = self.registry.update_player_progress(
            alias.session_id, alias.user_id, history
        )
        if update.status in (
            UpdateStatus.SESSION_NOT_FOUND, UpdateStatus.PLAYER_NOT_FOUND,
        ):
            logger.warning(
                "Update for %s failed: %s (session %s)",
                alias_key, update.status.value, alias.session_id,
            )
            return update.status

        if update.became_terminal:
            self._complete_player(alias.room_id, alias.puzzle_date, update.player)
        return update.status

    def lookup(self, channel_id: str, user_id: str) -> LookupResult | None:
        """Find an active session in *channel_id* that *user_id* joined."""
        session = self.registry.find_for_user(channel_id, user_id)
        if session is None:
            return None
        return LookupResult(
            session_id=session.session_id,
            history=list(session.players[user_id].history),
        )

    def fetch(self, session_id: str) -> GameSession | None:
        return self.registry.get(session_id)

    def session_ids(self) -> list[str]:
        return self.registry.session_ids()

    def end(self, session_id: str) -> None:
        if self.registry.remove(session_id):
            logger.info("Session %s ended", session_id)

    def complete_terminal_players(self, session: GameSession) -> int:
        """Push every terminal player of *session* to the ledger.

        Safe to call repeatedly; unchanged results are not rewritten.
        Returns the number of records written.
        """
        written = 0
        for player in session.players.values():
            if player.is_terminal():
                if self._complete_player(session.room_id, session.puzzle_date, player):
                    written += 1
        return written

    def prune_aliases(self, retention_days: int) -> int:
        """Forget aliases for puzzle dates older than *retention_days*."""
        oldest = (
            date.fromisoformat(self._today()) - timedelta(days=retention_days)
        ).isoformat()
        removed = self.aliases.prune(oldest)
        if removed:
            logger.debug("Pruned %d aliases older than %s", removed, oldest)
        return removed

    # ------------------------------------------------------------------
    # Completion ledger
    # ------------------------------------------------------------------

    def has_played(self, room_id: str, user_id: str, puzzle_date: str) -> bool:
        return self.ledger.get(room_id, user_id, puzzle_date) is not None

    def record_completion(
        self,
        room_id: str,
        user_id: str,
        puzzle_date: str,
        score: int,
        mistakes: int,
        history: list[GuessAttempt],
        display_name: str | None = None,
        avatar_url: str | None = None,
    ) -> CompletionRecord:
        """Upsert a finished result; a repeat with the same data is a no-op."""
        record, _ = self._upsert_completion(
            room_id, user_id, puzzle_date, score, mistakes, history,
            display_name, avatar_url,
        )
        return record

    def _upsert_completion(
        self, room_id, user_id, puzzle_date, score, mistakes, history,
        display_name, avatar_url,
    ) -> tuple[CompletionRecord, bool]:
        existing = self.ledger.get(room_id, user_id, puzzle_date)
        if (
            existing is not None
            and existing.score == score
            and existing.mistakes == mistakes
            and existing.history == list(history)
        ):
            return existing, False
        record = CompletionRecord(
            room_id=room_id,
            user_id=user_id,
            display_name=display_name or user_id,
            avatar_url=avatar_url,
            puzzle_date=puzzle_date,
            score=score,
            mistakes=mistakes,
            history=list(history),
        )
        self.ledger.upsert(record)
        logger.info(
            "Recorded %s in room %s for %s: %d/4, %d mistakes",
            user_id, room_id, puzzle_date, score, mistakes,
        )
        return record, True

    def scoreboard(self, room_id: str, puzzle_date: str) -> list[CompletionRecord]:
        return self.ledger.query(room_id, puzzle_date)

    def erase(self, room_id: str, user_id: str, puzzle_date: str) -> bool:
        """Developer-only: forget one player's result for a day."""
        removed = self.ledger.delete(room_id, user_id, puzzle_date)
        if removed:
            logger.info("Erased %s in room %s for %s", user_id, room_id, puzzle_date)
        return removed

    # ------------------------------------------------------------------
    # Puzzles
    # ------------------------------------------------------------------

    def puzzle(self, puzzle_date: str | None = None) -> Puzzle | None:
        if self.puzzles is None:
            return None
        return self.puzzles.get(puzzle_date or self._today())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _session_date(self, session_id: str) -> str:
        session = self.registry.get(session_id)
        return session.puzzle_date if session is not None else self._today()

    def _complete_player(
        self, room_id: str, puzzle_date: str, player: PlayerProgress
    ) -> bool:
        _, written = self._upsert_completion(
            room_id, player.user_id, puzzle_date,
            player.score, player.mistakes, player.history,
            player.display_name, player.avatar_url,
        )
        return written
