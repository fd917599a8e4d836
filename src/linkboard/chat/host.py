"""ChatHost — handles inbound chat events and posts session messages.

Two events arrive from the chat platform:
- a start action (slash command or message command) that posts a new game
  invitation; the posted message's id becomes the session id
- a click on a session's play button, whose custom id encodes the session

A click on a session that is no longer active (everyone finished, or the
process restarted) posts a reply message with the clicking player as first
player and moves their alias to the new session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable

from linkboard.chat.client import (
    ChatClient,
    ChatError,
    PlayButton,
    session_id_from_custom_id,
)
from linkboard.chat.reconciler import Reconciler, Renderer
from linkboard.chat.render import format_player_message, render_progress_image
from linkboard.core.progress import PlayerProgress
from linkboard.core.puzzle import puzzle_number
from linkboard.core.service import SessionService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClickResult:
    session_id: str
    alias_key: str
    joined: bool
    reply_session: bool = False


class ChatHost:
    def __init__(
        self,
        service: SessionService,
        chat: ChatClient,
        reconciler: Reconciler,
        *,
        label: str = "Connections",
        renderer: Renderer = render_progress_image,
        today: Callable[[], str] = lambda: date.today().isoformat(),
    ) -> None:
        self._service = service
        self._chat = chat
        self._reconciler = reconciler
        self._label = label
        self._render = renderer
        self._today = today

    def label_for(self, puzzle_date: str) -> str:
        return f"{self._label} #{puzzle_number(puzzle_date)}"

    def start_game(
        self, room_id: str, channel_id: str, puzzle_date: str | None = None
    ) -> str:
        """Post an invitation and register its session. Returns the session id.

        Raises ValueError for an impossible date, before anything is posted,
        and ChatError if the invitation cannot be posted.
        """
        puzzle_date = puzzle_date or self._today()
        label = self.label_for(puzzle_date)
        text = format_player_message([], label)
        image = self._render([], label)

        # The button needs the message id, which only exists after posting
        message_id = self._chat.post_message(
            channel_id, text, image, PlayButton(None)
        )
        self._chat.edit_message(
            channel_id, message_id, text, image, PlayButton(message_id)
        )

        session_id = self._service.start_session(
            room_id, channel_id, puzzle_date, session_id=message_id
        )
        self._reconciler.track(session_id, channel_id, label)
        logger.info("Started game session %s in room %s", session_id, room_id)
        return session_id

    def handle_click(
        self,
        custom_id: str,
        room_id: str,
        channel_id: str,
        user_id: str,
        display_name: str,
        avatar_url: str | None = None,
    ) -> ClickResult | None:
        """Join the clicked session, or open a reply session if it is gone.

        Returns None for controls this host does not own.
        """
        session_id = session_id_from_custom_id(custom_id)
        if session_id is None:
            return None

        session = self._service.fetch(session_id)
        if session is None:
            return self._start_reply_session(
                session_id, room_id, channel_id, user_id, display_name, avatar_url
            )

        joined = self._service.join(
            session_id, user_id, display_name, avatar_url, room_id,
            session.puzzle_date,
        )
        if joined is None:
            # Removed between fetch and join
            return self._start_reply_session(
                session_id, room_id, channel_id, user_id, display_name, avatar_url
            )

        if joined.added:
            if self._reconciler.tracked(session_id) is None:
                self._reconciler.track(
                    session_id, session.channel_id, self.label_for(session.puzzle_date),
                    players=list(session.players.values()),
                )
            self._reconciler.add_player(
                session_id,
                PlayerProgress(user_id=user_id, display_name=display_name,
                               avatar_url=avatar_url),
            )
            self._reconciler.refresh(session_id)
        else:
            logger.info("%s rejoining session %s", display_name, session_id)

        return ClickResult(
            session_id=session_id, alias_key=joined.alias_key, joined=joined.added,
        )

    def _start_reply_session(
        self,
        parent_id: str,
        room_id: str,
        channel_id: str,
        user_id: str,
        display_name: str,
        avatar_url: str | None,
    ) -> ClickResult | None:
        puzzle_date = self._today()
        label = self.label_for(puzzle_date)
        player = PlayerProgress(
            user_id=user_id, display_name=display_name, avatar_url=avatar_url,
        )
        text = format_player_message([display_name], label)
        try:
            image = self._render([player], label)
            message_id = self._chat.post_message(
                channel_id, text, image, PlayButton(None), reply_to=parent_id,
            )
            self._chat.edit_message(
                channel_id, message_id, text, image, PlayButton(message_id)
            )
        except ChatError as exc:
            logger.warning("Could not post reply session for %s: %s", parent_id, exc)
            return None

        session_id = self._service.start_session(
            room_id, channel_id, puzzle_date,
            session_id=message_id, parent_session_id=parent_id,
        )
        joined = self._service.join(
            session_id, user_id, display_name, avatar_url, room_id, puzzle_date,
        )
        self._reconciler.track(session_id, channel_id, label, players=[player])
        logger.info(
            "Reply session %s created for %s (original %s inactive)",
            session_id, display_name, parent_id,
        )
        return ClickResult(
            session_id=session_id, alias_key=joined.alias_key,
            joined=True, reply_session=True,
        )
