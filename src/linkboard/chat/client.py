"""ChatClient — outward calls to the chat platform.

Provides ABC and concrete implementations:
- MockChatClient: in-memory, records every post/edit, for tests and offline runs
- DiscordRestClient: Discord REST API over requests

Implementations raise ChatError on any transport failure. Raw requests
exceptions never propagate.
"""

from __future__ import annotations

import itertools
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import requests

PLAY_BUTTON_PREFIX = "launch_activity_"
IMAGE_FILENAME = "connections.png"


class ChatError(Exception):
    """Raised by chat clients on platform failures."""

    def __init__(self, error_type: str, details: str = ""):
        self.error_type = error_type  # "timeout", "rate_limit", "api_error"
        self.details = details
        super().__init__(f"{error_type}: {details}")


@dataclass(frozen=True)
class PlayButton:
    """The interactive control embedded in a session message."""

    session_id: str | None
    label: str = "Play now!"

    @property
    def custom_id(self) -> str:
        return f"{PLAY_BUTTON_PREFIX}{self.session_id or 'temp'}"

    def to_component(self) -> dict:
        return {
            "type": 1,
            "components": [
                {
                    "type": 2,
                    "style": 1,
                    "label": self.label,
                    "custom_id": self.custom_id,
                }
            ],
        }


def session_id_from_custom_id(custom_id: str) -> str | None:
    """Decode a play-button custom id back to its session id."""
    if not custom_id.startswith(PLAY_BUTTON_PREFIX):
        return None
    session_id = custom_id[len(PLAY_BUTTON_PREFIX):]
    if not session_id or session_id == "temp":
        return None
    return session_id


class ChatClient(ABC):
    """Abstract base for chat platform clients."""

    @abstractmethod
    def post_message(
        self,
        channel_id: str,
        content: str,
        image: bytes | None = None,
        control: PlayButton | None = None,
        reply_to: str | None = None,
    ) -> str:
        """Post a message and return its id."""

    @abstractmethod
    def edit_message(
        self,
        channel_id: str,
        message_id: str,
        content: str,
        image: bytes | None = None,
        control: PlayButton | None = None,
    ) -> None:
        """Replace a message's content, image, and control."""


@dataclass
class SentMessage:
    channel_id: str
    message_id: str
    content: str
    image: bytes | None
    control: PlayButton | None
    reply_to: str | None = None
    edits: int = 0


class MockChatClient(ChatClient):
    """Offline chat client.

    ``fail_edits`` makes the next N edits raise ChatError("rate_limit").
    """

    def __init__(self, first_id: int = 1000) -> None:
        self._ids = itertools.count(first_id)
        self.messages: dict[str, SentMessage] = {}
        self.edit_log: list[tuple[str, str]] = []
        self.fail_edits = 0

    def post_message(self, channel_id, content, image=None, control=None, reply_to=None):
        message_id = str(next(self._ids))
        self.messages[message_id] = SentMessage(
            channel_id=channel_id,
            message_id=message_id,
            content=content,
            image=image,
            control=control,
            reply_to=reply_to,
        )
        return message_id

    def edit_message(self, channel_id, message_id, content, image=None, control=None):
        if self.fail_edits > 0:
            self.fail_edits -= 1
            raise ChatError("rate_limit", f"edit of {message_id} refused")
        msg = self.messages.get(message_id)
        if msg is None:
            raise ChatError("api_error", f"unknown message {message_id}")
        msg.content = content
        if image is not None:
            msg.image = image
        if control is not None:
            msg.control = control
        msg.edits += 1
        self.edit_log.append((message_id, content))


@dataclass
class DiscordRestClient(ChatClient):
    """Bot-token Discord REST client."""

    token: str
    api_base: str = "https://discord.com/api/v10"
    timeout_s: float = 10.0
    session: requests.Session = field(default_factory=requests.Session)

    def post_message(self, channel_id, content, image=None, control=None, reply_to=None):
        payload: dict = {"content": content}
        if control is not None:
            payload["components"] = [control.to_component()]
        if reply_to is not None:
            payload["message_reference"] = {"message_id": reply_to}
        data = self._request(
            "POST", f"/channels/{channel_id}/messages", payload, image
        )
        return str(data["id"])

    def edit_message(self, channel_id, message_id, content, image=None, control=None):
        payload: dict = {"content": content}
        if control is not None:
            payload["components"] = [control.to_component()]
        self._request(
            "PATCH", f"/channels/{channel_id}/messages/{message_id}", payload, image
        )

    def _request(self, method: str, path: str, payload: dict, image: bytes | None) -> dict:
        url = f"{self.api_base.rstrip('/')}{path}"
        headers = {"Authorization": f"Bot {self.token}"}
        try:
            if image is not None:
                # Replaces any existing attachment with the new image
                payload["attachments"] = [{"id": 0, "filename": IMAGE_FILENAME}]
                res = self.session.request(
                    method,
                    url,
                    headers=headers,
                    data={"payload_json": json.dumps(payload)},
                    files={"files[0]": (IMAGE_FILENAME, image, "image/png")},
                    timeout=self.timeout_s,
                )
            else:
                res = self.session.request(
                    method, url, headers=headers, json=payload, timeout=self.timeout_s,
                )
        except requests.Timeout as exc:
            raise ChatError("timeout", str(exc)) from exc
        except requests.RequestException as exc:
            raise ChatError("api_error", str(exc)) from exc

        if res.status_code == 429:
            retry_after = ""
            try:
                retry_after = str(res.json().get("retry_after", ""))
            except ValueError:
                pass
            raise ChatError("rate_limit", f"retry after {retry_after}s")
        if res.status_code >= 400:
            raise ChatError("api_error", f"{res.status_code}: {res.text[:160]}")
        try:
            return res.json()
        except ValueError:
            return {}


def build_chat_client(config) -> ChatClient:
    """Build the client named by a ChatConfig."""
    if config.provider == "discord":
        if not config.token:
            raise ValueError("chat.provider is discord but no bot token is set")
        return DiscordRestClient(
            token=config.token, api_base=config.api_base, timeout_s=config.timeout_s,
        )
    if config.provider == "mock":
        return MockChatClient()
    raise ValueError(f"Unknown chat provider: {config.provider!r}")
