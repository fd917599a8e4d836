"""Progress panel rendering — image, message text, and emoji grid.

Pure functions from progress state to output; nothing here knows about
sessions. The image shows one column per player: avatar, name, and one row
of four squares per guess.
"""

from __future__ import annotations

import io
import logging
from typing import Callable, Sequence

import requests
from PIL import Image, ImageDraw, ImageFont

from linkboard.core.progress import GuessAttempt, PlayerProgress
from linkboard.core.puzzle import Puzzle

logger = logging.getLogger(__name__)

BACKGROUND = "#1e1e1e"
TEXT = "#ffffff"
MUTED = "#999999"
MISS = "#5a5a5a"
DIFFICULTY_COLORS = {
    0: "#f9df6d",  # yellow
    1: "#a0c35a",  # green
    2: "#b0c4ef",  # blue
    3: "#ba81c5",  # purple
}
DIFFICULTY_EMOJI = {0: "🟨", 1: "🟩", 2: "🟦", 3: "🟪"}
MISS_EMOJI = "⬜"

_PLAYER_WIDTH = 280
_PLAYER_SPACING = 40
_HEADER_HEIGHT = 80
_GRID_HEIGHT = 320
_CELL = 42
_CELL_GAP = 5
_AVATAR = 60

AvatarLoader = Callable[[str], "Image.Image | None"]


def fetch_avatar(url: str, timeout_s: float = 5.0) -> Image.Image | None:
    """Download an avatar; any failure yields None."""
    try:
        res = requests.get(url, timeout=timeout_s)
        res.raise_for_status()
        return Image.open(io.BytesIO(res.content)).convert("RGBA")
    except (requests.RequestException, OSError) as exc:
        logger.warning("Failed to load avatar %s: %s", url, exc)
        return None


def render_progress_image(
    players: Sequence[PlayerProgress],
    label: str,
    avatar_loader: AvatarLoader | None = fetch_avatar,
) -> bytes:
    """Render the shared multi-player panel as PNG bytes."""
    if not players:
        return _render_empty(label)

    width = max(
        600,
        len(players) * _PLAYER_WIDTH + (len(players) - 1) * _PLAYER_SPACING + 40,
    )
    image = Image.new("RGB", (width, _HEADER_HEIGHT + _GRID_HEIGHT), BACKGROUND)
    draw = ImageDraw.Draw(image)
    font = ImageFont.load_default()

    for index, player in enumerate(players):
        x = 20 + index * (_PLAYER_WIDTH + _PLAYER_SPACING)
        _draw_player(image, draw, font, player, x, avatar_loader)

    return _to_png(image)


def _render_empty(label: str) -> bytes:
    image = Image.new("RGB", (500, 300), BACKGROUND)
    draw = ImageDraw.Draw(image)
    font = ImageFont.load_default()
    draw.text((20, 25), label, fill=TEXT, font=font)
    draw.text((20, 90), "Waiting for players...", fill=MUTED, font=font)
    draw.text((20, 120), "Click 'Play' to join!", fill=MUTED, font=font)
    return _to_png(image)


def _draw_player(image, draw, font, player: PlayerProgress, x: int, avatar_loader) -> None:
    if player.avatar_url and avatar_loader is not None:
        avatar = avatar_loader(player.avatar_url)
        if avatar is not None:
            avatar = avatar.resize((_AVATAR, _AVATAR))
            mask = Image.new("L", (_AVATAR, _AVATAR), 0)
            ImageDraw.Draw(mask).ellipse((0, 0, _AVATAR, _AVATAR), fill=255)
            image.paste(avatar, (x + (_PLAYER_WIDTH - _AVATAR) // 2, 5), mask)

    name_width = draw.textlength(player.display_name, font=font)
    draw.text(
        (x + (_PLAYER_WIDTH - name_width) / 2, _HEADER_HEIGHT - 14),
        player.display_name, fill=TEXT, font=font,
    )

    grid_width = 4 * _CELL + 3 * _CELL_GAP
    grid_x = x + (_PLAYER_WIDTH - grid_width) // 2
    for row, attempt in enumerate(player.history):
        color = DIFFICULTY_COLORS.get(attempt.difficulty, MISS) if attempt.correct else MISS
        y = _HEADER_HEIGHT + 10 + row * (_CELL + _CELL_GAP)
        for col in range(4):
            cx = grid_x + col * (_CELL + _CELL_GAP)
            draw.rectangle((cx, y, cx + _CELL, y + _CELL), fill=color)


def _to_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def format_player_message(
    names: Sequence[str], label: str, complete: bool = False
) -> str:
    """"**A** and **B** are playing Connections #N", past tense when complete."""
    if not names:
        return f"Click **Play** to join today's {label}"
    single = len(names) == 1
    if complete:
        verb = "was playing" if single else "were playing"
    else:
        verb = "is playing" if single else "are playing"
    bold = [f"**{n}**" for n in names]
    if single:
        who = bold[0]
    elif len(bold) == 2:
        who = f"{bold[0]} and {bold[1]}"
    else:
        who = f"{', '.join(bold[:-1])}, and {bold[-1]}"
    return f"{who} {verb} {label}"


def format_guess_grid(history: Sequence[GuessAttempt], puzzle: Puzzle | None = None) -> str:
    """Emoji rows, one per guess.

    Misses are colored per word when the puzzle is known, gray otherwise.
    """
    if not history:
        return "No data"
    rows = []
    for attempt in history:
        if attempt.correct and attempt.difficulty is not None:
            rows.append(DIFFICULTY_EMOJI.get(attempt.difficulty, MISS_EMOJI) * 4)
        elif puzzle is not None:
            cells = []
            for word in attempt.words:
                cat = puzzle.category_of(word)
                cells.append(DIFFICULTY_EMOJI.get(cat.difficulty, MISS_EMOJI) if cat else MISS_EMOJI)
            rows.append("".join(cells))
        else:
            rows.append(MISS_EMOJI * 4)
    return "\n".join(rows)
