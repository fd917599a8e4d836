"""Tests for the progress image, message text and emoji grid."""

import io
from unittest.mock import patch

import requests
from PIL import Image

from linkboard.chat.render import (
    BACKGROUND,
    DIFFICULTY_COLORS,
    MISS,
    fetch_avatar,
    format_guess_grid,
    format_player_message,
    render_progress_image,
)
from linkboard.core.progress import PlayerProgress

from conftest import EASY, hit, miss

LABEL = "Connections #497"


def _open(png: bytes) -> Image.Image:
    return Image.open(io.BytesIO(png)).convert("RGB")


def _hex(color: str) -> tuple:
    return tuple(int(color[i:i + 2], 16) for i in (1, 3, 5))


class TestRenderImage:
    def test_empty_state(self):
        image = _open(render_progress_image([], LABEL))
        assert image.size == (500, 300)
        assert image.getpixel((499, 299)) == _hex(BACKGROUND)

    def test_width_grows_with_players(self):
        players = [PlayerProgress(f"u{i}", f"P{i}") for i in range(3)]
        image = _open(render_progress_image(players, LABEL, avatar_loader=None))
        assert image.width == 3 * 280 + 2 * 40 + 40

    def test_rows_colored_by_outcome(self):
        player = PlayerProgress("u1", "Alice", history=[hit(EASY, 0), miss()])
        image = _open(render_progress_image([player], LABEL, avatar_loader=None))
        # first cell of each row, inset from the border
        grid_x = 20 + (280 - (4 * 42 + 3 * 5)) // 2
        assert image.getpixel((grid_x + 10, 80 + 10 + 10)) == _hex(DIFFICULTY_COLORS[0])
        assert image.getpixel((grid_x + 10, 80 + 10 + 47 + 10)) == _hex(MISS)

    def test_avatar_loader_failure_is_tolerated(self):
        player = PlayerProgress("u1", "Alice", avatar_url="http://x/a.png")
        png = render_progress_image([player], LABEL, avatar_loader=lambda url: None)
        assert png.startswith(b"\x89PNG")

    def test_avatar_pasted(self):
        calls = []

        def loader(url):
            calls.append(url)
            return Image.new("RGBA", (10, 10), (255, 0, 0, 255))

        player = PlayerProgress("u1", "Alice", avatar_url="http://x/a.png")
        image = _open(render_progress_image([player], LABEL, avatar_loader=loader))
        assert calls == ["http://x/a.png"]
        assert image.getpixel((20 + 140, 35)) == (255, 0, 0)


class TestFetchAvatar:
    @patch("linkboard.chat.render.requests.get")
    def test_network_error_returns_none(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("nope")
        assert fetch_avatar("http://x/a.png") is None

    @patch("linkboard.chat.render.requests.get")
    def test_not_an_image_returns_none(self, mock_get):
        mock_get.return_value.content = b"not an image"
        assert fetch_avatar("http://x/a.png") is None


class TestPlayerMessage:
    def test_no_players(self):
        assert format_player_message([], LABEL) == f"Click **Play** to join today's {LABEL}"

    def test_one(self):
        assert format_player_message(["A"], LABEL) == f"**A** is playing {LABEL}"

    def test_two(self):
        assert format_player_message(["A", "B"], LABEL) == f"**A** and **B** are playing {LABEL}"

    def test_three(self):
        text = format_player_message(["A", "B", "C"], LABEL)
        assert text == f"**A**, **B**, and **C** are playing {LABEL}"

    def test_complete_uses_past_tense(self):
        assert format_player_message(["A"], LABEL, complete=True) == f"**A** was playing {LABEL}"
        assert "were playing" in format_player_message(["A", "B"], LABEL, complete=True)


class TestGuessGrid:
    def test_empty(self):
        assert format_guess_grid([]) == "No data"

    def test_without_puzzle(self):
        assert format_guess_grid([hit(EASY, 0), miss()]) == "🟨🟨🟨🟨\n⬜⬜⬜⬜"

    def test_misses_colored_per_word(self, puzzle):
        grid = format_guess_grid([miss(("A", "E", "I", "M"))], puzzle)
        assert grid == "🟨🟩🟦🟪"
