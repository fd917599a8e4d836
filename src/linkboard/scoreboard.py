"""Terminal scoreboard for one room and day.

Usage:
    python -m linkboard.scoreboard <roomId> [date] [--url http://127.0.0.1:3001]

Reads the room's completion ledger from a running service and prints a
table of results with each player's emoji grid.
"""

from __future__ import annotations

import argparse
import sys
from datetime import date

import requests
from rich.console import Console
from rich.table import Table

from linkboard.chat.render import format_guess_grid
from linkboard.core.progress import history_from_dicts
from linkboard.core.puzzle import Puzzle, puzzle_number

DEFAULT_URL = "http://127.0.0.1:3001"


def fetch_game_state(base_url: str, room_id: str, puzzle_date: str,
                     timeout_s: float = 10.0) -> dict:
    res = requests.get(
        f"{base_url.rstrip('/')}/api/gamestate/{room_id}/{puzzle_date}",
        timeout=timeout_s,
    )
    res.raise_for_status()
    return res.json()


def fetch_puzzle(base_url: str, puzzle_date: str, timeout_s: float = 10.0) -> Puzzle | None:
    try:
        res = requests.get(
            f"{base_url.rstrip('/')}/api/puzzles/{puzzle_date}", timeout=timeout_s,
        )
    except requests.RequestException:
        return None
    if not res.ok:
        return None
    try:
        return Puzzle.from_payload(res.json(), puzzle_date)
    except (ValueError, KeyError):
        return None


def build_table(state: dict, puzzle: Puzzle | None = None) -> Table:
    """One row per finished player, best score first."""
    puzzle_date = state.get("date", "")
    try:
        title = f"Connections #{puzzle_number(puzzle_date)} ({puzzle_date})"
    except ValueError:
        title = f"Connections ({puzzle_date})"

    table = Table(title=title, show_lines=True)
    table.add_column("Player", style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Mistakes", justify="right")
    table.add_column("Guesses")

    players = sorted(
        state.get("players", {}).values(),
        key=lambda p: (-p.get("score", 0), p.get("mistakes", 0)),
    )
    for p in players:
        history = history_from_dicts(p.get("guessHistory") or [])
        score = p.get("score", 0)
        style = "green" if score == 4 else "red"
        table.add_row(
            p.get("username") or p.get("userId", "?"),
            f"[{style}]{score}/4[/{style}]",
            str(p.get("mistakes", 0)),
            format_guess_grid(history, puzzle),
        )
    return table


def main() -> None:
    parser = argparse.ArgumentParser(description="Show a room's results for a day")
    parser.add_argument("room_id")
    parser.add_argument("date", nargs="?", default=date.today().isoformat())
    parser.add_argument("--url", default=DEFAULT_URL, help=f"Service URL (default: {DEFAULT_URL})")
    args = parser.parse_args()

    console = Console()
    try:
        state = fetch_game_state(args.url, args.room_id, args.date)
    except requests.RequestException as exc:
        console.print(f"[red]Cannot reach {args.url}: {exc}[/red]")
        sys.exit(1)

    if not state.get("players"):
        console.print(f"No results yet for room {args.room_id} on {args.date}")
        return
    console.print(build_table(state, fetch_puzzle(args.url, args.date)))


if __name__ == "__main__":
    main()
