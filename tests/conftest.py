"""Shared test fixtures for linkboard."""

import pytest

from linkboard.core.ledger import MemoryCompletionStore
from linkboard.core.progress import GuessAttempt
from linkboard.core.puzzle import Puzzle
from linkboard.core.puzzle_source import PuzzleStore, StaticPuzzleSource
from linkboard.core.service import SessionService

PUZZLE_DATE = "2024-10-20"

PAYLOAD = {
    "status": "OK",
    "print_date": PUZZLE_DATE,
    "categories": [
        {"title": "EASY", "cards": [{"content": w} for w in ("A", "B", "C", "D")]},
        {"title": "MEDIUM", "cards": [{"content": w} for w in ("E", "F", "G", "H")]},
        {"title": "HARD", "cards": [{"content": w} for w in ("I", "J", "K", "L")]},
        {"title": "TRICKY", "cards": [{"content": w} for w in ("M", "N", "O", "P")]},
    ],
}

EASY = ("A", "B", "C", "D")
MEDIUM = ("E", "F", "G", "H")
HARD = ("I", "J", "K", "L")
TRICKY = ("M", "N", "O", "P")
MISS = ("A", "E", "I", "M")


def hit(words, difficulty, ts=0):
    return GuessAttempt(words=tuple(words), correct=True, difficulty=difficulty, timestamp=ts)


def miss(words=MISS, ts=0):
    return GuessAttempt(words=tuple(words), correct=False, timestamp=ts)


def winning_history():
    return [hit(EASY, 0), hit(MEDIUM, 1), hit(HARD, 2), hit(TRICKY, 3)]


def losing_history():
    return [
        miss(("A", "E", "I", "M")),
        miss(("B", "F", "J", "N")),
        miss(("C", "G", "K", "O")),
        miss(("D", "H", "L", "P")),
    ]


@pytest.fixture
def puzzle():
    return Puzzle.from_payload(PAYLOAD, PUZZLE_DATE)


@pytest.fixture
def puzzle_store():
    return PuzzleStore(StaticPuzzleSource({PUZZLE_DATE: PAYLOAD}))


@pytest.fixture
def ledger():
    return MemoryCompletionStore()


@pytest.fixture
def service(ledger, puzzle_store):
    return SessionService(ledger, puzzle_store, today=lambda: PUZZLE_DATE)
