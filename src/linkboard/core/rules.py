"""Guess classification — pure rule engine, no I/O.

A guess is correct when its four words are exactly the members of one
unsolved category, one-away when it shares three members with an unsolved
category, and a plain miss otherwise. Because categories partition the
sixteen words, at most one unsolved category can register a three-of-four
overlap.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from linkboard.core.puzzle import WORDS_PER_CATEGORY, Category, Puzzle


class Outcome(Enum):
    CORRECT = "correct"
    ONE_AWAY = "one_away"
    INCORRECT = "incorrect"


@dataclass(frozen=True)
class GuessResult:
    """Classification of one submitted selection."""

    outcome: Outcome
    category: Category | None = None

    @property
    def correct(self) -> bool:
        return self.outcome is Outcome.CORRECT

    @property
    def one_away(self) -> bool:
        return self.outcome is Outcome.ONE_AWAY

    @property
    def difficulty(self) -> int | None:
        if self.outcome is Outcome.CORRECT and self.category is not None:
            return self.category.difficulty
        return None


def is_well_formed(words: Iterable[str]) -> bool:
    """True when *words* holds exactly four distinct strings."""
    words = list(words)
    return (
        len(words) == WORDS_PER_CATEGORY
        and len(set(words)) == WORDS_PER_CATEGORY
        and all(isinstance(w, str) for w in words)
    )


def classify_guess(
    puzzle: Puzzle,
    words: Iterable[str],
    solved: Iterable[int] = (),
) -> GuessResult:
    """Classify *words* against the categories not listed in *solved*.

    *solved* holds difficulties of already-solved categories. Malformed
    selections are plain misses.
    """
    selection = frozenset(words)
    if len(selection) != WORDS_PER_CATEGORY:
        return GuessResult(Outcome.INCORRECT)

    solved_set = set(solved)
    near_miss: Category | None = None
    for cat in puzzle.categories:
        if cat.difficulty in solved_set:
            continue
        shared = len(selection & cat.members)
        if shared == WORDS_PER_CATEGORY:
            return GuessResult(Outcome.CORRECT, cat)
        if shared == WORDS_PER_CATEGORY - 1 and near_miss is None:
            near_miss = cat

    if near_miss is not None:
        return GuessResult(Outcome.ONE_AWAY, near_miss)
    return GuessResult(Outcome.INCORRECT)
