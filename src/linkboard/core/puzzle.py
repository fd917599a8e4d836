"""Puzzle — the day's four categories of four related words.

A Puzzle is immutable once built. ``Puzzle.from_payload`` converts the
upstream JSON shape (categories with a title and a list of cards) into the
internal model; difficulty is the category's position in that list.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

CATEGORY_COUNT = 4
WORDS_PER_CATEGORY = 4

# Puzzle #1 was published on this date; later numbers are day offsets.
FIRST_PUZZLE_DATE = date(2023, 6, 12)


class PuzzleError(ValueError):
    """Raised when puzzle data violates the four-by-four partition."""


@dataclass(frozen=True)
class Category:
    name: str
    difficulty: int
    members: frozenset[str]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "difficulty": self.difficulty,
            "members": sorted(self.members),
        }


@dataclass(frozen=True)
class Puzzle:
    """One day's puzzle. Categories are ordered easiest to hardest."""

    date: str  # YYYY-MM-DD
    categories: tuple[Category, ...]

    def __post_init__(self) -> None:
        check_partition(self.categories)

    @property
    def words(self) -> frozenset[str]:
        """All sixteen member words."""
        out: set[str] = set()
        for cat in self.categories:
            out |= cat.members
        return frozenset(out)

    @property
    def number(self) -> int:
        return puzzle_number(self.date)

    def category_of(self, word: str) -> Category | None:
        """Return the category containing *word*, or None."""
        for cat in self.categories:
            if word in cat.members:
                return cat
        return None

    def category_by_difficulty(self, difficulty: int) -> Category | None:
        for cat in self.categories:
            if cat.difficulty == difficulty:
                return cat
        return None

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "number": self.number,
            "categories": [c.to_dict() for c in self.categories],
        }

    @classmethod
    def from_payload(cls, payload: dict, puzzle_date: str | None = None) -> Puzzle:
        """Build a Puzzle from the upstream JSON payload.

        Accepts both the upstream ``{"title", "cards": [{"content"}]}`` shape
        and the internal ``{"name", "members"}`` shape.
        """
        raw_categories = payload.get("categories") or []
        categories = []
        for index, raw in enumerate(raw_categories):
            name = raw.get("title") or raw.get("name") or f"Group {index + 1}"
            if "cards" in raw:
                members = [card["content"] for card in raw["cards"]]
            else:
                members = list(raw.get("members") or [])
            categories.append(
                Category(
                    name=name,
                    difficulty=raw.get("difficulty", index),
                    members=frozenset(members),
                )
            )
            if len(categories[-1].members) != len(members):
                raise PuzzleError(f"Category {name!r} repeats a word")
        return cls(
            date=puzzle_date or payload.get("print_date") or payload.get("date", ""),
            categories=tuple(categories),
        )


def check_partition(categories: tuple[Category, ...] | list[Category]) -> None:
    """Raise PuzzleError unless categories partition exactly 16 distinct words."""
    if len(categories) != CATEGORY_COUNT:
        raise PuzzleError(
            f"Expected {CATEGORY_COUNT} categories, got {len(categories)}"
        )
    seen: set[str] = set()
    difficulties = []
    for cat in categories:
        if len(cat.members) != WORDS_PER_CATEGORY:
            raise PuzzleError(
                f"Category {cat.name!r} has {len(cat.members)} members, "
                f"expected {WORDS_PER_CATEGORY}"
            )
        overlap = seen & cat.members
        if overlap:
            raise PuzzleError(
                f"Words appear in more than one category: {sorted(overlap)}"
            )
        seen |= cat.members
        difficulties.append(cat.difficulty)
    if sorted(difficulties) != list(range(CATEGORY_COUNT)):
        raise PuzzleError(f"Difficulties must be 0-3, got {difficulties}")


def puzzle_number(puzzle_date: str | date) -> int:
    """Day offset of *puzzle_date* from the first puzzle, starting at 1."""
    if isinstance(puzzle_date, str):
        puzzle_date = date.fromisoformat(puzzle_date)
    return (puzzle_date - FIRST_PUZZLE_DATE).days + 1
