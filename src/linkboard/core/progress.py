"""Player progress — guess attempts, derived score/mistakes, terminal state.

GuessAttempt is the wire unit shared by client and server. PlayerProgress is
the server-side slice of one player inside a session; its history is replaced
wholesale by whatever the player's client last sent. ProgressLog is the
client-side append-only log that produces those histories.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from linkboard.core.puzzle import CATEGORY_COUNT, Puzzle
from linkboard.core.rules import GuessResult, classify_guess, is_well_formed

MAX_MISTAKES = 4


class InvalidGuessError(ValueError):
    """A guess or guess history that cannot belong to the puzzle."""


class GameOverError(RuntimeError):
    """Raised when a guess is submitted after the game reached a terminal state."""


@dataclass(frozen=True)
class GuessAttempt:
    """One submitted selection of four words."""

    words: tuple[str, ...]
    correct: bool
    difficulty: int | None = None
    timestamp: int = 0  # epoch milliseconds

    def to_dict(self) -> dict:
        return {
            "words": list(self.words),
            "correct": self.correct,
            "difficulty": self.difficulty,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> GuessAttempt:
        correct = bool(raw.get("correct", False))
        return cls(
            words=tuple(raw.get("words") or ()),
            correct=correct,
            difficulty=raw.get("difficulty") if correct else None,
            timestamp=int(raw.get("timestamp") or 0),
        )


def history_from_dicts(raw: list[dict] | None) -> list[GuessAttempt]:
    return [GuessAttempt.from_dict(item) for item in raw or []]


def history_to_dicts(history: list[GuessAttempt]) -> list[dict]:
    return [attempt.to_dict() for attempt in history]


def count_score(history: list[GuessAttempt]) -> int:
    return sum(1 for a in history if a.correct)


def count_mistakes(history: list[GuessAttempt]) -> int:
    return sum(1 for a in history if not a.correct)


def is_terminal_history(history: list[GuessAttempt]) -> bool:
    """Solved every category or used up the mistake budget."""
    return (
        count_score(history) >= CATEGORY_COUNT
        or count_mistakes(history) >= MAX_MISTAKES
    )


def terminal_prefix(history: list[GuessAttempt]) -> list[GuessAttempt]:
    """Cut *history* at the attempt that ended the game.

    Attempts after the terminal one can only come from a misbehaving
    client; they never count toward score or mistakes.
    """
    score = mistakes = 0
    for index, attempt in enumerate(history):
        if attempt.correct:
            score += 1
        else:
            mistakes += 1
        if score >= CATEGORY_COUNT or mistakes >= MAX_MISTAKES:
            return list(history[: index + 1])
    return list(history)


def validate_history(puzzle: Puzzle, history: list[GuessAttempt]) -> None:
    """Raise InvalidGuessError unless every attempt is consistent with *puzzle*.

    Each attempt needs four distinct puzzle words, none from a category
    already solved earlier in the history, and no attempt may repeat an
    earlier selection. Its ``correct`` flag must agree with whether those
    words form one of the categories still unsolved at that point.
    """
    words = puzzle.words
    solved: list[int] = []
    seen: set[frozenset[str]] = set()
    for index, attempt in enumerate(history, 1):
        if not is_well_formed(attempt.words):
            raise InvalidGuessError(
                f"Guess {index} must have {CATEGORY_COUNT} distinct words"
            )
        unknown = [w for w in attempt.words if w not in words]
        if unknown:
            raise InvalidGuessError(
                f"Guess {index} has words not in puzzle {puzzle.date}: {unknown}"
            )
        selection = frozenset(attempt.words)
        if selection in seen:
            raise InvalidGuessError(f"Guess {index} repeats an earlier selection")
        seen.add(selection)
        taken = [
            w for w in attempt.words
            if puzzle.category_of(w).difficulty in solved
        ]
        if taken:
            raise InvalidGuessError(
                f"Guess {index} uses words from a solved category: {taken}"
            )
        result = classify_guess(puzzle, attempt.words, solved)
        if attempt.correct != result.correct:
            raise InvalidGuessError(
                f"Guess {index} is marked correct={attempt.correct} "
                f"but is {result.outcome.value}"
            )
        if attempt.correct:
            if attempt.difficulty != result.difficulty:
                raise InvalidGuessError(
                    f"Guess {index} claims difficulty {attempt.difficulty}, "
                    f"expected {result.difficulty}"
                )
            solved.append(result.difficulty)


@dataclass
class PlayerProgress:
    """A player's slice of a game session."""

    user_id: str
    display_name: str
    avatar_url: str | None = None
    history: list[GuessAttempt] = field(default_factory=list)

    @property
    def score(self) -> int:
        return count_score(self.history)

    @property
    def mistakes(self) -> int:
        return count_mistakes(self.history)

    @property
    def guess_count(self) -> int:
        return len(self.history)

    def is_terminal(self) -> bool:
        return is_terminal_history(self.history)

    def replace_history(self, history: list[GuessAttempt]) -> bool:
        """Store the client's full history. Returns False once terminal.

        A terminal player is frozen: later histories, consistent or not,
        leave score and mistakes untouched.
        """
        if self.is_terminal():
            return False
        self.history = terminal_prefix(history)
        return True

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "username": self.display_name,
            "avatarUrl": self.avatar_url,
            "guessHistory": history_to_dicts(self.history),
            "score": self.score,
            "mistakes": self.mistakes,
        }

    @classmethod
    def from_dict(cls, user_id: str, raw: dict) -> PlayerProgress:
        return cls(
            user_id=user_id,
            display_name=raw.get("username") or user_id,
            avatar_url=raw.get("avatarUrl"),
            history=history_from_dicts(raw.get("guessHistory")),
        )


class ProgressLog:
    """Client-side guess log for one player and one puzzle.

    Classifies each submission, appends it, and tracks solved categories
    so the next classification only considers what is left.
    """

    def __init__(self, puzzle: Puzzle) -> None:
        self._puzzle = puzzle
        self._history: list[GuessAttempt] = []
        self._solved: list[int] = []

    @property
    def history(self) -> list[GuessAttempt]:
        return list(self._history)

    @property
    def solved(self) -> list[int]:
        """Difficulties of solved categories, in solve order."""
        return list(self._solved)

    @property
    def score(self) -> int:
        return len(self._solved)

    @property
    def mistakes(self) -> int:
        return count_mistakes(self._history)

    def is_terminal(self) -> bool:
        return is_terminal_history(self._history)

    def remaining_words(self) -> list[str]:
        """Unsolved words, grouped in category order."""
        out = []
        for cat in self._puzzle.categories:
            if cat.difficulty not in self._solved:
                out.extend(sorted(cat.members))
        return out

    def submit(self, words: list[str], now_ms: int | None = None) -> GuessResult:
        """Classify and record a selection of four words."""
        if self.is_terminal():
            raise GameOverError("No guesses left for this puzzle")
        if not is_well_formed(words):
            raise InvalidGuessError(
                f"Select exactly {CATEGORY_COUNT} distinct words"
            )
        remaining = set(self.remaining_words())
        if any(w not in remaining for w in words):
            raise InvalidGuessError("Selection contains solved or unknown words")
        selection = frozenset(words)
        if any(frozenset(a.words) == selection for a in self._history):
            raise InvalidGuessError("Already guessed")

        result = classify_guess(self._puzzle, words, self._solved)
        if result.correct:
            self._solved.append(result.difficulty)
        self._history.append(
            GuessAttempt(
                words=tuple(words),
                correct=result.correct,
                difficulty=result.difficulty,
                timestamp=now_ms if now_ms is not None else int(time.time() * 1000),
            )
        )
        return result

    def restore(self, history: list[GuessAttempt]) -> None:
        """Rebuild state by replaying a history returned by the server."""
        self._history = []
        self._solved = []
        for attempt in history:
            if attempt.correct:
                result = classify_guess(self._puzzle, attempt.words, self._solved)
                if result.correct:
                    self._solved.append(result.difficulty)
            self._history.append(attempt)
