"""Puzzle sources and the per-date puzzle cache.

PuzzleSource is the narrow contract to the third-party puzzle provider:
``fetch(date)`` returns a Puzzle or raises PuzzleNotFoundError. PuzzleStore
caches fetched puzzles by date and applies the fallback-date policy.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path

import requests

from linkboard.core.puzzle import Puzzle, PuzzleError

logger = logging.getLogger(__name__)

_CACHE_DATES = 7


class PuzzleNotFoundError(LookupError):
    """The source has no puzzle for the requested date."""


class PuzzleSourceError(RuntimeError):
    """The source could not be reached or returned unusable data."""


class PuzzleSource(ABC):
    @abstractmethod
    def fetch(self, puzzle_date: str) -> Puzzle:
        """Return the puzzle for *puzzle_date* (YYYY-MM-DD)."""


class NytPuzzleSource(PuzzleSource):
    """Fetches ``{base_url}/{date}.json`` over HTTPS."""

    def __init__(self, base_url: str, timeout_s: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s

    def fetch(self, puzzle_date: str) -> Puzzle:
        url = f"{self._base_url}/{puzzle_date}.json"
        try:
            res = requests.get(url, timeout=self._timeout_s)
        except requests.RequestException as exc:
            raise PuzzleSourceError(f"Puzzle fetch failed for {puzzle_date}: {exc}") from exc
        if res.status_code == 404:
            raise PuzzleNotFoundError(puzzle_date)
        if res.status_code >= 400:
            raise PuzzleSourceError(
                f"Puzzle source returned {res.status_code} for {puzzle_date}"
            )
        try:
            payload = res.json()
        except ValueError as exc:
            raise PuzzleSourceError(f"Puzzle payload is not JSON: {exc}") from exc
        if payload.get("status") not in (None, "OK"):
            raise PuzzleNotFoundError(puzzle_date)
        try:
            return Puzzle.from_payload(payload, puzzle_date)
        except (PuzzleError, KeyError, TypeError, AttributeError) as exc:
            raise PuzzleSourceError(f"Malformed puzzle for {puzzle_date}: {exc}") from exc


class StaticPuzzleSource(PuzzleSource):
    """Serves puzzles from an in-memory mapping of date -> payload.

    Used for offline play and tests.
    """

    def __init__(self, payloads: dict[str, dict]) -> None:
        self._payloads = dict(payloads)

    @classmethod
    def from_file(cls, path: Path) -> StaticPuzzleSource:
        with open(path) as f:
            raw = json.load(f)
        if isinstance(raw, list):
            raw = {item["date"]: item for item in raw}
        return cls(raw)

    def fetch(self, puzzle_date: str) -> Puzzle:
        payload = self._payloads.get(puzzle_date)
        if payload is None:
            raise PuzzleNotFoundError(puzzle_date)
        try:
            return Puzzle.from_payload(payload, puzzle_date)
        except (PuzzleError, KeyError, TypeError, AttributeError) as exc:
            raise PuzzleSourceError(f"Malformed puzzle for {puzzle_date}: {exc}") from exc


class PuzzleStore:
    """Read-through cache of puzzles by date with a fallback date.

    ``get`` never raises: a date the source cannot serve (and whose fallback
    also fails) yields None.
    """

    def __init__(
        self, source: PuzzleSource, fallback_date: str | None = None
    ) -> None:
        self._source = source
        self._fallback_date = fallback_date
        self._lock = threading.Lock()
        self._cache: dict[str, Puzzle] = {}

    def get(self, puzzle_date: str) -> Puzzle | None:
        """Puzzle for *puzzle_date*, falling back to the configured date."""
        puzzle = self._load(puzzle_date)
        if puzzle is None and self._fallback_date and self._fallback_date != puzzle_date:
            logger.info(
                "No puzzle for %s, trying fallback %s", puzzle_date, self._fallback_date
            )
            puzzle = self._load(self._fallback_date)
            if puzzle is not None:
                with self._lock:
                    self._cache[puzzle_date] = puzzle
        return puzzle

    def cached(self, puzzle_date: str) -> Puzzle | None:
        with self._lock:
            return self._cache.get(puzzle_date)

    def _load(self, puzzle_date: str) -> Puzzle | None:
        with self._lock:
            if puzzle_date in self._cache:
                return self._cache[puzzle_date]
        try:
            puzzle = self._source.fetch(puzzle_date)
        except PuzzleNotFoundError:
            logger.info("Puzzle source has no puzzle for %s", puzzle_date)
            return None
        except (PuzzleSourceError, PuzzleError) as exc:
            logger.warning("Puzzle source failed for %s: %s", puzzle_date, exc)
            return None
        with self._lock:
            self._cache[puzzle_date] = puzzle
            for stale in sorted(self._cache)[:-_CACHE_DATES]:
                del self._cache[stale]
        return puzzle


def build_puzzle_source(config) -> PuzzleSource:
    """Build the source named by a PuzzleConfig."""
    if config.source == "static":
        if config.static_path is None:
            raise ValueError("puzzle.static_path is required for the static source")
        return StaticPuzzleSource.from_file(config.static_path)
    if config.source == "nyt":
        return NytPuzzleSource(config.base_url, timeout_s=config.timeout_s)
    raise ValueError(f"Unknown puzzle source: {config.source!r}")
