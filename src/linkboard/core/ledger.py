"""Completion ledger — durable per-player, per-day results.

The ledger is the system of record for "has this player already played
today in this room". One record per (room, user, date); writing the same
key again replaces the stored record.

Two backends share the CompletionStore interface:
- MemoryCompletionStore: process-local, used when no database is configured
- MongoCompletionStore: pymongo-backed; if the server is unreachable at
  connect time, or a later call fails, it degrades to an in-memory store and
  logs a warning instead of raising to the caller
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from linkboard.core.progress import (
    GuessAttempt,
    history_from_dicts,
    history_to_dicts,
)

if TYPE_CHECKING:
    from linkboard.config import StorageConfig

logger = logging.getLogger(__name__)

_COLLECTION = "completions"


@dataclass
class CompletionRecord:
    room_id: str
    user_id: str
    display_name: str
    puzzle_date: str
    score: int
    mistakes: int
    history: list[GuessAttempt] = field(default_factory=list)
    avatar_url: str | None = None
    completed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.room_id, self.user_id, self.puzzle_date)

    def to_doc(self) -> dict:
        return {
            "room_id": self.room_id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url,
            "date": self.puzzle_date,
            "score": self.score,
            "mistakes": self.mistakes,
            "guess_history": history_to_dicts(self.history),
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> CompletionRecord:
        completed_at = doc.get("completed_at") or datetime.now(timezone.utc)
        if completed_at.tzinfo is None:
            completed_at = completed_at.replace(tzinfo=timezone.utc)
        return cls(
            room_id=doc["room_id"],
            user_id=doc["user_id"],
            display_name=doc.get("display_name") or doc["user_id"],
            avatar_url=doc.get("avatar_url"),
            puzzle_date=doc["date"],
            score=doc.get("score", 0),
            mistakes=doc.get("mistakes", 0),
            history=history_from_dicts(doc.get("guess_history")),
            completed_at=completed_at,
        )

    def to_dict(self) -> dict:
        """API shape."""
        return {
            "userId": self.user_id,
            "username": self.display_name,
            "avatarUrl": self.avatar_url,
            "score": self.score,
            "mistakes": self.mistakes,
            "guessHistory": history_to_dicts(self.history),
            "completedAt": int(self.completed_at.timestamp() * 1000),
        }


class CompletionStore(ABC):
    """Storage interface the core talks to; backend chosen at startup."""

    @abstractmethod
    def upsert(self, record: CompletionRecord) -> None:
        """Insert or replace the record for its (room, user, date) key."""

    @abstractmethod
    def get(
        self, room_id: str, user_id: str, puzzle_date: str
    ) -> CompletionRecord | None:
        """Return one player's record, or None."""

    @abstractmethod
    def query(self, room_id: str, puzzle_date: str) -> list[CompletionRecord]:
        """All records for a room and date, oldest completion first."""

    @abstractmethod
    def delete(self, room_id: str, user_id: str, puzzle_date: str) -> bool:
        """Erase one player's record. Returns True if something was removed."""

    def close(self) -> None:
        pass


class MemoryCompletionStore(CompletionStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str, str], CompletionRecord] = {}

    def upsert(self, record: CompletionRecord) -> None:
        with self._lock:
            self._records[record.key] = record

    def get(self, room_id, user_id, puzzle_date):
        with self._lock:
            return self._records.get((room_id, user_id, puzzle_date))

    def query(self, room_id, puzzle_date):
        with self._lock:
            rows = [
                r for (room, _user, day), r in self._records.items()
                if room == room_id and day == puzzle_date
            ]
        return sorted(rows, key=lambda r: r.completed_at)

    def delete(self, room_id, user_id, puzzle_date):
        with self._lock:
            return self._records.pop((room_id, user_id, puzzle_date), None) is not None


class MongoCompletionStore(CompletionStore):
    """MongoDB-backed ledger with transparent in-memory fallback."""

    def __init__(self, uri: str, db_name: str) -> None:
        self._fallback = MemoryCompletionStore()
        self._disabled = False
        self._client = None
        self._collection = None

        try:
            self._client = MongoClient(uri, serverSelectionTimeoutMS=5000)
            self._client.admin.command("ping")
        except PyMongoError as exc:
            logger.warning(
                "MongoDB connection failed, using in-memory completions: %s", exc
            )
            self._disabled = True
            return

        self._collection = self._client[db_name][_COLLECTION]
        self._ensure_indexes()
        logger.info("Completion ledger connected to MongoDB (%s)", db_name)

    @property
    def disabled(self) -> bool:
        return self._disabled

    # ------------------------------------------------------------------
    # CompletionStore
    # ------------------------------------------------------------------

    def upsert(self, record: CompletionRecord) -> None:
        if self._disabled:
            self._fallback.upsert(record)
            return
        try:
            self._collection.update_one(
                self._filter(record.room_id, record.user_id, record.puzzle_date),
                {"$set": record.to_doc()},
                upsert=True,
            )
        except PyMongoError as exc:
            logger.warning(
                "Failed to upsert completion %s, kept in memory: %s",
                record.key, exc,
            )
            self._fallback.upsert(record)

    def get(self, room_id, user_id, puzzle_date):
        if self._disabled:
            return self._fallback.get(room_id, user_id, puzzle_date)
        try:
            doc = self._collection.find_one(
                self._filter(room_id, user_id, puzzle_date), {"_id": 0}
            )
        except PyMongoError as exc:
            logger.warning("Completion lookup failed: %s", exc)
            return self._fallback.get(room_id, user_id, puzzle_date)
        if doc is None:
            return self._fallback.get(room_id, user_id, puzzle_date)
        return CompletionRecord.from_doc(doc)

    def query(self, room_id, puzzle_date):
        if self._disabled:
            return self._fallback.query(room_id, puzzle_date)
        try:
            docs = list(
                self._collection.find(
                    {"room_id": room_id, "date": puzzle_date}, {"_id": 0}
                ).sort("completed_at", ASCENDING)
            )
        except PyMongoError as exc:
            logger.warning("Completion query failed: %s", exc)
            return self._fallback.query(room_id, puzzle_date)
        records = {r.key: r for r in map(CompletionRecord.from_doc, docs)}
        for r in self._fallback.query(room_id, puzzle_date):
            records.setdefault(r.key, r)
        return sorted(records.values(), key=lambda r: r.completed_at)

    def delete(self, room_id, user_id, puzzle_date):
        removed = self._fallback.delete(room_id, user_id, puzzle_date)
        if self._disabled:
            return removed
        try:
            result = self._collection.delete_one(
                self._filter(room_id, user_id, puzzle_date)
            )
        except PyMongoError as exc:
            logger.warning("Completion delete failed: %s", exc)
            return removed
        return removed or result.deleted_count > 0

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _filter(room_id: str, user_id: str, puzzle_date: str) -> dict:
        return {"room_id": room_id, "user_id": user_id, "date": puzzle_date}

    def _ensure_indexes(self) -> None:
        try:
            self._collection.create_index(
                [("room_id", ASCENDING), ("user_id", ASCENDING), ("date", ASCENDING)],
                unique=True,
            )
            self._collection.create_index(
                [("room_id", ASCENDING), ("date", ASCENDING)]
            )
        except PyMongoError as exc:
            logger.warning("Failed to create completion indexes: %s", exc)


def open_completion_store(config: StorageConfig) -> CompletionStore:
    """Pick the ledger backend from storage config."""
    if config.backend == "mongo" and config.mongo_uri:
        return MongoCompletionStore(config.mongo_uri, config.db_name)
    if config.backend == "mongo":
        logger.warning("storage.backend is mongo but no URI is set; using memory")
    return MemoryCompletionStore()
