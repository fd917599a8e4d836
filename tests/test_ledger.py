"""Tests for the completion ledger — memory store and Mongo store with fallback."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from pymongo.errors import PyMongoError, ServerSelectionTimeoutError

from linkboard.config import StorageConfig
from linkboard.core.ledger import (
    CompletionRecord,
    MemoryCompletionStore,
    MongoCompletionStore,
    open_completion_store,
)

from conftest import PUZZLE_DATE, winning_history

T0 = datetime(2024, 10, 20, 12, 0, tzinfo=timezone.utc)


def _make_record(
    user_id: str = "u1",
    room_id: str = "r1",
    score: int = 4,
    mistakes: int = 0,
    completed_at: datetime = T0,
) -> CompletionRecord:
    return CompletionRecord(
        room_id=room_id,
        user_id=user_id,
        display_name=user_id.upper(),
        puzzle_date=PUZZLE_DATE,
        score=score,
        mistakes=mistakes,
        history=winning_history() if score == 4 else [],
        completed_at=completed_at,
    )


@pytest.fixture
def mock_client_class():
    """Patch MongoClient and return (mock_client, mock_collection)."""
    with patch("linkboard.core.ledger.MongoClient") as MockClientClass:
        mock_client = MagicMock()
        MockClientClass.return_value = mock_client
        mock_client.admin.command.return_value = {"ok": 1}
        mock_db = MagicMock()
        mock_client.__getitem__ = MagicMock(return_value=mock_db)
        mock_collection = MagicMock()
        mock_db.__getitem__ = MagicMock(return_value=mock_collection)
        yield MockClientClass, mock_client, mock_collection


class TestCompletionRecord:
    def test_doc_roundtrip(self):
        record = _make_record()
        doc = record.to_doc()
        assert doc["date"] == PUZZLE_DATE
        assert len(doc["guess_history"]) == 4
        assert CompletionRecord.from_doc(doc) == record

    def test_naive_datetime_gets_utc(self):
        doc = _make_record().to_doc()
        doc["completed_at"] = datetime(2024, 10, 20, 12, 0)
        assert CompletionRecord.from_doc(doc).completed_at == T0

    def test_api_shape(self):
        d = _make_record().to_dict()
        assert d["userId"] == "u1"
        assert d["username"] == "U1"
        assert d["score"] == 4
        assert d["completedAt"] == int(T0.timestamp() * 1000)


class TestMemoryStore:
    def test_upsert_replaces_same_key(self):
        store = MemoryCompletionStore()
        store.upsert(_make_record(score=1, mistakes=4))
        store.upsert(_make_record(score=4))
        assert store.get("r1", "u1", PUZZLE_DATE).score == 4
        assert len(store.query("r1", PUZZLE_DATE)) == 1

    def test_query_filters_and_sorts(self):
        store = MemoryCompletionStore()
        store.upsert(_make_record("late", completed_at=T0 + timedelta(minutes=5)))
        store.upsert(_make_record("early", completed_at=T0))
        store.upsert(_make_record("elsewhere", room_id="r2"))
        rows = store.query("r1", PUZZLE_DATE)
        assert [r.user_id for r in rows] == ["early", "late"]

    def test_delete(self):
        store = MemoryCompletionStore()
        store.upsert(_make_record())
        assert store.delete("r1", "u1", PUZZLE_DATE)
        assert store.get("r1", "u1", PUZZLE_DATE) is None
        assert not store.delete("r1", "u1", PUZZLE_DATE)


class TestMongoStoreInit:
    def test_creates_indexes(self, mock_client_class):
        _, _, col = mock_client_class
        store = MongoCompletionStore("mongodb://localhost:27017", "testdb")
        assert not store.disabled
        assert col.create_index.call_count == 2
        unique_call = col.create_index.call_args_list[0]
        assert unique_call.kwargs["unique"] is True

    def test_disabled_when_ping_fails(self, mock_client_class):
        _, client, col = mock_client_class
        client.admin.command.side_effect = ServerSelectionTimeoutError("down")
        store = MongoCompletionStore("mongodb://localhost:27017", "testdb")
        assert store.disabled
        store.upsert(_make_record())
        assert store.get("r1", "u1", PUZZLE_DATE).score == 4
        col.update_one.assert_not_called()


class TestMongoStoreOps:
    def test_upsert_uses_key_filter(self, mock_client_class):
        _, _, col = mock_client_class
        store = MongoCompletionStore("mongodb://x", "testdb")
        store.upsert(_make_record())
        args, kwargs = col.update_one.call_args
        assert args[0] == {"room_id": "r1", "user_id": "u1", "date": PUZZLE_DATE}
        assert args[1]["$set"]["score"] == 4
        assert kwargs["upsert"] is True

    def test_get_from_doc(self, mock_client_class):
        _, _, col = mock_client_class
        col.find_one.return_value = _make_record().to_doc()
        store = MongoCompletionStore("mongodb://x", "testdb")
        record = store.get("r1", "u1", PUZZLE_DATE)
        assert record.score == 4
        assert record.display_name == "U1"

    def test_get_missing(self, mock_client_class):
        _, _, col = mock_client_class
        col.find_one.return_value = None
        store = MongoCompletionStore("mongodb://x", "testdb")
        assert store.get("r1", "u1", PUZZLE_DATE) is None

    def test_write_failure_falls_back_to_memory(self, mock_client_class):
        _, _, col = mock_client_class
        col.update_one.side_effect = PyMongoError("write failed")
        col.find_one.return_value = None
        col.find.return_value.sort.return_value = []
        store = MongoCompletionStore("mongodb://x", "testdb")
        store.upsert(_make_record())
        assert store.get("r1", "u1", PUZZLE_DATE) is not None
        assert [r.user_id for r in store.query("r1", PUZZLE_DATE)] == ["u1"]

    def test_query_failure_falls_back(self, mock_client_class):
        _, _, col = mock_client_class
        col.find.side_effect = PyMongoError("read failed")
        store = MongoCompletionStore("mongodb://x", "testdb")
        assert store.query("r1", PUZZLE_DATE) == []

    def test_query_sorted_by_completion(self, mock_client_class):
        _, _, col = mock_client_class
        docs = [
            _make_record("a", completed_at=T0).to_doc(),
            _make_record("b", completed_at=T0 + timedelta(seconds=1)).to_doc(),
        ]
        col.find.return_value.sort.return_value = docs
        store = MongoCompletionStore("mongodb://x", "testdb")
        rows = store.query("r1", PUZZLE_DATE)
        assert [r.user_id for r in rows] == ["a", "b"]
        assert col.find.call_args[0][0] == {"room_id": "r1", "date": PUZZLE_DATE}

    def test_delete(self, mock_client_class):
        _, _, col = mock_client_class
        col.delete_one.return_value.deleted_count = 1
        store = MongoCompletionStore("mongodb://x", "testdb")
        assert store.delete("r1", "u1", PUZZLE_DATE)

    def test_close(self, mock_client_class):
        _, client, _ = mock_client_class
        store = MongoCompletionStore("mongodb://x", "testdb")
        store.close()
        client.close.assert_called_once()


class TestOpenCompletionStore:
    def test_memory_by_default(self):
        assert isinstance(open_completion_store(StorageConfig()), MemoryCompletionStore)

    def test_mongo_without_uri_uses_memory(self):
        store = open_completion_store(StorageConfig(backend="mongo"))
        assert isinstance(store, MemoryCompletionStore)

    def test_mongo_with_uri(self, mock_client_class):
        cls, _, _ = mock_client_class
        store = open_completion_store(
            StorageConfig(backend="mongo", mongo_uri="mongodb://x", db_name="lb")
        )
        assert isinstance(store, MongoCompletionStore)
        cls.assert_called_once_with("mongodb://x", serverSelectionTimeoutMS=5000)
