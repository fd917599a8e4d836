"""Tests for wiring the app from config."""

import json

from linkboard.__main__ import build_app
from linkboard.chat.reconciler import Reconciler
from linkboard.config import parse_config
from linkboard.core.ledger import MemoryCompletionStore

from conftest import PAYLOAD, PUZZLE_DATE


def test_build_app_from_static_config(tmp_path, monkeypatch):
    monkeypatch.delenv("LINKBOARD_MONGO_URI", raising=False)
    (tmp_path / "puzzles.json").write_text(json.dumps({PUZZLE_DATE: PAYLOAD}))
    config = parse_config(
        {
            "server": {"port": 0},
            "puzzle": {"source": "static", "static_path": "puzzles.json"},
        },
        base_dir=tmp_path,
    )
    service, reconciler, server = build_app(config)
    try:
        assert isinstance(service.ledger, MemoryCompletionStore)
        assert isinstance(reconciler, Reconciler)
        assert service.puzzle(PUZZLE_DATE).date == PUZZLE_DATE
        assert server.server_address[1] != 0
        assert server.RequestHandlerClass.chat_host is not None
    finally:
        server.server_close()
