"""Run the linkboard service.

Usage:
    python -m linkboard [config.yaml] [--log-level DEBUG]

Starts the HTTP API, the reconciliation loop, and (when a chat provider is
configured) the chat host behind /api/chat/*. Secrets come from the
environment or a .env file.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv

from linkboard.chat.client import build_chat_client
from linkboard.chat.host import ChatHost
from linkboard.chat.reconciler import LocalSessionSource, Reconciler
from linkboard.config import LinkboardConfig, load_config, parse_config
from linkboard.core.ledger import open_completion_store
from linkboard.core.puzzle_source import PuzzleStore, build_puzzle_source
from linkboard.core.service import SessionService
from linkboard.http_api import make_server

logger = logging.getLogger("linkboard")


def build_app(config: LinkboardConfig):
    """Wire the service, chat side, and HTTP server from *config*."""
    puzzles = PuzzleStore(
        build_puzzle_source(config.puzzle),
        fallback_date=config.puzzle.fallback_date,
    )
    ledger = open_completion_store(config.storage)
    service = SessionService(
        ledger, puzzles, validate_guesses=config.puzzle.validate_guesses,
    )

    chat = build_chat_client(config.chat)
    retention = config.reconcile.alias_retention_days
    reconciler = Reconciler(
        LocalSessionSource(service),
        chat,
        interval_s=config.reconcile.interval_s,
        maintenance=lambda: service.prune_aliases(retention),
    )
    host = ChatHost(service, chat, reconciler, label=config.chat.label)

    server = make_server(
        service, config.server.host, config.server.port, chat_host=host,
    )
    return service, reconciler, server


def main() -> None:
    parser = argparse.ArgumentParser(description="Shared puzzle progress service")
    parser.add_argument(
        "config", nargs="?", default=None,
        help="YAML config file (defaults built in when omitted)",
    )
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    args = parser.parse_args()

    load_dotenv(args.env_file)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(Path(args.config)) if args.config else parse_config({})
    service, reconciler, server = build_app(config)

    reconciler.start()
    host, port = server.server_address[:2]
    logger.info("%s listening on http://%s:%s", config.name, host, port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.server_close()
        reconciler.stop()
        service.ledger.close()


if __name__ == "__main__":
    main()
