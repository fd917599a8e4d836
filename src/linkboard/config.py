"""Service configuration loader."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

MONGO_URI_ENV = "LINKBOARD_MONGO_URI"
DISCORD_TOKEN_ENV = "DISCORD_BOT_TOKEN"


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3001


@dataclass
class StorageConfig:
    backend: str = "memory"  # "memory" or "mongo"
    mongo_uri: str | None = None
    db_name: str = "linkboard"


@dataclass
class ReconcileConfig:
    interval_s: float = 5.0
    alias_retention_days: int = 2
    timeout_s: float = 10.0


@dataclass
class PuzzleConfig:
    source: str = "nyt"  # "nyt" or "static"
    base_url: str = "https://www.nytimes.com/svc/connections/v2"
    fallback_date: str | None = None
    timeout_s: float = 10.0
    static_path: Path | None = None
    validate_guesses: bool = True


@dataclass
class ChatConfig:
    provider: str = "mock"  # "mock" or "discord"
    api_base: str = "https://discord.com/api/v10"
    timeout_s: float = 10.0
    token: str | None = None
    label: str = "Connections"


@dataclass
class LinkboardConfig:
    name: str = "linkboard"
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    puzzle: PuzzleConfig = field(default_factory=PuzzleConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)


def load_config(path: Path) -> LinkboardConfig:
    """Load service config from a YAML file, then apply env overrides."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return parse_config(raw, base_dir=Path(path).resolve().parent)


def parse_config(raw: dict, base_dir: Path | None = None) -> LinkboardConfig:
    s = raw.get("server", {})
    st = raw.get("storage", {})
    rc = raw.get("reconcile", {})
    pz = raw.get("puzzle", {})
    ch = raw.get("chat", {})

    static_path = pz.get("static_path")
    if static_path is not None:
        static_path = Path(static_path)
        if base_dir is not None and not static_path.is_absolute():
            static_path = base_dir / static_path

    fallback = pz.get("fallback_date")
    if fallback is not None:
        # YAML turns bare dates into datetime.date
        fallback = str(fallback)

    mongo_uri = os.environ.get(MONGO_URI_ENV) or st.get("mongo_uri")
    backend = st.get("backend", "mongo" if mongo_uri else "memory")

    return LinkboardConfig(
        name=raw.get("name", "linkboard"),
        server=ServerConfig(
            host=s.get("host", "127.0.0.1"),
            port=s.get("port", 3001),
        ),
        storage=StorageConfig(
            backend=backend,
            mongo_uri=mongo_uri,
            db_name=st.get("db_name", "linkboard"),
        ),
        reconcile=ReconcileConfig(
            interval_s=rc.get("interval_s", 5.0),
            alias_retention_days=rc.get("alias_retention_days", 2),
            timeout_s=rc.get("timeout_s", 10.0),
        ),
        puzzle=PuzzleConfig(
            source=pz.get("source", "nyt"),
            base_url=pz.get("base_url", "https://www.nytimes.com/svc/connections/v2"),
            fallback_date=fallback,
            timeout_s=pz.get("timeout_s", 10.0),
            static_path=static_path,
            validate_guesses=pz.get("validate_guesses", True),
        ),
        chat=ChatConfig(
            provider=ch.get("provider", "mock"),
            api_base=ch.get("api_base", "https://discord.com/api/v10"),
            timeout_s=ch.get("timeout_s", 10.0),
            token=os.environ.get(DISCORD_TOKEN_ENV) or ch.get("token"),
            label=ch.get("label", "Connections"),
        ),
    )
