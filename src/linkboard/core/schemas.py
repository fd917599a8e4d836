"""Request body schemas and validation."""

import json
from functools import lru_cache
from pathlib import Path

import jsonschema

_SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"
_FORMATS = jsonschema.FormatChecker()


def load_schema(path: Path) -> dict:
    """Load a JSON Schema file and return as dict."""
    with open(path) as f:
        return json.load(f)


@lru_cache(maxsize=None)
def schema(name: str) -> dict:
    """Bundled schema by file stem, e.g. ``schema("session_join")``."""
    return load_schema(_SCHEMA_DIR / f"{name}.json")


def validation_error(name: str, body) -> str | None:
    """Validate *body* against a bundled schema; return the error or None."""
    try:
        jsonschema.validate(body, schema(name), format_checker=_FORMATS)
    except jsonschema.ValidationError as e:
        return f"Schema validation: {e.message}"
    return None
