"""Installation level key/value configuration.

Provider credentials, the default provider and the auto-routing switch live
here so operators can change them without redeploying.
"""

from __future__ import annotations

import threading
from typing import Any, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

AUTO_ROUTING_KEY = "AI_AUTO_ROUTING_ENABLED"
DEFAULT_PROVIDER_KEY = "AI_DEFAULT_PROVIDER"


def provider_key(provider: str, field: str) -> str:
    """Config key for a provider setting, e.g. ``AI_CLAUDE_API_KEY``."""

    return f"AI_{provider.upper()}_{field.upper()}"


def as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


class ConfigStore(Protocol):
    def get(self, name: str, default: Any = None) -> Any: ...

    def set(self, name: str, value: Any) -> None: ...


class InMemoryConfigStore:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(name, default)

    def set(self, name: str, value: Any) -> None:
        with self._lock:
            self._values[name] = value


class PostgresConfigStore:
    """Values are stored as JSON in ``installation_configs``."""

    def __init__(self, connection: psycopg.Connection):
        self._conn = connection

    def get(self, name: str, default: Any = None) -> Any:
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT value FROM installation_configs WHERE name = %s", (name,))
            row = cur.fetchone()
        if not row:
            return default
        return row["value"]

    def set(self, name: str, value: Any) -> None:
        with self._conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO installation_configs (name, value)
                VALUES (%s, %s)
                ON CONFLICT (name) DO UPDATE
                SET value = EXCLUDED.value, updated_at = now()
                """,
                (name, Jsonb(value)),
            )
