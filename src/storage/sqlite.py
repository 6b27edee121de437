"""SQLite-backed storage for service definitions, probe outcomes and state changes."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from src.health.errors import StorageError, ValidationError
from src.health.models import ProbeOutcome, ServiceDefinition, StateChangeEvent, new_service_id

from .base import Storage

logger = logging.getLogger(__name__)

DB_PATH = Path(__file__).parent.parent.parent / "data" / "monitor.db"


class SqliteStorage(Storage):
    """One shared connection, serialized by a lock; callers come from several threads."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._db_path = Path(db_path or DB_PATH)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction, translating driver errors."""
        with self._lock:
            try:
                conn = self._get_conn()
                with conn:
                    yield conn
            except sqlite3.Error as e:
                raise StorageError(f"SQLite error on {self._db_path}: {e}") from e

    def _init_db(self) -> None:
        with self._tx() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS services (
                    id TEXT PRIMARY KEY,
                    definition TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
                );

                CREATE TABLE IF NOT EXISTS outcomes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    service_id TEXT NOT NULL,
                    success INTEGER NOT NULL,
                    latency_ms REAL,
                    error TEXT,
                    message TEXT,
                    status_code INTEGER,
                    timestamp TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_outcomes_service
                    ON outcomes (service_id, id DESC);

                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    service_id TEXT NOT NULL,
                    from_state TEXT NOT NULL,
                    to_state TEXT NOT NULL,
                    message TEXT,
                    timestamp TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_events_service
                    ON events (service_id, id DESC);
            """)

    # ── Definitions ──────────────────────────────────────────────────────

    def create_service(self, definition: ServiceDefinition) -> str:
        service_id = definition.id or new_service_id()
        payload = json.dumps(definition.with_id(service_id).to_dict())
        with self._tx() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO services (id, definition) VALUES (?, ?)",
                (service_id, payload),
            )
        return service_id

    def get_service(self, service_id: str) -> ServiceDefinition | None:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT definition FROM services WHERE id = ?", (service_id,),
            ).fetchone()
        return _load_definition(row["definition"]) if row else None

    def list_services(self) -> list[ServiceDefinition]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT definition FROM services ORDER BY created_at, id",
            ).fetchall()
        definitions = []
        for r in rows:
            try:
                definitions.append(_load_definition(r["definition"]))
            except StorageError as e:
                logger.warning("Skipping unreadable service row: %s", e)
        return definitions

    def delete_service(self, service_id: str) -> bool:
        with self._tx() as conn:
            conn.execute("DELETE FROM outcomes WHERE service_id = ?", (service_id,))
            conn.execute("DELETE FROM events WHERE service_id = ?", (service_id,))
            cursor = conn.execute("DELETE FROM services WHERE id = ?", (service_id,))
        return cursor.rowcount > 0

    # ── History ──────────────────────────────────────────────────────────

    def append_outcome(self, service_id: str, outcome: ProbeOutcome) -> None:
        with self._tx() as conn:
            conn.execute(
                "INSERT INTO outcomes "
                "(service_id, success, latency_ms, error, message, status_code, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    service_id, int(outcome.success), outcome.latency_ms, outcome.error,
                    outcome.message, outcome.status_code, outcome.timestamp,
                ),
            )

    def list_outcomes(self, service_id: str, limit: int = 100) -> list[ProbeOutcome]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM outcomes WHERE service_id = ? ORDER BY id DESC LIMIT ?",
                (service_id, limit),
            ).fetchall()
        return [ProbeOutcome.from_row(dict(r)) for r in rows]

    def clear_outcomes(self, service_id: str) -> None:
        with self._tx() as conn:
            conn.execute("DELETE FROM outcomes WHERE service_id = ?", (service_id,))
            conn.execute("DELETE FROM events WHERE service_id = ?", (service_id,))

    def append_event(self, service_id: str, event: StateChangeEvent) -> None:
        with self._tx() as conn:
            conn.execute(
                "INSERT INTO events (service_id, from_state, to_state, message, timestamp) "
                "VALUES (?, ?, ?, ?, ?)",
                (service_id, event.from_state.value, event.to_state.value, event.message, event.timestamp),
            )

    def list_events(self, service_id: str, limit: int = 50) -> list[StateChangeEvent]:
        with self._tx() as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE service_id = ? ORDER BY id DESC LIMIT ?",
                (service_id, limit),
            ).fetchall()
        return [StateChangeEvent.from_row(dict(r)) for r in rows]

    def flush_all(self) -> None:
        with self._tx() as conn:
            conn.execute("DELETE FROM outcomes")
            conn.execute("DELETE FROM events")
            conn.execute("DELETE FROM services")

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


def _load_definition(payload: str) -> ServiceDefinition:
    """Parse a stored definition. Corrupt or no longer valid rows raise StorageError."""
    try:
        data: dict[str, Any] = json.loads(payload)
        return ServiceDefinition.from_dict(data)
    except (ValueError, ValidationError) as e:
        raise StorageError(f"Invalid stored service definition: {e}") from e
