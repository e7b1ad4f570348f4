from __future__ import annotations

import json
import sqlite3
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Protocol

from .models import ScheduleOverride
from .utils import parse_datetime, utc_now_iso

SCHEDULE_OVERRIDES_KEY = "dispatcher_schedule_overrides_v1"
TECHNICIAN_META_PREFIX = "technician_meta:"


class LocalStore:
    """Durable key-value store holding JSON blobs, kept in a local sqlite file."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        self.conn.close()

    def init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        self.conn.commit()

    def get_json(self, key: str, default: Any = None) -> Any:
        row = self.conn.execute("SELECT value_json FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value_json"])
        except json.JSONDecodeError:
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.conn.execute(
            """
            INSERT INTO kv(key, value_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value_json = excluded.value_json,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(value, sort_keys=True), utc_now_iso()),
        )
        self.conn.commit()

    def delete(self, key: str) -> None:
        self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self.conn.commit()

    def keys(self, prefix: str = "") -> list[str]:
        rows = self.conn.execute(
            "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        ).fetchall()
        return [row["key"] for row in rows]


class ScheduleOverrideStore(Protocol):
    def get(self, dispatch_id: str) -> ScheduleOverride | None: ...

    def set(self, dispatch_id: str, start: datetime, end: datetime) -> None: ...

    def discard(self, dispatch_id: str) -> None: ...


class LocalScheduleOverrideStore:
    """Schedule overrides persisted under a single key, read through an in-memory copy."""

    def __init__(self, store: LocalStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.clock = clock
        raw = store.get_json(SCHEDULE_OVERRIDES_KEY, {})
        self._overrides: dict[str, dict[str, Any]] = raw if isinstance(raw, dict) else {}

    def _persist(self) -> None:
        self.store.set_json(SCHEDULE_OVERRIDES_KEY, self._overrides)

    def get(self, dispatch_id: str) -> ScheduleOverride | None:
        raw = self._overrides.get(str(dispatch_id))
        if not isinstance(raw, dict):
            return None
        start = parse_datetime(raw.get("startIso"))
        end = parse_datetime(raw.get("endIso"))
        if start is None or end is None:
            return None
        return ScheduleOverride(start=start, end=end, updated_at=float(raw.get("updatedAt", 0)))

    def set(self, dispatch_id: str, start: datetime, end: datetime) -> None:
        self._overrides[str(dispatch_id)] = {
            "startIso": start.isoformat(),
            "endIso": end.isoformat(),
            "updatedAt": self.clock(),
        }
        self._persist()

    def discard(self, dispatch_id: str) -> None:
        if self._overrides.pop(str(dispatch_id), None) is not None:
            self._persist()

    def __len__(self) -> int:
        return len(self._overrides)


class TechnicianMetadataStore:
    def __init__(self, store: LocalStore) -> None:
        self.store = store

    def get(self, technician_id: str) -> dict[str, Any]:
        value = self.store.get_json(f"{TECHNICIAN_META_PREFIX}{technician_id}", {})
        return value if isinstance(value, dict) else {}

    def update(self, technician_id: str, **fields: Any) -> dict[str, Any]:
        merged = {**self.get(technician_id), **fields}
        self.store.set_json(f"{TECHNICIAN_META_PREFIX}{technician_id}", merged)
        return merged
