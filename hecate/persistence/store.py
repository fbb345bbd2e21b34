"""
Hecate Persistence Store

Schmale Key-Value- und Tabellen-Schnittstelle für den zuletzt angewendeten
Tuning-Plan (Hash + Snapshot) und historische Performance-Samples.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from pathlib import Path
from typing import Any, Optional

from hecate.core.config import get_config
from hecate.core.logging import get_logger
from hecate.core.utils import ensure_path, now_utc

logger = get_logger(__name__)

# Aufbewahrte Performance-Samples pro (Geraet, Workload)
SAMPLE_RETENTION = 1000


class KeyValueStore(ABC):
    """Austauschbarer Persistenz-Kollaborateur."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Liest einen JSON-serialisierbaren Wert oder None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Schreibt einen JSON-serialisierbaren Wert."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Löscht einen Schlüssel. True wenn vorhanden."""

    @abstractmethod
    def add_sample(self, device_uid: str, workload: str, score: float) -> None:
        """Speichert ein Performance-Sample."""

    @abstractmethod
    def get_samples(self, device_uid: str, workload: str, limit: int = 100) -> list[float]:
        """Liefert die neuesten Samples in Einfügereihenfolge."""


class MemoryStore(KeyValueStore):
    """
    In-Memory Store für Tests und Dry-Runs.

    Werte werden als JSON kopiert, damit Aufrufer den Zustand nicht
    nachträglich verändern können.
    """

    def __init__(self, max_samples: int = SAMPLE_RETENTION):
        self.max_samples = max_samples
        self._data: dict[str, str] = {}
        self._samples: dict[tuple[str, str], deque[float]] = defaultdict(
            lambda: deque(maxlen=self.max_samples)
        )
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        raw = json.dumps(value, default=str)
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def add_sample(self, device_uid: str, workload: str, score: float) -> None:
        with self._lock:
            self._samples[(device_uid, workload)].append(float(score))

    def get_samples(self, device_uid: str, workload: str, limit: int = 100) -> list[float]:
        with self._lock:
            return list(self._samples.get((device_uid, workload), []))[-limit:]


class SQLiteStore(KeyValueStore):
    """
    SQLite-basierter Store.

    Tabellen:
    - ``kv``: Schlüssel -> JSON-Wert (z.B. ``tuning.last_applied``)
    - ``performance_samples``: (device_uid, workload, score, recorded_at)
    """

    def __init__(self, db_path: Optional[Path] = None, max_samples: int = SAMPLE_RETENTION):
        config = get_config()
        self.max_samples = max_samples
        self.db_path = Path(db_path or Path(config.data_dir) / "hecate.db")
        ensure_path(self.db_path.parent)
        self._init_db()

    def _init_db(self) -> None:
        """Initialisiert die Datenbank."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS performance_samples (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    device_uid TEXT NOT NULL,
                    workload TEXT NOT NULL,
                    score REAL NOT NULL,
                    recorded_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_samples_device
                ON performance_samples(device_uid, workload)
            """)

    def get(self, key: str) -> Optional[Any]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE key = ?",
                (key,)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def set(self, key: str, value: Any) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT OR REPLACE INTO kv (key, value, updated_at)
                VALUES (?, ?, ?)
            """, (key, json.dumps(value, default=str), now_utc().isoformat()))
        logger.debug("Store key written", key=key)

    def delete(self, key: str) -> bool:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def add_sample(self, device_uid: str, workload: str, score: float) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO performance_samples (device_uid, workload, score, recorded_at)
                VALUES (?, ?, ?, ?)
            """, (device_uid, workload, float(score), now_utc().isoformat()))
            conn.execute("""
                DELETE FROM performance_samples
                WHERE device_uid = ? AND workload = ? AND id NOT IN (
                    SELECT id FROM performance_samples
                    WHERE device_uid = ? AND workload = ?
                    ORDER BY id DESC LIMIT ?
                )
            """, (device_uid, workload, device_uid, workload, self.max_samples))

    def get_samples(self, device_uid: str, workload: str, limit: int = 100) -> list[float]:
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute("""
                SELECT score FROM performance_samples
                WHERE device_uid = ? AND workload = ?
                ORDER BY id DESC LIMIT ?
            """, (device_uid, workload, limit)).fetchall()
        return [row[0] for row in reversed(rows)]


# Globale Store-Instanz
_store: Optional[KeyValueStore] = None


def get_store() -> KeyValueStore:
    """Holt den globalen Store (SQLite im data_dir)."""
    global _store
    if _store is None:
        _store = SQLiteStore()
    return _store


def set_store(store: KeyValueStore) -> None:
    """Setzt den globalen Store."""
    global _store
    _store = store
