from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60
DEFAULT_TTL_SECONDS = 30 * DAY_SECONDS


class MetadataCache:
    """SQLite-backed cache for provider responses and the rename journal."""

    def __init__(self, path: Path | str, clock=time.time) -> None:
        self.path = Path(path)
        if str(self.path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = Lock()
        self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS responses (
                query_type TEXT NOT NULL,
                query_key TEXT NOT NULL,
                response TEXT NOT NULL,
                timestamp REAL NOT NULL,
                PRIMARY KEY(query_type, query_key)
            )
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_responses_timestamp ON responses(timestamp)"
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS moves (
                source_path TEXT PRIMARY KEY,
                target_path TEXT NOT NULL,
                moved_at REAL NOT NULL
            )
            """
        )
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def get_response(
        self, query_type: str, query_key: str, ttl_seconds: float = DEFAULT_TTL_SECONDS
    ) -> Optional[Any]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT response, timestamp FROM responses WHERE query_type = ? AND query_key = ?",
                (query_type, query_key),
            )
            row = cursor.fetchone()
            if not row:
                return None
            payload, stored_at = row
            if self._clock() - float(stored_at) >= ttl_seconds:
                self._conn.execute(
                    "DELETE FROM responses WHERE query_type = ? AND query_key = ?",
                    (query_type, query_key),
                )
                self._conn.commit()
                logger.debug("Expired cache entry %s:%s", query_type, query_key)
                return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            return None

    def set_response(self, query_type: str, query_key: str, value: Any) -> None:
        payload = json.dumps(value)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO responses(query_type, query_key, response, timestamp)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(query_type, query_key)
                DO UPDATE SET response=excluded.response, timestamp=excluded.timestamp
                """,
                (query_type, query_key, payload, float(self._clock())),
            )
            self._conn.commit()

    def clear_expired(self, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> int:
        cutoff = self._clock() - ttl_seconds
        with self._lock:
            cursor = self._conn.execute("DELETE FROM responses WHERE timestamp <= ?", (cutoff,))
            self._conn.commit()
            return cursor.rowcount

    def clear(self) -> int:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM responses")
            self._conn.commit()
            removed = cursor.rowcount
            self._conn.execute("VACUUM")
        return removed

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._conn.execute("SELECT COUNT(*) FROM responses").fetchone()[0]
            rows = self._conn.execute(
                "SELECT query_type, COUNT(*) FROM responses GROUP BY query_type ORDER BY query_type"
            ).fetchall()
        return {"total": int(total), "by_type": {row[0]: int(row[1]) for row in rows}}

    def record_move(self, source: Path, target: Path) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO moves(source_path, target_path, moved_at)
                VALUES(?, ?, ?)
                ON CONFLICT(source_path) DO UPDATE SET target_path=excluded.target_path, moved_at=excluded.moved_at
                """,
                (str(source), str(target), float(self._clock())),
            )
            self._conn.commit()

    def list_moves(self) -> list[tuple[str, str]]:
        with self._lock:
            cursor = self._conn.execute(
                "SELECT source_path, target_path FROM moves ORDER BY moved_at DESC, rowid DESC"
            )
            rows = cursor.fetchall()
        return [(row[0], row[1]) for row in rows]

    def delete_move(self, source: Path | str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM moves WHERE source_path = ?", (str(source),))
            self._conn.commit()
