from __future__ import annotations

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any

from .types import ManagedPosition, PortfolioSnapshot


def _utc_epoch_s() -> int:
    return int(time.time())


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False, default=str)


class PositionStore:
    """SQLite persistence for managed positions and snapshot history.

    Positions are upserted by pool id; snapshots are append-only.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # autocommit
        )
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._init_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS positions (
              pool_id TEXT PRIMARY KEY,
              position_id TEXT,
              state_json TEXT NOT NULL,
              updated_at INTEGER NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS snapshots (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              taken_at REAL NOT NULL,
              total_value REAL NOT NULL,
              needs_attention INTEGER NOT NULL,
              snapshot_json TEXT NOT NULL
            );
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_snapshots_taken ON snapshots(taken_at);")

    def save_position(self, position: ManagedPosition) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO positions (pool_id, position_id, state_json, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(pool_id) DO UPDATE SET
                  position_id = excluded.position_id,
                  state_json = excluded.state_json,
                  updated_at = excluded.updated_at
                """,
                (
                    position.pool_id,
                    position.position_id,
                    _json_dumps(position.to_dict()),
                    _utc_epoch_s(),
                ),
            )

    def save_positions(self, positions: list[ManagedPosition]) -> None:
        for position in positions:
            self.save_position(position)

    def load_positions(self) -> dict[str, ManagedPosition]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT pool_id, state_json FROM positions ORDER BY pool_id"
            ).fetchall()
        return {
            str(row["pool_id"]): ManagedPosition.from_dict(json.loads(row["state_json"]))
            for row in rows
        }

    def append_snapshot(self, snapshot: PortfolioSnapshot) -> int:
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO snapshots (taken_at, total_value, needs_attention, snapshot_json)
                VALUES (?, ?, ?, ?)
                """,
                (
                    snapshot.timestamp,
                    snapshot.total_value,
                    1 if snapshot.needs_attention else 0,
                    _json_dumps(snapshot.to_dict()),
                ),
            )
            return int(cur.lastrowid)

    def load_snapshots(self, *, limit: int | None = None) -> list[PortfolioSnapshot]:
        query = "SELECT snapshot_json FROM snapshots ORDER BY id"
        params: tuple[Any, ...] = ()
        if limit is not None:
            # newest N, returned oldest first
            query = (
                "SELECT snapshot_json FROM "
                "(SELECT id, snapshot_json FROM snapshots ORDER BY id DESC LIMIT ?) "
                "ORDER BY id"
            )
            params = (int(limit),)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [PortfolioSnapshot.from_dict(json.loads(r["snapshot_json"])) for r in rows]

    def first_snapshot(self) -> PortfolioSnapshot | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT snapshot_json FROM snapshots ORDER BY id LIMIT 1"
            ).fetchone()
        return PortfolioSnapshot.from_dict(json.loads(row["snapshot_json"])) if row else None
