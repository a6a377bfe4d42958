"""
FLEETWATCH State Database

SQLite persistence for the channel catalog, each channel's connection state
and an audit trail of dispatch results and engine errors.
"""

import json
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fleetwatch.exceptions import StateStoreError
from fleetwatch.types import ChannelMeta
from services.alerts.models import ConnectionState

logger = logging.getLogger("FLEETWATCH.StateDB")


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class StateDatabase:
    """
    SQLite database backing the engine.

    Implements the ChannelCatalog protocol through get_channel_meta().
    """

    def __init__(self, db_path: str = ":memory:"):
        """
        Initialize state database.

        Args:
            db_path: Path to SQLite database, ":memory:" for in-memory
        """
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def connect(self):
        """Connect to database and create tables."""
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._create_tables()
        except sqlite3.Error as e:
            self._conn = None
            raise StateStoreError(f"Cannot open state database: {e}", db_path=self.db_path) from e
        logger.info(f"State database ready at {self.db_path}")

    def close(self):
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _create_tables(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS channels (
                channel_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                is_operational INTEGER DEFAULT 1,
                min_threshold REAL,
                max_threshold REAL,
                is_currently_out_of_range INTEGER DEFAULT 0,
                out_of_range_since TEXT,
                last_alert_sent TEXT,
                created_at TEXT,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS dispatch_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                batch_type TEXT NOT NULL,
                transport TEXT NOT NULL,
                recipient_count INTEGER DEFAULT 0,
                sent_count INTEGER DEFAULT 0,
                failed_count INTEGER DEFAULT 0,
                reason TEXT,
                error TEXT,
                channel_ids TEXT
            );

            CREATE TABLE IF NOT EXISTS error_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                source TEXT NOT NULL,
                message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_dispatch_log_timestamp
                ON dispatch_log(timestamp);
            CREATE INDEX IF NOT EXISTS idx_error_log_timestamp
                ON error_log(timestamp);
        """)
        self._conn.commit()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        if not self._conn:
            raise StateStoreError("State database is not connected", db_path=self.db_path)
        try:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return cursor
        except sqlite3.Error as e:
            raise StateStoreError(f"State database error: {e}", db_path=self.db_path) from e

    # -------------------------------------------------------------------------
    # Channel catalog
    # -------------------------------------------------------------------------

    def upsert_channel(
        self,
        channel_id: str,
        name: str,
        min_threshold: Optional[float] = None,
        max_threshold: Optional[float] = None,
        is_operational: Optional[bool] = None,
        now: Optional[datetime] = None,
    ):
        """Create a channel on first sighting or refresh its name/thresholds.

        is_operational is operator-owned: it is only written when given.
        """
        stamp = _to_iso(now or datetime.now())
        self._execute("""
            INSERT INTO channels
            (channel_id, name, is_operational, min_threshold, max_threshold,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(channel_id) DO UPDATE SET
                name = excluded.name,
                min_threshold = COALESCE(excluded.min_threshold, channels.min_threshold),
                max_threshold = COALESCE(excluded.max_threshold, channels.max_threshold),
                updated_at = excluded.updated_at
        """, (
            channel_id,
            name,
            1 if is_operational is None or is_operational else 0,
            min_threshold,
            max_threshold,
            stamp,
            stamp,
        ))
        if is_operational is not None:
            self.set_operational(channel_id, is_operational)

    def set_operational(self, channel_id: str, is_operational: bool):
        self._execute(
            "UPDATE channels SET is_operational = ? WHERE channel_id = ?",
            (1 if is_operational else 0, channel_id),
        )

    def get_channel_meta(self, channel_id: str) -> Optional[ChannelMeta]:
        if not self._conn:
            return None
        row = self._execute(
            "SELECT * FROM channels WHERE channel_id = ?", (channel_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_meta(row)

    def list_channels(self) -> List[ChannelMeta]:
        rows = self._execute("SELECT * FROM channels ORDER BY channel_id").fetchall()
        return [self._row_to_meta(row) for row in rows]

    def _row_to_meta(self, row: sqlite3.Row) -> ChannelMeta:
        return ChannelMeta(
            channel_id=row["channel_id"],
            name=row["name"],
            is_operational=bool(row["is_operational"]),
            min_threshold=row["min_threshold"],
            max_threshold=row["max_threshold"],
        )

    # -------------------------------------------------------------------------
    # Connection state
    # -------------------------------------------------------------------------

    def load_connection_states(self) -> Dict[str, ConnectionState]:
        rows = self._execute("""
            SELECT channel_id, is_currently_out_of_range, out_of_range_since,
                   last_alert_sent
            FROM channels
        """).fetchall()
        return {
            row["channel_id"]: ConnectionState(
                channel_id=row["channel_id"],
                is_currently_out_of_range=bool(row["is_currently_out_of_range"]),
                out_of_range_since=_from_iso(row["out_of_range_since"]),
                last_alert_sent=_from_iso(row["last_alert_sent"]),
            )
            for row in rows
        }

    def save_connection_state(self, state: ConnectionState):
        """Persist the three connection fields, creating the row if needed."""
        self._execute("""
            INSERT INTO channels
            (channel_id, name, is_currently_out_of_range, out_of_range_since,
             last_alert_sent)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(channel_id) DO UPDATE SET
                is_currently_out_of_range = excluded.is_currently_out_of_range,
                out_of_range_since = excluded.out_of_range_since,
                last_alert_sent = excluded.last_alert_sent
        """, (
            state.channel_id,
            f"Channel {state.channel_id}",
            1 if state.is_currently_out_of_range else 0,
            _to_iso(state.out_of_range_since),
            _to_iso(state.last_alert_sent),
        ))

    # -------------------------------------------------------------------------
    # Audit trail
    # -------------------------------------------------------------------------

    def insert_dispatch(
        self,
        timestamp: datetime,
        batch_type: str,
        transport: str,
        recipient_count: int,
        sent_count: int,
        failed_count: int,
        reason: Optional[str] = None,
        error: Optional[str] = None,
        channel_ids: Optional[List[str]] = None,
    ):
        self._execute("""
            INSERT INTO dispatch_log
            (timestamp, batch_type, transport, recipient_count, sent_count,
             failed_count, reason, error, channel_ids)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            timestamp.isoformat(),
            batch_type,
            transport,
            recipient_count,
            sent_count,
            failed_count,
            reason,
            error,
            json.dumps(channel_ids or []),
        ))

    def get_recent_dispatches(self, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self._execute(
            "SELECT * FROM dispatch_log ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        records = []
        for row in rows:
            record = dict(row)
            record["channel_ids"] = json.loads(record["channel_ids"] or "[]")
            records.append(record)
        return records

    def insert_error(self, timestamp: datetime, source: str, message: str):
        self._execute(
            "INSERT INTO error_log (timestamp, source, message) VALUES (?, ?, ?)",
            (timestamp.isoformat(), source, message),
        )

    def get_recent_errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self._execute(
            "SELECT * FROM error_log ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [dict(row) for row in rows]

    def cleanup_logs(self, now: datetime, retention_days: int) -> int:
        """Delete audit rows older than the retention period."""
        cutoff = (now - timedelta(days=retention_days)).isoformat()
        deleted = self._execute(
            "DELETE FROM dispatch_log WHERE timestamp < ?", (cutoff,)
        ).rowcount
        deleted += self._execute(
            "DELETE FROM error_log WHERE timestamp < ?", (cutoff,)
        ).rowcount
        if deleted:
            logger.info(f"Cleaned up {deleted} audit rows older than {retention_days} days")
        return deleted
