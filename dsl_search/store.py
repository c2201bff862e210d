"""
Event store interface and the bundled SQLite implementation.

The engine depends only on the two-method EventStore protocol. The SQLite
store holds timestamped event rows in a single table and serializes access
to its connection with a lock.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

EVENT_COLUMNS = ('timestamp', 'message', 'severity', 'source', 'device_id', 'category')

TIMESTAMP_FALLBACK_FIELDS = (
    '@timestamp', 'ts', 'time', 'datetime', 'event_time', 'created_at',
)


class EventStore(Protocol):
    """Read interface the search engine consumes."""

    def query(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        """Execute a parameterized read query and return all rows."""
        ...

    def get(self, sql: str, params: Sequence[Any]) -> Optional[Dict[str, Any]]:
        """Execute a parameterized read query and return the first row, if any."""
        ...


def format_timestamp(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def normalize_timestamp(value: Any) -> Optional[str]:
    """Convert datetimes, epoch numbers and ISO strings to ISO-8601 UTC.

    Returns:
        The normalized timestamp, or None if the value cannot be interpreted
    """
    if isinstance(value, datetime):
        return format_timestamp(value)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return format_timestamp(datetime.fromtimestamp(value, tz=timezone.utc))
        except (ValueError, OSError, OverflowError):
            return None
    elif isinstance(value, str):
        try:
            return format_timestamp(datetime.fromisoformat(value.replace('Z', '+00:00')))
        except ValueError:
            return None
    return None


def extract_timestamp(event: Dict[str, Any]) -> Optional[str]:
    """Find the event timestamp, trying common field names after 'timestamp'."""
    for field_name in ('timestamp',) + TIMESTAMP_FALLBACK_FIELDS:
        if field_name in event:
            timestamp = normalize_timestamp(event[field_name])
            if timestamp:
                return timestamp
    return None


class SQLiteEventStore:
    """SQLite-backed event table."""

    def __init__(self, db_path: str | Path = ':memory:', table: str = 'log_events'):
        """Open the database.

        Args:
            db_path: SQLite database path, ':memory:' for a private in-memory store
            table: Event table name
        """
        if not table.isidentifier():
            raise ValueError(f"Invalid table name: {table!r}")
        self.db_path = str(db_path)
        self.table = table
        self._lock = threading.RLock()
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

    def init_schema(self) -> None:
        """Create the event table and its indexes if they do not exist."""
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute(f'''
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    message TEXT,
                    severity TEXT,
                    source TEXT,
                    device_id TEXT,
                    category TEXT,
                    metadata TEXT
                )
            ''')
            cursor.execute(f'''
                CREATE INDEX IF NOT EXISTS idx_{self.table}_timestamp
                ON {self.table} (timestamp)
            ''')
            cursor.execute(f'''
                CREATE INDEX IF NOT EXISTS idx_{self.table}_severity_source
                ON {self.table} (severity, source)
            ''')
            self._conn.commit()
        logger.debug(f"Event table '{self.table}' ready in {self.db_path}")

    def insert_events(self, events: Iterable[Dict[str, Any]]) -> int:
        """Insert raw event dictionaries.

        Known columns are copied, 'level' stands in for a missing severity,
        and every other key is folded into the JSON metadata column.

        Args:
            events: Event dictionaries

        Returns:
            Number of rows inserted
        """
        rows = []
        for event in events:
            timestamp = extract_timestamp(event)
            if timestamp is None:
                timestamp = format_timestamp(datetime.now(timezone.utc))

            metadata = dict(event.get('metadata') or {}) if isinstance(event.get('metadata'), dict) else {}
            for key, value in event.items():
                if key not in EVENT_COLUMNS and key not in ('id', 'metadata', 'level'):
                    metadata[key] = value

            severity = event.get('severity', event.get('level'))
            rows.append((
                timestamp,
                _as_text(event.get('message')),
                _as_text(severity),
                _as_text(event.get('source')),
                _as_text(event.get('device_id')),
                _as_text(event.get('category')),
                json.dumps(metadata, default=str),
            ))

        with self._lock:
            self._conn.executemany(
                f'INSERT INTO {self.table} '
                '(timestamp, message, severity, source, device_id, category, metadata) '
                'VALUES (?, ?, ?, ?, ?, ?, ?)',
                rows,
            )
            self._conn.commit()
        return len(rows)

    def query(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        with self._lock:
            cursor = self._conn.execute(sql, tuple(params))
            return [dict(row) for row in cursor.fetchall()]

    def get(self, sql: str, params: Sequence[Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(sql, tuple(params)).fetchone()
            return dict(row) if row is not None else None

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)
