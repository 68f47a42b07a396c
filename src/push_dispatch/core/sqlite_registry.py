"""SQLite-backed token registry.

One table keyed by token. Registration order is the table's rowid order,
which an UPSERT preserves for existing tokens. Large enumerations page
through the table by rowid so no more than one page is held in memory.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType
from typing import Final, Self

from push_dispatch.exceptions import TokenNotFoundError
from push_dispatch.types import DeviceToken, Platform

__all__ = ["SQLiteTokenRegistry"]

DEFAULT_PAGE_SIZE: Final[int] = 1000

_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS device_tokens (
    token TEXT PRIMARY KEY,
    recipient_id TEXT NOT NULL,
    platform TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_device_tokens_recipient ON device_tokens(recipient_id, active);
CREATE INDEX IF NOT EXISTS idx_device_tokens_active ON device_tokens(active);
"""

_COLUMNS: Final[str] = "token, recipient_id, platform, active, created_at, updated_at"


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _row_to_record(row: sqlite3.Row) -> DeviceToken:
    return DeviceToken(
        recipient_id=row["recipient_id"],
        token=row["token"],
        platform=Platform(row["platform"]),
        active=bool(row["active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SQLiteTokenRegistry:
    """Token registry persisted in a SQLite database.

    Args:
        database_path: Database file, or ``":memory:"`` for a private in-memory database
        page_size: Rows fetched per page by ``iter_active_tokens``
        clock: Source of record timestamps, injectable for tests
    """

    def __init__(
        self,
        database_path: Path | str = ":memory:",
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        if page_size < 1:
            msg = "page_size must be >= 1"
            raise ValueError(msg)
        if isinstance(database_path, Path):
            database_path.parent.mkdir(parents=True, exist_ok=True)
        self._page_size: int = page_size
        self._clock: Callable[[], datetime] = clock
        self._lock: threading.Lock = threading.Lock()
        self._conn: sqlite3.Connection = sqlite3.connect(str(database_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            _ = self._conn.executescript(_SCHEMA)
            self._conn.commit()

    def _timestamp(self) -> str:
        # Stored as UTC ISO-8601 so string comparison orders correctly
        return self._clock().astimezone(UTC).isoformat(timespec="microseconds")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def upsert(self, recipient_id: str, token: str, platform: Platform) -> DeviceToken:
        """Insert a token or reactivate and update the existing row."""
        now = self._timestamp()
        with self._lock, self._conn:
            _ = self._conn.execute(
                """
                INSERT INTO device_tokens (token, recipient_id, platform, active, created_at, updated_at)
                VALUES (?, ?, ?, 1, ?, ?)
                ON CONFLICT(token) DO UPDATE SET
                    recipient_id = excluded.recipient_id,
                    platform = excluded.platform,
                    active = 1,
                    updated_at = excluded.updated_at
                """,
                (token, recipient_id, str(platform), now, now),
            )
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM device_tokens WHERE token = ?",
                (token,),
            ).fetchone()
        return _row_to_record(row)

    def deactivate(self, token: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE device_tokens SET active = 0, updated_at = ? WHERE token = ? AND active = 1",
                (self._timestamp(), token),
            )
            if cursor.rowcount:
                return True
            exists = self._conn.execute("SELECT 1 FROM device_tokens WHERE token = ?", (token,)).fetchone()
        return exists is not None

    def remove(self, recipient_id: str, token: str) -> None:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM device_tokens WHERE token = ? AND recipient_id = ?",
                (token, recipient_id),
            )
            if cursor.rowcount == 0:
                raise TokenNotFoundError(recipient_id, token)

    def get(self, token: str) -> DeviceToken | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM device_tokens WHERE token = ?",
                (token,),
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def active_tokens_for(self, recipient_id: str, platform: Platform | None = None) -> tuple[str, ...]:
        query = "SELECT token FROM device_tokens WHERE recipient_id = ? AND active = 1"
        params: tuple[str, ...] = (recipient_id,)
        if platform is not None:
            query += " AND platform = ?"
            params = (recipient_id, str(platform))
        query += " ORDER BY rowid"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return tuple(row["token"] for row in rows)

    def tokens_for(self, recipient_id: str) -> tuple[DeviceToken, ...]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM device_tokens WHERE recipient_id = ? ORDER BY rowid",
                (recipient_id,),
            ).fetchall()
        return tuple(_row_to_record(row) for row in rows)

    def iter_active_tokens(self) -> Iterator[str]:
        """Page through active tokens in registration order (keyset pagination on rowid)."""
        last_rowid = 0
        while True:
            with self._lock:
                rows = self._conn.execute(
                    """
                    SELECT rowid, token FROM device_tokens
                    WHERE active = 1 AND rowid > ?
                    ORDER BY rowid
                    LIMIT ?
                    """,
                    (last_rowid, self._page_size),
                ).fetchall()
            if not rows:
                return
            for row in rows:
                yield row["token"]
            last_rowid = rows[-1]["rowid"]

    def count_active(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM device_tokens WHERE active = 1").fetchone()
        return int(row[0])

    def prune_inactive(self, older_than: datetime) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM device_tokens WHERE active = 0 AND updated_at < ?",
                (older_than.astimezone(UTC).isoformat(timespec="microseconds"),),
            )
        return cursor.rowcount

    def __len__(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM device_tokens").fetchone()
        return int(row[0])
