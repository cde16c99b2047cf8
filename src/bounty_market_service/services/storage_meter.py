"""Byte accounting over everything the service keeps in SQLite."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import sqlite3
    from threading import RLock

# Integers are billed at a fixed width regardless of magnitude
INTEGER_WIDTH_BYTES = 8


class SqliteStorageMeter:
    """
    Measures retained storage in bytes.

    Every row costs ``record_overhead_bytes`` plus the UTF-8 length of its
    text values plus a fixed width per non-null integer. Reads go through the
    shared connection, so a measurement inside an open transaction includes
    that transaction's own uncommitted writes.
    """

    def __init__(self, db: sqlite3.Connection, lock: RLock, record_overhead_bytes: int) -> None:
        self._db = db
        self._lock = lock
        self._record_overhead_bytes = record_overhead_bytes
        self._query: str | None = None

    def _build_query(self) -> str:
        tables = [
            str(row[0])
            for row in self._db.execute(
                "SELECT name FROM sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            ).fetchall()
        ]
        parts: list[str] = []
        for table in tables:
            terms = [f"COUNT(*) * {self._record_overhead_bytes}"]
            for column in self._db.execute(f"PRAGMA table_info({table})").fetchall():
                name = column["name"]
                if str(column["type"]).upper() == "INTEGER":
                    terms.append(f"COUNT({name}) * {INTEGER_WIDTH_BYTES}")
                else:
                    terms.append(f"COALESCE(SUM(LENGTH(CAST({name} AS BLOB))), 0)")
            parts.append(f"SELECT {' + '.join(terms)} AS used FROM {table}")  # nosec B608
        if not parts:
            return "SELECT 0"
        return "SELECT " + " + ".join(f"({part})" for part in parts)

    def bytes_used(self) -> int:
        """Total bytes currently retained."""
        with self._lock:
            if self._query is None:
                self._query = self._build_query()
            row = self._db.execute(self._query).fetchone()
        return int(row[0]) if row is not None and row[0] is not None else 0
