"""SQLite-backed key -> set-of-members index."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from threading import RLock


class DuplicateMemberError(Exception):
    """Raised when a member is already present under a key."""

    def __init__(self, table: str, key: str, member: str) -> None:
        super().__init__(f"{member} is already present under {key} in {table}")
        self.table = table
        self.key = key
        self.member = member


class KeyNotFoundError(Exception):
    """Raised when a key has no entry in the index."""

    def __init__(self, table: str, key: str) -> None:
        super().__init__(f"No entry for {key} in {table}")
        self.table = table
        self.key = key


class IndexedSetStore:
    """
    Maps a key to a set of members, one row per (key, member) pair.

    A key exists exactly as long as it has at least one member, so
    removing the last member leaves nothing behind for that key.
    Optional value columns turn the set into a nested map (key -> member -> record).

    Methods never commit; callers run them inside ``TaskStore.transaction()``.
    """

    def __init__(
        self,
        db: sqlite3.Connection,
        lock: RLock,
        table: str,
        key_column: str,
        member_column: str,
        value_columns: tuple[str, ...] = (),
    ) -> None:
        self._db = db
        self._lock = lock
        self._table = table
        self._key_column = key_column
        self._member_column = member_column
        self._value_columns = value_columns
        self._init_schema()

    @property
    def table(self) -> str:
        return self._table

    def _init_schema(self) -> None:
        value_defs = "".join(f", {column} TEXT NOT NULL" for column in self._value_columns)
        with self._lock:
            self._db.execute(
                f"CREATE TABLE IF NOT EXISTS {self._table} ("  # nosec B608
                f"{self._key_column} TEXT NOT NULL, "
                f"{self._member_column} TEXT NOT NULL"
                f"{value_defs}, "
                f"PRIMARY KEY ({self._key_column}, {self._member_column}))"
            )

    def add(self, key: str, member: str, values: dict[str, Any] | None = None) -> None:
        """Insert member under key; raises DuplicateMemberError if already present."""
        values = values or {}
        columns = (self._key_column, self._member_column, *self._value_columns)
        params = (key, member, *(values[column] for column in self._value_columns))
        placeholders = ", ".join("?" for _ in columns)
        query = (
            f"INSERT INTO {self._table} ({', '.join(columns)}) "  # nosec B608
            f"VALUES ({placeholders})"
        )
        with self._lock:
            try:
                self._db.execute(query, params)
            except sqlite3.IntegrityError as exc:
                raise DuplicateMemberError(self._table, key, member) from exc

    def remove(self, key: str, member: str) -> bool:
        """
        Remove member from key's set.

        Returns False if the key exists but the member does not.

        Raises:
            KeyNotFoundError: key has no entry at all
        """
        with self._lock:
            if not self.has_key(key):
                raise KeyNotFoundError(self._table, key)
            cursor = self._db.execute(
                f"DELETE FROM {self._table} "  # nosec B608
                f"WHERE {self._key_column} = ? AND {self._member_column} = ?",
                (key, member),
            )
        return cursor.rowcount > 0

    def remove_key(self, key: str) -> int:
        """Drop every member under key and return how many were removed."""
        with self._lock:
            cursor = self._db.execute(
                f"DELETE FROM {self._table} WHERE {self._key_column} = ?",  # nosec B608
                (key,),
            )
        return int(cursor.rowcount)

    def contains(self, key: str, member: str) -> bool:
        with self._lock:
            row = self._db.execute(
                f"SELECT 1 FROM {self._table} "  # nosec B608
                f"WHERE {self._key_column} = ? AND {self._member_column} = ?",
                (key, member),
            ).fetchone()
        return row is not None

    def has_key(self, key: str) -> bool:
        with self._lock:
            row = self._db.execute(
                f"SELECT 1 FROM {self._table} WHERE {self._key_column} = ? LIMIT 1",  # nosec B608
                (key,),
            ).fetchone()
        return row is not None

    def get(self, key: str, member: str) -> dict[str, str] | None:
        """Fetch the value columns stored for (key, member)."""
        if not self._value_columns:
            return {} if self.contains(key, member) else None
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._value_columns)} FROM {self._table} "  # nosec B608
                f"WHERE {self._key_column} = ? AND {self._member_column} = ?",
                (key, member),
            ).fetchone()
        if row is None:
            return None
        return {column: row[column] for column in self._value_columns}

    def members(self, key: str, offset: int = 0, limit: int | None = None) -> list[str]:
        """Members under key in insertion order."""
        query = (
            f"SELECT {self._member_column} FROM {self._table} "  # nosec B608
            f"WHERE {self._key_column} = ? ORDER BY rowid LIMIT ? OFFSET ?"
        )
        with self._lock:
            rows = self._db.execute(
                query, (key, -1 if limit is None else limit, offset)
            ).fetchall()
        return [str(row[0]) for row in rows]

    def entries(
        self, key: str, offset: int = 0, limit: int | None = None
    ) -> list[tuple[str, dict[str, str]]]:
        """(member, values) pairs under key in insertion order."""
        selected = ", ".join((self._member_column, *self._value_columns))
        query = (
            f"SELECT {selected} FROM {self._table} "  # nosec B608
            f"WHERE {self._key_column} = ? ORDER BY rowid LIMIT ? OFFSET ?"
        )
        with self._lock:
            rows = self._db.execute(
                query, (key, -1 if limit is None else limit, offset)
            ).fetchall()
        return [
            (str(row[0]), {column: row[column] for column in self._value_columns})
            for row in rows
        ]

    def count(self, key: str) -> int:
        with self._lock:
            row = self._db.execute(
                f"SELECT COUNT(*) FROM {self._table} WHERE {self._key_column} = ?",  # nosec B608
                (key,),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def keys(self) -> list[str]:
        with self._lock:
            rows = self._db.execute(
                f"SELECT DISTINCT {self._key_column} FROM {self._table} "  # nosec B608
                f"ORDER BY {self._key_column}"
            ).fetchall()
        return [str(row[0]) for row in rows]

    def as_mapping(self) -> dict[str, set[str]]:
        """Full enumeration of the index."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {self._key_column}, {self._member_column} "  # nosec B608
                f"FROM {self._table}"
            ).fetchall()
        mapping: dict[str, set[str]] = {}
        for row in rows:
            mapping.setdefault(str(row[0]), set()).add(str(row[1]))
        return mapping
