"""An ordered, persistent key-value store with atomic write batches."""

from __future__ import annotations

import os
import sqlite3
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

_CHUNK = 256
_FILE_NAME = "data.sqlite3"


class Direction(Enum):
    FORWARD = "forward"
    REVERSE = "reverse"


@dataclass
class WriteBatch:
    """Puts and deletes applied atomically, in order, by Database.write."""

    operations: list[tuple[bytes, bytes | None]] = field(default_factory=list)

    def put(self, key: bytes, value: bytes) -> None:
        self.operations.append((bytes(key), bytes(value)))

    def delete(self, key: bytes) -> None:
        self.operations.append((bytes(key), None))

    def __len__(self) -> int:
        return len(self.operations)


class Database:
    """Byte-ordered key-value store kept in a directory."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        directory = Path(path)
        directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            directory / _FILE_NAME, isolation_level=None, check_same_thread=False
        )
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS kv (key BLOB PRIMARY KEY, value BLOB NOT NULL) WITHOUT ROWID"
        )

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def get(self, key: bytes) -> bytes | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (bytes(key),)).fetchone()
        return None if row is None else bytes(row[0])

    def put(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (bytes(key), bytes(value))
            )

    def delete(self, key: bytes) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (bytes(key),))

    def write(self, batch: WriteBatch) -> None:
        """Apply every operation of the batch in one transaction."""
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                for key, value in batch.operations:
                    if value is None:
                        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                    else:
                        self._conn.execute(
                            "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, value)
                        )
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def iterate(
        self, start: bytes, direction: Direction = Direction.FORWARD
    ) -> Iterator[tuple[bytes, bytes]]:
        """Yield (key, value) pairs from start onwards.

        Forward yields keys >= start in ascending order; reverse yields
        keys <= start in descending order.
        """
        if direction is Direction.FORWARD:
            first = "SELECT key, value FROM kv WHERE key >= ? ORDER BY key ASC LIMIT ?"
            rest = "SELECT key, value FROM kv WHERE key > ? ORDER BY key ASC LIMIT ?"
        else:
            first = "SELECT key, value FROM kv WHERE key <= ? ORDER BY key DESC LIMIT ?"
            rest = "SELECT key, value FROM kv WHERE key < ? ORDER BY key DESC LIMIT ?"
        query = first
        position = bytes(start)
        while True:
            with self._lock:
                rows = self._conn.execute(query, (position, _CHUNK)).fetchall()
            for key, value in rows:
                yield bytes(key), bytes(value)
            if len(rows) < _CHUNK:
                return
            position = bytes(rows[-1][0])
            query = rest

    def iterate_prefix(self, prefix: bytes) -> Iterator[tuple[bytes, bytes]]:
        """Yield the pairs whose key starts with prefix, in ascending order."""
        prefix = bytes(prefix)
        for key, value in self.iterate(prefix, Direction.FORWARD):
            if not key.startswith(prefix):
                return
            yield key, value

    def close(self) -> None:
        with self._lock:
            self._conn.close()