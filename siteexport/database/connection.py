"""Database connection management."""

import sqlite3
from pathlib import Path
from typing import Self


class Database:
    """SQLite connection wrapper with context manager support.

    The exported database is opened read-only; text that is not valid
    UTF-8 is passed through with surrogateescape instead of failing the dump.
    """

    def __init__(self, db_path: Path, read_only: bool = True):
        self.db_path = db_path
        self.read_only = read_only
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        if self._conn is None:
            if self.read_only:
                uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
                self._conn = sqlite3.connect(uri, uri=True)
            else:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.text_factory = _decode_text
        return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    @property
    def name(self) -> str:
        return self.db_path.name

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Self:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _decode_text(value: bytes) -> str:
    return value.decode("utf-8", "surrogateescape")
