from __future__ import annotations

import os
import threading
from collections.abc import Sequence
from typing import Any

import duckdb

from .schema import create_schema


class DuckDBAdapter:
    """
    DuckDB persistence adapter. Owns the connection and schema.

    A DuckDB connection must not be used from two threads at once: every
    statement goes through fetchone() / fetchall(), which hold a re-entrant
    lock for the statement and its fetch.
    """

    def __init__(self, path: str, *, clean_slate: bool = False, read_only: bool = False) -> None:
        self.path = path
        self.clean_slate = clean_slate
        self.read_only = read_only
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._lock = threading.RLock()

    def open(self) -> None:
        if self.read_only:
            self._conn = duckdb.connect(self.path, read_only=True)
            return

        if self.clean_slate and os.path.exists(self.path):
            os.remove(self.path)

        # Ensure parent dir exists
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        self._conn = duckdb.connect(self.path)
        create_schema(self._conn)

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("DuckDBAdapter not opened. Call open() first.")
        return self._conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> tuple | None:
        with self._lock:
            return self.conn.execute(sql, list(params)).fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        with self._lock:
            return self.conn.execute(sql, list(params)).fetchall()
