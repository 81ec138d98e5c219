"""DuckDB-backed entity store.

One connection per store; every public call runs in its own transaction
under a re-entrant lock, so the indexer and API threads of one process can
share the store.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import duckdb

from credind.core.errors import StoreError
from credind.storage.schema import TABLES, TableSpec, get_table

logger = logging.getLogger(__name__)

Row = TypeVar("Row")


class DuckDBEntityStore:
    """IEntityStore implementation on a single DuckDB database file."""

    def __init__(self, path: str | Path = ":memory:", *, read_only: bool = False) -> None:
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._con = duckdb.connect(self.path, read_only=read_only)
        except duckdb.Error as e:
            raise StoreError(f"cannot open store at {self.path}: {e}") from e
        self._lock = threading.RLock()
        if not read_only:
            with self._lock:
                for spec in TABLES.values():
                    self._con.execute(spec.create_sql())
        logger.debug("Opened entity store %s (read_only=%s)", self.path, read_only)

    # ---------- transactions ----------

    @contextmanager
    def _transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        with self._lock:
            self._con.begin()
            try:
                yield self._con
            except duckdb.Error as e:
                self._con.rollback()
                raise StoreError(str(e)) from e
            except BaseException:
                self._con.rollback()
                raise
            else:
                self._con.commit()

    # ---------- sql helpers ----------

    @staticmethod
    def _where(spec: TableSpec) -> str:
        return " AND ".join(f"{c} = ?" for c in spec.primary_key)

    def _find(self, con: duckdb.DuckDBPyConnection, spec: TableSpec, key: tuple[Any, ...]) -> Any | None:
        sql = f"SELECT {', '.join(spec.columns)} FROM {spec.name} WHERE {self._where(spec)}"
        found = con.execute(sql, spec.key_params(key)).fetchone()
        return spec.from_tuple(found) if found is not None else None

    def _insert(self, con: duckdb.DuckDBPyConnection, spec: TableSpec, row: Any) -> None:
        placeholders = ", ".join("?" for _ in spec.columns)
        sql = f"INSERT INTO {spec.name} ({', '.join(spec.columns)}) VALUES ({placeholders})"
        con.execute(sql, spec.to_params(row))

    def _replace(self, con: duckdb.DuckDBPyConnection, spec: TableSpec, key: tuple[Any, ...], row: Any) -> None:
        if spec.row_key(row) != tuple(key):
            raise ValueError(f"update of {spec.name} must not change the primary key {key!r}")
        cols = spec.value_columns
        assignments = ", ".join(f"{c} = ?" for c in cols)
        params = [spec.to_sql_value(c, getattr(row, c)) for c in cols] + spec.key_params(key)
        con.execute(f"UPDATE {spec.name} SET {assignments} WHERE {self._where(spec)}", params)

    # ---------- IEntityStore ----------

    def find(self, table: str, key: tuple[Any, ...]) -> Any | None:
        spec = get_table(table)
        with self._transaction() as con:
            return self._find(con, spec, key)

    def scan(self, table: str, predicate: Callable[[Any], bool] | None = None) -> list[Any]:
        spec = get_table(table)
        with self._transaction() as con:
            rows = con.execute(f"SELECT {', '.join(spec.columns)} FROM {spec.name}").fetchall()
        out = [spec.from_tuple(r) for r in rows]
        if predicate is None:
            return out
        return [r for r in out if predicate(r)]

    def upsert(self, table: str, key: tuple[Any, ...], insert: Row, update: Callable[[Row], Row]) -> Row:
        spec = get_table(table)
        with self._transaction() as con:
            existing = self._find(con, spec, key)
            if existing is None:
                if spec.row_key(insert) != tuple(key):
                    raise ValueError(f"insert row does not match key {key!r}")
                self._insert(con, spec, insert)
                return insert
            new = update(existing)
            self._replace(con, spec, key, new)
            return new

    def update(self, table: str, key: tuple[Any, ...], update: Callable[[Row], Row]) -> Row | None:
        spec = get_table(table)
        with self._transaction() as con:
            existing = self._find(con, spec, key)
            if existing is None:
                return None
            new = update(existing)
            self._replace(con, spec, key, new)
            return new

    def insert_ignore(self, table: str, row: Any) -> bool:
        spec = get_table(table)
        with self._transaction() as con:
            if self._find(con, spec, spec.row_key(row)) is not None:
                return False
            self._insert(con, spec, row)
            return True

    def count(self, table: str) -> int:
        spec = get_table(table)
        with self._transaction() as con:
            (n,) = con.execute(f"SELECT count(*) FROM {spec.name}").fetchone()
        return int(n)

    def close(self) -> None:
        with self._lock:
            self._con.close()
