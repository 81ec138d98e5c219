"""Parquet snapshot of every materialized table."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from pathlib import Path

import pyarrow as pa
import pyarrow.parquet as pq

from credind.core.interfaces import IEntityStore
from credind.storage.schema import TABLES, TableSpec

logger = logging.getLogger(__name__)

_ARROW_TYPES = {
    "BIGINT": pa.int64(),
    "VARCHAR": pa.string(),
    "BOOLEAN": pa.bool_(),
}


def arrow_schema(spec: TableSpec) -> pa.Schema:
    return pa.schema([pa.field(c, _ARROW_TYPES[spec.sql_type(c)]) for c in spec.columns])


def table_to_arrow(store: IEntityStore, spec: TableSpec) -> pa.Table:
    """Materialize one table; uint256 columns become decimal strings."""
    rows = [
        {c: spec.to_sql_value(c, v) for c, v in asdict(row).items()}
        for row in store.scan(spec.name)
    ]
    return pa.Table.from_pylist(rows, schema=arrow_schema(spec))


def _atomic_write(out_path: Path, table: pa.Table, codec: str) -> Path:
    """Write Parquet atomically (tmp + replace)."""
    tmp = out_path.with_suffix(".tmp")
    pq.write_table(table, tmp, compression=codec)
    os.replace(tmp, out_path)
    logger.info("wrote %s (rows=%d, cols=%d)", out_path, len(table), len(table.schema))
    return out_path


def export_snapshot(store: IEntityStore, out_dir: Path, *, codec: str = "zstd") -> dict[str, Path]:
    """Write one `<table>.parquet` per table into `out_dir` (empty tables included)."""
    out_dir.mkdir(parents=True, exist_ok=True)
    written: dict[str, Path] = {}
    for name, spec in TABLES.items():
        written[name] = _atomic_write(out_dir / f"{name}.parquet", table_to_arrow(store, spec), codec)
    return written
