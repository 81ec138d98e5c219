"""Storage components: entity store, manifest tracking and Parquet export.

This package provides:
- DuckDBEntityStore: typed tables with primary-key upsert semantics
- LiveManifest: append-only manifest writer for chunk status tracking
- export_snapshot: Parquet snapshot of every table
"""

from credind.storage.entity_store import DuckDBEntityStore
from credind.storage.export import export_snapshot
from credind.storage.manifest import LiveManifest

__all__ = [
    "DuckDBEntityStore",
    "LiveManifest",
    "export_snapshot",
]
