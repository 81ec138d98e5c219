"""Core data models, configuration, keys and use cases.

This package provides:
- Data models (EventLog, NormalizedEvent, Credential, Resolver, record rows)
- Configuration classes (ChainConfig, IndexerConfig, ApiConfig)
- Key derivation and derived-field helpers
- Domain interfaces (logs provider, manifest, entity store, contract reader)
"""

from credind.core.config import ApiConfig, ChainConfig, IndexerConfig
from credind.core.derived import is_expired
from credind.core.models import (
    ChunkRecord,
    Credential,
    EventLog,
    Meta,
    NormalizedEvent,
    Provenance,
    Resolver,
)

__all__ = [
    "ApiConfig",
    "ChainConfig",
    "IndexerConfig",
    "is_expired",
    "ChunkRecord",
    "Credential",
    "EventLog",
    "Meta",
    "NormalizedEvent",
    "Provenance",
    "Resolver",
]
