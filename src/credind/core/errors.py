"""Exception hierarchy shared by the indexer, the store and the read API."""

from __future__ import annotations


class CredindError(Exception):
    """Base class for all credind errors."""


class ConfigError(CredindError):
    """Missing or invalid configuration detected at startup."""


class RpcError(CredindError):
    """JSON-RPC error object or malformed node response."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class StoreError(CredindError):
    """Storage fault surfaced by the entity store."""


class NotFoundError(CredindError):
    """A read-side lookup targeted an entity that is not materialized."""
