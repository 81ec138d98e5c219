from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, List, Protocol, TypeVar, runtime_checkable

from credind.core.models import ChunkRecord, EventLog

Row = TypeVar("Row")


# ---------------------------------------------------------------------------
# IEvmLogsProvider
# ---------------------------------------------------------------------------

@runtime_checkable
class IEvmLogsProvider(Protocol):
    """
    Abstract provider for fetching EVM logs.

    Domain expectations:
    - It returns EventLog objects already mapped into internal domain models.
    - It hides the underlying RPC / DB / archive technology.
    - Logs within one call are complete for the requested range; ordering is
      restored by the caller.
    """

    async def get_logs(
        self,
        *,
        addresses: Sequence[str] | None,
        topic0s: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> List[EventLog]:
        """
        Return all logs matching (addresses, topic0s) over the inclusive block range.

        `addresses=None` matches any emitter; this is how logs from contracts
        discovered at runtime are collected.
        """
        ...

    async def latest_block(self) -> int:
        """Return the current chain head height."""
        ...

    async def block_timestamp(self, block_number: int) -> int:
        """Return the timestamp of a block (used when logs omit it)."""
        ...


# ---------------------------------------------------------------------------
# IManifestRepository
# ---------------------------------------------------------------------------

@runtime_checkable
class IManifestRepository(Protocol):
    """
    Append-only manifest repository for chunk status tracking.

    Domain expectations:
    - The manifest acts as an append-only journal.
    - Reading / aggregating coverage is an application-level responsibility.
    """

    async def append(self, record: ChunkRecord) -> None:
        """Append a new ChunkRecord (started/done/failed)."""
        ...


# ---------------------------------------------------------------------------
# IEntityStore
# ---------------------------------------------------------------------------

@runtime_checkable
class IEntityStore(Protocol):
    """
    Typed tables with primary-key upsert semantics.

    Domain expectations:
    - Every call is atomic on its own; no partial write is ever visible.
    - Keys are tuples in the column order of the table's primary key.
    - `scan` is unordered; callers sort and filter further.
    """

    def find(self, table: str, key: tuple[Any, ...]) -> Any | None:
        """Point lookup by primary key."""
        ...

    def scan(self, table: str, predicate: Callable[[Any], bool] | None = None) -> list[Any]:
        """Full-table scan, optionally filtered by a row predicate."""
        ...

    def upsert(
        self,
        table: str,
        key: tuple[Any, ...],
        insert: Row,
        update: Callable[[Row], Row],
    ) -> Row:
        """Insert `insert` if no row exists at `key`, else persist `update(existing)`."""
        ...

    def update(self, table: str, key: tuple[Any, ...], update: Callable[[Row], Row]) -> Row | None:
        """Persist `update(existing)` if a row exists at `key`; return None otherwise."""
        ...

    def insert_ignore(self, table: str, row: Any) -> bool:
        """Insert a row unless its key already exists; return whether it was inserted."""
        ...

    def count(self, table: str) -> int:
        """Number of rows in a table."""
        ...


# ---------------------------------------------------------------------------
# IContractReader
# ---------------------------------------------------------------------------

@runtime_checkable
class IContractReader(Protocol):
    """
    Best-effort view-function reads used to enrich events.

    Domain expectations:
    - A single fallible operation: any failure (transport, timeout, revert,
      undecodable output) yields None and is never raised.
    - Reads are bounded by a timeout so they never stall ordered application.
    """

    async def read(
        self,
        *,
        chain_id: int,
        address: str,
        signature: str,
        args: Sequence[Any] = (),
        returns: str,
        block_number: int | None = None,
    ) -> Any | None:
        """
        Call `signature` (e.g. "getLabel(bytes32)") on `address` and decode a
        single return value of ABI type `returns`.

        `block_number` pins the call to the state at that block so that a
        replay of the same event reads the same value.
        """
        ...
