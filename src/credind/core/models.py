"""Core data models: raw logs, normalized events and materialized rows.

This module defines:
- `EventLog` / `Meta`: raw RPC log and the per-log metadata used by the decoder.
- `ChunkRecord`: manifest entry used for resumability and coverage.
- `Provenance` / `NormalizedEvent`: decoded event ready for reconciliation.
- Row types for every materialized table (credentials, resolvers, records,
  history and approvals) plus the admission ledger and chain checkpoints.

Design notes
------------
- Addresses and hashes are always stored lower-cased with a 0x prefix.
- uint256 values (expirations, costs, coin types) stay Python ints; the store
  persists them as decimal strings.
- History rows are keyed by (chain, entity, block, log index) only, so
  redelivery of the same log never produces a second row.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

Status = Literal["started", "done", "failed"]

EventKind = Literal[
    "label-claimed",
    "credential-transferred",
    "resolver-changed",
    "review-updated",
    "expiration-extended",
    "expiration-set",
    "approval-for-all",
    "name-registered",
    "name-renewed",
    "clone-deployed",
    "eth-address-changed",
    "address-changed",
    "content-hash-changed",
    "text-changed",
    "contract-metadata-updated",
    "resolver-ownership-transferred",
]

AdmissionSource = Literal["factory", "registry"]


# === RPC record ===


@dataclass(slots=True, frozen=True)
class EventLog:
    """Raw log as fetched from RPC, minimally normalized."""

    address: str  # lowercased 0x...
    topics: tuple[str, ...]  # lowercased 0x...
    data_hex: str  # "0x..."
    block_number: int
    tx_hash: str  # lowercased 0x...
    log_index: int
    block_timestamp: int | None = None


@dataclass(slots=True)
class Meta:
    """Lightweight metadata for a single log used during decoding."""

    block_number: int
    block_timestamp: int | None
    tx_hash: str
    log_index: int
    address: str


# === Manifest record ===


@dataclass(slots=True)
class ChunkRecord:
    """A single chunk execution record persisted to the live manifest."""

    chain_id: int
    from_block: int
    to_block: int
    status: Status
    attempts: int
    error: str | None
    logs: int  # raw logs fetched
    decoded: int  # logs matched by a registry
    applied: int  # events that mutated the store
    discarded: int  # unadmitted or unmatched events
    failed_events: int
    updated_at: float

    def to_json_line(self) -> str:
        """Serialize as a compact JSON line."""
        return json.dumps(asdict(self), separators=(",", ":")) + "\n"


# === Normalized events ===


@dataclass(slots=True, frozen=True)
class Provenance:
    """Where and when a fact was observed."""

    block_number: int
    timestamp: int
    tx_hash: str
    log_index: int


@dataclass(slots=True)
class NormalizedEvent:
    """Decoded event with its target row key and the fields it governs.

    `payload` only carries the fields the event actually knows about. A field
    missing from the payload (e.g. a failed best-effort read) is left untouched
    on update and defaulted on insert.
    """

    kind: EventKind
    chain_id: int
    contract: str
    provenance: Provenance
    key: tuple[Any, ...]
    payload: dict[str, Any] = field(default_factory=dict)
    key_resolved: bool = True


# === Materialized rows ===


@dataclass(slots=True)
class Credential:
    chain_id: int
    labelhash: str
    chain_name: str
    label: str | None
    full_name: str | None
    owner: str
    resolver_address: str | None
    resolver_updated_at: int | None
    review: str | None
    expiration: int
    is_expired: bool
    registration_cost: int | None
    registered_block: int
    registered_timestamp: int
    registered_tx_hash: str
    last_update_block: int
    last_update_timestamp: int
    last_update_tx_hash: str


@dataclass(slots=True)
class Resolver:
    chain_id: int
    address: str
    chain_name: str
    owner: str
    labelhash: str | None
    label: str | None
    eth_address: str | None
    contenthash: str | None
    admitted_by: AdmissionSource
    deployed_block: int
    deployed_timestamp: int
    deployed_tx_hash: str
    last_update_block: int
    last_update_timestamp: int
    last_update_tx_hash: str


@dataclass(slots=True)
class TextRecord:
    """Text record; `key_resolved` is False when only the key hash was observed."""

    chain_id: int
    resolver_address: str
    key: str
    value: str
    key_hash: str
    key_resolved: bool
    set_block: int
    set_timestamp: int
    set_tx_hash: str
    last_update_block: int
    last_update_timestamp: int
    last_update_tx_hash: str


@dataclass(slots=True)
class AddressRecord:
    chain_id: int
    resolver_address: str
    coin_type: int
    address: str
    set_block: int
    set_timestamp: int
    set_tx_hash: str
    last_update_block: int
    last_update_timestamp: int
    last_update_tx_hash: str


@dataclass(slots=True)
class ContractMetadataEntry:
    chain_id: int
    contract_address: str
    key: str
    value: str  # 0x-hex bytes
    set_block: int
    set_timestamp: int
    set_tx_hash: str
    last_update_block: int
    last_update_timestamp: int
    last_update_tx_hash: str


@dataclass(slots=True)
class CredentialTransfer:
    chain_id: int
    labelhash: str
    block_number: int
    log_index: int
    new_owner: str
    timestamp: int
    tx_hash: str


@dataclass(slots=True)
class ResolverTransfer:
    chain_id: int
    resolver_address: str
    block_number: int
    log_index: int
    previous_owner: str
    new_owner: str
    timestamp: int
    tx_hash: str


@dataclass(slots=True)
class Renewal:
    """Renewal history row.

    `label_topic` is the indexed label hash as observed in the log. When it
    cannot be matched to a known credential, `labelhash` stays None and the
    row is keyed by the event occurrence only, so one credential may end up
    with several rows that cannot be attributed to it.
    """

    chain_id: int
    label_topic: str
    block_number: int
    log_index: int
    labelhash: str | None
    label: str | None
    label_resolved: bool
    cost: int
    new_expiration: int
    timestamp: int
    tx_hash: str


@dataclass(slots=True)
class Approval:
    chain_id: int
    owner: str
    operator: str
    approved: bool
    set_block: int
    set_timestamp: int
    set_tx_hash: str


@dataclass(slots=True)
class Admission:
    """Entry of the watched-address ledger."""

    chain_id: int
    address: str
    source: AdmissionSource
    labelhash: str | None
    admitted_block: int
    admitted_timestamp: int
    admitted_tx_hash: str


@dataclass(slots=True)
class ChainCheckpoint:
    """Last applied block per chain; its timestamp is the read-side observed time."""

    chain_id: int
    block_number: int
    timestamp: int
