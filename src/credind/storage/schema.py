"""
schema.py
---------

Table definitions for the materialized view.

Each table maps one row dataclass from `credind.core.models` to a DuckDB
table. Column types are derived from the dataclass annotations; uint256
columns (expirations, costs, coin types) are stored as decimal VARCHAR so
values above 2**63 survive the round trip.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from credind.core.models import (
    Admission,
    AddressRecord,
    Approval,
    ChainCheckpoint,
    ContractMetadataEntry,
    Credential,
    CredentialTransfer,
    Renewal,
    Resolver,
    ResolverTransfer,
    TextRecord,
)

CREDENTIALS = "credentials"
RESOLVERS = "resolvers"
TEXT_RECORDS = "text_records"
ADDRESS_RECORDS = "address_records"
CONTRACT_METADATA = "contract_metadata"
CREDENTIAL_TRANSFERS = "credential_transfers"
RESOLVER_TRANSFERS = "resolver_transfers"
RENEWALS = "renewals"
APPROVALS = "approvals"
ADMISSIONS = "admissions"
CHECKPOINTS = "checkpoints"

_SQL_TYPES = {
    "int": "BIGINT",
    "str": "VARCHAR",
    "bool": "BOOLEAN",
    "AdmissionSource": "VARCHAR",
}


@dataclass(frozen=True)
class TableSpec:
    name: str
    row_type: type
    primary_key: tuple[str, ...]
    uint256: tuple[str, ...] = ()

    @property
    def columns(self) -> list[str]:
        return [f.name for f in fields(self.row_type)]

    @property
    def value_columns(self) -> list[str]:
        return [c for c in self.columns if c not in self.primary_key]

    def sql_type(self, column: str) -> str:
        if column in self.uint256:
            return "VARCHAR"
        annotation = next(f.type for f in fields(self.row_type) if f.name == column)
        base = str(annotation).split("|")[0].strip()
        return _SQL_TYPES[base]

    def create_sql(self) -> str:
        cols = []
        for c in self.columns:
            not_null = " NOT NULL" if c in self.primary_key else ""
            cols.append(f"  {c} {self.sql_type(c)}{not_null}")
        cols.append(f"  PRIMARY KEY ({', '.join(self.primary_key)})")
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n" + ",\n".join(cols) + "\n);"

    # ---- python <-> sql values ----

    def to_sql_value(self, column: str, value: Any) -> Any:
        if column in self.uint256 and value is not None:
            return str(int(value))
        return value

    def from_sql_value(self, column: str, value: Any) -> Any:
        if column in self.uint256 and value is not None:
            return int(value)
        return value

    def to_params(self, row: Any) -> list[Any]:
        return [self.to_sql_value(c, getattr(row, c)) for c in self.columns]

    def key_params(self, key: tuple[Any, ...]) -> list[Any]:
        if len(key) != len(self.primary_key):
            raise ValueError(f"{self.name} key must have {len(self.primary_key)} parts, got {key!r}")
        return [self.to_sql_value(c, v) for c, v in zip(self.primary_key, key)]

    def row_key(self, row: Any) -> tuple[Any, ...]:
        return tuple(getattr(row, c) for c in self.primary_key)

    def from_tuple(self, values: tuple[Any, ...]) -> Any:
        kwargs = {c: self.from_sql_value(c, v) for c, v in zip(self.columns, values)}
        return self.row_type(**kwargs)


TABLES: dict[str, TableSpec] = {
    spec.name: spec
    for spec in (
        TableSpec(CREDENTIALS, Credential, ("chain_id", "labelhash"), ("expiration", "registration_cost")),
        TableSpec(RESOLVERS, Resolver, ("chain_id", "address")),
        TableSpec(TEXT_RECORDS, TextRecord, ("chain_id", "resolver_address", "key")),
        TableSpec(ADDRESS_RECORDS, AddressRecord, ("chain_id", "resolver_address", "coin_type"), ("coin_type",)),
        TableSpec(CONTRACT_METADATA, ContractMetadataEntry, ("chain_id", "contract_address", "key")),
        TableSpec(
            CREDENTIAL_TRANSFERS, CredentialTransfer, ("chain_id", "labelhash", "block_number", "log_index")
        ),
        TableSpec(
            RESOLVER_TRANSFERS,
            ResolverTransfer,
            ("chain_id", "resolver_address", "block_number", "log_index"),
        ),
        TableSpec(
            RENEWALS,
            Renewal,
            ("chain_id", "label_topic", "block_number", "log_index"),
            ("cost", "new_expiration"),
        ),
        TableSpec(APPROVALS, Approval, ("chain_id", "owner", "operator")),
        TableSpec(ADMISSIONS, Admission, ("chain_id", "address")),
        TableSpec(CHECKPOINTS, ChainCheckpoint, ("chain_id",)),
    )
}


def get_table(name: str) -> TableSpec:
    try:
        return TABLES[name]
    except KeyError:
        raise ValueError(f"unknown table: {name}") from None
