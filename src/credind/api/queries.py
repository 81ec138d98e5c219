"""
queries.py
----------

Read-side queries over the materialized tables.

Each method scans the entity store, filters and sorts in Python and returns
JSON-ready dicts (camelCase keys, uint256 values as decimal strings). Joins
across tables are not snapshot-consistent; a credential and its resolver
may be observed at slightly different points of indexing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from credind.core.config import ApiConfig
from credind.core.derived import is_expired
from credind.core.errors import NotFoundError
from credind.core.interfaces import IEntityStore
from credind.core.keys import credential_key, normalize_hex, resolver_key
from credind.core.models import Credential, Resolver
from credind.storage.schema import (
    ADDRESS_RECORDS,
    CHECKPOINTS,
    CONTRACT_METADATA,
    CREDENTIAL_TRANSFERS,
    CREDENTIALS,
    RENEWALS,
    RESOLVER_TRANSFERS,
    RESOLVERS,
    TEXT_RECORDS,
)

logger = logging.getLogger(__name__)

BY_OWNER_DEFAULT_LIMIT = 100
BY_OWNER_MAX_LIMIT = 1000
CREDENTIAL_TRANSFER_HISTORY = 20
CREDENTIAL_RENEWAL_HISTORY = 10
RESOLVER_TRANSFER_HISTORY = 20


# =====================================================================
# Helpers
# =====================================================================


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def try_decode_hex(value: str) -> str:
    """Decode 0x-hex bytes as UTF-8 text when the result is mostly printable.

    NULs are stripped; if 80% or fewer of the decoded characters are
    printable ASCII the raw hex is returned unchanged.
    """
    if not value or not value.startswith("0x"):
        return value
    try:
        raw = bytes.fromhex(value[2:])
    except ValueError:
        return value
    decoded = raw.decode("utf-8", errors="replace").replace("\x00", "")
    if not decoded:
        return decoded
    printable = sum(1 for ch in decoded if 32 <= ord(ch) < 127)
    return decoded if printable / len(decoded) > 0.8 else value


def _group_by_chain(rows: list[Any]) -> dict[str, int]:
    out: dict[str, int] = {}
    for row in rows:
        name = row.chain_name or "unknown"
        out[name] = out.get(name, 0) + 1
    return out


def _block_ref(block: int, timestamp: int, tx_hash: str | None = None) -> dict[str, str]:
    ref = {"block": str(block), "timestamp": str(timestamp)}
    if tx_hash is not None:
        ref["txHash"] = tx_hash
    return ref


def _str_or_none(value: int | None) -> str | None:
    return None if value is None else str(value)


def clamp_limit(limit: int | None, default: int, maximum: int) -> int:
    if limit is None:
        return default
    return max(0, min(int(limit), maximum))


# =====================================================================
# Read service
# =====================================================================


class ReadService:
    """Query boundary of the materialized view."""

    def __init__(self, store: IEntityStore, config: ApiConfig | None = None) -> None:
        self.store = store
        self.config = config or ApiConfig()

    # ---------- derived fields ----------

    def _observed_time(self, chain_id: int) -> int | None:
        checkpoint = self.store.find(CHECKPOINTS, (chain_id,))
        return checkpoint.timestamp if checkpoint is not None else None

    def _is_expired(self, cred: Credential, observed: dict[int, int | None]) -> bool:
        """Expiry at the chain's last applied block; the stored value without a checkpoint."""
        if cred.chain_id not in observed:
            observed[cred.chain_id] = self._observed_time(cred.chain_id)
        ts = observed[cred.chain_id]
        if ts is None:
            return cred.is_expired
        return is_expired(cred.expiration, max(ts, cred.last_update_timestamp))

    # ---------- serializers ----------

    def _credential_json(self, cred: Credential, observed: dict[int, int | None]) -> dict[str, Any]:
        return {
            "labelhash": cred.labelhash,
            "label": cred.label,
            "fullName": cred.full_name,
            "chainId": cred.chain_id,
            "chainName": cred.chain_name,
            "owner": cred.owner,
            "resolverAddress": cred.resolver_address,
            "resolverUpdatedAt": _str_or_none(cred.resolver_updated_at),
            "review": cred.review,
            "expiration": str(cred.expiration),
            "isExpired": self._is_expired(cred, observed),
            "registeredAt": _block_ref(cred.registered_block, cred.registered_timestamp, cred.registered_tx_hash),
        }

    @staticmethod
    def _resolver_json(r: Resolver) -> dict[str, Any]:
        return {
            "address": r.address,
            "chainId": r.chain_id,
            "chainName": r.chain_name,
            "owner": r.owner,
            "labelhash": r.labelhash,
            "label": r.label,
            "ethAddress": r.eth_address,
            "contenthash": r.contenthash,
            "admittedBy": r.admitted_by,
            "deployedAt": _block_ref(r.deployed_block, r.deployed_timestamp, r.deployed_tx_hash),
        }

    # ---------- health / stats ----------

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": now_iso(),
            "service": "credind",
            "stats": {
                "credentials": self.store.count(CREDENTIALS),
                "resolvers": self.store.count(RESOLVERS),
            },
        }

    def stats(self) -> dict[str, Any]:
        credentials = self.store.scan(CREDENTIALS)
        resolvers = self.store.scan(RESOLVERS)
        observed: dict[int, int | None] = {}
        expired = sum(1 for c in credentials if self._is_expired(c, observed))
        return {
            "credentials": {
                "total": len(credentials),
                "active": len(credentials) - expired,
                "expired": expired,
                "uniqueOwners": len({c.owner for c in credentials}),
                "byChain": _group_by_chain(credentials),
            },
            "resolvers": {
                "total": len(resolvers),
                "uniqueOwners": len({r.owner for r in resolvers}),
                "byChain": _group_by_chain(resolvers),
            },
            "metadata": {
                "totalContractMetadataEntries": self.store.count(CONTRACT_METADATA),
                "totalTextRecords": self.store.count(TEXT_RECORDS),
            },
            "timestamp": now_iso(),
        }

    # ---------- credentials ----------

    def list_credentials(
        self,
        *,
        chain_id: int | None = None,
        expired: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> dict[str, Any]:
        limit = clamp_limit(limit, self.config.default_limit, self.config.max_limit)
        observed: dict[int, int | None] = {}
        rows = self.store.scan(CREDENTIALS, lambda c: chain_id is None or c.chain_id == chain_id)
        if expired is not None:
            rows = [c for c in rows if self._is_expired(c, observed) == expired]
        rows.sort(key=lambda c: c.registered_timestamp, reverse=True)
        page = rows[offset : offset + limit]
        return {
            "credentials": [self._credential_json(c, observed) for c in page],
            "pagination": {"limit": limit, "offset": offset, "total": len(rows)},
            "timestamp": now_iso(),
        }

    def credential_by_label(self, label: str, chain_id: int | None = None) -> dict[str, Any]:
        wanted = label.lower()
        rows = self.store.scan(
            CREDENTIALS,
            lambda c: c.label is not None
            and c.label.lower() == wanted
            and (chain_id is None or c.chain_id == chain_id),
        )
        if not rows:
            raise NotFoundError("Credential not found")
        cred = min(rows, key=lambda c: (c.chain_id, c.registered_block))
        return {**self._credential_json(cred, {}), "timestamp": now_iso()}

    def credentials_by_owner(
        self,
        owner: str,
        *,
        chain_id: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> dict[str, Any]:
        owner = owner.lower()
        limit = clamp_limit(limit, BY_OWNER_DEFAULT_LIMIT, BY_OWNER_MAX_LIMIT)
        rows = self.store.scan(
            CREDENTIALS, lambda c: c.owner == owner and (chain_id is None or c.chain_id == chain_id),
        )
        rows.sort(key=lambda c: c.registered_timestamp, reverse=True)
        observed: dict[int, int | None] = {}
        page = []
        for c in rows[offset : offset + limit]:
            full = self._credential_json(c, observed)
            page.append({k: v for k, v in full.items() if k not in ("owner", "resolverUpdatedAt", "review")})
        return {
            "owner": owner,
            "credentials": page,
            "pagination": {"limit": limit, "offset": offset, "total": len(rows)},
            "timestamp": now_iso(),
        }

    def credential(self, chain_id: int, labelhash: str) -> dict[str, Any]:
        key = credential_key(chain_id, labelhash)
        cred = self.store.find(CREDENTIALS, key)
        if cred is None:
            raise NotFoundError("Credential not found")
        _, labelhash = key

        transfers = self.store.scan(
            CREDENTIAL_TRANSFERS, lambda t: t.chain_id == chain_id and t.labelhash == labelhash,
        )
        transfers.sort(key=lambda t: (t.block_number, t.log_index), reverse=True)
        renewals = self.store.scan(RENEWALS, lambda r: r.chain_id == chain_id and r.labelhash == labelhash)
        renewals.sort(key=lambda r: (r.block_number, r.log_index), reverse=True)

        return {
            **self._credential_json(cred, {}),
            "registrationCost": _str_or_none(cred.registration_cost),
            "transferHistory": [
                {"newOwner": t.new_owner, **_block_ref(t.block_number, t.timestamp, t.tx_hash)}
                for t in transfers[:CREDENTIAL_TRANSFER_HISTORY]
            ],
            "renewalHistory": [
                {
                    "cost": str(r.cost),
                    "newExpiration": str(r.new_expiration),
                    **_block_ref(r.block_number, r.timestamp, r.tx_hash),
                }
                for r in renewals[:CREDENTIAL_RENEWAL_HISTORY]
            ],
            "timestamp": now_iso(),
        }

    def credential_metadata(self, chain_id: int, labelhash: str) -> dict[str, Any]:
        cred = self.store.find(CREDENTIALS, credential_key(chain_id, labelhash))
        if cred is None:
            raise NotFoundError("Credential not found")
        resolver_metadata: dict[str, str] = {}
        if cred.resolver_address:
            for m in self.store.scan(
                CONTRACT_METADATA,
                lambda m: m.chain_id == chain_id and m.contract_address == cred.resolver_address,
            ):
                resolver_metadata[m.key] = try_decode_hex(m.value)
        expiration_date = (
            datetime.fromtimestamp(cred.expiration, tz=timezone.utc).isoformat() if cred.expiration else None
        )
        return {
            "label": cred.label,
            "fullName": cred.full_name,
            "owner": cred.owner,
            "resolverAddress": cred.resolver_address,
            "review": cred.review,
            "expiration": str(cred.expiration),
            "expirationDate": expiration_date,
            "isExpired": self._is_expired(cred, {}),
            **resolver_metadata,
        }

    # ---------- resolvers ----------

    def list_resolvers(
        self,
        *,
        chain_id: int | None = None,
        owner: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> dict[str, Any]:
        limit = clamp_limit(limit, self.config.default_limit, self.config.max_limit)
        owner_lc = owner.lower() if owner else None
        rows = self.store.scan(
            RESOLVERS,
            lambda r: (chain_id is None or r.chain_id == chain_id) and (owner_lc is None or r.owner == owner_lc),
        )
        rows.sort(key=lambda r: r.deployed_timestamp, reverse=True)
        return {
            "resolvers": [self._resolver_json(r) for r in rows[offset : offset + limit]],
            "pagination": {"limit": limit, "offset": offset, "total": len(rows)},
            "timestamp": now_iso(),
        }

    def resolver(self, chain_id: int, address: str) -> dict[str, Any]:
        key = resolver_key(chain_id, address)
        r = self.store.find(RESOLVERS, key)
        if r is None:
            raise NotFoundError("Resolver not found")
        _, address = key

        texts = self.store.scan(TEXT_RECORDS, lambda t: t.chain_id == chain_id and t.resolver_address == address)
        metadata = self.store.scan(
            CONTRACT_METADATA, lambda m: m.chain_id == chain_id and m.contract_address == address,
        )
        addresses = self.store.scan(
            ADDRESS_RECORDS, lambda a: a.chain_id == chain_id and a.resolver_address == address,
        )
        transfers = self.store.scan(
            RESOLVER_TRANSFERS, lambda t: t.chain_id == chain_id and t.resolver_address == address,
        )
        transfers.sort(key=lambda t: (t.block_number, t.log_index), reverse=True)

        return {
            **self._resolver_json(r),
            "textRecords": {t.key: t.value for t in texts},
            "contractMetadata": {m.key: {"value": m.value, "decoded": try_decode_hex(m.value)} for m in metadata},
            "addressRecords": {str(a.coin_type): a.address for a in addresses},
            "transferHistory": [
                {
                    "previousOwner": t.previous_owner,
                    "newOwner": t.new_owner,
                    **_block_ref(t.block_number, t.timestamp, t.tx_hash),
                }
                for t in transfers[:RESOLVER_TRANSFER_HISTORY]
            ],
            "timestamp": now_iso(),
        }

    def resolver_info(self, chain_id: int, address: str) -> dict[str, str]:
        """Public summary; unknown addresses yield empty strings instead of an error."""
        try:
            address = normalize_hex(address)
        except ValueError:
            return {"label": "", "resolverUpdated": "0", "review": ""}
        r = self.store.find(RESOLVERS, (chain_id, address))
        pointing = self.store.scan(
            CREDENTIALS, lambda c: c.chain_id == chain_id and c.resolver_address == address,
        )
        cred = max(pointing, key=lambda c: c.resolver_updated_at or 0) if pointing else None
        label = (cred.label if cred is not None else None) or (r.label if r is not None else None)
        return {
            "label": label or "",
            "resolverUpdated": str(cred.resolver_updated_at or 0) if cred is not None else "0",
            "review": (cred.review or "") if cred is not None else "",
        }

    def text_records(self, chain_id: int, address: str) -> dict[str, Any]:
        address = normalize_hex(address)
        texts = self.store.scan(TEXT_RECORDS, lambda t: t.chain_id == chain_id and t.resolver_address == address)
        texts.sort(key=lambda t: t.key)
        return {
            "resolverAddress": address,
            "chainId": chain_id,
            "textRecords": [
                {
                    "key": t.key,
                    "value": t.value,
                    "keyHash": t.key_hash,
                    "keyResolved": t.key_resolved,
                    "setAt": _block_ref(t.set_block, t.set_timestamp, t.set_tx_hash),
                    "lastUpdate": _block_ref(t.last_update_block, t.last_update_timestamp),
                }
                for t in texts
            ],
            "total": len(texts),
            "timestamp": now_iso(),
        }

    def contract_metadata(self, chain_id: int, address: str) -> dict[str, Any]:
        address = normalize_hex(address)
        metadata = self.store.scan(
            CONTRACT_METADATA, lambda m: m.chain_id == chain_id and m.contract_address == address,
        )
        metadata.sort(key=lambda m: m.key)
        return {
            "contractAddress": address,
            "chainId": chain_id,
            "metadata": [
                {
                    "key": m.key,
                    "value": m.value,
                    "decoded": try_decode_hex(m.value),
                    "setAt": _block_ref(m.set_block, m.set_timestamp, m.set_tx_hash),
                    "lastUpdate": _block_ref(m.last_update_block, m.last_update_timestamp),
                }
                for m in metadata
            ],
            "total": len(metadata),
            "timestamp": now_iso(),
        }
