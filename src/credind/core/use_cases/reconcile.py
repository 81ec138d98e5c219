"""Reconciliation engine: normalized events → idempotent store mutations.

Every handler is an upsert (insert-if-absent, else merge the fields the event
governs) or an insert-ignore for history rows, followed by the cross-entity
propagation the event implies:

- ResolverChanged moves a credential pointer and refreshes the backlink of
  the resolver it now points to (and clears the one it left).
- A new Resolver row adopts the credential already pointing at it.
- Events from resolver-shaped contracts are only applied for admitted
  addresses; anything else is discarded without side effects.

Events of one chain must be applied one at a time in (block, log index)
order; the engine never reorders or buffers.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from credind.core.config import ChainConfig
from credind.core.constants import ETH_COIN_TYPE, ZERO_ADDRESS
from credind.core.derived import is_expired
from credind.core.interfaces import IContractReader, IEntityStore
from credind.core.keys import address_or_none, address_record_key, credential_key, resolver_key
from credind.core.models import (
    AddressRecord,
    Approval,
    ContractMetadataEntry,
    Credential,
    CredentialTransfer,
    NormalizedEvent,
    Provenance,
    Renewal,
    Resolver,
    ResolverTransfer,
    TextRecord,
)
from credind.core.use_cases.admission import DynamicRegistry
from credind.core.use_cases.normalize import EventNormalizer
from credind.storage.schema import (
    ADDRESS_RECORDS,
    APPROVALS,
    CONTRACT_METADATA,
    CREDENTIAL_TRANSFERS,
    CREDENTIALS,
    RENEWALS,
    RESOLVER_TRANSFERS,
    RESOLVERS,
    TEXT_RECORDS,
)

logger = logging.getLogger(__name__)

RESOLVER_KINDS = frozenset(
    {
        "eth-address-changed",
        "address-changed",
        "content-hash-changed",
        "text-changed",
        "contract-metadata-updated",
        "resolver-ownership-transferred",
    }
)


def _touch(prov: Provenance) -> dict[str, Any]:
    return {
        "last_update_block": prov.block_number,
        "last_update_timestamp": prov.timestamp,
        "last_update_tx_hash": prov.tx_hash,
    }


def _eth_address_from_bytes(value: str) -> str | None:
    """Coin type 60 values are 20 raw bytes; anything else is not an address."""
    return value if len(value) == 42 else None


class ReconciliationEngine:
    """Applies normalized events of one chain to the entity store."""

    def __init__(
        self,
        chain: ChainConfig,
        store: IEntityStore,
        reader: IContractReader,
        admission: DynamicRegistry | None = None,
        normalizer: EventNormalizer | None = None,
    ) -> None:
        self.chain = chain
        self._store = store
        self._reader = reader
        self.admission = admission or DynamicRegistry(store)
        self._normalizer = normalizer or EventNormalizer(chain, reader, store)

    async def apply(self, ev: NormalizedEvent) -> bool:
        """Apply one event; return True if it was accepted (not discarded or skipped)."""
        if ev.chain_id != self.chain.chain_id:
            raise ValueError(f"event for chain {ev.chain_id} applied to chain {self.chain.chain_id}")
        if ev.kind in RESOLVER_KINDS and not self.admission.is_admitted(ev.chain_id, ev.contract):
            logger.debug("Discarding %s from unadmitted %s", ev.kind, ev.contract)
            return False
        handler = getattr(self, "_apply_" + ev.kind.replace("-", "_"))
        return await handler(ev)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def _update_credential(self, ev: NormalizedEvent, **changes: Any) -> Credential | None:
        """Partial update that also recomputes expiry at the event's block time."""
        prov = ev.provenance

        def _merge(row: Credential) -> Credential:
            merged = replace(row, **changes, **_touch(prov))
            merged.is_expired = is_expired(merged.expiration, prov.timestamp)
            return merged

        updated = self._store.update(CREDENTIALS, ev.key, _merge)
        if updated is None:
            logger.debug("Skipping %s for unknown credential %s", ev.kind, ev.key)
        return updated

    async def _apply_label_claimed(self, ev: NormalizedEvent) -> bool:
        p, prov = ev.payload, ev.provenance
        chain_id, labelhash = ev.key
        expiration = int(p.get("expiration", 0))
        resolver_address = p.get("resolver_address")

        insert = Credential(
            chain_id=chain_id,
            labelhash=labelhash,
            chain_name=self.chain.chain_name,
            label=p.get("label"),
            full_name=p.get("full_name"),
            owner=p["owner"],
            resolver_address=resolver_address,
            resolver_updated_at=prov.timestamp if resolver_address else None,
            review=None,
            expiration=expiration,
            is_expired=is_expired(expiration, prov.timestamp),
            registration_cost=None,
            registered_block=prov.block_number,
            registered_timestamp=prov.timestamp,
            registered_tx_hash=prov.tx_hash,
            last_update_block=prov.block_number,
            last_update_timestamp=prov.timestamp,
            last_update_tx_hash=prov.tx_hash,
        )

        def _merge(row: Credential) -> Credential:
            changes: dict[str, Any] = {"owner": p["owner"], **_touch(prov)}
            for name in ("label", "full_name", "expiration"):
                if name in p:
                    changes[name] = p[name]
            if "resolver_address" in p and p["resolver_address"] != row.resolver_address:
                changes["resolver_address"] = p["resolver_address"]
                changes["resolver_updated_at"] = prov.timestamp
            merged = replace(row, **changes)
            merged.is_expired = is_expired(merged.expiration, prov.timestamp)
            return merged

        cred = self._store.upsert(CREDENTIALS, ev.key, insert, _merge)
        logger.info("Credential %s claimed by %s", labelhash, cred.owner)
        if cred.resolver_address:
            self._set_backlink(chain_id, cred.resolver_address, cred.labelhash, cred.label, prov)
        return True

    async def _apply_credential_transferred(self, ev: NormalizedEvent) -> bool:
        prov = ev.provenance
        chain_id, labelhash = ev.key
        self._store.insert_ignore(
            CREDENTIAL_TRANSFERS,
            CredentialTransfer(
                chain_id=chain_id,
                labelhash=labelhash,
                block_number=prov.block_number,
                log_index=prov.log_index,
                new_owner=ev.payload["owner"],
                timestamp=prov.timestamp,
                tx_hash=prov.tx_hash,
            ),
        )
        self._update_credential(ev, owner=ev.payload["owner"])
        return True

    async def _apply_resolver_changed(self, ev: NormalizedEvent) -> bool:
        prov = ev.provenance
        chain_id, labelhash = ev.key
        new_address: str | None = ev.payload["resolver_address"]

        previous = self._store.find(CREDENTIALS, ev.key)
        if previous is not None:
            changes: dict[str, Any] = {"resolver_address": new_address}
            if new_address != previous.resolver_address:
                changes["resolver_updated_at"] = prov.timestamp
            cred = self._update_credential(ev, **changes)
            old_address = previous.resolver_address
            if old_address and old_address != new_address:
                self._clear_backlink(chain_id, old_address, labelhash, prov)
        else:
            logger.debug("Resolver pointer for unknown credential %s", ev.key)
            cred = None

        if new_address is None:
            return True

        if self.admission.resolver(chain_id, new_address) is not None:
            label = await self._normalizer.read_label(labelhash, prov.block_number)
            if label is None and cred is not None:
                label = cred.label
            self._set_backlink(chain_id, new_address, labelhash, label, prov)
        else:
            self.admission.admit(
                chain_id, new_address, source="registry", provenance=prov, labelhash=labelhash,
            )
        return True

    async def _apply_review_updated(self, ev: NormalizedEvent) -> bool:
        return self._update_credential(ev, review=ev.payload["review"]) is not None

    async def _apply_expiration_extended(self, ev: NormalizedEvent) -> bool:
        return self._update_credential(ev, expiration=int(ev.payload["expiration"])) is not None

    _apply_expiration_set = _apply_expiration_extended

    async def _apply_approval_for_all(self, ev: NormalizedEvent) -> bool:
        prov = ev.provenance
        chain_id, owner, operator = ev.key
        row = Approval(
            chain_id=chain_id,
            owner=owner,
            operator=operator,
            approved=bool(ev.payload["approved"]),
            set_block=prov.block_number,
            set_timestamp=prov.timestamp,
            set_tx_hash=prov.tx_hash,
        )
        self._store.upsert(APPROVALS, ev.key, row, lambda _existing: row)
        return True

    # ------------------------------------------------------------------
    # Registrar
    # ------------------------------------------------------------------

    async def _apply_name_registered(self, ev: NormalizedEvent) -> bool:
        if not ev.key_resolved:
            logger.warning(
                "Skipping registration of unknown label hash %s at block %s",
                ev.payload["label_topic"], ev.provenance.block_number,
            )
            return False
        return self._update_credential(ev, registration_cost=int(ev.payload["cost"])) is not None

    async def _apply_name_renewed(self, ev: NormalizedEvent) -> bool:
        p, prov = ev.payload, ev.provenance
        self._store.insert_ignore(
            RENEWALS,
            Renewal(
                chain_id=ev.chain_id,
                label_topic=p["label_topic"],
                block_number=prov.block_number,
                log_index=prov.log_index,
                labelhash=p.get("labelhash"),
                label=p.get("label"),
                label_resolved=ev.key_resolved,
                cost=int(p["cost"]),
                new_expiration=int(p["new_expiration"]),
                timestamp=prov.timestamp,
                tx_hash=prov.tx_hash,
            ),
        )
        return True

    # ------------------------------------------------------------------
    # Resolvers: admission and backlinks
    # ------------------------------------------------------------------

    def _new_resolver(self, address: str, owner: str, source: str, prov: Provenance) -> Resolver:
        return Resolver(
            chain_id=self.chain.chain_id,
            address=address,
            chain_name=self.chain.chain_name,
            owner=owner,
            labelhash=None,
            label=None,
            eth_address=None,
            contenthash=None,
            admitted_by=source,
            deployed_block=prov.block_number,
            deployed_timestamp=prov.timestamp,
            deployed_tx_hash=prov.tx_hash,
            last_update_block=prov.block_number,
            last_update_timestamp=prov.timestamp,
            last_update_tx_hash=prov.tx_hash,
        )

    def _pointing_credential(self, chain_id: int, address: str) -> Credential | None:
        """Most recent credential whose resolver pointer names `address`."""
        matches = self._store.scan(
            CREDENTIALS, lambda c: c.chain_id == chain_id and c.resolver_address == address,
        )
        if not matches:
            return None
        return max(matches, key=lambda c: (c.resolver_updated_at or 0, c.last_update_block, c.labelhash))

    def _set_backlink(self, chain_id: int, address: str, labelhash: str, label: str | None, prov: Provenance) -> None:
        def _merge(row: Resolver) -> Resolver:
            return replace(row, labelhash=labelhash, label=label if label is not None else row.label, **_touch(prov))

        if self._store.update(RESOLVERS, resolver_key(chain_id, address), _merge) is None:
            logger.debug("Backlink target %s not materialized yet", address)

    def _clear_backlink(self, chain_id: int, address: str, labelhash: str, prov: Provenance) -> None:
        def _merge(row: Resolver) -> Resolver:
            if row.labelhash != labelhash:
                return row
            return replace(row, labelhash=None, label=None, **_touch(prov))

        self._store.update(RESOLVERS, resolver_key(chain_id, address), _merge)

    def _adopt_pointing_credential(self, resolver: Resolver, prov: Provenance) -> None:
        cred = self._pointing_credential(resolver.chain_id, resolver.address)
        if cred is not None and resolver.labelhash is None:
            self._set_backlink(resolver.chain_id, resolver.address, cred.labelhash, cred.label, prov)

    async def _ensure_resolver(self, ev: NormalizedEvent) -> Resolver:
        """Return the Resolver row for an admitted address, materializing it on first use."""
        chain_id, address = ev.chain_id, ev.contract
        existing = self.admission.resolver(chain_id, address)
        if existing is not None:
            return existing

        prov = ev.provenance
        owner = address_or_none(
            await self._reader.read(
                chain_id=chain_id,
                address=address,
                signature="owner()",
                returns="address",
                block_number=prov.block_number,
            )
        )
        if owner is None:
            cred = self._pointing_credential(chain_id, address)
            if cred is None:
                entry = self.admission.lookup(chain_id, address)
                if entry is not None and entry.labelhash:
                    cred = self._store.find(CREDENTIALS, credential_key(chain_id, entry.labelhash))
            owner = cred.owner if cred is not None else ZERO_ADDRESS

        row = self._new_resolver(address, owner, "registry", prov)
        resolver = self._store.upsert(RESOLVERS, (chain_id, address), row, lambda r: r)
        logger.info("Materialized registry-admitted resolver %s on chain %s", address, chain_id)
        self._adopt_pointing_credential(resolver, prov)
        return self.admission.resolver(chain_id, address) or resolver

    async def _apply_clone_deployed(self, ev: NormalizedEvent) -> bool:
        prov = ev.provenance
        chain_id, address = ev.key
        self.admission.admit(chain_id, address, source="factory", provenance=prov)
        row = self._new_resolver(address, ev.payload["owner"], "factory", prov)
        resolver = self._store.upsert(RESOLVERS, ev.key, row, lambda r: r)
        self._adopt_pointing_credential(resolver, prov)
        return True

    # ------------------------------------------------------------------
    # Resolver instance events
    # ------------------------------------------------------------------

    def _update_resolver(self, ev: NormalizedEvent, **changes: Any) -> None:
        prov = ev.provenance
        self._store.update(
            RESOLVERS,
            resolver_key(ev.chain_id, ev.contract),
            lambda row: replace(row, **changes, **_touch(prov)),
        )

    def _upsert_address_record(self, ev: NormalizedEvent, coin_type: int, address: str) -> None:
        prov = ev.provenance
        key = address_record_key(ev.chain_id, ev.contract, coin_type)
        insert = AddressRecord(
            chain_id=ev.chain_id,
            resolver_address=ev.contract,
            coin_type=coin_type,
            address=address,
            set_block=prov.block_number,
            set_timestamp=prov.timestamp,
            set_tx_hash=prov.tx_hash,
            last_update_block=prov.block_number,
            last_update_timestamp=prov.timestamp,
            last_update_tx_hash=prov.tx_hash,
        )
        self._store.upsert(
            ADDRESS_RECORDS, key, insert, lambda row: replace(row, address=address, **_touch(prov)),
        )

    async def _apply_eth_address_changed(self, ev: NormalizedEvent) -> bool:
        await self._ensure_resolver(ev)
        eth_address = ev.payload["eth_address"]
        self._update_resolver(ev, eth_address=eth_address)
        self._upsert_address_record(ev, ETH_COIN_TYPE, eth_address)
        return True

    async def _apply_address_changed(self, ev: NormalizedEvent) -> bool:
        await self._ensure_resolver(ev)
        coin_type, address = int(ev.payload["coin_type"]), ev.payload["address"]
        self._upsert_address_record(ev, coin_type, address)
        if coin_type == ETH_COIN_TYPE:
            eth_address = _eth_address_from_bytes(address)
            if eth_address is not None:
                self._update_resolver(ev, eth_address=eth_address)
        return True

    async def _apply_content_hash_changed(self, ev: NormalizedEvent) -> bool:
        await self._ensure_resolver(ev)
        self._update_resolver(ev, contenthash=ev.payload["contenthash"])
        return True

    async def _apply_text_changed(self, ev: NormalizedEvent) -> bool:
        await self._ensure_resolver(ev)
        p, prov = ev.payload, ev.provenance
        chain_id, resolver_address, key = ev.key
        insert = TextRecord(
            chain_id=chain_id,
            resolver_address=resolver_address,
            key=key,
            value=p["value"],
            key_hash=p["key_hash"],
            key_resolved=ev.key_resolved,
            set_block=prov.block_number,
            set_timestamp=prov.timestamp,
            set_tx_hash=prov.tx_hash,
            last_update_block=prov.block_number,
            last_update_timestamp=prov.timestamp,
            last_update_tx_hash=prov.tx_hash,
        )
        self._store.upsert(
            TEXT_RECORDS, ev.key, insert, lambda row: replace(row, value=p["value"], **_touch(prov)),
        )
        self._update_resolver(ev)
        return True

    async def _apply_contract_metadata_updated(self, ev: NormalizedEvent) -> bool:
        await self._ensure_resolver(ev)
        p, prov = ev.payload, ev.provenance
        chain_id, contract, key = ev.key
        insert = ContractMetadataEntry(
            chain_id=chain_id,
            contract_address=contract,
            key=key,
            value=p["value"],
            set_block=prov.block_number,
            set_timestamp=prov.timestamp,
            set_tx_hash=prov.tx_hash,
            last_update_block=prov.block_number,
            last_update_timestamp=prov.timestamp,
            last_update_tx_hash=prov.tx_hash,
        )
        self._store.upsert(
            CONTRACT_METADATA, ev.key, insert, lambda row: replace(row, value=p["value"], **_touch(prov)),
        )
        self._update_resolver(ev)
        return True

    async def _apply_resolver_ownership_transferred(self, ev: NormalizedEvent) -> bool:
        await self._ensure_resolver(ev)
        p, prov = ev.payload, ev.provenance
        self._store.insert_ignore(
            RESOLVER_TRANSFERS,
            ResolverTransfer(
                chain_id=ev.chain_id,
                resolver_address=ev.contract,
                block_number=prov.block_number,
                log_index=prov.log_index,
                previous_owner=p["previous_owner"],
                new_owner=p["new_owner"],
                timestamp=prov.timestamp,
                tx_hash=prov.tx_hash,
            ),
        )
        self._update_resolver(ev, owner=p["new_owner"])
        return True
