from __future__ import annotations

import logging
from typing import Any

from credind.core.config import ChainConfig
from credind.core.constants import NAME_SUFFIX, WELL_KNOWN_TEXT_KEYS, ZERO_ADDRESS
from credind.core.interfaces import IContractReader, IEntityStore
from credind.core.keys import (
    address_or_none,
    approval_key,
    credential_key,
    history_key,
    metadata_key,
    normalize_address,
    normalize_hex,
    resolver_key,
    text_hash,
    text_record_key,
    unresolved_text_key,
)
from credind.core.models import Credential, EventKind, NormalizedEvent, Provenance
from credind.decoding.decoder import ParsedEvent
from credind.storage.schema import CREDENTIALS

logger = logging.getLogger(__name__)

_TEXT_KEYS_BY_HASH: dict[str, str] = {text_hash(k): k for k in WELL_KNOWN_TEXT_KEYS}


def _optional_address(value: str | None) -> str | None:
    """Zero address means "no address"."""
    if value is None:
        return None
    addr = normalize_address(value)
    return None if addr == ZERO_ADDRESS else addr


def full_name(label: str) -> str:
    return f"{label}.{NAME_SUFFIX}"


class EventNormalizer:
    """
    Turns decoded events of one chain into `NormalizedEvent`s.

    Enrichment reads are best-effort: a failed read leaves the field out of
    the payload. Hash-only keys are resolved against known plaintexts or
    scoped to the event occurrence, never guessed.
    """

    def __init__(self, chain: ChainConfig, reader: IContractReader, store: IEntityStore) -> None:
        self.chain = chain
        self._reader = reader
        self._store = store

    # ---------- best-effort reads ----------

    async def _read_registry(self, signature: str, labelhash: str, returns: str, block: int) -> Any | None:
        return await self._reader.read(
            chain_id=self.chain.chain_id,
            address=self.chain.registry,
            signature=signature,
            args=(labelhash,),
            returns=returns,
            block_number=block,
        )

    async def read_label(self, labelhash: str, block: int, label_topic: str | None = None) -> str | None:
        """Recover a label from its hash; discard it if it contradicts the indexed topic."""
        label = await self._read_registry("getLabel(bytes32)", labelhash, "string", block)
        if not label:
            return None
        if label_topic is not None and text_hash(label) != label_topic:
            logger.warning("getLabel(%s) returned %r which does not match topic %s", labelhash, label, label_topic)
            return None
        return label

    # ---------- hash resolution ----------

    def _credential_for_label_topic(self, label_topic: str) -> Credential | None:
        chain_id = self.chain.chain_id
        matches = self._store.scan(
            CREDENTIALS,
            lambda c: c.chain_id == chain_id and c.label is not None and text_hash(c.label) == label_topic,
        )
        if not matches:
            return None
        return min(matches, key=lambda c: (c.registered_block, c.labelhash))

    # ---------- main entry ----------

    async def normalize(self, pe: ParsedEvent, kind: EventKind) -> NormalizedEvent | None:
        meta = pe.meta
        if meta.block_timestamp is None:
            raise ValueError(f"log {meta.tx_hash}:{meta.log_index} has no block timestamp")
        prov = Provenance(
            block_number=meta.block_number,
            timestamp=meta.block_timestamp,
            tx_hash=meta.tx_hash.lower(),
            log_index=meta.log_index,
        )
        handler = getattr(self, "_" + kind.replace("-", "_"), None)
        if handler is None:
            logger.debug("No normalizer for %s", kind)
            return None
        return await handler(pe.values, pe.contract, prov, kind)

    def _event(
        self,
        kind: EventKind,
        contract: str,
        prov: Provenance,
        key: tuple[Any, ...],
        payload: dict[str, Any],
        key_resolved: bool = True,
    ) -> NormalizedEvent:
        return NormalizedEvent(
            kind=kind,
            chain_id=self.chain.chain_id,
            contract=normalize_address(contract),
            provenance=prov,
            key=key,
            payload=payload,
            key_resolved=key_resolved,
        )

    # ---------- registry ----------

    async def _label_claimed(self, v: dict[str, Any], contract: str, prov: Provenance, kind: EventKind):
        labelhash = normalize_hex(v["labelhash"])
        payload: dict[str, Any] = {"owner": normalize_address(v["owner"])}

        label = await self.read_label(labelhash, prov.block_number, normalize_hex(v["label"]))
        if label is not None:
            payload["label"] = label
            payload["full_name"] = full_name(label)
        expiration = await self._read_registry("getExpiration(bytes32)", labelhash, "uint256", prov.block_number)
        if expiration is not None:
            payload["expiration"] = int(expiration)
        resolver = address_or_none(
            await self._read_registry("resolver(bytes32)", labelhash, "address", prov.block_number)
        )
        if resolver is not None:
            payload["resolver_address"] = _optional_address(resolver)

        return self._event(kind, contract, prov, credential_key(self.chain.chain_id, labelhash), payload)

    async def _credential_transferred(self, v, contract, prov, kind):
        key = credential_key(self.chain.chain_id, v["labelhash"])
        return self._event(kind, contract, prov, key, {"owner": normalize_address(v["owner"])})

    async def _resolver_changed(self, v, contract, prov, kind):
        key = credential_key(self.chain.chain_id, v["labelhash"])
        return self._event(kind, contract, prov, key, {"resolver_address": _optional_address(v["resolver"])})

    async def _review_updated(self, v, contract, prov, kind):
        key = credential_key(self.chain.chain_id, v["labelhash"])
        return self._event(kind, contract, prov, key, {"review": v["review"]})

    async def _expiration_extended(self, v, contract, prov, kind):
        key = credential_key(self.chain.chain_id, v["labelhash"])
        return self._event(kind, contract, prov, key, {"expiration": int(v["newExpiration"])})

    async def _expiration_set(self, v, contract, prov, kind):
        key = credential_key(self.chain.chain_id, v["labelhash"])
        return self._event(kind, contract, prov, key, {"expiration": int(v["expiration"])})

    async def _approval_for_all(self, v, contract, prov, kind):
        key = approval_key(self.chain.chain_id, v["owner"], v["operator"])
        return self._event(kind, contract, prov, key, {"approved": bool(v["approved"])})

    # ---------- registrar ----------

    async def _name_registered(self, v, contract, prov, kind):
        label_topic = normalize_hex(v["label"])
        payload: dict[str, Any] = {
            "label_topic": label_topic,
            "owner": normalize_address(v["owner"]),
            "cost": int(v["cost"]),
            "expires": int(v["expires"]),
        }
        cred = self._credential_for_label_topic(label_topic)
        if cred is None:
            return self._event(kind, contract, prov, (self.chain.chain_id, label_topic), payload, key_resolved=False)
        return self._event(kind, contract, prov, credential_key(self.chain.chain_id, cred.labelhash), payload)

    async def _name_renewed(self, v, contract, prov, kind):
        label_topic = normalize_hex(v["label"])
        payload: dict[str, Any] = {
            "label_topic": label_topic,
            "cost": int(v["cost"]),
            "new_expiration": int(v["newExpiration"]),
        }
        cred = self._credential_for_label_topic(label_topic)
        if cred is not None:
            payload["labelhash"] = cred.labelhash
            payload["label"] = cred.label
        else:
            logger.warning(
                "Renewal at %s:%s has an unknown label hash %s; keyed by occurrence",
                prov.block_number, prov.log_index, label_topic,
            )
        key = history_key(self.chain.chain_id, label_topic, prov.block_number, prov.log_index)
        return self._event(kind, contract, prov, key, payload, key_resolved=cred is not None)

    # ---------- factory ----------

    async def _clone_deployed(self, v, contract, prov, kind):
        key = resolver_key(self.chain.chain_id, v["clone"])
        return self._event(kind, contract, prov, key, {"owner": normalize_address(v["owner"])})

    # ---------- resolver instances ----------

    async def _eth_address_changed(self, v, contract, prov, kind):
        key = resolver_key(self.chain.chain_id, contract)
        return self._event(kind, contract, prov, key, {"eth_address": normalize_address(v["a"])})

    async def _address_changed(self, v, contract, prov, kind):
        key = resolver_key(self.chain.chain_id, contract)
        payload = {"coin_type": int(v["coinType"]), "address": normalize_hex(v["newAddress"])}
        return self._event(kind, contract, prov, key, payload)

    async def _content_hash_changed(self, v, contract, prov, kind):
        key = resolver_key(self.chain.chain_id, contract)
        return self._event(kind, contract, prov, key, {"contenthash": normalize_hex(v["hash"])})

    async def _text_changed(self, v, contract, prov, kind):
        key_hash = normalize_hex(v["key"])
        text_key = _TEXT_KEYS_BY_HASH.get(key_hash)
        payload = {"value": v["value"], "key_hash": key_hash}
        if text_key is None:
            # only the hash is on chain; the row is scoped to this log
            logger.warning(
                "Text key %s on %s has no known preimage; stored as unresolved", key_hash, contract,
            )
            key = text_record_key(self.chain.chain_id, contract, unresolved_text_key(prov.block_number, prov.log_index))
            return self._event(kind, contract, prov, key, payload, key_resolved=False)
        key = text_record_key(self.chain.chain_id, contract, text_key)
        return self._event(kind, contract, prov, key, payload)

    async def _contract_metadata_updated(self, v, contract, prov, kind):
        key = metadata_key(self.chain.chain_id, contract, v["key"])
        return self._event(kind, contract, prov, key, {"value": normalize_hex(v["value"])})

    async def _resolver_ownership_transferred(self, v, contract, prov, kind):
        key = resolver_key(self.chain.chain_id, contract)
        payload = {
            "previous_owner": normalize_address(v["previousOwner"]),
            "new_owner": normalize_address(v["newOwner"]),
        }
        return self._event(kind, contract, prov, key, payload)
