"""Watched-address registry for resolver-shaped contracts."""

from __future__ import annotations

import logging

from credind.core.interfaces import IEntityStore
from credind.core.keys import normalize_address, normalize_hex, resolver_key
from credind.core.models import Admission, AdmissionSource, Provenance, Resolver
from credind.storage.schema import ADMISSIONS, RESOLVERS

logger = logging.getLogger(__name__)


class DynamicRegistry:
    """
    Tracks which resolver addresses are in scope, per chain.

    An address is admitted once a factory deployed it or the registry pointed
    a label at it. A Resolver row is the admission proof; the ledger covers
    registry-announced addresses whose row is created by their first event.
    """

    def __init__(self, store: IEntityStore) -> None:
        self._store = store

    def is_admitted(self, chain_id: int, address: str) -> bool:
        key = resolver_key(chain_id, address)
        if self._store.find(RESOLVERS, key) is not None:
            return True
        return self._store.find(ADMISSIONS, key) is not None

    def lookup(self, chain_id: int, address: str) -> Admission | None:
        return self._store.find(ADMISSIONS, resolver_key(chain_id, address))

    def resolver(self, chain_id: int, address: str) -> Resolver | None:
        return self._store.find(RESOLVERS, resolver_key(chain_id, address))

    def admit(
        self,
        chain_id: int,
        address: str,
        *,
        source: AdmissionSource,
        provenance: Provenance,
        labelhash: str | None = None,
    ) -> bool:
        """Record an admission; the first entry per address wins. Returns True if new."""
        entry = Admission(
            chain_id=chain_id,
            address=normalize_address(address),
            source=source,
            labelhash=normalize_hex(labelhash) if labelhash else None,
            admitted_block=provenance.block_number,
            admitted_timestamp=provenance.timestamp,
            admitted_tx_hash=provenance.tx_hash,
        )
        inserted = self._store.insert_ignore(ADMISSIONS, entry)
        if inserted:
            logger.info("Admitted resolver %s on chain %s via %s", entry.address, chain_id, source)
        return inserted
