from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import httpx

from credind.core.config import ChainConfig
from credind.core.errors import CredindError
from credind.core.interfaces import IContractReader, IEntityStore, IEvmLogsProvider, IManifestRepository
from credind.core.models import ChainCheckpoint, ChunkRecord, EventLog, Meta
from credind.core.use_cases.admission import DynamicRegistry
from credind.core.use_cases.normalize import EventNormalizer
from credind.core.use_cases.reconcile import ReconciliationEngine
from credind.decoding.decoder import decode_event
from credind.decoding.registries import (
    FACTORY_EVENT_KINDS,
    REGISTRAR_EVENT_KINDS,
    REGISTRY_EVENT_KINDS,
    RESOLVER_EVENT_KINDS,
    make_factory_registry,
    make_registrar_registry,
    make_registry_registry,
    make_resolver_registry,
)
from credind.decoding.specs import EventRegistry, get_event_registry_topic0s
from credind.decoding.utils import hex_to_bytes
from credind.orchestration.utils import iter_chunks
from credind.storage.schema import CHECKPOINTS

logger = logging.getLogger(__name__)

FETCH_ERRORS = (httpx.HTTPError, CredindError, asyncio.TimeoutError)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


@dataclass(kw_only=True)
class IndexStats:
    """
    Aggregated counters for one chain's indexing run.

    - chunks: block ranges fetched and applied
    - splits: ranges halved after a fetch failure
    - applied / discarded: events accepted vs. unadmitted or skipped
    - failed_events: events whose application raised
    """

    chunks_ok: int = 0
    chunks_failed: int = 0
    splits: int = 0
    total_logs: int = 0
    decoded: int = 0
    applied: int = 0
    discarded: int = 0
    failed_events: int = 0
    last_block: int | None = None


@dataclass(frozen=True)
class WorkSeed:
    """Inclusive block interval to process."""
    start: int
    end: int

    def split(self) -> tuple[WorkSeed, WorkSeed]:
        mid = (self.start + self.end) // 2
        return (
            WorkSeed(self.start, mid),
            WorkSeed(mid + 1, self.end)
        )


@dataclass(frozen=True)
class RoleRegistry:
    registry: EventRegistry
    kinds: dict[str, str]


# ---------------------------------------------------------------------------
# Chunk record helpers
# ---------------------------------------------------------------------------


def _chunk_record(
    chain_id: int,
    seed: WorkSeed,
    status: str,
    *,
    error: str | None = None,
    counts: dict[str, int] | None = None,
) -> ChunkRecord:
    counts = counts or {}
    return ChunkRecord(
        chain_id=chain_id,
        from_block=seed.start,
        to_block=seed.end,
        status=status,
        attempts=0 if status == "started" else 1,
        error=error,
        logs=counts.get("logs", 0),
        decoded=counts.get("decoded", 0),
        applied=counts.get("applied", 0),
        discarded=counts.get("discarded", 0),
        failed_events=counts.get("failed_events", 0),
        updated_at=time.time(),
    )


# ---------------------------------------------------------------------------
# Domain service – ChainIndexService
# ---------------------------------------------------------------------------


class ChainIndexService:
    """
    Ordered fetch → decode → normalize → admit → apply loop for one chain.

    Static contracts (registry, registrar, factory) are fetched by address;
    resolver-shaped events are fetched by topic only and gated by admission.
    Ranges are applied strictly left to right; a range that cannot be fetched
    is halved until a single block fails, which stops the run.
    """

    def __init__(
        self,
        *,
        chain: ChainConfig,
        logs_provider: IEvmLogsProvider,
        store: IEntityStore,
        reader: IContractReader,
        manifest: IManifestRepository,
    ) -> None:
        self.chain = chain
        self._logs = logs_provider
        self._store = store
        self._manifest = manifest

        self._roles: dict[str, RoleRegistry] = {
            chain.registry.lower(): RoleRegistry(make_registry_registry(), REGISTRY_EVENT_KINDS),
            chain.registrar.lower(): RoleRegistry(make_registrar_registry(), REGISTRAR_EVENT_KINDS),
            chain.factory.lower(): RoleRegistry(make_factory_registry(), FACTORY_EVENT_KINDS),
        }
        self._resolver_role = RoleRegistry(make_resolver_registry(), RESOLVER_EVENT_KINDS)
        self._static_topic0s = sorted(
            {t for role in self._roles.values() for t in get_event_registry_topic0s(role.registry)}
        )
        self._resolver_topic0s = get_event_registry_topic0s(self._resolver_role.registry)

        self.normalizer = EventNormalizer(chain, reader, store)
        self.admission = DynamicRegistry(store)
        self.engine = ReconciliationEngine(
            chain, store, reader, admission=self.admission, normalizer=self.normalizer,
        )

    # ---------- fetch ----------

    async def fetch_logs(self, from_block: int, to_block: int) -> list[EventLog]:
        """All relevant logs of a range, deduplicated, timestamped and in (block, log index) order."""
        static_logs = await self._logs.get_logs(
            addresses=self.chain.static_addresses(),
            topic0s=self._static_topic0s,
            from_block=from_block,
            to_block=to_block,
        )
        resolver_logs = await self._logs.get_logs(
            addresses=None,
            topic0s=self._resolver_topic0s,
            from_block=from_block,
            to_block=to_block,
        )
        unique: dict[tuple[int, int], EventLog] = {}
        for log in [*static_logs, *resolver_logs]:
            unique.setdefault((log.block_number, log.log_index), log)

        out: list[EventLog] = []
        for key in sorted(unique):
            log = unique[key]
            if log.block_timestamp is None:
                ts = await self._logs.block_timestamp(log.block_number)
                log = EventLog(
                    address=log.address,
                    topics=log.topics,
                    data_hex=log.data_hex,
                    block_number=log.block_number,
                    tx_hash=log.tx_hash,
                    log_index=log.log_index,
                    block_timestamp=ts,
                )
            out.append(log)
        return out

    # ---------- apply ----------

    async def apply_logs(self, logs: list[EventLog]) -> dict[str, int]:
        """Decode and apply logs one by one; a failing event never stops the next one."""
        counts = {"logs": len(logs), "decoded": 0, "applied": 0, "discarded": 0, "failed_events": 0}
        for log in logs:
            role = self._roles.get(log.address, self._resolver_role)
            meta = Meta(
                block_number=log.block_number,
                block_timestamp=log.block_timestamp,
                tx_hash=log.tx_hash,
                log_index=log.log_index,
                address=log.address,
            )
            try:
                pe = decode_event(
                    topics=log.topics,
                    data=hex_to_bytes(log.data_hex),
                    meta=meta,
                    registry=role.registry,
                )
                if pe is None:
                    counts["discarded"] += 1
                    continue
                counts["decoded"] += 1
                ev = await self.normalizer.normalize(pe, role.kinds[pe.name])
                if ev is None or not await self.engine.apply(ev):
                    counts["discarded"] += 1
                    continue
                counts["applied"] += 1
            except Exception:
                logger.exception(
                    "Failed to apply log %s:%s on chain %s", log.block_number, log.log_index, self.chain.chain_id,
                )
                counts["failed_events"] += 1
        return counts

    async def _checkpoint(self, block_number: int) -> None:
        try:
            ts = await self._logs.block_timestamp(block_number)
        except FETCH_ERRORS as e:
            logger.warning("Checkpoint for block %s on chain %s skipped: %s", block_number, self.chain.chain_id, e)
            return
        row = ChainCheckpoint(chain_id=self.chain.chain_id, block_number=block_number, timestamp=ts)
        self._store.upsert(CHECKPOINTS, (self.chain.chain_id,), row, lambda _existing: row)

    # ---------- ranges ----------

    async def process_seed(self, seed: WorkSeed, stats: IndexStats) -> bool:
        """
        Process one inclusive range with retry splitting.

        Returns False if a single block could not be fetched.
        """
        chain_id = self.chain.chain_id
        stack: list[WorkSeed] = [seed]

        while stack:
            current = stack.pop()
            await self._manifest.append(_chunk_record(chain_id, current, "started"))
            try:
                logs = await self.fetch_logs(current.start, current.end)
            except FETCH_ERRORS as e:
                await self._manifest.append(_chunk_record(chain_id, current, "failed", error=str(e)))
                if current.start == current.end:
                    logger.error("Block %s on chain %s cannot be fetched: %s", current.start, chain_id, e)
                    stats.chunks_failed += 1
                    return False
                left, right = current.split()
                # left half on top so blocks stay in order
                stack.extend([right, left])
                stats.splits += 1
                continue

            counts = await self.apply_logs(logs)
            await self._checkpoint(current.end)
            await self._manifest.append(_chunk_record(chain_id, current, "done", counts=counts))

            stats.chunks_ok += 1
            stats.total_logs += counts["logs"]
            stats.decoded += counts["decoded"]
            stats.applied += counts["applied"]
            stats.discarded += counts["discarded"]
            stats.failed_events += counts["failed_events"]
            stats.last_block = current.end
            logger.info(
                "chain %s [%s, %s]: %d logs, %d applied, %d discarded, %d failed",
                chain_id, current.start, current.end,
                counts["logs"], counts["applied"], counts["discarded"], counts["failed_events"],
            )
        return True

    async def run(self, start: int, end: int, stats: IndexStats | None = None) -> IndexStats:
        """Index [start, end] in step-sized chunks, stopping at the first unfetchable block."""
        stats = stats or IndexStats()
        for a, b in iter_chunks(start, end, self.chain.step):
            if not await self.process_seed(WorkSeed(a, b), stats):
                break
        return stats
