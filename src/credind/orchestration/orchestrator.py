"""Multi-chain indexer: resume → ordered index → (optionally) follow the head.

This module provides two layers:

1) `index_chain(...)`:
   - Application use case for one chain.
   - Depends ONLY on interfaces (IEvmLogsProvider, IEntityStore, IContractReader).
   - Resolves the block range, computes where to resume from the manifests
     and drives `ChainIndexService`.

2) `run_indexer(...)`:
   - Wires concrete implementations (RPC, RpcContractReader, LiveManifest)
     for every configured chain and runs the chains concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from credind.clients.reader import RpcContractReader
from credind.clients.rpc import RPC
from credind.core.config import ChainConfig, IndexerConfig
from credind.core.interfaces import IContractReader, IEntityStore, IEvmLogsProvider
from credind.core.use_cases.index_chain import FETCH_ERRORS, ChainIndexService, IndexStats
from credind.orchestration.utils import first_uncovered, load_done_coverage
from credind.storage.directories import get_run_basename, setup_chain_directories
from credind.storage.manifest import LiveManifest

logger = logging.getLogger(__name__)


async def _resolve_block_range(
    logs_provider: IEvmLogsProvider,
    chain: ChainConfig,
) -> tuple[int, int]:
    """Resolve start and end blocks, handling 'latest' and confirmations."""
    if isinstance(chain.start_block, str) and chain.start_block.lower() in ("earliest", "genesis"):
        start = 0
    else:
        start = int(chain.start_block)

    if isinstance(chain.end_block, str) and chain.end_block.lower() == "latest":
        end = await logs_provider.latest_block() - chain.confirmations
    else:
        end = int(chain.end_block)

    return start, end


async def index_chain(
    *,
    chain: ChainConfig,
    logs_provider: IEvmLogsProvider,
    store: IEntityStore,
    reader: IContractReader,
    out_root: Path,
    follow: bool = False,
    poll_interval_s: float = 12.0,
) -> IndexStats:
    """Index one chain from its first uncovered block.

    Everything after the first gap in manifest coverage is replayed; replays
    are idempotent so no ordering is ever violated. In follow mode the head
    is polled every `poll_interval_s` seconds until cancelled.
    """
    dirs = setup_chain_directories(out_root, chain)
    run_id = get_run_basename(chain)
    manifest = LiveManifest(dirs.manifests_dir / run_id)
    service = ChainIndexService(
        chain=chain,
        logs_provider=logs_provider,
        store=store,
        reader=reader,
        manifest=manifest,
    )
    stats = IndexStats()

    start, end = await _resolve_block_range(logs_provider, chain)
    covered = load_done_coverage(dirs.manifests_dir, exclude_basename=run_id)
    resume = first_uncovered((start, max(start, end)), covered) if end >= start else None
    if resume is None:
        logger.info("chain %s already covered up to %s", chain.chain_name, end)
        next_block = max(start, end + 1)
    else:
        logger.info("chain %s: indexing [%s, %s]", chain.chain_name, resume, end)
        await service.run(resume, end, stats)
        next_block = (stats.last_block + 1) if stats.last_block is not None else resume

    while follow:
        await asyncio.sleep(poll_interval_s)
        try:
            head = await logs_provider.latest_block() - chain.confirmations
        except FETCH_ERRORS as e:
            logger.warning("chain %s: head poll failed, retrying: %s", chain.chain_name, e or type(e).__name__)
            continue
        if head < next_block:
            continue
        await service.run(next_block, head, stats)
        if stats.last_block is not None:
            next_block = stats.last_block + 1

    return stats


async def run_indexer(config: IndexerConfig, store: IEntityStore) -> dict[int, IndexStats]:
    """Index every configured chain concurrently; chains never share keys."""

    async def _one(chain: ChainConfig) -> IndexStats:
        rpc = RPC(chain.rpc_url, timeout_s=chain.timeout_s)
        reader = RpcContractReader({chain.chain_id: rpc}, timeout_s=chain.read_timeout_s)
        try:
            return await index_chain(
                chain=chain,
                logs_provider=rpc,
                store=store,
                reader=reader,
                out_root=config.out_root,
                follow=config.follow,
                poll_interval_s=config.poll_interval_s,
            )
        finally:
            await rpc.aclose()

    results = await asyncio.gather(*(_one(chain) for chain in config.chains))
    return {chain.chain_id: stats for chain, stats in zip(config.chains, results)}
