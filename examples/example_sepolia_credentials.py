import asyncio
from pathlib import Path

import duckdb

from credind.core.config import ChainConfig, IndexerConfig
from credind.core.constants import SEPOLIA_FACTORY, SEPOLIA_REGISTRAR, SEPOLIA_REGISTRY, SEPOLIA_START_BLOCK
from credind.orchestration.orchestrator import run_indexer
from credind.storage.entity_store import DuckDBEntityStore
from credind.storage.export import export_snapshot

EXAMPLES_ROOT = Path(__file__).parent
assert EXAMPLES_ROOT.name == "examples"
OUT_ROOT = EXAMPLES_ROOT.parent / "data_examples"

chain = ChainConfig(
    chain_id=11155111,
    chain_name="sepolia",
    rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
    registry=SEPOLIA_REGISTRY,
    registrar=SEPOLIA_REGISTRAR,
    factory=SEPOLIA_FACTORY,
    start_block=SEPOLIA_START_BLOCK,
    end_block=SEPOLIA_START_BLOCK + 50_000,
    step=5_000,
)
config = IndexerConfig(chains=[chain], db_path=OUT_ROOT / "credind.duckdb", out_root=OUT_ROOT)


async def main():
    store = DuckDBEntityStore(config.db_path)
    try:
        stats = await run_indexer(config, store)
        print(stats[chain.chain_id])
        written = export_snapshot(store, OUT_ROOT / "snapshot")
    finally:
        store.close()

    # Query the Parquet snapshot: credentials with their resolver's url record
    con = duckdb.connect()
    q = f"""
    SELECT c.full_name, c.owner, c.resolver_address, t.value AS url
    FROM read_parquet('{written["credentials"]}') c
    LEFT JOIN read_parquet('{written["text_records"]}') t
      ON t.chain_id = c.chain_id AND t.resolver_address = c.resolver_address AND t.key = 'url'
    ORDER BY c.registered_block
    """
    for row in con.execute(q).fetchall():
        print(row)


asyncio.run(main())
