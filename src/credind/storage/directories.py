from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

from credind.core.config import ChainConfig


@dataclass(frozen=True)
class ChainDirectories:
    """
    Per-chain output layout.

    Layout: <out_root>/<chain_name>-<chain_id>/
              manifests/   (one JSONL file per run)
    Parquet snapshots go to <out_root>/exports/<timestamp>/.
    """

    key_dir: Path
    manifests_dir: Path


def setup_chain_directories(out_root: Path, chain: ChainConfig) -> ChainDirectories:
    key_dir = out_root / f"{chain.chain_name}-{chain.chain_id}"
    manifests_dir = key_dir / "manifests"
    manifests_dir.mkdir(exist_ok=True, parents=True)
    return ChainDirectories(key_dir=key_dir, manifests_dir=manifests_dir)


def get_run_basename(chain: ChainConfig) -> str:
    timestamp = time.strftime('%Y%m%d_%H%M%S', time.gmtime())
    return f"run_{timestamp}_{chain.chain_name}_{chain.chain_id}.jsonl"


def export_directory(out_root: Path) -> Path:
    timestamp = time.strftime('%Y%m%d_%H%M%S', time.gmtime())
    return out_root / "exports" / timestamp
