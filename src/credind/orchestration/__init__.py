"""Orchestration for resumable, ordered multi-chain indexing.

This package provides:
- Interval utilities for coverage tracking and resumability (re-exported here)
- Chain orchestrator (`credind.orchestration.orchestrator`: index_chain, run_indexer)
"""

from credind.orchestration.utils import (
    first_uncovered,
    iter_chunks,
    load_done_coverage,
    merge_intervals,
    subtract_iv,
)

__all__ = [
    "first_uncovered",
    "iter_chunks",
    "load_done_coverage",
    "merge_intervals",
    "subtract_iv",
]
