"""Block-range coverage utilities for resumable indexing.

Functions
---------
- iter_chunks: split an inclusive range into step-sized chunks.
- merge_intervals: merge overlapping/adjacent [start, end] integer ranges.
- subtract_iv: subtract a set of covered intervals from a target interval.
- first_uncovered: first block of a target interval missing from coverage.
- load_done_coverage: scan manifest files and collect 'done' ranges.

All intervals are inclusive on both ends: [start, end].
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Generator
from pathlib import Path

logger = logging.getLogger(__name__)


def iter_chunks(a: int, b: int, step: int) -> Generator[tuple[int, int], None, None]:
    """Yield inclusive [start, end] block ranges of size at most `step`."""
    x = a
    while x <= b:
        y = min(b, x + step - 1)
        yield (x, y)
        x = y + 1


def merge_intervals(intervals: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Merge overlapping/adjacent inclusive intervals.

    Parameters
    ----------
    intervals : list[tuple[int, int]]
        Unordered inclusive ranges.

    Returns
    -------
    list[tuple[int, int]]
        Minimal set of merged inclusive ranges.
    """
    if not intervals:
        return []
    intervals_sorted = sorted(intervals)
    out: list[list[int]] = [[intervals_sorted[0][0], intervals_sorted[0][1]]]
    for s, e in intervals_sorted[1:]:
        ms, me = out[-1]
        if s <= me + 1:
            out[-1][1] = max(me, e)
        else:
            out.append([s, e])
    return [(s, e) for s, e in out]


def subtract_iv(iv: tuple[int, int], covered: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Subtract covered inclusive intervals from a target inclusive interval.

    Parameters
    ----------
    iv : tuple[int, int]
        Target inclusive range.
    covered : list[tuple[int, int]]
        Inclusive ranges already covered (merged and sorted).

    Returns
    -------
    list[tuple[int, int]]
        Remaining inclusive subranges not covered.
    """
    s, e = iv
    if s > e:
        return []
    if not covered:
        return [iv]
    res: list[tuple[int, int]] = []
    cur = s
    for cs, ce in covered:
        if ce < cur:
            continue
        if cs > e:
            break
        if cs > cur:
            res.append((cur, min(e, cs - 1)))
        cur = max(cur, ce + 1)
        if cur > e:
            break
    if cur <= e:
        res.append((cur, e))
    return res


def first_uncovered(iv: tuple[int, int], covered: list[tuple[int, int]]) -> int | None:
    """Return the first block of `iv` not in `covered`, or None if fully covered.

    Application must stay ordered, so indexing resumes here and replays
    every later block, covered or not.
    """
    gaps = subtract_iv(iv, covered)
    return gaps[0][0] if gaps else None


def load_done_coverage(manifests_dir: Path, exclude_basename: str | None = None) -> list[tuple[int, int]]:
    """Load all `[from_block, to_block]` ranges with status 'done' from manifests.

    Parameters
    ----------
    manifests_dir : Path
        Directory containing *.jsonl manifest files.
    exclude_basename : str | None
        If provided, skip this single file (the live manifest of the current run).

    Returns
    -------
    list[tuple[int, int]]
        Merged 'done' intervals across all manifests.
    """
    intervals: list[tuple[int, int]] = []
    if not manifests_dir.is_dir():
        raise ValueError("manifests_dir should be a directory")
    for name in sorted(os.listdir(manifests_dir)):
        if not name.endswith(".jsonl"):
            continue
        if exclude_basename and name == exclude_basename:
            continue
        path = os.path.join(manifests_dir, name)
        try:
            with open(path) as f:
                for line in f:
                    if not line.strip():
                        continue
                    rec = json.loads(line)
                    if rec.get("status") == "done":
                        intervals.append((int(rec["from_block"]), int(rec["to_block"])))
        except (OSError, ValueError, KeyError) as e:
            # Corrupt/incomplete files only lose their coverage; the range is replayed.
            logger.warning("Ignoring unreadable manifest %s: %s", path, e)
            continue
    return merge_intervals(intervals)
