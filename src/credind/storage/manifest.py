from __future__ import annotations

import asyncio
import os
from pathlib import Path

from credind.core.models import ChunkRecord


class LiveManifest:
    """Append-only JSONL journal of chunk processing status for one chain.

    Appends are serialized by an in-process asyncio lock; one writer per file.
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize manifest at the given path.

        Args:
            path: File path for the manifest JSONL file
        """
        self.path = str(path)
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        open(self.path, "a").close()
        self._lock = asyncio.Lock()

    async def append(self, rec: ChunkRecord) -> None:
        """Append a chunk record to the manifest atomically.

        Args:
            rec: ChunkRecord to write to the manifest
        """
        line = rec.to_json_line()
        async with self._lock:
            await asyncio.to_thread(self._write_line, self.path, line)

    @staticmethod
    def _write_line(path: str, line: str) -> None:
        """Write a line to file with immediate flush and sync."""
        with open(path, "a", buffering=1) as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())

