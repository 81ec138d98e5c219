"""Lightweight JSON-RPC client for Ethereum-compatible nodes.

This module provides:
- `RPC`: an async client with sane timeouts/connection limits
- Helper utilities to format block numbers and topics

It returns `EventLog` records ready for downstream decoding.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from credind.core.errors import RpcError
from credind.core.models import EventLog

logger = logging.getLogger(__name__)


def to_hex_block(x: int) -> str:
    """Return a 0x-prefixed hex block number."""
    return hex(x)


def topics_param(topic0s: Sequence[str]) -> list[list[str]]:
    """Format topic0 signatures for eth_getLogs RPC call."""
    return [[t.lower() for t in topic0s]]


def _parse_int(value: Any) -> int | None:
    if isinstance(value, str) and value.startswith("0x"):
        return int(value, 16)
    if isinstance(value, int):
        return value
    return None


def log_from_json(rl: dict[str, Any]) -> EventLog:
    """Map one `eth_getLogs` result entry to an EventLog."""
    topics = tuple((t if isinstance(t, str) else t.decode()).lower() for t in rl.get("topics", []))
    return EventLog(
        address=rl["address"].lower(),
        topics=topics,
        data_hex=str(rl.get("data") or "0x"),
        block_number=int(rl["blockNumber"], 16),
        tx_hash=(rl.get("transactionHash") or rl.get("transaction_hash") or "").lower(),
        log_index=int(rl["logIndex"], 16),
        block_timestamp=_parse_int(rl.get("blockTimestamp")),
    )


class RPC:
    """Minimal async RPC client.

    Parameters
    ----------
    url : str
        RPC endpoint URL.
    timeout_s : int
        Per-operation timeout in seconds (connect/read/write).
    max_connections : int
        Maximum concurrent connections to keep in the pool.
    """

    def __init__(self, url: str, *, timeout_s: int = 20, max_connections: int = 64) -> None:
        self.url = url
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=timeout_s,
                read=timeout_s,
                write=timeout_s,
                pool=max(30, timeout_s * 3),
            ),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max(1, max_connections // 2),
            ),
            http2=True,
        )
        self._timestamps: dict[int, int] = {}

    async def _request(self, method: str, params: list[Any]) -> Any:
        r = await self.client.post(
            self.url,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        r.raise_for_status()
        data = r.json()
        if "error" in data:
            e = data["error"]
            raise RpcError(f"RPC error: {e.get('code')} {e.get('message')}", code=e.get("code"))
        if "result" not in data:
            raise RpcError(f"RPC response to {method} has no result")
        return data["result"]

    async def latest_block(self) -> int:
        """Return the latest block number as an int."""
        return int(await self._request("eth_blockNumber", []), 16)

    async def block_timestamp(self, block_number: int) -> int:
        """Return a block's timestamp, cached per block number."""
        cached = self._timestamps.get(block_number)
        if cached is not None:
            return cached
        block = await self._request("eth_getBlockByNumber", [to_hex_block(block_number), False])
        if not block:
            raise RpcError(f"block {block_number} not found")
        ts = int(block["timestamp"], 16)
        self._timestamps[block_number] = ts
        return ts

    async def get_logs(
        self,
        *,
        addresses: Sequence[str] | None,
        topic0s: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        """Fetch logs for a set of topic0 signatures within a block range.

        With `addresses=None` the filter matches any emitting contract.
        """
        flt: dict[str, Any] = {
            "fromBlock": to_hex_block(from_block),
            "toBlock": to_hex_block(to_block),
            "topics": topics_param(topic0s),
        }
        if addresses is not None:
            flt["address"] = [a.lower() for a in addresses]
        result = await self._request("eth_getLogs", [flt])
        logs = [log_from_json(rl) for rl in result or []]
        logger.debug("eth_getLogs [%s, %s] -> %d logs", from_block, to_block, len(logs))
        return logs

    async def call(self, *, to: str, data: str, block_number: int | None = None) -> str:
        """Execute `eth_call` and return the raw 0x-hex output."""
        block = to_hex_block(block_number) if block_number is not None else "latest"
        result = await self._request("eth_call", [{"to": to.lower(), "data": data}, block])
        if not isinstance(result, str):
            raise RpcError("eth_call returned a non-string result")
        return result

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
