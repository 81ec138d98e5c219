"""Best-effort contract reads over `eth_call`."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from credind.clients.rpc import RPC
from credind.core.errors import RpcError
from credind.decoding.utils import encode_call, hex_to_bytes, parse_value

logger = logging.getLogger(__name__)


class RpcContractReader:
    """IContractReader backed by one RPC client per chain.

    Every failure (transport, node error, revert, timeout, undecodable output)
    is logged and turned into None.
    """

    def __init__(self, rpcs: dict[int, RPC], *, timeout_s: float = 5.0) -> None:
        self._rpcs = rpcs
        self._timeout_s = timeout_s

    async def read(
        self,
        *,
        chain_id: int,
        address: str,
        signature: str,
        args: Sequence[Any] = (),
        returns: str,
        block_number: int | None = None,
    ) -> Any | None:
        rpc = self._rpcs.get(chain_id)
        if rpc is None:
            logger.warning("No RPC client for chain %s, skipping %s", chain_id, signature)
            return None
        try:
            data = encode_call(signature, args)
            raw = await asyncio.wait_for(
                rpc.call(to=address, data=data, block_number=block_number),
                timeout=self._timeout_s,
            )
            out = hex_to_bytes(raw)
            if not out:
                # empty output: no code at the address or a reverted call
                raise ValueError("empty return data")
            if len(out) < 32:
                raise ValueError(f"return data is {len(out)} bytes, expected at least one 32-byte word")
            return parse_value(out, 0, returns)
        except (httpx.HTTPError, RpcError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(
                "Read %s on %s (chain %s, block %s) failed: %s",
                signature, address, chain_id, block_number, e or type(e).__name__,
            )
            return None
