from collections.abc import Sequence
from typing import Any
from unittest.mock import AsyncMock

import pytest

from credind.core.config import ChainConfig
from credind.core.keys import text_hash
from credind.core.models import EventLog, NormalizedEvent, Provenance
from credind.decoding.registry_builder import event_spec_from_signature
from credind.decoding.utils import encode_word
from credind.storage.entity_store import DuckDBEntityStore

CHAIN_ID = 11155111
REGISTRY = "0x" + "11" * 20
REGISTRAR = "0x" + "22" * 20
FACTORY = "0x" + "33" * 20

OWNER_A = "0x" + "aa" * 20
OWNER_C = "0x" + "cc" * 20
RESOLVER_B = "0x" + "bb" * 20
STRANGER = "0x" + "ee" * 20


# ---------------------------------------------------------------------------
# Log building
# ---------------------------------------------------------------------------


def address_topic(address: str) -> str:
    return "0x" + address.lower()[2:].rjust(64, "0")


def abi_encode(params: Sequence[tuple[str, Any]]) -> bytes:
    """ABI-encode non-indexed event params (static words plus string/bytes tails)."""
    head: list[bytes | None] = []
    tails: list[bytes] = []
    for typ, value in params:
        if typ in ("string", "bytes"):
            raw = value.encode() if typ == "string" else bytes.fromhex(value[2:])
            padded = raw.ljust((len(raw) + 31) // 32 * 32, b"\x00")
            tails.append(len(raw).to_bytes(32, "big") + padded)
            head.append(None)
        else:
            head.append(encode_word(value, typ))
    offset = 32 * len(params)
    out_head = b""
    out_tail = b""
    tail_iter = iter(tails)
    for word in head:
        if word is None:
            tail = next(tail_iter)
            out_head += (offset + len(out_tail)).to_bytes(32, "big")
            out_tail += tail
        else:
            out_head += word
    return out_head + out_tail


def make_log(
    signature: str,
    *,
    address: str,
    topics: Sequence[str] = (),
    data: Sequence[tuple[str, Any]] = (),
    block: int = 100,
    log_index: int = 0,
    timestamp: int | None = 1_700_000_000,
    tx_hash: str | None = None,
) -> EventLog:
    topic0 = event_spec_from_signature(signature).topic0
    return EventLog(
        address=address.lower(),
        topics=(topic0, *[t.lower() for t in topics]),
        data_hex="0x" + abi_encode(data).hex(),
        block_number=block,
        tx_hash=tx_hash or "0x" + f"{block:032x}{log_index:032x}",
        log_index=log_index,
        block_timestamp=timestamp,
    )


def labelhash_of(label: str) -> str:
    return text_hash(label)


def prov(block: int = 100, log_index: int = 0, timestamp: int = 1_700_000_000) -> Provenance:
    return Provenance(
        block_number=block,
        timestamp=timestamp,
        tx_hash="0x" + f"{block:032x}{log_index:032x}",
        log_index=log_index,
    )


def event(kind: str, key: tuple, payload: dict, *, contract: str = REGISTRY, key_resolved: bool = True, **p) -> NormalizedEvent:
    return NormalizedEvent(
        kind=kind,
        chain_id=key[0],
        contract=contract,
        provenance=prov(**p),
        key=key,
        payload=payload,
        key_resolved=key_resolved,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeReader:
    """Scripted IContractReader: answers from `values`, None otherwise."""

    def __init__(self, values: dict[tuple[str, str, tuple], Any] | None = None) -> None:
        self.values = dict(values or {})
        self.calls: list[tuple[str, str, tuple, int | None]] = []

    def set(self, address: str, signature: str, args: tuple, value: Any) -> None:
        self.values[(address.lower(), signature, tuple(args))] = value

    def set_label(self, label: str, *, registry: str = REGISTRY) -> str:
        labelhash = labelhash_of(label)
        self.set(registry, "getLabel(bytes32)", (labelhash,), label)
        return labelhash

    async def read(self, *, chain_id, address, signature, args=(), returns, block_number=None):
        self.calls.append((address.lower(), signature, tuple(args), block_number))
        return self.values.get((address.lower(), signature, tuple(args)))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def chain() -> ChainConfig:
    return ChainConfig(
        chain_id=CHAIN_ID,
        chain_name="sepolia",
        rpc_url="http://localhost:8545",
        registry=REGISTRY,
        registrar=REGISTRAR,
        factory=FACTORY,
        start_block=0,
        end_block=1_000,
        step=100,
    )


@pytest.fixture
def store():
    s = DuckDBEntityStore()
    yield s
    s.close()


@pytest.fixture
def reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def mock_rpc():
    rpc = AsyncMock()
    rpc.get_logs = AsyncMock(return_value=[])
    rpc.latest_block = AsyncMock(return_value=1_000)
    rpc.block_timestamp = AsyncMock(side_effect=lambda n: 1_700_000_000 + n)
    rpc.aclose = AsyncMock()
    return rpc
