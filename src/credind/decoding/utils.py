"""Decoding utilities: ABI word access, typed parsers and call encoding."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from eth_utils import keccak

from .specs import DataFieldSpec, TopicFieldSpec

DYNAMIC_TYPES = ("string", "bytes")


def word_at(data: bytes, i: int) -> bytes:
    """Return the i-th 32-byte ABI word (zero-padded if out-of-range)."""
    start = 32 * i
    end = start + 32
    return data[start:end] if start < len(data) else b"\x00" * 32


def tail_at(data: bytes, word_index: int) -> bytes:
    """Return the payload of a dynamic value whose offset sits in head word `word_index`."""
    offset = int.from_bytes(word_at(data, word_index), "big")
    if offset + 32 > len(data):
        raise ValueError(f"dynamic offset {offset} out of range")
    length = int.from_bytes(data[offset : offset + 32], "big")
    start = offset + 32
    if start + length > len(data):
        raise ValueError(f"dynamic length {length} out of range")
    return data[start : start + length]


def parse_topic_field(topic_hex: str, spec: TopicFieldSpec) -> Any:
    """Parse one indexed topic according to the declared type."""
    t = spec.type
    h = topic_hex.lower()
    if t == "address":
        return "0x" + h[-40:]
    if t == "bool":
        return int(h, 16) != 0
    if t.startswith("uint") or t.startswith("int"):
        return int(h, 16)
    # bytes32 and hashed dynamic values: raw hex string
    return h


def parse_data_word(word: bytes, typ: str) -> Any:
    """Parse one static ABI word according to the declared type."""
    if typ == "address":
        return "0x" + word[-20:].hex()
    if typ == "bool":
        return int.from_bytes(word, "big") != 0
    if typ.startswith("uint"):
        return int.from_bytes(word, "big", signed=False)
    if typ.startswith("int"):
        # Handle signed integers using two's complement conversion
        v = int.from_bytes(word, "big", signed=False)
        bits = int(typ[3:]) if typ != "int" else 256
        # Convert to signed if value exceeds positive range
        if v >= 2 ** (bits - 1):
            v -= 2**bits
        return v
    return "0x" + word.hex()


def parse_data_field(data: bytes, spec: DataFieldSpec) -> Any:
    """Parse one data field, following the head offset for dynamic types."""
    return parse_value(data, spec.word_index, spec.type)


def parse_value(data: bytes, word_index: int, typ: str) -> Any:
    if typ == "string":
        return tail_at(data, word_index).decode("utf-8", errors="replace")
    if typ == "bytes":
        return "0x" + tail_at(data, word_index).hex()
    return parse_data_word(word_at(data, word_index), typ)


def hex_to_bytes(value: str) -> bytes:
    h = value[2:] if value.lower().startswith("0x") else value
    return bytes.fromhex(h) if h else b""


# ---- call encoding (static argument types only) ----


def function_selector(signature: str) -> bytes:
    """First 4 bytes of keccak(signature), e.g. "getLabel(bytes32)"."""
    return keccak(text=signature)[:4]


def encode_word(value: Any, typ: str) -> bytes:
    """ABI-encode one static argument into a 32-byte word."""
    if typ == "address":
        return hex_to_bytes(value).rjust(32, b"\x00")
    if typ == "bool":
        return int(bool(value)).to_bytes(32, "big")
    if typ.startswith("uint"):
        return int(value).to_bytes(32, "big")
    if typ.startswith("bytes") and typ not in DYNAMIC_TYPES:
        return hex_to_bytes(value).ljust(32, b"\x00")
    raise ValueError(f"unsupported argument type for call encoding: {typ}")


def encode_call(signature: str, args: Sequence[Any]) -> str:
    """Build 0x-hex calldata for a view function with static arguments."""
    params = signature[signature.index("(") + 1 : signature.rindex(")")]
    types = [t.strip() for t in params.split(",") if t.strip()]
    if len(types) != len(args):
        raise ValueError(f"{signature} expects {len(types)} arguments, got {len(args)}")
    body = b"".join(encode_word(a, t) for a, t in zip(args, types))
    return "0x" + (function_selector(signature) + body).hex()
