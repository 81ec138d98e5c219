"""Primary-key derivation for every materialized table.

Every key starts with the chain id and then lists the identity values in a
fixed order. Addresses and hashes are lower-cased 0x-hex so that mixed-case
input resolves to the same row.
"""

from __future__ import annotations

from typing import Any

from eth_utils import is_hex, keccak


def normalize_hex(value: str) -> str:
    """Lower-case a hex string and make sure it carries the 0x prefix."""
    v = value.strip().lower()
    if not v.startswith("0x"):
        v = "0x" + v
    if not is_hex(v):
        raise ValueError(f"not a hex string: {value!r}")
    return v


def normalize_address(value: str) -> str:
    v = normalize_hex(value)
    if len(v) != 42:
        raise ValueError(f"not a 20-byte address: {value!r}")
    return v


def address_or_none(value: Any) -> str | None:
    """Normalized address, or None for anything that is not a 20-byte hex string."""
    if not isinstance(value, str):
        return None
    try:
        return normalize_address(value)
    except ValueError:
        return None


def text_hash(text: str) -> str:
    """keccak-256 of a UTF-8 string, i.e. the topic of an indexed `string`."""
    return "0x" + keccak(text=text).hex()


def credential_key(chain_id: int, labelhash: str) -> tuple[int, str]:
    return (chain_id, normalize_hex(labelhash))


def resolver_key(chain_id: int, address: str) -> tuple[int, str]:
    return (chain_id, normalize_address(address))


def text_record_key(chain_id: int, resolver: str, key: str) -> tuple[int, str, str]:
    return (chain_id, normalize_address(resolver), key)


def address_record_key(chain_id: int, resolver: str, coin_type: int) -> tuple[int, str, int]:
    return (chain_id, normalize_address(resolver), int(coin_type))


def metadata_key(chain_id: int, contract: str, key: str) -> tuple[int, str, str]:
    return (chain_id, normalize_address(contract), key)


def approval_key(chain_id: int, owner: str, operator: str) -> tuple[int, str, str]:
    return (chain_id, normalize_address(owner), normalize_address(operator))


def history_key(chain_id: int, entity: str, block_number: int, log_index: int) -> tuple[int, str, int, int]:
    """Key of an append-only history row; never derived from counters or clocks."""
    return (chain_id, normalize_hex(entity), int(block_number), int(log_index))


def unresolved_text_key(block_number: int, log_index: int) -> str:
    """Occurrence-scoped key for a text record whose plaintext key is unknown."""
    return f"unresolved:{block_number}:{log_index}"


def row_id(key: tuple[Any, ...]) -> str:
    """Flatten a composite key into its `chainId-a-b-...` string form."""
    return "-".join(str(part) for part in key)
