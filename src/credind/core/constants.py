"""Protocol constants: chains, sentinel values and well-known record keys."""

from __future__ import annotations

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HASH = "0x" + "0" * 64

# SLIP-44 coin type used by `addr(bytes32)` records.
ETH_COIN_TYPE = 60

# Suffix appended to a recovered label to build the full name.
NAME_SUFFIX = "ecs.eth"

KNOWN_CHAINS: dict[int, str] = {
    1: "mainnet",
    11155111: "sepolia",
}

# Sepolia deployment (registry, registrar, resolver factory).
SEPOLIA_REGISTRY = "0x1cc0e6c3b645d7751de7ff7ce7d17cd228e4a4f2"
SEPOLIA_REGISTRAR = "0x86a67901820da1e3523db67d02083c0a08170b37"
SEPOLIA_FACTORY = "0xb5b31deb61f6b9dd61b222ad50084e11ef53b8e3"
SEPOLIA_START_BLOCK = 9_900_600

# Text record keys whose hashes are checked against indexed `TextChanged` keys.
WELL_KNOWN_TEXT_KEYS: tuple[str, ...] = (
    "avatar",
    "description",
    "display",
    "email",
    "header",
    "keywords",
    "location",
    "mail",
    "name",
    "notice",
    "phone",
    "url",
    "com.discord",
    "com.github",
    "com.twitter",
    "org.telegram",
    "xyz.farcaster",
)
