from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from credind.core.constants import (
    KNOWN_CHAINS,
    SEPOLIA_FACTORY,
    SEPOLIA_REGISTRAR,
    SEPOLIA_REGISTRY,
    SEPOLIA_START_BLOCK,
)
from credind.core.errors import ConfigError

ENV_PREFIX = "CREDIND_"


@dataclass(frozen=True)
class ChainConfig:
    """Configuration for indexing one chain instance."""

    chain_id: int
    chain_name: str
    rpc_url: str
    registry: str
    registrar: str
    factory: str
    start_block: int | str = 0
    end_block: int | str = "latest"
    step: int = 2_000
    confirmations: int = 0
    timeout_s: int = 20
    read_timeout_s: float = 5.0

    def static_addresses(self) -> list[str]:
        """Addresses of the contracts known before indexing starts."""
        return [self.registry.lower(), self.registrar.lower(), self.factory.lower()]


@dataclass(frozen=True)
class IndexerConfig:
    """Configuration for the multi-chain indexer process."""

    chains: list[ChainConfig]
    db_path: Path = Path("./data/credind.duckdb")
    out_root: Path = Path("./data")
    poll_interval_s: float = 12.0
    follow: bool = False


@dataclass(frozen=True)
class ApiConfig:
    """Configuration for the read API."""

    host: str = "127.0.0.1"
    port: int = 42069
    api_key: str | None = None
    allowed_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    default_limit: int = 50
    max_limit: int = 100


def _env(env: Mapping[str, str], name: str, default: str | None = None) -> str | None:
    value = env.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from e


def _chain_from_env(env: Mapping[str, str], chain_id: int, chain_name: str, rpc_url: str) -> ChainConfig:
    defaults: dict[str, str | None] = {"REGISTRY": None, "REGISTRAR": None, "FACTORY": None}
    start_default: int = 0
    if chain_name == "sepolia":
        defaults = {"REGISTRY": SEPOLIA_REGISTRY, "REGISTRAR": SEPOLIA_REGISTRAR, "FACTORY": SEPOLIA_FACTORY}
        start_default = SEPOLIA_START_BLOCK

    addresses: dict[str, str] = {}
    for name, default in defaults.items():
        value = _env(env, f"{name}_{chain_id}", default)
        if value is None:
            raise ConfigError(f"{ENV_PREFIX}{name}_{chain_id} is required for chain {chain_name}")
        addresses[name] = value.lower()

    start_raw = _env(env, f"START_BLOCK_{chain_id}")
    start_block = _int(start_raw, f"START_BLOCK_{chain_id}") if start_raw else start_default
    end_raw = _env(env, f"END_BLOCK_{chain_id}", "latest")
    end_block: int | str = end_raw if end_raw == "latest" else _int(end_raw, f"END_BLOCK_{chain_id}")

    return ChainConfig(
        chain_id=chain_id,
        chain_name=chain_name,
        rpc_url=rpc_url,
        registry=addresses["REGISTRY"],
        registrar=addresses["REGISTRAR"],
        factory=addresses["FACTORY"],
        start_block=start_block,
        end_block=end_block,
        step=_int(_env(env, "STEP", "2000"), "STEP"),
        confirmations=_int(_env(env, "CONFIRMATIONS", "0"), "CONFIRMATIONS"),
    )


def load_config_from_env(env: Mapping[str, str] | None = None) -> IndexerConfig:
    """Build an IndexerConfig from `CREDIND_*` environment variables.

    Only chains with an explicit `CREDIND_RPC_URL_<chainId>` are included.
    """
    env = os.environ if env is None else env
    chains: list[ChainConfig] = []
    for chain_id, chain_name in KNOWN_CHAINS.items():
        rpc_url = _env(env, f"RPC_URL_{chain_id}")
        if rpc_url:
            chains.append(_chain_from_env(env, chain_id, chain_name, rpc_url))

    out_root = Path(_env(env, "OUT_ROOT", "./data"))
    db_path = Path(_env(env, "DB_PATH", str(out_root / "credind.duckdb")))
    return IndexerConfig(
        chains=chains,
        db_path=db_path,
        out_root=out_root,
        poll_interval_s=float(_env(env, "POLL_INTERVAL_S", "12")),
    )


def load_api_config_from_env(env: Mapping[str, str] | None = None) -> ApiConfig:
    """Build an ApiConfig from `CREDIND_*` environment variables."""
    env = os.environ if env is None else env
    origins = _env(env, "ALLOWED_ORIGINS")
    return ApiConfig(
        host=_env(env, "API_HOST", "127.0.0.1"),
        port=_int(_env(env, "API_PORT", "42069"), "API_PORT"),
        api_key=_env(env, "API_KEY"),
        allowed_origins=[o.strip() for o in origins.split(",") if o.strip()] if origins else ["http://localhost:3000"],
    )
