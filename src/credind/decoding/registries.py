"""All event registries for credind, one per contract role.

This module consolidates the role-specific registries using signature-based
creation via the registry_builder module. All registries are composable and
can be merged with `{**a, **b}` syntax.

Available registries:
- Registry events: make_registry_registry()
- Registrar events: make_registrar_registry()
- Resolver factory events: make_factory_registry()
- Resolver instance events: make_resolver_registry()

Example
-------
>>> from credind.decoding.registries import make_registry_registry, make_resolver_registry
>>> reg = {**make_registry_registry(), **make_resolver_registry()}
"""

from __future__ import annotations

from .registry_builder import make_registry
from .specs import EventRegistry

# Event name -> normalized event kind, per role. Names are unique within a role.
REGISTRY_EVENT_KINDS: dict[str, str] = {
    "NewLabelhashOwner": "label-claimed",
    "Transfer": "credential-transferred",
    "ResolverChanged": "resolver-changed",
    "ResolverReviewUpdated": "review-updated",
    "ExpirationExtended": "expiration-extended",
    "labelhashRentalSet": "expiration-set",
    "ApprovalForAll": "approval-for-all",
}

REGISTRAR_EVENT_KINDS: dict[str, str] = {
    "NameRegistered": "name-registered",
    "NameRenewed": "name-renewed",
}

FACTORY_EVENT_KINDS: dict[str, str] = {
    "ResolverCloneDeployed": "clone-deployed",
}

RESOLVER_EVENT_KINDS: dict[str, str] = {
    "AddrChanged": "eth-address-changed",
    "AddressChanged": "address-changed",
    "ContenthashChanged": "content-hash-changed",
    "TextChanged": "text-changed",
    "ContractMetadataUpdated": "contract-metadata-updated",
    "OwnershipTransferred": "resolver-ownership-transferred",
}


# -------------------------
# Credential registry contract
# -------------------------

def make_registry_registry() -> EventRegistry:
    """Return registry for the credential registry contract."""
    return make_registry([
        "NewLabelhashOwner(bytes32 indexed labelhash, string indexed label, address owner)",
        "Transfer(bytes32 indexed labelhash, address owner)",
        "ResolverChanged(bytes32 indexed labelhash, address resolver)",
        "ResolverReviewUpdated(bytes32 indexed labelhash, string review)",
        "ExpirationExtended(bytes32 indexed labelhash, uint256 newExpiration)",
        "labelhashRentalSet(bytes32 indexed labelhash, uint256 expiration)",
        "ApprovalForAll(address indexed owner, address indexed operator, bool approved)",
    ])


# -------------------------
# Registrar (paid registration / renewal)
# -------------------------

def make_registrar_registry() -> EventRegistry:
    """Return registry for registrar events."""
    return make_registry([
        "NameRegistered(string indexed label, address owner, uint256 cost, uint256 expires)",
        "NameRenewed(string indexed label, uint256 cost, uint256 newExpiration)",
    ])


# -------------------------
# Resolver factory
# -------------------------

def make_factory_registry() -> EventRegistry:
    """Return registry for resolver factory events (ResolverCloneDeployed)."""
    return make_registry(
        "ResolverCloneDeployed(address indexed clone, address indexed owner)"
    )


# -------------------------
# Resolver instances (factory clones and custom resolvers)
# -------------------------

def make_resolver_registry() -> EventRegistry:
    """Return registry for events emitted by resolver instances."""
    return make_registry([
        "AddrChanged(address a)",
        "AddressChanged(uint256 coinType, bytes newAddress)",
        "ContenthashChanged(bytes hash)",
        "TextChanged(string indexed key, string value)",
        "ContractMetadataUpdated(string indexed indexedKey, string key, bytes value)",
        "OwnershipTransferred(address indexed previousOwner, address indexed newOwner)",
    ])
