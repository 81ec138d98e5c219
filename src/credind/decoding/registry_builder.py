"""Build EventSpecs and registries from Solidity event signatures.

    >>> spec = event_spec_from_signature("ResolverChanged(bytes32 indexed labelhash, address resolver)")
    >>> [f.name for f in spec.topic_fields], [f.name for f in spec.data_fields]
    (['labelhash'], ['resolver'])

Every field is projected under its own name; the normalizer works on those names.
"""

from __future__ import annotations

from typing import NamedTuple

from eth_utils import keccak

from .specs import DataFieldSpec, EventRegistry, EventSpec, Projection, ProjectionRefs, TopicFieldSpec


class EventParam(NamedTuple):
    name: str
    abi_type: str
    indexed: bool


def _param_fragments(body: str) -> list[str]:
    # commas inside tuple types do not separate parameters
    fragments, depth, start = [], 0, 0
    for i, ch in enumerate(body):
        depth += (ch == "(") - (ch == ")")
        if ch == "," and depth == 0:
            fragments.append(body[start:i])
            start = i + 1
    fragments.append(body[start:])
    return [f.strip() for f in fragments if f.strip()]


def _event_param(fragment: str, position: int) -> EventParam:
    words = fragment.split()
    indexed = "indexed" in words
    words = [w for w in words if w != "indexed"]
    if len(words) == 1:
        return EventParam(f"arg{position}", words[0], indexed)
    return EventParam(words[-1], " ".join(words[:-1]), indexed)


def parse_event_signature(signature: str) -> tuple[str, list[EventParam]]:
    """Split "Name(type [indexed] name, ...)" into the event name and its parameters."""
    sig = signature.strip()
    lp, rp = sig.find("("), sig.rfind(")")
    if lp <= 0 or rp < lp:
        raise ValueError(f"Invalid event signature: {signature}")
    body = sig[lp + 1 : rp]
    return sig[:lp].strip(), [_event_param(f, i) for i, f in enumerate(_param_fragments(body))]


def event_spec_from_signature(signature: str) -> EventSpec:
    name, params = parse_event_signature(signature)
    canonical = f"{name}({','.join(p.abi_type for p in params)})"

    topics = [p for p in params if p.indexed]
    data = [p for p in params if not p.indexed]
    projection: Projection = {
        **{p.name: ProjectionRefs.TopicRef(name=p.name) for p in topics},
        **{p.name: ProjectionRefs.DataRef(name=p.name) for p in data},
    }
    return EventSpec(
        topic0="0x" + keccak(text=canonical).hex(),
        name=name,
        topic_fields=[TopicFieldSpec(p.name, i + 1, p.abi_type) for i, p in enumerate(topics)],
        data_fields=[DataFieldSpec(p.name, i, p.abi_type) for i, p in enumerate(data)],
        projection=projection,
    )


def make_registry(signatures: str | list[str]) -> EventRegistry:
    """Registry keyed by topic0 for one or several signatures."""
    if isinstance(signatures, str):
        signatures = [signatures]
    return {spec.topic0: spec for spec in map(event_spec_from_signature, signatures)}
