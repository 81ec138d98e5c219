"""Generic event decoder using dynamic projections.

This module translates raw logs into `ParsedEvent` using an `EventRegistry`
defined by `EventSpec` + (topic|data) field specs. Projections are dynamic:
any key defined in the registry's `projection` mapping becomes a key of
`ParsedEvent.values`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from credind.core.models import Meta
from credind.decoding.specs import EventRegistry, EventSpec, resolve_projection_ref
from credind.decoding.utils import DYNAMIC_TYPES, parse_data_field, parse_topic_field

logger = logging.getLogger(__name__)

# ---------- parsed event ----------


@dataclass(slots=True)
class ParsedEvent:
    """Decoded event with open-ended `values` for dynamic projections."""

    name: str
    contract: str
    meta: Meta
    values: dict[str, Any]


# ---------- helper functions ----------


def _validate_and_get_spec(topics: Sequence[str], registry: EventRegistry) -> EventSpec | None:
    """Validate topics and retrieve event spec from registry.

    Returns None if topics are invalid or spec not found.
    """
    if not topics:
        return None
    topic0 = topics[0].lower()
    return registry.get(topic0)


def _head_words(spec: EventSpec) -> int:
    if not spec.data_fields:
        return 0
    return max(df.word_index for df in spec.data_fields) + 1


# ---------- main generic decoder (dynamic) ----------


def decode_event(
    *,
    topics: Sequence[str],
    data: bytes,
    meta: Meta,
    registry: EventRegistry,
) -> ParsedEvent | None:
    """Decode raw log (topics + data) into a `ParsedEvent`.

    Returns None when topic0 is not in the registry or the log is malformed
    (missing topics, short data section, dynamic offsets out of range).
    """
    spec = _validate_and_get_spec(topics, registry)
    if spec is None:
        return None

    # Parse topic fields
    topic_vals: dict[str, Any] = {}
    for tf in spec.topic_fields:
        if tf.index >= len(topics):
            return None
        topic_vals[tf.name] = parse_topic_field(topics[tf.index], tf)

    # Head section must be complete; dynamic tails are bounds-checked on read
    if len(data) < 32 * _head_words(spec):
        return None

    data_vals: dict[str, Any] = {}
    try:
        for df in spec.data_fields:
            data_vals[df.name] = parse_data_field(data, df)
    except ValueError as e:
        dynamic = [df.name for df in spec.data_fields if df.type in DYNAMIC_TYPES]
        logger.warning(
            "Malformed %s log at block %s index %s (%s): %s",
            spec.name, meta.block_number, meta.log_index, ",".join(dynamic), e,
        )
        return None

    # Dynamically resolve ALL projection keys
    resolved: dict[str, Any] = {}
    for out_key, ref in spec.projection.items():
        resolved[out_key] = resolve_projection_ref(ref, topic_vals, data_vals)

    return ParsedEvent(
        name=spec.name,
        contract=meta.address.lower(),
        meta=meta,
        values=resolved,  # <- open-ended dict
    )
