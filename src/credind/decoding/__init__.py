"""Event decoding with dynamic projections.

This package provides:
- Event specification system (EventSpec, TopicFieldSpec, DataFieldSpec)
- Generic decoder that translates raw logs into ParsedEvent objects
- Signature-based registry builder
- Pre-built registries for each contract role
"""

from credind.decoding.decoder import ParsedEvent, decode_event
from credind.decoding.registry_builder import event_spec_from_signature, make_registry
from credind.decoding.specs import (
    DataFieldSpec,
    EventRegistry,
    EventSpec,
    Projection,
    ProjectionRefs,
    TopicFieldSpec,
)

__all__ = [
    "ParsedEvent",
    "decode_event",
    "event_spec_from_signature",
    "make_registry",
    "DataFieldSpec",
    "EventRegistry",
    "EventSpec",
    "Projection",
    "ProjectionRefs",
    "TopicFieldSpec",
]
