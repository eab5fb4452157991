"""Wire-level models and the dynamic schema registry."""

from .envelope import DecodedEvent, Envelope
from .registry import SchemaRegistry, SchemaType

__all__ = ["DecodedEvent", "Envelope", "SchemaRegistry", "SchemaType"]
