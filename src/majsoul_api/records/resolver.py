"""Decoding of game record blobs into ordered event logs.

A record blob is an envelope around the game-record message, which holds
its schema version and either a legacy ``records`` list of wrapped events or
a modern ``actions`` list whose ``result`` field carries the wrapped event.
One layout is picked per record; both yield the same output.
"""

from __future__ import annotations

from typing import Iterator, List, Sequence, Union

from google.protobuf.message import Message

from majsoul_api.codec import to_plain, unwrap
from majsoul_api.errors import CodecError, RecordDecodeError
from majsoul_api.schemas.envelope import DecodedEvent
from majsoul_api.schemas.registry import SchemaRegistry
from majsoul_api.utils.logger_util import get_logger

logger = get_logger(__name__)

# First game-record schema version written with the actions layout.
MODERN_LAYOUT_VERSION = 210715


class LegacyLayout:
    """Every element of ``records`` is a wrapped event."""

    name = "legacy"

    def blobs(self, record: Message) -> Iterator[bytes]:
        yield from record.records


class ModernLayout:
    """Each action's ``result`` is a wrapped event; actions without one are skipped."""

    name = "modern"

    def blobs(self, record: Message) -> Iterator[bytes]:
        for action in record.actions:
            if action.result:
                yield action.result


RecordLayout = Union[LegacyLayout, ModernLayout]


def select_layout(version: int, records: Sequence[bytes]) -> RecordLayout:
    if version < MODERN_LAYOUT_VERSION and len(records) > 0:
        return LegacyLayout()
    return ModernLayout()


class RecordResolver:
    def __init__(self, registry: SchemaRegistry):
        self.registry = registry

    def resolve(self, raw: bytes, client_version: str) -> List[DecodedEvent]:
        """Decode ``raw`` into ``[DecodedEvent(name, data), ...]`` in received order.

        Raises:
            RecordDecodeError: any level failed to decode; no partial result
                is returned and ``cause`` holds the innermost error.
        """
        try:
            record_name, record = unwrap(raw, self.registry)
        except CodecError as exc:
            logger.warning("game record envelope undecodable (%s): %s", client_version, exc)
            raise RecordDecodeError(f"cannot decode game record: {exc}", exc) from exc

        fields = record.DESCRIPTOR.fields_by_name
        if not {"version", "records", "actions"} <= set(fields):
            raise RecordDecodeError(f"{record_name} is not a game record type")

        layout = select_layout(record.version, record.records)
        logger.debug("%s version %s uses the %s layout", record_name, record.version, layout.name)

        events: List[DecodedEvent] = []
        for position, blob in enumerate(layout.blobs(record)):
            try:
                name, message = unwrap(blob, self.registry)
            except CodecError as exc:
                logger.warning("event %d of %s undecodable (%s layout, %s): %s",
                               position, record_name, layout.name, client_version, exc)
                raise RecordDecodeError(f"cannot decode event {position} of {record_name}: {exc}", exc) from exc
            events.append(DecodedEvent(name=name, data=to_plain(message)))
        return events
