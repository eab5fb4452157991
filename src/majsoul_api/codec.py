"""Envelope codec for the service's self-describing messages.

Every RPC payload, notification and embedded game event travels as a
``Wrapper {name = 1; data = 2}`` whose ``name`` is a category-prefixed schema
type name. Decoding is two separate steps, :func:`decode_envelope` then
:func:`decode_payload`, so that a decoded payload can itself contain further
wrapped blobs and be unwrapped the same way at any depth (see :func:`unwrap`).
"""

from __future__ import annotations

from typing import Any, Mapping, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool, json_format, message_factory
from google.protobuf.message import DecodeError, Message

from majsoul_api.errors import InvalidTypeNameError, MalformedEnvelopeError
from majsoul_api.schemas.envelope import Envelope
from majsoul_api.schemas.registry import SchemaRegistry
from majsoul_api.utils.logger_util import get_logger

logger = get_logger(__name__)

# Length of the wire-category tag leading every type name (".lq." on the
# outer layer and on nested game events alike).
CATEGORY_PREFIX_LENGTH = 4


def _build_wrapper():
    # The name field is declared as bytes so UTF-8 validation happens here,
    # with a codec error, instead of inside the protobuf runtime.
    field = descriptor_pb2.FieldDescriptorProto
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="majsoul_api/wrapper.proto", package="majsoul_api.wire", syntax="proto3")
    wrapper = file_proto.message_type.add(name="Wrapper")
    wrapper.field.add(name="name", number=1, label=field.LABEL_OPTIONAL, type=field.TYPE_BYTES)
    wrapper.field.add(name="data", number=2, label=field.LABEL_OPTIONAL, type=field.TYPE_BYTES)
    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return pool, message_factory.GetMessageClass(pool.FindMessageTypeByName("majsoul_api.wire.Wrapper"))


_WRAPPER_POOL, _Wrapper = _build_wrapper()


def _parse_wrapper(data: bytes):
    wrapper = _Wrapper()
    try:
        wrapper.ParseFromString(bytes(data))
    except DecodeError as exc:
        raise MalformedEnvelopeError(f"cannot parse envelope: {exc}") from exc
    return wrapper


def envelope_payload(data: bytes) -> bytes:
    """Payload of a wrapper whose name may be blank (RPC responses)."""
    return _parse_wrapper(data).data


def decode_envelope(data: bytes) -> Envelope:
    """Split wrapper bytes into a type name and the inner payload."""
    wrapper = _parse_wrapper(data)
    try:
        type_name = wrapper.name.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedEnvelopeError("envelope type name is not valid UTF-8") from exc
    if not type_name:
        raise MalformedEnvelopeError("envelope has an empty type name")
    return Envelope(type_name=type_name, payload=wrapper.data)


def encode_envelope(envelope: Envelope) -> bytes:
    wrapper = _Wrapper(name=envelope.type_name.encode("utf-8"), data=envelope.payload)
    return wrapper.SerializeToString()


def strip_category_prefix(type_name: str) -> str:
    if len(type_name) < CATEGORY_PREFIX_LENGTH:
        raise InvalidTypeNameError(
            f"type name {type_name!r} is shorter than its {CATEGORY_PREFIX_LENGTH}-character prefix")
    return type_name[CATEGORY_PREFIX_LENGTH:]


def decode_payload(stripped_name: str, payload: bytes, registry: SchemaRegistry) -> Message:
    """Decode ``payload`` as the schema type ``stripped_name``.

    UnknownTypeError from the registry propagates unchanged.
    """
    return registry.lookup(stripped_name).decode(payload)


def unwrap(data: bytes, registry: SchemaRegistry) -> Tuple[str, Message]:
    """Decode one wrapped blob into ``(stripped type name, message)``."""
    envelope = decode_envelope(data)
    name = strip_category_prefix(envelope.type_name)
    return name, decode_payload(name, envelope.payload, registry)


def to_plain(value: Any) -> Any:
    """Convert a decoded message into JSON-ready data; mappings pass through."""
    if isinstance(value, Message):
        return json_format.MessageToDict(value, preserving_proto_field_name=True)
    if isinstance(value, Mapping):
        return dict(value)
    return value
