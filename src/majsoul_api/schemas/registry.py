"""Lazy message-type registry over a protobufjs-style JSON descriptor.

The game service publishes its schema as JSON (``{"nested": {"lq": {"nested":
{...}}}}``) rather than compiled ``.proto`` files. Nothing is compiled up
front: a lookup gathers the requested message and the types it references,
compiles just that slice into a private descriptor pool and memoizes the
resulting message class. Broken or dangling types that no lookup touches are
never compiled and never fail.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Set, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool, json_format, message_factory
from google.protobuf.message import DecodeError, Message

from majsoul_api.errors import PayloadDecodeError, UnknownMethodError, UnknownTypeError
from majsoul_api.utils.logger_util import get_logger

logger = get_logger(__name__)

_FDP = descriptor_pb2.FieldDescriptorProto

SCALAR_TYPES = {
    "double": _FDP.TYPE_DOUBLE,
    "float": _FDP.TYPE_FLOAT,
    "int32": _FDP.TYPE_INT32,
    "uint32": _FDP.TYPE_UINT32,
    "sint32": _FDP.TYPE_SINT32,
    "fixed32": _FDP.TYPE_FIXED32,
    "sfixed32": _FDP.TYPE_SFIXED32,
    "int64": _FDP.TYPE_INT64,
    "uint64": _FDP.TYPE_UINT64,
    "sint64": _FDP.TYPE_SINT64,
    "fixed64": _FDP.TYPE_FIXED64,
    "sfixed64": _FDP.TYPE_SFIXED64,
    "bool": _FDP.TYPE_BOOL,
    "string": _FDP.TYPE_STRING,
    "bytes": _FDP.TYPE_BYTES,
}

MESSAGE = "message"
ENUM = "enum"
SERVICE = "service"
NAMESPACE = "namespace"


def _kind(node: Mapping[str, Any]) -> str:
    if "fields" in node:
        return MESSAGE
    if "values" in node:
        return ENUM
    if "methods" in node:
        return SERVICE
    return NAMESPACE


def _parent(full_name: str) -> str:
    return full_name.rpartition(".")[0]


def _short(full_name: str) -> str:
    return full_name.rpartition(".")[2]


def _map_entry_name(field_name: str) -> str:
    # same naming protoc uses for synthetic map entry messages
    return "".join(part[:1].upper() + part[1:] for part in field_name.split("_")) + "Entry"


class SchemaType:
    """A compiled message type: decodes payload bytes and encodes field dicts."""

    def __init__(self, full_name: str, message_class, pool: descriptor_pool.DescriptorPool):
        self.full_name = full_name
        self.message_class = message_class
        # the pool owns the descriptors behind message_class
        self._pool = pool

    @property
    def name(self) -> str:
        return _short(self.full_name)

    @property
    def field_names(self) -> Set[str]:
        return set(self.message_class.DESCRIPTOR.fields_by_name)

    def decode(self, payload: bytes) -> Message:
        msg = self.message_class()
        try:
            msg.ParseFromString(bytes(payload))
        except DecodeError as exc:
            raise PayloadDecodeError(f"cannot decode {self.full_name}: {exc}") from exc
        return msg

    def encode(self, fields: Mapping[str, Any]) -> bytes:
        """Encode a dict in protobuf JSON mapping (bytes as base64) to wire bytes."""
        msg = json_format.ParseDict(dict(fields), self.message_class())
        return msg.SerializeToString()

    def __repr__(self) -> str:
        return f"SchemaType({self.full_name!r})"


class SchemaRegistry:
    """Type lookup by name over the schema descriptor fetched at startup.

    Names may be short (``RecordNewRound``), package-qualified
    (``lq.RecordNewRound``) or absolute (``.lq.RecordNewRound``). References
    inside the descriptor resolve the way protobufjs resolves them: absolute
    names as written, relative names from the referencing scope outward.
    """

    def __init__(self, descriptor: Mapping[str, Any], package: str = "lq"):
        self.package = package
        self._types: Dict[str, Tuple[str, Mapping[str, Any]]] = {}
        self._children: Dict[str, list] = {}
        self._compiled: Dict[str, SchemaType] = {}

        node: Optional[Mapping[str, Any]] = descriptor
        for part in package.split("."):
            node = (node.get("nested") or {}).get(part) if node is not None else None
        if node is None:
            logger.warning("schema descriptor has no package %r; every lookup will fail", package)
        else:
            self._index(node, package)
        logger.info("schema registry indexed %d types under %r", len(self._types), package)

    def _index(self, node: Mapping[str, Any], prefix: str) -> None:
        for name, child in (node.get("nested") or {}).items():
            full = f"{prefix}.{name}"
            kind = _kind(child)
            if kind != NAMESPACE:
                self._types[full] = (kind, child)
                self._children.setdefault(prefix, []).append(full)
            self._index(child, full)

    def __contains__(self, type_name: str) -> bool:
        try:
            self._qualify(type_name, (MESSAGE,))
        except UnknownTypeError:
            return False
        return True

    def __len__(self) -> int:
        return len(self._types)

    # -- name resolution

    def _qualify(self, type_name: str, kinds: Iterable[str]) -> str:
        kinds = tuple(kinds)
        name = type_name[1:] if type_name.startswith(".") else type_name
        for candidate in (name, f"{self.package}.{name}"):
            entry = self._types.get(candidate)
            if entry is not None and entry[0] in kinds:
                return candidate
        raise UnknownTypeError(type_name)

    def _resolve(self, ref: str, scope: str, kinds: Iterable[str] = (MESSAGE, ENUM)) -> str:
        kinds = tuple(kinds)
        if ref.startswith("."):
            entry = self._types.get(ref[1:])
            if entry is not None and entry[0] in kinds:
                return ref[1:]
            raise UnknownTypeError(ref)
        parts = scope.split(".") if scope else []
        while True:
            candidate = ".".join(parts + [ref])
            entry = self._types.get(candidate)
            if entry is not None and entry[0] in kinds:
                return candidate
            if not parts:
                break
            parts.pop()
        raise UnknownTypeError(ref, f"unknown schema type {ref!r} referenced from {scope!r}")

    # -- lookups

    def lookup(self, type_name: str) -> SchemaType:
        """Return the compiled message type named ``type_name``.

        Raises:
            UnknownTypeError: the name, or a type it depends on, is absent.
        """
        full = self._qualify(type_name, (MESSAGE,))
        compiled = self._compiled.get(full)
        if compiled is None:
            compiled = self._compile(full)
            self._compiled[full] = compiled
        return compiled

    def lookup_method(self, service: str, method: str) -> Tuple[SchemaType, SchemaType]:
        """Return the (request, response) types of ``service.method``."""
        try:
            full_service = self._qualify(service, (SERVICE,))
        except UnknownTypeError:
            raise UnknownMethodError(service, f"unknown service: {service!r}") from None
        methods = self._types[full_service][1].get("methods") or {}
        method_def = methods.get(method)
        if method_def is None:
            raise UnknownMethodError(f"{service}.{method}", f"unknown method: {service}.{method}")
        request = self._resolve(method_def["requestType"], full_service, (MESSAGE,))
        response = self._resolve(method_def["responseType"], full_service, (MESSAGE,))
        return self.lookup("." + request), self.lookup("." + response)

    # -- compilation

    def _closure(self, full: str) -> Set[str]:
        seen: Set[str] = set()
        stack = [full]
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)
            kind, node = self._types[name]
            if kind != MESSAGE:
                continue
            for field in node["fields"].values():
                if field["type"] not in SCALAR_TYPES:
                    stack.append(self._resolve(field["type"], name))
        return seen

    def _compile(self, full: str) -> SchemaType:
        closure = self._closure(full)
        needed = set(closure)
        for name in closure:
            parent = _parent(name)
            while parent != self.package:
                entry = self._types.get(parent)
                if entry is None or entry[0] != MESSAGE:
                    raise UnknownTypeError(name, f"{name!r} sits in a nested namespace, which is not supported")
                needed.add(parent)
                parent = _parent(parent)

        file_proto = descriptor_pb2.FileDescriptorProto(
            name=f"{full}.proto", package=self.package, syntax="proto2")
        for name in self._children.get(self.package, []):
            if name not in needed:
                continue
            kind, node = self._types[name]
            if kind == ENUM:
                self._enum_proto(node, file_proto.enum_type.add(name=_short(name)))
            elif kind == MESSAGE:
                self._message_proto(name, node, needed, closure, file_proto.message_type.add())

        pool = descriptor_pool.DescriptorPool()
        try:
            pool.AddSerializedFile(file_proto.SerializeToString())
            descriptor = pool.FindMessageTypeByName(full)
        except (TypeError, ValueError, KeyError) as exc:
            raise UnknownTypeError(full, f"cannot compile schema type {full!r}: {exc}") from exc
        logger.debug("compiled %s with %d dependent types", full, len(closure) - 1)
        return SchemaType(full, message_factory.GetMessageClass(descriptor), pool)

    def _message_proto(self, full, node, needed, closure, proto) -> None:
        proto.name = _short(full)
        for child in self._children.get(full, []):
            if child not in needed:
                continue
            kind, child_node = self._types[child]
            if kind == ENUM:
                self._enum_proto(child_node, proto.enum_type.add(name=_short(child)))
            elif kind == MESSAGE:
                self._message_proto(child, child_node, needed, closure, proto.nested_type.add())
        if full not in closure:
            # container of a needed nested type; its own fields are not needed
            return

        oneof_index: Dict[str, int] = {}
        for index, (oneof_name, oneof) in enumerate((node.get("oneofs") or {}).items()):
            proto.oneof_decl.add(name=oneof_name)
            for member in oneof.get("oneof", []):
                oneof_index[member] = index

        for field_name, field in node["fields"].items():
            field_proto = proto.field.add(name=field_name, number=int(field["id"]))
            if field_name in oneof_index:
                field_proto.oneof_index = oneof_index[field_name]
            if "keyType" in field:
                entry = proto.nested_type.add(name=_map_entry_name(field_name))
                entry.options.map_entry = True
                entry.field.add(name="key", number=1, label=_FDP.LABEL_OPTIONAL,
                                type=SCALAR_TYPES[field["keyType"]])
                value = entry.field.add(name="value", number=2, label=_FDP.LABEL_OPTIONAL)
                self._set_type(value, field["type"], full)
                field_proto.label = _FDP.LABEL_REPEATED
                field_proto.type = _FDP.TYPE_MESSAGE
                field_proto.type_name = f".{full}.{entry.name}"
                continue
            if field.get("rule") == "repeated":
                field_proto.label = _FDP.LABEL_REPEATED
            else:
                # required is relaxed to optional so partial messages still decode
                field_proto.label = _FDP.LABEL_OPTIONAL
            self._set_type(field_proto, field["type"], full)

    def _set_type(self, field_proto, type_ref: str, scope: str) -> None:
        if type_ref in SCALAR_TYPES:
            field_proto.type = SCALAR_TYPES[type_ref]
            return
        target = self._resolve(type_ref, scope)
        field_proto.type = _FDP.TYPE_ENUM if self._types[target][0] == ENUM else _FDP.TYPE_MESSAGE
        field_proto.type_name = "." + target

    @staticmethod
    def _enum_proto(node, proto) -> None:
        numbers = set()
        for value_name, number in node["values"].items():
            if number in numbers:
                proto.options.allow_alias = True
            numbers.add(number)
            proto.value.add(name=value_name, number=int(number))
