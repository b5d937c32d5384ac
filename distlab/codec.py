"""Protocol-buffer wire encoding for dataclass-based messages.

A message is a dataclass deriving from :class:`Message` whose fields are
declared with :func:`proto_field`. Scalar fields holding their default value
are not written, repeated numeric fields are written packed, and unknown
fields are skipped when decoding.
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass
from typing import Any, TypeVar

__all__ = [
    "EncodeError",
    "DecodeError",
    "Kind",
    "Message",
    "proto_field",
    "encode",
    "decode",
]

_VARINT = 0
_FIXED64 = 1
_LENGTH_DELIMITED = 2
_START_GROUP = 3
_END_GROUP = 4
_FIXED32 = 5

_MAX_TAG = (1 << 29) - 1
_U64_MASK = (1 << 64) - 1
_U32_MASK = (1 << 32) - 1
_METADATA_KEY = "proto"


class EncodeError(ValueError):
    """A message could not be encoded."""


class DecodeError(ValueError):
    """A buffer could not be decoded into a message."""


class Kind(enum.Enum):
    """Scalar value kinds a message field can hold."""

    INT32 = "int32"
    INT64 = "int64"
    UINT32 = "uint32"
    UINT64 = "uint64"
    BOOL = "bool"
    ENUM = "enum"
    STRING = "string"
    BYTES = "bytes"

    @property
    def is_numeric(self) -> bool:
        return self not in (Kind.STRING, Kind.BYTES)


_RANGES = {
    Kind.INT32: (-(1 << 31), (1 << 31) - 1),
    Kind.ENUM: (-(1 << 31), (1 << 31) - 1),
    Kind.INT64: (-(1 << 63), (1 << 63) - 1),
    Kind.UINT32: (0, _U32_MASK),
    Kind.UINT64: (0, _U64_MASK),
}

_DEFAULTS: dict[Kind, Any] = {
    Kind.INT32: 0,
    Kind.INT64: 0,
    Kind.UINT32: 0,
    Kind.UINT64: 0,
    Kind.ENUM: 0,
    Kind.BOOL: False,
    Kind.STRING: "",
    Kind.BYTES: b"",
}


@dataclass(frozen=True)
class _FieldSpec:
    name: str
    tag: int
    kind: Kind
    repeated: bool


def proto_field(tag: int, kind: Kind, repeated: bool = False) -> Any:
    """Declare a dataclass field carried on the wire under ``tag``."""
    if not 1 <= tag <= _MAX_TAG:
        raise ValueError(f"invalid field tag {tag}")
    metadata = {_METADATA_KEY: (tag, kind, repeated)}
    if repeated:
        return dataclasses.field(default_factory=list, metadata=metadata)
    return dataclasses.field(default=_DEFAULTS[kind], metadata=metadata)


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _key(tag: int, wire_type: int) -> bytes:
    return _encode_varint((tag << 3) | wire_type)


def _numeric_to_varint(spec: _FieldSpec, value: Any) -> int:
    if spec.kind is Kind.BOOL:
        if not isinstance(value, bool):
            raise EncodeError(f"field {spec.name!r} expects a bool, got {value!r}")
        return int(value)
    if not isinstance(value, int) or isinstance(value, bool):
        raise EncodeError(f"field {spec.name!r} expects an int, got {value!r}")
    low, high = _RANGES[spec.kind]
    if not low <= value <= high:
        raise EncodeError(f"field {spec.name!r} value {value} out of range for {spec.kind.value}")
    return value & _U64_MASK


def _payload(spec: _FieldSpec, value: Any) -> bytes:
    if spec.kind is Kind.STRING:
        if not isinstance(value, str):
            raise EncodeError(f"field {spec.name!r} expects a str, got {value!r}")
        return value.encode("utf-8")
    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise EncodeError(f"field {spec.name!r} expects bytes, got {value!r}")
    return bytes(value)


def _varint_to_value(kind: Kind, raw: int) -> Any:
    if kind is Kind.BOOL:
        return raw != 0
    if kind in (Kind.INT32, Kind.ENUM):
        raw &= _U32_MASK
        return raw - (1 << 32) if raw >> 31 else raw
    if kind is Kind.INT64:
        return raw - (1 << 64) if raw >> 63 else raw
    if kind is Kind.UINT32:
        return raw & _U32_MASK
    return raw


class _Reader:
    """Cursor over an immutable byte buffer."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    @property
    def exhausted(self) -> bool:
        return self.pos >= len(self.data)

    def varint(self) -> int:
        result = 0
        for index in range(10):
            if self.exhausted:
                raise DecodeError("buffer underflow while reading varint")
            byte = self.data[self.pos]
            self.pos += 1
            if index == 9 and byte > 1:
                raise DecodeError("invalid varint")
            result |= (byte & 0x7F) << (7 * index)
            if byte < 0x80:
                return result
        raise DecodeError("invalid varint")

    def take(self, size: int) -> bytes:
        end = self.pos + size
        if end > len(self.data):
            raise DecodeError("buffer underflow")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def key(self) -> tuple[int, int]:
        raw = self.varint()
        if raw > _U32_MASK:
            raise DecodeError(f"invalid key value: {raw}")
        wire_type = raw & 0x07
        tag = raw >> 3
        if wire_type > _FIXED32:
            raise DecodeError(f"invalid wire type value: {wire_type}")
        if tag == 0:
            raise DecodeError("invalid tag value: 0")
        return tag, wire_type

    def length_delimited(self) -> bytes:
        return self.take(self.varint())

    def skip(self, tag: int, wire_type: int) -> None:
        if wire_type == _VARINT:
            self.varint()
        elif wire_type == _FIXED64:
            self.take(8)
        elif wire_type == _FIXED32:
            self.take(4)
        elif wire_type == _LENGTH_DELIMITED:
            self.length_delimited()
        elif wire_type == _START_GROUP:
            while True:
                if self.exhausted:
                    raise DecodeError("unterminated group")
                inner_tag, inner_wire = self.key()
                if inner_wire == _END_GROUP:
                    if inner_tag != tag:
                        raise DecodeError("unexpected end group tag")
                    return
                self.skip(inner_tag, inner_wire)
        else:
            raise DecodeError("unexpected end group tag")


_SPEC_CACHE: dict[type, tuple[_FieldSpec, ...]] = {}

M = TypeVar("M", bound="Message")


class Message:
    """Base class for dataclass messages with protobuf wire encoding."""

    @classmethod
    def _specs(cls) -> tuple[_FieldSpec, ...]:
        cached = _SPEC_CACHE.get(cls)
        if cached is None:
            if not dataclasses.is_dataclass(cls):
                raise TypeError(f"{cls.__name__} must be a dataclass")
            cached = tuple(
                _FieldSpec(f.name, *f.metadata[_METADATA_KEY])
                for f in dataclasses.fields(cls)
                if _METADATA_KEY in f.metadata
            )
            _SPEC_CACHE[cls] = cached
        return cached

    def encode(self) -> bytes:
        """Return the wire encoding of this message."""
        out = bytearray()
        for spec in self._specs():
            value = getattr(self, spec.name)
            if spec.repeated:
                out += self._encode_repeated(spec, value)
            elif value != _DEFAULTS[spec.kind]:
                out += self._encode_single(spec, value)
        return bytes(out)

    @staticmethod
    def _encode_single(spec: _FieldSpec, value: Any) -> bytes:
        if spec.kind.is_numeric:
            return _key(spec.tag, _VARINT) + _encode_varint(_numeric_to_varint(spec, value))
        payload = _payload(spec, value)
        return _key(spec.tag, _LENGTH_DELIMITED) + _encode_varint(len(payload)) + payload

    @staticmethod
    def _encode_repeated(spec: _FieldSpec, values: Any) -> bytes:
        if not isinstance(values, (list, tuple)):
            raise EncodeError(f"field {spec.name!r} expects a list, got {values!r}")
        if spec.kind.is_numeric:
            if not values:
                return b""
            packed = b"".join(_encode_varint(_numeric_to_varint(spec, v)) for v in values)
            return _key(spec.tag, _LENGTH_DELIMITED) + _encode_varint(len(packed)) + packed
        out = bytearray()
        for item in values:
            payload = _payload(spec, item)
            out += _key(spec.tag, _LENGTH_DELIMITED) + _encode_varint(len(payload)) + payload
        return bytes(out)

    def encoded_len(self) -> int:
        """Number of bytes :meth:`encode` produces."""
        return len(self.encode())

    @classmethod
    def decode(cls: type[M], data: bytes) -> M:
        """Build a message of this type from its wire encoding."""
        message = cls()
        by_tag = {spec.tag: spec for spec in cls._specs()}
        reader = _Reader(bytes(data))
        while not reader.exhausted:
            tag, wire_type = reader.key()
            spec = by_tag.get(tag)
            if spec is None:
                reader.skip(tag, wire_type)
            else:
                message._merge(spec, wire_type, reader)
        return message

    def _merge(self, spec: _FieldSpec, wire_type: int, reader: _Reader) -> None:
        context = f"{type(self).__name__}.{spec.name}"
        if spec.kind.is_numeric:
            if wire_type == _VARINT:
                value = _varint_to_value(spec.kind, reader.varint())
                if spec.repeated:
                    getattr(self, spec.name).append(value)
                else:
                    setattr(self, spec.name, value)
                return
            if spec.repeated and wire_type == _LENGTH_DELIMITED:
                packed = _Reader(reader.length_delimited())
                items = getattr(self, spec.name)
                while not packed.exhausted:
                    items.append(_varint_to_value(spec.kind, packed.varint()))
                return
            raise DecodeError(f"{context}: invalid wire type {wire_type}")
        if wire_type != _LENGTH_DELIMITED:
            raise DecodeError(f"{context}: invalid wire type {wire_type}")
        payload = reader.length_delimited()
        if spec.kind is Kind.STRING:
            try:
                value = payload.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DecodeError(f"{context}: invalid string value: data is not UTF-8 encoded") from exc
        else:
            value = payload
        if spec.repeated:
            getattr(self, spec.name).append(value)
        else:
            setattr(self, spec.name, value)

    def clear(self) -> None:
        """Reset every field to its default value."""
        for spec in self._specs():
            setattr(self, spec.name, [] if spec.repeated else _DEFAULTS[spec.kind])


def encode(message: Message) -> bytes:
    """Encode ``message`` to bytes."""
    if not isinstance(message, Message):
        raise EncodeError(f"not a message: {message!r}")
    return message.encode()


def decode(message_type: type[M], data: bytes) -> M:
    """Decode ``data`` into a new instance of ``message_type``."""
    return message_type.decode(data)