"""Messages of the pprof profile format with their protobuf wire encoding."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_UINT64_MAX = (1 << 64) - 1

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_LEN = 2
_WIRE_FIXED32 = 5

_VARINT_KINDS = frozenset({"int64", "uint64", "bool"})
_DEFAULTS = {"int64": 0, "uint64": 0, "bool": False, "string": ""}


class DecodeError(ValueError):
    """The bytes are not a valid encoding of the requested message."""


@dataclass(frozen=True)
class _Spec:
    number: int
    kind: str
    repeated: bool = False
    message: Any = None


def _field(number: int, kind: str, *, repeated: bool = False, message: Any = None) -> Any:
    metadata = {"proto": _Spec(number, kind, repeated, message)}
    if repeated:
        return field(default_factory=list, metadata=metadata)
    if kind == "message":
        return field(default=None, metadata=metadata)
    return field(default=_DEFAULTS[kind], metadata=metadata)


def _varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _key(number: int, wire_type: int) -> bytes:
    return _varint((number << 3) | wire_type)


def _to_wire(kind: str, value: Any) -> int:
    if kind == "bool":
        return 1 if value else 0
    if kind == "int64":
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise ValueError(f"{value} does not fit in int64")
        return value & _UINT64_MAX
    if not 0 <= value <= _UINT64_MAX:
        raise ValueError(f"{value} does not fit in uint64")
    return value


def _from_wire(kind: str, raw: int) -> Any:
    raw &= _UINT64_MAX
    if kind == "bool":
        return raw != 0
    if kind == "int64" and raw > _INT64_MAX:
        return raw - (1 << 64)
    return raw


def _length_delimited(number: int, payload: bytes) -> bytes:
    return _key(number, _WIRE_LEN) + _varint(len(payload)) + payload


def _encode_field(spec: _Spec, value: Any) -> bytes:
    if spec.repeated:
        if not value:
            return b""
        if spec.kind in _VARINT_KINDS:
            packed = b"".join(_varint(_to_wire(spec.kind, item)) for item in value)
            return _length_delimited(spec.number, packed)
        if spec.kind == "string":
            return b"".join(_length_delimited(spec.number, item.encode("utf-8")) for item in value)
        return b"".join(_length_delimited(spec.number, item.encode()) for item in value)

    if spec.kind == "message":
        return b"" if value is None else _length_delimited(spec.number, value.encode())
    if value == _DEFAULTS[spec.kind]:
        return b""
    if spec.kind == "string":
        return _length_delimited(spec.number, value.encode("utf-8"))
    return _key(spec.number, _WIRE_VARINT) + _varint(_to_wire(spec.kind, value))


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    def at_end(self) -> bool:
        return self._pos >= len(self._data)

    def varint(self) -> int:
        result = 0
        shift = 0
        while True:
            if self._pos >= len(self._data):
                raise DecodeError("truncated varint")
            byte = self._data[self._pos]
            self._pos += 1
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result
            shift += 7
            if shift >= 70:
                raise DecodeError("varint is too long")

    def take(self, length: int) -> bytes:
        if self._pos + length > len(self._data):
            raise DecodeError("truncated field")
        chunk = bytes(self._data[self._pos:self._pos + length])
        self._pos += length
        return chunk

    def skip(self, wire_type: int) -> None:
        if wire_type == _WIRE_VARINT:
            self.varint()
        elif wire_type == _WIRE_FIXED64:
            self.take(8)
        elif wire_type == _WIRE_LEN:
            self.take(self.varint())
        elif wire_type == _WIRE_FIXED32:
            self.take(4)
        else:
            raise DecodeError(f"unsupported wire type {wire_type}")


def _expect(wire_type: int, wanted: int, spec: _Spec) -> None:
    if wire_type != wanted:
        raise DecodeError(f"field {spec.number} has wire type {wire_type}, expected {wanted}")


def _decode_field(reader: _Reader, spec: _Spec, wire_type: int, name: str, values: dict) -> None:
    if spec.kind in _VARINT_KINDS:
        if spec.repeated and wire_type == _WIRE_LEN:
            packed = _Reader(reader.take(reader.varint()))
            items = values.setdefault(name, [])
            while not packed.at_end():
                items.append(_from_wire(spec.kind, packed.varint()))
            return
        _expect(wire_type, _WIRE_VARINT, spec)
        value = _from_wire(spec.kind, reader.varint())
    elif spec.kind == "string":
        _expect(wire_type, _WIRE_LEN, spec)
        try:
            value = reader.take(reader.varint()).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"field {spec.number} is not valid UTF-8") from exc
    else:
        _expect(wire_type, _WIRE_LEN, spec)
        value = spec.message.decode(reader.take(reader.varint()))

    if spec.repeated:
        values.setdefault(name, []).append(value)
    else:
        values[name] = value


class Message:
    """Base of the profile messages: protobuf encoding driven by field metadata."""

    def encode(self) -> bytes:
        """Serialise to protobuf wire format."""
        return b"".join(
            _encode_field(f.metadata["proto"], getattr(self, f.name))
            for f in dataclasses.fields(self)
        )

    @classmethod
    def decode(cls, data: bytes) -> Any:
        """Parse protobuf wire format; unknown fields are skipped."""
        specs = {
            f.metadata["proto"].number: (f.name, f.metadata["proto"])
            for f in dataclasses.fields(cls)
        }
        values: dict[str, Any] = {}
        reader = _Reader(data)
        while not reader.at_end():
            key = reader.varint()
            number, wire_type = key >> 3, key & 0x7
            if number == 0:
                raise DecodeError("field number 0 is invalid")
            known = specs.get(number)
            if known is None:
                reader.skip(wire_type)
                continue
            name, spec = known
            _decode_field(reader, spec, wire_type, name, values)
        return cls(**values)


@dataclass
class ValueType(Message):
    """The semantics and unit of a sample value, as string-table indices."""

    type: int = _field(1, "int64")
    unit: int = _field(2, "int64")


@dataclass
class Label(Message):
    """Extra context attached to a sample."""

    key: int = _field(1, "int64")
    str: int = _field(2, "int64")
    num: int = _field(3, "int64")
    num_unit: int = _field(4, "int64")


@dataclass
class Sample(Message):
    """Values recorded for one stack; the leaf is ``location_id[0]``."""

    location_id: list = _field(1, "uint64", repeated=True)
    value: list = _field(2, "int64", repeated=True)
    label: list = _field(3, "message", repeated=True, message=Label)


@dataclass
class Mapping(Message):
    """An address range mapped to a binary or library."""

    id: int = _field(1, "uint64")
    memory_start: int = _field(2, "uint64")
    memory_limit: int = _field(3, "uint64")
    file_offset: int = _field(4, "uint64")
    filename: int = _field(5, "int64")
    build_id: int = _field(6, "int64")
    has_functions: bool = _field(7, "bool")
    has_filenames: bool = _field(8, "bool")
    has_line_numbers: bool = _field(9, "bool")
    has_inline_frames: bool = _field(10, "bool")


@dataclass
class Line(Message):
    """A function and a line number within it."""

    function_id: int = _field(1, "uint64")
    line: int = _field(2, "int64")


@dataclass
class Location(Message):
    """A program location; several lines mean inlined functions."""

    id: int = _field(1, "uint64")
    mapping_id: int = _field(2, "uint64")
    address: int = _field(3, "uint64")
    line: list = _field(4, "message", repeated=True, message=Line)
    is_folded: bool = _field(5, "bool")


@dataclass
class Function(Message):
    """A function, with names and file as string-table indices."""

    id: int = _field(1, "uint64")
    name: int = _field(2, "int64")
    system_name: int = _field(3, "int64")
    filename: int = _field(4, "int64")
    start_line: int = _field(5, "int64")


@dataclass
class Profile(Message):
    """A whole profile: samples, locations, functions and the string table."""

    sample_type: list = _field(1, "message", repeated=True, message=ValueType)
    sample: list = _field(2, "message", repeated=True, message=Sample)
    mapping: list = _field(3, "message", repeated=True, message=Mapping)
    location: list = _field(4, "message", repeated=True, message=Location)
    function: list = _field(5, "message", repeated=True, message=Function)
    string_table: list = _field(6, "string", repeated=True)
    drop_frames: int = _field(7, "int64")
    keep_frames: int = _field(8, "int64")
    time_nanos: int = _field(9, "int64")
    duration_nanos: int = _field(10, "int64")
    period_type: ValueType | None = _field(11, "message", message=ValueType)
    period: int = _field(12, "int64")
    comment: list = _field(13, "int64", repeated=True)
    default_sample_type: int = _field(14, "int64")