"""Wire messages stored in Redis, encoded in the protocol buffer format."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from asynq.errors import ProtoDecodeError, ProtoEncodeError

__all__ = [
    "TaskMessage",
    "ServerInfo",
    "WorkerInfo",
    "SchedulerEntry",
    "SchedulerEnqueueEvent",
]

_MASK64 = (1 << 64) - 1
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_LEN = 2
_WIRE_FIXED32 = 5


class _Kind(Enum):
    STRING = auto()
    BYTES = auto()
    INT32 = auto()
    INT64 = auto()
    BOOL = auto()
    TIMESTAMP = auto()
    STRING_INT32_MAP = auto()
    REPEATED_STRING = auto()


class _FieldSpec(NamedTuple):
    tag: int
    name: str
    kind: _Kind


_WIRE_OF_KIND = {
    _Kind.STRING: _WIRE_LEN,
    _Kind.BYTES: _WIRE_LEN,
    _Kind.INT32: _WIRE_VARINT,
    _Kind.INT64: _WIRE_VARINT,
    _Kind.BOOL: _WIRE_VARINT,
    _Kind.TIMESTAMP: _WIRE_LEN,
    _Kind.STRING_INT32_MAP: _WIRE_LEN,
    _Kind.REPEATED_STRING: _WIRE_LEN,
}

_MAP_KEY = _FieldSpec(1, "key", _Kind.STRING)
_MAP_VALUE = _FieldSpec(2, "value", _Kind.INT32)
_TS_SECONDS = _FieldSpec(1, "seconds", _Kind.INT64)
_TS_NANOS = _FieldSpec(2, "nanos", _Kind.INT32)


# --- low-level wire helpers -------------------------------------------------


def _varint(value: int) -> bytes:
    value &= _MASK64
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _key(tag: int, wire: int) -> bytes:
    return _varint((tag << 3) | wire)


def _len_delimited(tag: int, payload: bytes) -> bytes:
    return _key(tag, _WIRE_LEN) + _varint(len(payload)) + payload


def _check_range(name: str, value: int, bits: int) -> None:
    low, high = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    if not low <= value <= high:
        raise ProtoEncodeError(f"field {name!r} value {value} does not fit in int{bits}")


def _to_signed(raw: int, bits: int) -> int:
    raw &= (1 << bits) - 1
    return raw - (1 << bits) if raw >> (bits - 1) else raw


def _read_varint(data: bytes, pos: int) -> Tuple[int, int]:
    result = 0
    for shift in range(0, 70, 7):
        if pos >= len(data):
            raise ProtoDecodeError("unexpected end of buffer")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _MASK64, pos
    raise ProtoDecodeError("varint is too long")


def _take(data: bytes, pos: int, length: int) -> Tuple[bytes, int]:
    end = pos + length
    if end > len(data):
        raise ProtoDecodeError("unexpected end of buffer")
    return data[pos:end], end


def _iter_fields(data: bytes) -> Iterator[Tuple[int, int, object]]:
    """Yield ``(tag, wire_type, value)`` for every field in ``data``."""
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        tag, wire = key >> 3, key & 0x7
        if tag == 0:
            raise ProtoDecodeError("invalid field tag 0")
        if wire == _WIRE_VARINT:
            value, pos = _read_varint(data, pos)
        elif wire == _WIRE_FIXED64:
            value, pos = _take(data, pos, 8)
        elif wire == _WIRE_LEN:
            length, pos = _read_varint(data, pos)
            value, pos = _take(data, pos, length)
        elif wire == _WIRE_FIXED32:
            value, pos = _take(data, pos, 4)
        else:
            raise ProtoDecodeError(f"unsupported wire type {wire}")
        yield tag, wire, value


def _decode_text(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ProtoDecodeError(f"invalid UTF-8 in string field: {exc}") from exc


def _encode_text(name: str, value: str) -> bytes:
    try:
        return value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ProtoEncodeError(f"field {name!r} is not valid UTF-8: {exc}") from exc


# --- timestamps -------------------------------------------------------------


def _encode_timestamp(moment: datetime) -> bytes:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = moment - _EPOCH
    seconds = delta.days * 86400 + delta.seconds
    nanos = delta.microseconds * 1000
    return _encode_scalar(_TS_SECONDS, seconds) + _encode_scalar(_TS_NANOS, nanos)


def _decode_timestamp(data: bytes) -> datetime:
    seconds = nanos = 0
    for tag, wire, raw in _iter_fields(data):
        if tag == _TS_SECONDS.tag and wire == _WIRE_VARINT:
            seconds = _to_signed(raw, 64)
        elif tag == _TS_NANOS.tag and wire == _WIRE_VARINT:
            nanos = _to_signed(raw, 32)
    try:
        return _EPOCH + timedelta(seconds=seconds, microseconds=nanos // 1000)
    except OverflowError as exc:
        raise ProtoDecodeError(f"timestamp out of range: {seconds}s") from exc


# --- field encoding ---------------------------------------------------------


def _encode_scalar(spec: _FieldSpec, value) -> bytes:
    tag, kind = spec.tag, spec.kind
    if kind is _Kind.STRING:
        return _len_delimited(tag, _encode_text(spec.name, value)) if value else b""
    if kind is _Kind.BYTES:
        return _len_delimited(tag, bytes(value)) if value else b""
    if kind is _Kind.INT32:
        _check_range(spec.name, value, 32)
        return _key(tag, _WIRE_VARINT) + _varint(value) if value else b""
    if kind is _Kind.INT64:
        _check_range(spec.name, value, 64)
        return _key(tag, _WIRE_VARINT) + _varint(value) if value else b""
    if kind is _Kind.BOOL:
        return _key(tag, _WIRE_VARINT) + b"\x01" if value else b""
    raise ProtoEncodeError(f"field {spec.name!r} is not a scalar")


def _encode_field(spec: _FieldSpec, value) -> bytes:
    kind = spec.kind
    if kind is _Kind.TIMESTAMP:
        return b"" if value is None else _len_delimited(spec.tag, _encode_timestamp(value))
    if kind is _Kind.STRING_INT32_MAP:
        return b"".join(
            _len_delimited(spec.tag, _encode_scalar(_MAP_KEY, k) + _encode_scalar(_MAP_VALUE, v))
            for k, v in value.items()
        )
    if kind is _Kind.REPEATED_STRING:
        return b"".join(_len_delimited(spec.tag, _encode_text(spec.name, item)) for item in value)
    return _encode_scalar(spec, value)


def _decode_map_entry(data: bytes) -> Tuple[str, int]:
    key, value = "", 0
    for tag, wire, raw in _iter_fields(data):
        if tag == _MAP_KEY.tag and wire == _WIRE_LEN:
            key = _decode_text(raw)
        elif tag == _MAP_VALUE.tag and wire == _WIRE_VARINT:
            value = _to_signed(raw, 32)
    return key, value


def _merge(message, spec: _FieldSpec, raw) -> None:
    kind = spec.kind
    if kind is _Kind.STRING:
        setattr(message, spec.name, _decode_text(raw))
    elif kind is _Kind.BYTES:
        setattr(message, spec.name, bytes(raw))
    elif kind is _Kind.INT32:
        setattr(message, spec.name, _to_signed(raw, 32))
    elif kind is _Kind.INT64:
        setattr(message, spec.name, _to_signed(raw, 64))
    elif kind is _Kind.BOOL:
        setattr(message, spec.name, raw != 0)
    elif kind is _Kind.TIMESTAMP:
        setattr(message, spec.name, _decode_timestamp(raw))
    elif kind is _Kind.STRING_INT32_MAP:
        key, value = _decode_map_entry(raw)
        getattr(message, spec.name)[key] = value
    elif kind is _Kind.REPEATED_STRING:
        getattr(message, spec.name).append(_decode_text(raw))


def _encode_message(message) -> bytes:
    return b"".join(
        _encode_field(spec, getattr(message, spec.name)) for spec in message._ordered
    )


def _decode_message(cls, data: bytes):
    message = cls()
    for tag, wire, raw in _iter_fields(bytes(data)):
        spec = cls._by_tag.get(tag)
        if spec is None:
            continue
        if wire != _WIRE_OF_KIND[spec.kind]:
            raise ProtoDecodeError(f"invalid wire type {wire} for field {spec.name!r}")
        _merge(message, spec, raw)
    return message


class _Message:
    """Builds each message's lookup tables from its field table."""

    _fields: Tuple[_FieldSpec, ...] = ()

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        cls._by_tag = {spec.tag: spec for spec in cls._fields}
        cls._ordered = tuple(sorted(cls._fields, key=lambda spec: spec.tag))


# --- messages ---------------------------------------------------------------


@dataclass
class TaskMessage(_Message):
    """Internal representation of a task with its bookkeeping metadata."""

    type: str = ""
    payload: bytes = b""
    id: str = ""
    queue: str = ""
    retry: int = 0
    retried: int = 0
    error_msg: str = ""
    last_failed_at: int = 0
    timeout: int = 0
    deadline: int = 0
    unique_key: str = ""
    group_key: str = ""
    retention: int = 0
    completed_at: int = 0

    _fields = (
        _FieldSpec(1, "type", _Kind.STRING),
        _FieldSpec(2, "payload", _Kind.BYTES),
        _FieldSpec(3, "id", _Kind.STRING),
        _FieldSpec(4, "queue", _Kind.STRING),
        _FieldSpec(5, "retry", _Kind.INT32),
        _FieldSpec(6, "retried", _Kind.INT32),
        _FieldSpec(7, "error_msg", _Kind.STRING),
        _FieldSpec(11, "last_failed_at", _Kind.INT64),
        _FieldSpec(8, "timeout", _Kind.INT64),
        _FieldSpec(9, "deadline", _Kind.INT64),
        _FieldSpec(10, "unique_key", _Kind.STRING),
        _FieldSpec(14, "group_key", _Kind.STRING),
        _FieldSpec(12, "retention", _Kind.INT64),
        _FieldSpec(13, "completed_at", _Kind.INT64),
    )

    def encode(self) -> bytes:
        """Serialize the message to protocol buffer bytes."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> "TaskMessage":
        """Parse protocol buffer bytes; unknown fields are skipped."""
        return _decode_message(cls, data)


@dataclass
class ServerInfo(_Message):
    """State of a running worker server."""

    host: str = ""
    pid: int = 0
    server_id: str = ""
    concurrency: int = 0
    queues: Dict[str, int] = field(default_factory=dict)
    strict_priority: bool = False
    status: str = ""
    start_time: Optional[datetime] = None
    active_worker_count: int = 0

    _fields = (
        _FieldSpec(1, "host", _Kind.STRING),
        _FieldSpec(2, "pid", _Kind.INT32),
        _FieldSpec(3, "server_id", _Kind.STRING),
        _FieldSpec(4, "concurrency", _Kind.INT32),
        _FieldSpec(5, "queues", _Kind.STRING_INT32_MAP),
        _FieldSpec(6, "strict_priority", _Kind.BOOL),
        _FieldSpec(7, "status", _Kind.STRING),
        _FieldSpec(8, "start_time", _Kind.TIMESTAMP),
        _FieldSpec(9, "active_worker_count", _Kind.INT32),
    )

    def encode(self) -> bytes:
        """Serialize the message to protocol buffer bytes."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> "ServerInfo":
        """Parse protocol buffer bytes; unknown fields are skipped."""
        return _decode_message(cls, data)


@dataclass
class WorkerInfo(_Message):
    """State of a worker that is processing a task."""

    host: str = ""
    pid: int = 0
    server_id: str = ""
    task_id: str = ""
    task_type: str = ""
    task_payload: bytes = b""
    queue: str = ""
    start_time: Optional[datetime] = None
    deadline: Optional[datetime] = None

    _fields = (
        _FieldSpec(1, "host", _Kind.STRING),
        _FieldSpec(2, "pid", _Kind.INT32),
        _FieldSpec(3, "server_id", _Kind.STRING),
        _FieldSpec(4, "task_id", _Kind.STRING),
        _FieldSpec(5, "task_type", _Kind.STRING),
        _FieldSpec(6, "task_payload", _Kind.BYTES),
        _FieldSpec(7, "queue", _Kind.STRING),
        _FieldSpec(8, "start_time", _Kind.TIMESTAMP),
        _FieldSpec(9, "deadline", _Kind.TIMESTAMP),
    )

    def encode(self) -> bytes:
        """Serialize the message to protocol buffer bytes."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> "WorkerInfo":
        """Parse protocol buffer bytes; unknown fields are skipped."""
        return _decode_message(cls, data)


@dataclass
class SchedulerEntry(_Message):
    """A periodic task registered with a scheduler."""

    id: str = ""
    spec: str = ""
    task_type: str = ""
    task_payload: bytes = b""
    enqueue_options: List[str] = field(default_factory=list)
    next_enqueue_time: Optional[datetime] = None
    prev_enqueue_time: Optional[datetime] = None

    _fields = (
        _FieldSpec(1, "id", _Kind.STRING),
        _FieldSpec(2, "spec", _Kind.STRING),
        _FieldSpec(3, "task_type", _Kind.STRING),
        _FieldSpec(4, "task_payload", _Kind.BYTES),
        _FieldSpec(5, "enqueue_options", _Kind.REPEATED_STRING),
        _FieldSpec(6, "next_enqueue_time", _Kind.TIMESTAMP),
        _FieldSpec(7, "prev_enqueue_time", _Kind.TIMESTAMP),
    )

    def encode(self) -> bytes:
        """Serialize the message to protocol buffer bytes."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> "SchedulerEntry":
        """Parse protocol buffer bytes; unknown fields are skipped."""
        return _decode_message(cls, data)


@dataclass
class SchedulerEnqueueEvent(_Message):
    """Record of a scheduler enqueueing a task."""

    task_id: str = ""
    enqueue_time: Optional[datetime] = None

    _fields = (
        _FieldSpec(1, "task_id", _Kind.STRING),
        _FieldSpec(2, "enqueue_time", _Kind.TIMESTAMP),
    )

    def encode(self) -> bytes:
        """Serialize the message to protocol buffer bytes."""
        return _encode_message(self)

    @classmethod
    def decode(cls, data: bytes) -> "SchedulerEnqueueEvent":
        """Parse protocol buffer bytes; unknown fields are skipped."""
        return _decode_message(cls, data)