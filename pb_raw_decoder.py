"""
Schema-less protobuf wire decoder.

- Primitive reads: read_varint / read_fixed32 / read_fixed64 / read_bytes
- Flat field decode: decode_next, iter_fields, decode_fields
- Heuristic resolution of length-delimited payloads:
    submessage -> UTF-8 text -> raw bytes, first success wins
- Top-level entry point: decode_message(data) -> Submessage
"""

from __future__ import annotations

import zlib
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple


MAX_VARINT_BYTES = 10
U64_MASK = (1 << 64) - 1

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LEN = 2
WIRE_FIXED32 = 5

WIRE_TYPE_NAMES = {
    WIRE_VARINT: 'varint',
    WIRE_FIXED64: 'fixed64',
    WIRE_LEN: 'length_delimited',
    WIRE_FIXED32: 'fixed32',
}


class DecodeError(ValueError):
    def __init__(self, message, offset=None):
        if offset is not None:
            message = f'{message} at offset {offset}'
        super().__init__(message)
        self.offset = offset


class Truncated(DecodeError):
    pass


class Overflow(DecodeError):
    pass


class UnknownWireType(DecodeError):
    pass


class InvalidUtf8(DecodeError):
    pass


@dataclass(frozen=True)
class UInt:
    value: int
    kind = 'uint'


@dataclass(frozen=True)
class Bytes:
    """Length-delimited payload before the heuristic ladder has run."""
    data: Any
    kind = 'bytes'


@dataclass(frozen=True)
class Submessage:
    fields: Tuple['Field', ...] = ()
    kind = 'message'


@dataclass(frozen=True)
class Text:
    text: str
    kind = 'text'


@dataclass(frozen=True)
class Raw:
    data: bytes
    kind = 'raw'


@dataclass(frozen=True)
class Field:
    number: int
    wire_type: int
    value: Any


# ----------------------------
# Primitive reads
# ----------------------------

def read_varint(data, pos):
    start = pos
    result = 0
    shift = 0
    ln = len(data)
    for _ in range(MAX_VARINT_BYTES):
        if pos >= ln:
            raise Truncated('varint runs past end of buffer', start)
        b = data[pos]
        pos += 1
        result |= (b & 0x7F) << shift
        if not (b & 0x80):
            return result & U64_MASK, pos
        shift += 7
    raise Overflow(f'varint longer than {MAX_VARINT_BYTES} bytes', start)


def read_bytes(data, pos, n):
    end = pos + n
    if end > len(data):
        raise Truncated(f'need {n} bytes, {len(data) - pos} remain', pos)
    return memoryview(data)[pos:end], end


def read_fixed32(data, pos):
    raw, pos = read_bytes(data, pos, 4)
    return int.from_bytes(raw, 'little', signed=False), pos


def read_fixed64(data, pos):
    raw, pos = read_bytes(data, pos, 8)
    return int.from_bytes(raw, 'little', signed=False), pos


# ----------------------------
# Field decoding
# ----------------------------

def decode_next(data, pos):
    """Decode one field starting at ``pos``.

    Returns ``(field, next_pos)``, or ``(None, pos)`` once the buffer is
    exhausted. Any malformed field raises a DecodeError subclass.
    """
    if pos >= len(data):
        return None, pos
    tag_pos = pos
    tag, pos = read_varint(data, pos)
    field_no = tag >> 3
    wire = tag & 0x07
    if wire == WIRE_VARINT:
        val, pos = read_varint(data, pos)
        return Field(field_no, wire, UInt(val)), pos
    if wire == WIRE_FIXED64:
        val, pos = read_fixed64(data, pos)
        return Field(field_no, wire, UInt(val)), pos
    if wire == WIRE_FIXED32:
        val, pos = read_fixed32(data, pos)
        return Field(field_no, wire, UInt(val)), pos
    if wire == WIRE_LEN:
        length, pos = read_varint(data, pos)
        payload, pos = read_bytes(data, pos, length)
        return Field(field_no, wire, Bytes(payload)), pos
    raise UnknownWireType(f'wire type {wire} on field {field_no}', tag_pos)


def iter_fields(data) -> Iterator[Field]:
    pos = 0
    while True:
        field, pos = decode_next(data, pos)
        if field is None:
            return
        yield field


def decode_fields(data) -> List[Field]:
    return list(iter_fields(data))


# ----------------------------
# Interpretation ladder
# ----------------------------

def try_message(data) -> Optional[List[Field]]:
    try:
        return decode_fields(data)
    except DecodeError:
        return None


def decode_text(data) -> str:
    try:
        return bytes(data).decode('utf-8')
    except UnicodeDecodeError as e:
        raise InvalidUtf8(e.reason, e.start) from e


def try_text(data) -> Optional[Text]:
    try:
        return Text(decode_text(data))
    except InvalidUtf8:
        return None


def as_raw(data) -> Raw:
    return Raw(bytes(data))


# strict -> loose; the last tier never declines
INTERPRETATIONS = (
    ('message', try_message),
    ('text', try_text),
    ('raw', as_raw),
)


def _interpret(data):
    for name, fn in INTERPRETATIONS:
        result = fn(data)
        if result is not None:
            return name, result
    raise AssertionError('raw interpretation declined')


def resolve_payload(data):
    """Pick one of Submessage / Text / Raw for a length-delimited payload.

    Nested payloads are walked with an explicit stack. Nodes are appended to
    an arena parent-first (each stack frame is a byte range plus the slot it
    fills in its parent), then assembled in reverse so every child object
    exists before the immutable parent that holds it.
    """
    arena: List[Any] = []
    stack = [(data, None, None)]
    while stack:
        buf, parent, slot = stack.pop()
        idx = len(arena)
        name, result = _interpret(buf)
        if name == 'message':
            slots = []
            for i, f in enumerate(result):
                if f.wire_type == WIRE_LEN:
                    slots.append([f.number, f.wire_type, None])
                    stack.append((f.value.data, idx, i))
                else:
                    slots.append([f.number, f.wire_type, f.value])
            arena.append(slots)
        else:
            arena.append(result)
        if parent is not None:
            arena[parent][slot][2] = idx

    built: List[Any] = [None] * len(arena)
    for idx in range(len(arena) - 1, -1, -1):
        node = arena[idx]
        if isinstance(node, list):
            built[idx] = Submessage(tuple(
                Field(number, wire, built[value] if wire == WIRE_LEN else value)
                for number, wire, value in node
            ))
        else:
            built[idx] = node
    return built[0]


def decode_message(data) -> Submessage:
    """Decode a whole buffer as a message and resolve every payload in it.

    Unlike nested payloads, the top level has no fallback: if the buffer
    is not a well-formed field sequence the DecodeError is raised.
    """
    decode_fields(data)
    return resolve_payload(data)


# ----------------------------
# Compressed blobs
# ----------------------------

def _has_zlib_header(buf):
    return len(buf) >= 2 and buf[0] == 0x78 and ((buf[0] << 8) | buf[1]) % 31 == 0


def inflate_if_compressed(buf, allow_raw_deflate=False) -> Dict[str, Any]:
    if buf is None:
        raise ValueError('Empty input buffer')
    if len(buf) == 0:
        return {'data': b'', 'method': 'plain', 'offset': 0, 'attempts': []}

    attempts = []

    if buf[:2] == b'\x1f\x8b':
        try:
            out = zlib.decompress(buf, 16 + zlib.MAX_WBITS)
            return {'data': out, 'method': 'gzip', 'offset': 0, 'attempts': attempts}
        except zlib.error as e:
            attempts.append(f'gzip:{e}')

    if _has_zlib_header(buf):
        try:
            out = zlib.decompress(buf)
            return {'data': out, 'method': 'zlib', 'offset': 0, 'attempts': attempts}
        except zlib.error as e:
            attempts.append(f'zlib:{e}')

    if allow_raw_deflate:
        try:
            d = zlib.decompressobj(-zlib.MAX_WBITS)
            out = d.decompress(buf) + d.flush()
            if not d.eof:
                attempts.append('rawdeflate:incomplete_stream')
            elif len(out) >= max(8, int(len(buf) * 0.2)):
                return {'data': out, 'method': 'rawdeflate', 'offset': 0, 'attempts': attempts}
            else:
                attempts.append(f'rawdeflate:output_too_small({len(out)})')
        except zlib.error as e:
            attempts.append(f'rawdeflate:{e}')

    return {'data': buf, 'method': 'plain', 'offset': 0, 'attempts': attempts}
