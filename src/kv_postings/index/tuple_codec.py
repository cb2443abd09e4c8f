"""Order-preserving composite key codec.

Keys are built from tuples of typed elements using the tuple-layer layout that
ordered key-value stores (FoundationDB and friends) share:

* every element starts with a one byte type code;
* ``bytes`` and ``str`` are written raw, terminated by ``0x00``, with embedded
  ``0x00`` escaped as ``0x00 0xFF``;
* integers are written as big-endian magnitudes whose length is folded into
  the type code (``0x14`` is zero, ``0x14 + n`` positive, ``0x14 - n``
  negative in one's complement).

Two consequences drive the rest of the package:

* byte-wise comparison of two packed tuples of the same shape equals the
  element-wise comparison of the tuples, so range scans return entities in
  semantic order;
* ``pack(t)`` is a strict prefix of ``pack(t + u)``, and every such extension
  falls inside ``range_of(pack(t))``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Union

from kv_postings.errors import CorruptKeyError


Element = Union[None, bytes, str, int, bool]

NULL_CODE = 0x00
BYTES_CODE = 0x01
STRING_CODE = 0x02
INT_ZERO_CODE = 0x14
FALSE_CODE = 0x26
TRUE_CODE = 0x27

MAX_INT_BYTES = 8
COUNTER_WIDTH = 8

_ESCAPED_NULL = b"\x00\xff"
_INT64_MODULUS = 1 << 64
_INT64_OFFSET = 1 << 63


def _encode_raw(code: int, data: bytes) -> bytes:
    return bytes([code]) + data.replace(b"\x00", _ESCAPED_NULL) + b"\x00"


def _encode_int(value: int) -> bytes:
    if value == 0:
        return bytes([INT_ZERO_CODE])
    magnitude = abs(value)
    length = (magnitude.bit_length() + 7) // 8
    if length > MAX_INT_BYTES:
        msg = f"Integer {value} does not fit in {MAX_INT_BYTES} bytes"
        raise ValueError(msg)
    if value > 0:
        return bytes([INT_ZERO_CODE + length]) + magnitude.to_bytes(length, "big")
    ones = (1 << (8 * length)) - 1
    return bytes([INT_ZERO_CODE - length]) + (ones + value).to_bytes(length, "big")


def _encode_element(element: Element) -> bytes:
    if element is None:
        return bytes([NULL_CODE])
    # bool before int: bool is an int subclass
    if isinstance(element, bool):
        return bytes([TRUE_CODE if element else FALSE_CODE])
    if isinstance(element, int):
        return _encode_int(element)
    if isinstance(element, (bytes, bytearray, memoryview)):
        return _encode_raw(BYTES_CODE, bytes(element))
    if isinstance(element, str):
        return _encode_raw(STRING_CODE, element.encode("utf-8"))
    msg = f"Unsupported key element type: {type(element).__name__}"
    raise TypeError(msg)


def pack(elements: Iterable[Element]) -> bytes:
    """Encode ``elements`` into a single order-preserving byte string."""
    return b"".join(_encode_element(element) for element in elements)


def _find_terminator(key: bytes, pos: int) -> int:
    while True:
        idx = key.find(b"\x00", pos)
        if idx < 0:
            raise CorruptKeyError("Unterminated bytes/string element", key=key)
        if idx + 1 < len(key) and key[idx + 1] == 0xFF:
            pos = idx + 2
            continue
        return idx


def _decode_element(key: bytes, pos: int) -> tuple[Element, int]:
    code = key[pos]
    if code == NULL_CODE:
        return None, pos + 1
    if code in (BYTES_CODE, STRING_CODE):
        end = _find_terminator(key, pos + 1)
        raw = key[pos + 1 : end].replace(_ESCAPED_NULL, b"\x00")
        if code == BYTES_CODE:
            return raw, end + 1
        try:
            return raw.decode("utf-8"), end + 1
        except UnicodeDecodeError as exc:
            raise CorruptKeyError(f"Invalid UTF-8 string element: {exc}", key=key) from exc
    if INT_ZERO_CODE - MAX_INT_BYTES <= code <= INT_ZERO_CODE + MAX_INT_BYTES:
        length = abs(code - INT_ZERO_CODE)
        start = pos + 1
        if start + length > len(key):
            raise CorruptKeyError("Truncated integer element", key=key)
        magnitude = int.from_bytes(key[start : start + length], "big")
        if code < INT_ZERO_CODE:
            magnitude -= (1 << (8 * length)) - 1
        return magnitude, start + length
    if code == FALSE_CODE:
        return False, pos + 1
    if code == TRUE_CODE:
        return True, pos + 1
    raise CorruptKeyError(f"Unknown type code 0x{code:02x} at offset {pos}", key=key)


def unpack(key: bytes, prefix_len: int = 0) -> tuple[Element, ...]:
    """Decode ``key`` back into its elements, skipping ``prefix_len`` bytes."""
    elements: list[Element] = []
    pos = prefix_len
    while pos < len(key):
        element, pos = _decode_element(key, pos)
        elements.append(element)
    return tuple(elements)


def range_of(prefix: bytes) -> tuple[bytes, bytes]:
    """Return ``[begin, end)`` covering every key that extends ``prefix``."""
    return prefix + b"\x00", prefix + b"\xff"


def strictly_after(term: bytes) -> bytes:
    """Return the smallest term that sorts strictly after ``term``.

    Packed, ``term + 0x00`` becomes ``... term 0x00 0xFF 0x00`` which sorts
    after every key nested under ``term`` (their next byte after the term
    terminator is a type code, never ``0xFF``) and before any longer term.
    Terms that themselves contain zero bytes are therefore never skipped.
    """
    return term + b"\x00"


def encode_counter(value: int) -> bytes:
    """Encode a counter the way atomic-add mutations expect it."""
    return value.to_bytes(COUNTER_WIDTH, "little", signed=True)


def decode_counter(value: bytes) -> int:
    if len(value) != COUNTER_WIDTH:
        msg = f"Counter value must be {COUNTER_WIDTH} bytes, got {len(value)}"
        raise CorruptKeyError(msg)
    return int.from_bytes(value, "little", signed=True)


def add_counter(current: bytes | None, delta: int) -> bytes:
    """Apply a wrapping 64-bit add to an encoded counter (missing counts as zero)."""
    base = decode_counter(current) if current else 0
    wrapped = (base + delta + _INT64_OFFSET) % _INT64_MODULUS - _INT64_OFFSET
    return encode_counter(wrapped)


def decode_single(value: bytes, expected: type | tuple[type, ...]) -> Element:
    """Unpack a one-element tuple value and check its type."""
    elements = unpack(value)
    if len(elements) != 1 or not isinstance(elements[0], expected) or isinstance(elements[0], bool):
        raise CorruptKeyError(f"Expected a single {expected} value, got {elements!r}", key=value)
    return elements[0]


@dataclass(frozen=True, slots=True)
class KeyPrefix:
    """An already packed key prefix that more elements can be appended to."""

    raw: bytes = b""

    def add(self, *elements: Element) -> KeyPrefix:
        return KeyPrefix(self.raw + pack(elements))

    def pack(self, *elements: Element) -> bytes:
        return self.raw + pack(elements)

    def range(self, *elements: Element) -> tuple[bytes, bytes]:
        return range_of(self.pack(*elements))

    def contains(self, key: bytes) -> bool:
        return key.startswith(self.raw)

    def unpack(self, key: bytes) -> tuple[Element, ...]:
        """Decode the part of ``key`` that follows this prefix."""
        if not self.contains(key):
            raise CorruptKeyError("Key does not start with the expected prefix", key=key)
        return unpack(key, len(self.raw))
