"""Reader and writer for the legacy Google News article record.

Legacy article ids carry the destination inline: a base64 payload holding a
small tagged binary record. Decoded, a typical record looks like::

    08 13                      header (field 1, value 0x13)
    22 <len> https://...       canonical URL (field 4)
    d2 01 <len> https://...    AMP URL (field 26)

Tags and lengths are protobuf-style varints, so a tag takes one or two bytes
and lengths below 128 take a single byte. The first string field holding an
absolute URL is the canonical destination.
"""

import base64
import re
from collections.abc import Iterator, Sequence

RECORD_HEADER = b"\x08\x13"
CANONICAL_URL_TAG = b"\x22"
AMP_URL_TAG = b"\xd2\x01"

LEGACY_MARKERS = ("CBM", "CWM")

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_BYTES = 2
_WIRE_FIXED32 = 5

_MAX_VARINT_BYTES = 10

ABSOLUTE_URL_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:[^\x00-\x20\x7f]+$")


class RecordTruncated(Exception):
    """Raised when a length prefix or varint runs past the end of a record."""


class _OversizedVarint(Exception):
    pass


def decode_base64(payload: str) -> bytes:
    """Decode standard or URL-safe base64, with or without padding.

    Raises:
        binascii.Error: If the payload is not valid base64.
    """
    cleaned = payload.rstrip("=").replace("-", "+").replace("_", "/")
    cleaned += "=" * (-len(cleaned) % 4)
    return base64.b64decode(cleaned, validate=True)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    for shift in range(0, _MAX_VARINT_BYTES * 7, 7):
        if pos >= len(data):
            raise RecordTruncated(f"varint runs past end of record at byte {pos}")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
    raise _OversizedVarint(f"varint longer than {_MAX_VARINT_BYTES} bytes")


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


def iter_string_fields(data: bytes) -> Iterator[tuple[int, bytes]]:
    """Yield ``(field_number, payload)`` for each length-delimited field.

    Scanning stops quietly at the first structurally invalid tag (field 0,
    group wire types, oversized varints): whatever follows is not part of the
    record.

    Raises:
        RecordTruncated: If a length prefix or fixed-size value overruns the
            buffer.
    """
    pos = 0
    while pos < len(data):
        try:
            key, pos = _read_varint(data, pos)
            field_number, wire_type = key >> 3, key & 0x07
            if field_number == 0:
                return
            if wire_type == _WIRE_VARINT:
                _, pos = _read_varint(data, pos)
                continue
            if wire_type == _WIRE_BYTES:
                length, pos = _read_varint(data, pos)
        except _OversizedVarint:
            return

        if wire_type == _WIRE_BYTES:
            end = pos + length
            if end > len(data):
                raise RecordTruncated(
                    f"field {field_number} declares {length} bytes, "
                    f"only {len(data) - pos} left"
                )
            yield field_number, data[pos:end]
            pos = end
        elif wire_type in (_WIRE_FIXED64, _WIRE_FIXED32):
            size = 8 if wire_type == _WIRE_FIXED64 else 4
            if pos + size > len(data):
                raise RecordTruncated(f"field {field_number} overruns the record")
            pos += size
        else:
            return


def is_absolute_url(value: str) -> bool:
    """Check if a string looks like ``scheme:...`` with no control characters.

    Any scheme counts, so ``javascript:`` or ``data:`` destinations reach the
    validator and are refused there instead of being skipped.
    """
    return bool(ABSOLUTE_URL_PATTERN.match(value))


def extract_first_url(data: bytes) -> str | None:
    """Return the first string field of a record that is an absolute URL.

    Raises:
        RecordTruncated: If the record is cut short before a URL is found.
    """
    for _, payload in iter_string_fields(data):
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            continue
        if is_absolute_url(text):
            return text
    return None


def encode_record(urls: Sequence[str]) -> bytes:
    """Build a legacy record holding ``urls``.

    The first URL is written as the canonical field, any further ones as AMP
    fields.
    """
    if not urls:
        raise ValueError("A legacy record needs at least one URL")
    out = bytearray(RECORD_HEADER)
    for index, url in enumerate(urls):
        payload = url.encode("utf-8")
        out += CANONICAL_URL_TAG if index == 0 else AMP_URL_TAG
        out += _encode_varint(len(payload))
        out += payload
    return bytes(out)


def build_legacy_token(urls: Sequence[str], marker: str = "CBM") -> str:
    """Build a legacy article id: a marker followed by the base64 record."""
    if marker not in LEGACY_MARKERS:
        raise ValueError(f"Unknown legacy marker {marker!r}")
    encoded = base64.urlsafe_b64encode(encode_record(urls)).decode("ascii")
    return marker + encoded.rstrip("=")

