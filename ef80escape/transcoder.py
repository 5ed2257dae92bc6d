"""Lossless bytes <-> UTF-8 text transcoding.

encode() turns any byte string into a valid str: bytes that are not part
of well-formed UTF-8 become codepoints U+EF80..U+EFFF, and naturally
occurring U+EF00 / U+EF80..U+EFFF are prefixed with U+EF00.  decode()
reverses it exactly, so decode(encode(b)) == b for every b.

Both functions are pure and keep no state between calls.
"""

import codecs
from dataclasses import dataclass

from .band import (
    MARKER_LEAD, ESCAPE_MARKER_UTF8, BAND_UNITS,
    is_reserved_sequence, is_escape_marker, unit_to_byte,
)

# Segment kinds produced by iter_segments()
TEXT = 'text'
RAW = 'raw'

# Decoder states
NORMAL = 0
ESCAPED = 1

# Smallest decode window; larger than any UTF-8 sequence
_MIN_WINDOW = 32


def _as_bytes(data) -> bytes:
    if isinstance(data, bytes):
        return data
    return bytes(data)


def iter_segments(data: bytes):
    """Split data into maximal valid UTF-8 runs and single invalid bytes.

    Yields (kind, start, stop) tuples covering data in order.  kind is
    TEXT for a well-formed run and RAW for the one byte that made
    decoding fail at that position.

    Decoding goes through windows that double while the text stays valid
    and drop back to _MIN_WINDOW after an invalid byte, so each byte is
    decoded a bounded number of times.
    """
    view = memoryview(data)
    end = len(data)
    pos = run_start = 0
    window = _MIN_WINDOW
    while pos < end:
        final = pos + window >= end
        try:
            # Not final: a sequence cut by the window edge is left for
            # the next window instead of counting as an error
            _, consumed = codecs.utf_8_decode(view[pos:pos + window], 'strict', final)
        except UnicodeDecodeError as e:
            bad = pos + e.start
            if bad > run_start:
                yield TEXT, run_start, bad
            yield RAW, bad, bad + 1
            pos = run_start = bad + 1
            window = _MIN_WINDOW
        else:
            pos += consumed
            window *= 2
    if run_start < end:
        yield TEXT, run_start, end


def _reserved_leads(data: bytes, start: int, stop: int):
    """Offsets of MARKER_LEAD bytes in data[start:stop] that begin a
    reserved 3-byte unit."""
    lead = data.find(MARKER_LEAD, start, stop)
    while lead != -1:
        if lead + 2 < stop and is_reserved_sequence(data[lead + 1], data[lead + 2]):
            yield lead
            lead = data.find(MARKER_LEAD, lead + 3, stop)
        else:
            lead = data.find(MARKER_LEAD, lead + 1, stop)


def _extend_escaped(out: bytearray, data: bytes, start: int, stop: int):
    """Append the valid UTF-8 run data[start:stop] to out, escaping
    reserved codepoints."""
    view = memoryview(data)
    pos = start
    for lead in _reserved_leads(data, start, stop):
        out += view[pos:lead]
        out += ESCAPE_MARKER_UTF8
        pos = lead
    out += view[pos:stop]


def encode(data) -> str:
    """Convert arbitrary bytes to a str that decode() maps back exactly.

    Valid UTF-8 without any U+Exxx codepoint is returned as-is, without
    going through the escaping buffer.
    """
    data = _as_bytes(data)
    if MARKER_LEAD not in data:
        try:
            return str(data, 'utf-8')
        except UnicodeDecodeError:
            pass  # invalid bytes present, segment below

    out = bytearray()
    for kind, start, stop in iter_segments(data):
        if kind == RAW:
            out += BAND_UNITS[data[start]]
        else:
            _extend_escaped(out, data, start, stop)

    # Only valid UTF-8 is ever appended above; the checked decode
    # enforces that rather than trusting it.
    return out.decode('utf-8')


def decode(text: str) -> bytes:
    """Inverse of encode().

    U+EF80..U+EFFF become bytes 0x80..0xFF.  U+EF00 keeps the next
    reserved codepoint as-is.  A U+EF00 that is not followed by a
    reserved codepoint cannot come from encode() and is dropped.
    """
    data = text.encode('utf-8')
    if MARKER_LEAD not in data:
        return data

    view = memoryview(data)
    out = bytearray()
    state = NORMAL
    pos = 0
    for lead in _reserved_leads(data, 0, len(data)):
        if lead > pos:
            # Ordinary bytes in between: a pending marker is dropped
            out += view[pos:lead]
            state = NORMAL
        b1 = data[lead + 1]
        b2 = data[lead + 2]
        if state == ESCAPED:
            out += view[lead:lead + 3]
            state = NORMAL
        elif is_escape_marker(b1, b2):
            state = ESCAPED
        else:
            out.append(unit_to_byte(b1, b2))
        pos = lead + 3
    out += view[pos:]
    return bytes(out)


# Names matching the bytes/str direction of each call
bytes_to_str = encode
str_to_bytes = decode


@dataclass
class EncodeStats:
    input_bytes: int = 0
    text_bytes: int = 0
    raw_bytes: int = 0
    escapes: int = 0
    output_chars: int = 0
    zero_copy: bool = False


def scan(data) -> EncodeStats:
    """Describe how encode() would treat data, without building output."""
    data = _as_bytes(data)
    view = memoryview(data)
    stats = EncodeStats(input_bytes=len(data))
    for kind, start, stop in iter_segments(data):
        if kind == RAW:
            stats.raw_bytes += 1
            stats.output_chars += 1
        else:
            escapes = sum(1 for _ in _reserved_leads(data, start, stop))
            stats.text_bytes += stop - start
            stats.escapes += escapes
            stats.output_chars += len(str(view[start:stop], 'utf-8')) + escapes
    stats.zero_copy = stats.raw_bytes == 0 and MARKER_LEAD not in data
    return stats
