"""Reserved codepoint band and escape marker constants.

Raw bytes 0x80..0xFF that are not part of valid UTF-8 are carried as
U+EF80..U+EFFF (the Private Use Area band MirBSD's optu8to16 uses).
U+EF00 prefixes any of those codepoints, or itself, when it occurs
naturally in the input, so the mapping stays bijective.

All of them share the same 3-byte UTF-8 form:

    U+EF00  EE BC 80
    U+EF80  EE BE 80 .. U+EFBF  EE BE BF
    U+EFC0  EE BF 80 .. U+EFFF  EE BF BF
"""

# Codepoints
ESCAPE_MARKER = 0xef00
BAND_START = 0xef80
BAND_END = 0xefff

ESCAPE_MARKER_CHAR = chr(ESCAPE_MARKER)

# First byte of every U+E000..U+EFFF codepoint, including all of the above
MARKER_LEAD = 0xee

ESCAPE_MARKER_UTF8 = ESCAPE_MARKER_CHAR.encode('utf-8')

# Second byte of the escape marker; band codepoints have 0xBE or 0xBF here
_MARKER_B1 = ESCAPE_MARKER_UTF8[1]
_MARKER_B2 = ESCAPE_MARKER_UTF8[2]


def is_reserved_sequence(b1: int, b2: int) -> bool:
    """True if MARKER_LEAD, b1, b2 is U+EF00 or a codepoint in the band."""
    if b1 == _MARKER_B1:
        return b2 == _MARKER_B2
    return (b1 | 1) == 0xbf and 0x80 <= b2 <= 0xbf


def is_escape_marker(b1: int, b2: int) -> bool:
    return b1 == _MARKER_B1 and b2 == _MARKER_B2


def band_unit(b: int) -> bytes:
    """UTF-8 form of the band codepoint for raw byte b, built bitwise."""
    return bytes((MARKER_LEAD, 0xbe + ((b ^ 0x80) >> 6), (b | 0x40) ^ 0x40))


def unit_to_byte(b1: int, b2: int) -> int:
    """Inverse of band_unit, given the two bytes after MARKER_LEAD."""
    return ((b1 & 0x03) << 6) | (b2 & 0x3f)


# Pre-compute the UTF-8 units for the 128 high bytes, indexed by byte value
BAND_UNITS = tuple(band_unit(b) if b >= 0x80 else b'' for b in range(256))
