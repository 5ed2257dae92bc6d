"""Randomized round-trip checking for the transcoder.

Generates byte strings that are biased towards the bytes the escaping
rules care about (0xEE, the 0xBC/0xBE/0xBF continuation bytes, lead bytes
of multi-byte sequences) and checks decode(encode(data)) == data.  Random
text heavy in U+EF00 and band codepoints is fed straight to decode() too.
"""

import itertools
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from tqdm import tqdm

from .band import ESCAPE_MARKER, ESCAPE_MARKER_UTF8, BAND_START, BAND_END, BAND_UNITS
from .transcoder import encode, decode

INTERESTING_BYTES = bytes([
    0x00, 0x01, 0x80, 0x90, 0xbc, 0xbd, 0xbe, 0xbf,
    0xc2, 0xe0, 0xee, 0xef, 0xf0, 0xff,
])

# Smaller alphabet for exhaustive runs
QUICK_BYTES = bytes([0x00, 0x80, 0xbe, 0xee])

# Multi-byte pieces that a uniform byte source almost never produces
FRAGMENTS = (
    ESCAPE_MARKER_UTF8,
    BAND_UNITS[0x80],
    BAND_UNITS[0xbf],
    BAND_UNITS[0xc0],
    BAND_UNITS[0xff],
    ESCAPE_MARKER_UTF8[:2],
    BAND_UNITS[0xff][:2],
    b'\xee',
    '\ue000'.encode('utf-8'),
    '\uef7f'.encode('utf-8'),
    '汉字'.encode('utf-8'),
    '\U0001f926\U0001f3fc\u200d\u2642\ufe0f'.encode('utf-8'),
    b'\xed\xa0\x80',  # encoded surrogate, invalid UTF-8
    b'\xf4\x90\x80\x80',  # above U+10FFFF
)

_INTERESTING = np.frombuffer(INTERESTING_BYTES, dtype=np.uint8)

# Codepoints for random decoder input: the reserved ones, plus neighbours
# that share their lead byte and some ordinary text
_RESERVED_CODEPOINTS = np.concatenate((
    [ESCAPE_MARKER], np.arange(BAND_START, BAND_END + 1)))
_OTHER_CODEPOINTS = np.array([
    ord('a'), ord('b'), ord(' '), 0x00, 0xe000, 0xee00, 0xef01, 0xef7f,
    0x6c49, 0x1f926,
])


@dataclass
class RoundTripFailure:
    data: bytes
    text: Optional[str] = None
    decoded: Optional[bytes] = None
    error: Optional[str] = None


@dataclass
class FuzzReport:
    iterations: int = 0
    total_bytes: int = 0
    failures: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def check_round_trip(data: bytes):
    """Return a RoundTripFailure describing what went wrong, or None."""
    try:
        text = encode(data)
    except Exception as e:
        return RoundTripFailure(data, error=f"encode: {type(e).__name__}: {e}")
    try:
        # Lone surrogates would make this raise
        text.encode('utf-8')
    except UnicodeEncodeError as e:
        return RoundTripFailure(data, text=text, error=f"invalid text: {e}")
    try:
        decoded = decode(text)
    except Exception as e:
        return RoundTripFailure(data, text=text,
                                error=f"decode: {type(e).__name__}: {e}")
    if decoded != data:
        return RoundTripFailure(data, text=text, decoded=decoded,
                                error="round trip mismatch")
    return None


def random_payload(rng: np.random.Generator, max_length: int = 256) -> bytes:
    """Build one payload of at most max_length bytes from rng."""
    length = int(rng.integers(0, max_length + 1))
    uniform = rng.integers(0, 256, size=length, dtype=np.uint8)
    picks = rng.choice(_INTERESTING, size=length)
    mask = rng.random(length) < 0.5
    payload = bytearray(np.where(mask, picks, uniform).tobytes())

    # Splice fragments in at random offsets, then trim back to size
    for _ in range(int(rng.integers(0, 4))):
        frag = FRAGMENTS[int(rng.integers(0, len(FRAGMENTS)))]
        at = int(rng.integers(0, len(payload) + 1))
        payload[at:at] = frag
    return bytes(payload[:max_length])


def check_decode(text: str):
    """decode() must accept any well-formed text, including marker runs
    that encode() never produces, and its output must round-trip."""
    try:
        decoded = decode(text)
    except Exception as e:
        return RoundTripFailure(text.encode('utf-8', 'surrogatepass'), text=text,
                                error=f"decode: {type(e).__name__}: {e}")
    return check_round_trip(decoded)


def random_text(rng: np.random.Generator, max_length: int = 256) -> str:
    """Build one str of at most max_length codepoints, mostly U+EF00 and
    band codepoints in arbitrary order."""
    length = int(rng.integers(0, max_length + 1))
    reserved = rng.choice(_RESERVED_CODEPOINTS, size=length)
    other = rng.choice(_OTHER_CODEPOINTS, size=length)
    r = rng.random(length)
    cps = np.where(r < 0.3, ESCAPE_MARKER, np.where(r < 0.7, reserved, other))
    return ''.join(map(chr, cps.tolist()))


def exhaustive_payloads(alphabet: bytes, length: int):
    """Every byte string of the given length over alphabet."""
    for combo in itertools.product(alphabet, repeat=length):
        yield bytes(combo)


def run_fuzz(iterations: int, max_length: int = 256, seed=None,
             progress=True) -> FuzzReport:
    """Check iterations random payloads, and as many random texts through
    decode(); failures are collected, not raised."""
    rng = np.random.default_rng(seed)
    report = FuzzReport()
    for _ in tqdm(range(iterations), desc="Round-tripping", disable=not progress):
        data = random_payload(rng, max_length)
        report.iterations += 1
        report.total_bytes += len(data)
        for failure in (check_round_trip(data),
                        check_decode(random_text(rng, max_length))):
            if failure is not None:
                report.failures.append(failure)
    return report
