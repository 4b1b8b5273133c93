"""Text normalization, content fingerprints and link counting."""

from __future__ import annotations

import re
import string

# Full-width ASCII variants (U+FF01..U+FF5E) sit at a fixed offset from ASCII
_FULLWIDTH_START = 0xFF01
_FULLWIDTH_END = 0xFF5E
_FULLWIDTH_OFFSET = 0xFEE0

_FULLWIDTH_TABLE = {
    code: code - _FULLWIDTH_OFFSET for code in range(_FULLWIDTH_START, _FULLWIDTH_END + 1)
}

_WHITESPACE = re.compile(r"\s+")
URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)

_BASE36 = string.digits + string.ascii_lowercase


def normalize_content(text: str) -> str:
    """Lower-case, drop whitespace and fold full-width characters to ASCII."""
    text = _WHITESPACE.sub("", text.lower())
    return text.translate(_FULLWIDTH_TABLE)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def content_fingerprint(text: str) -> str:
    """Short deterministic hash of the normalized text.

    31-multiplier string hash wrapped to a signed 32-bit integer, rendered
    as base36 of its absolute value.
    """
    h = 0
    for ch in normalize_content(text):
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    return _to_base36(abs(h))


def count_urls(text: str) -> int:
    return len(URL_PATTERN.findall(text))
