"""Byte encoding detection for downloaded subtitle payloads.

The checks run in a fixed order and the first one that applies wins:

1. UTF-8 byte-order mark
2. UTF-16 LE/BE byte-order mark
3. BOM-less UTF-16 (zero-byte distribution over the first 2000 bytes)
4. strict UTF-8
5. windows-1250 vs ISO-8859-2, whichever reads more like Polish text
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

log = logging.getLogger("animesub.encoding")

UTF8_BOM = b"\xef\xbb\xbf"
UTF16LE_BOM = b"\xff\xfe"
UTF16BE_BOM = b"\xfe\xff"

SNIFF_BYTES = 2000
SNIFF_MIN_BYTES = 8
ZERO_RATIO_HIGH = 0.30
ZERO_RATIO_LOW = 0.05

POLISH_CHARS_RE = re.compile(r"[ąćęłńóśźżĄĆĘŁŃÓŚŹŻ]")
MOJIBAKE_RE = re.compile(r"[ÃÅÄĹĽÐÑÒÓÕÖØ]")
CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

LEGACY_ENCODINGS = ("windows-1250", "ISO-8859-2")


@dataclass(frozen=True)
class DecodedText:
    content: str
    encoding: str


def sniff_utf16_without_bom(data: bytes) -> Optional[str]:
    """Guess UTF-16 byte order from null padding of ASCII-range text."""
    length = min(len(data), SNIFF_BYTES)
    if length < SNIFF_MIN_BYTES:
        return None
    zeros_even = zeros_odd = pairs = 0
    for i in range(0, length - 1, 2):
        if data[i] == 0:
            zeros_even += 1
        if data[i + 1] == 0:
            zeros_odd += 1
        pairs += 1
    even_ratio = zeros_even / pairs
    odd_ratio = zeros_odd / pairs
    if odd_ratio > ZERO_RATIO_HIGH and even_ratio < ZERO_RATIO_LOW:
        return "utf-16le"
    if even_ratio > ZERO_RATIO_HIGH and odd_ratio < ZERO_RATIO_LOW:
        return "utf-16be"
    return None


def try_decode_utf8_strict(data: bytes) -> Optional[str]:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def score_polish_text(text: str) -> int:
    score = len(POLISH_CHARS_RE.findall(text)) * 3
    score -= len(MOJIBAKE_RE.findall(text)) * 2
    score -= len(CONTROL_CHAR_RE.findall(text)) * 5
    return score


def decode_subtitle(data: bytes) -> DecodedText:
    if data.startswith(UTF8_BOM):
        return DecodedText(data[3:].decode("utf-8", errors="replace"), "utf8-bom")
    if data.startswith(UTF16LE_BOM):
        return DecodedText(data[2:].decode("utf-16-le", errors="replace"), "utf16le-bom")
    if data.startswith(UTF16BE_BOM):
        return DecodedText(data[2:].decode("utf-16-be", errors="replace"), "utf16be-bom")

    utf16 = sniff_utf16_without_bom(data)
    if utf16:
        codec = "utf-16-le" if utf16 == "utf-16le" else "utf-16-be"
        return DecodedText(data.decode(codec, errors="replace"), utf16)

    utf8 = try_decode_utf8_strict(data)
    if utf8 is not None:
        return DecodedText(utf8, "utf8")

    best: Optional[DecodedText] = None
    best_score = 0
    # Ties keep the first candidate (windows-1250).
    for encoding in LEGACY_ENCODINGS:
        text = data.decode(encoding, errors="replace")
        score = score_polish_text(text)
        log.debug("legacy decode %s score=%d", encoding, score)
        if best is None or score > best_score:
            best, best_score = DecodedText(text, encoding), score
    return best
