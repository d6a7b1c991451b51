"""Structural repair of ASS/SSA documents for strict renderers (libass).

libass refuses files whose section headers are indented, that lack a
``ScriptType`` declaration, or whose sections have no ``Format:`` line.
``normalize_ass`` makes a document acceptable either by targeted inserts or,
when a required section is missing, by rebuilding it around the surviving
events and styles.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

from .errors import MalformedAssDocument

log = logging.getLogger("animesub.ass")

SCRIPT_INFO = "[Script Info]"
STYLES = "[V4+ Styles]"
EVENTS = "[Events]"

SCRIPT_TYPE_LINE = "ScriptType: v4.00+"
STYLE_FORMAT_LINE = (
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, "
    "BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, "
    "BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding"
)
DEFAULT_STYLE_LINE = (
    "Style: Default,Arial,52,&H00FFFFFF,&H000000FF,&H00000000,&H00000000,"
    "0,0,0,0,100,100,0,0,1,2,2,2,10,10,10,1"
)
EVENT_FORMAT_LINE = "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"

SCRIPT_INFO_TEMPLATE = [
    SCRIPT_INFO,
    "Title: Subtitle",
    SCRIPT_TYPE_LINE,
    "WrapStyle: 0",
    "PlayResX: 1920",
    "PlayResY: 1080",
    "ScaledBorderAndShadow: yes",
    "YCbCr Matrix: TV.709",
]

SECTION_HEADER_RE = re.compile(r"^\s*\[.*\]$")
TIMESTAMP_RE = re.compile(r"^(\d+):(\d{2}):(\d{2})(?:[.,](\d+))?$")
EVENT_TIMES_RE = re.compile(
    r"^(?P<head>(?:Dialogue|Comment):[^,]*),"
    r"(?P<start>\s*\d+:\d{2}:\d{2}(?:[.,]\d+)?\s*),"
    r"(?P<end>\s*\d+:\d{2}:\d{2}(?:[.,]\d+)?\s*),"
    r"(?P<rest>.*)$"
)


def _is_event(line: str) -> bool:
    return line.startswith("Dialogue:") or line.startswith("Comment:")


def _clean_lines(text: str) -> List[str]:
    text = text.lstrip("\ufeff").replace("\x00", "").replace("\r", "")
    return [line.rstrip() for line in text.split("\n")]


def check_structure(lines: List[str]) -> None:
    """Raise MalformedAssDocument unless all required elements are present."""
    missing = [header for header in (SCRIPT_INFO, STYLES, EVENTS) if header not in lines]
    if not any(line.startswith("ScriptType:") for line in lines):
        missing.append("ScriptType")
    if missing:
        raise MalformedAssDocument(f"missing {', '.join(missing)}")


def _rebuild(lines: List[str]) -> List[str]:
    events = [line for line in lines if _is_event(line)]
    styles = [line for line in lines if line.startswith("Style:") and not line.startswith("Style: Default")]
    rebuilt = list(SCRIPT_INFO_TEMPLATE)
    rebuilt += ["", STYLES, STYLE_FORMAT_LINE, DEFAULT_STYLE_LINE]
    rebuilt += styles
    rebuilt += ["", EVENTS, EVENT_FORMAT_LINE]
    rebuilt += events
    log.info("Rebuilt ASS document: %d styles, %d events kept", len(styles), len(events))
    return rebuilt


def _section_range(lines: List[str], header: str) -> Optional[range]:
    try:
        start = lines.index(header)
    except ValueError:
        return None
    end = start + 1
    while end < len(lines) and not lines[end].lstrip().startswith("["):
        end += 1
    return range(start + 1, end)


def _repair(lines: List[str]) -> List[str]:
    lines = list(lines)

    info = _section_range(lines, SCRIPT_INFO)
    if info is not None and not any(lines[i].startswith("ScriptType:") for i in info):
        lines.insert(info.start, SCRIPT_TYPE_LINE)

    styles = _section_range(lines, STYLES)
    if styles is not None:
        if not any(lines[i].startswith("Format:") for i in styles):
            lines.insert(styles.start, STYLE_FORMAT_LINE)
            styles = _section_range(lines, STYLES)
        if not any(lines[i].startswith("Style: Default") for i in styles):
            format_idx = next(i for i in styles if lines[i].startswith("Format:"))
            lines.insert(format_idx + 1, DEFAULT_STYLE_LINE)

    events = _section_range(lines, EVENTS)
    if events is not None and not any(lines[i].startswith("Format:") for i in events):
        lines.insert(events.start, EVENT_FORMAT_LINE)

    return lines


def normalize_structure(text: str) -> str:
    lines = _clean_lines(text)
    try:
        check_structure(lines)
    except MalformedAssDocument as exc:
        log.info("Malformed ASS document (%s), rebuilding", exc)
        lines = _rebuild(lines)
    else:
        lines = _repair(lines)

    lines = [line.strip() if SECTION_HEADER_RE.match(line) else line for line in lines]
    while lines and not lines[0].strip():
        lines.pop(0)
    return "\n".join(lines)


def normalize_timestamp(timestamp: str) -> str:
    """Return ``H:MM:SS.CC``; already-valid values come back unchanged."""
    timestamp = timestamp.strip()
    match = TIMESTAMP_RE.match(timestamp)
    if not match:
        return timestamp.replace(",", ".", 1)
    hours, minutes, seconds, fraction = match.groups()
    fraction = (fraction or "00")[:2].ljust(2, "0")
    return f"{int(hours)}:{minutes}:{seconds}.{fraction}"


def _fix_event_line(line: str) -> str:
    match = EVENT_TIMES_RE.match(line)
    if match:
        start = normalize_timestamp(match.group("start"))
        end = normalize_timestamp(match.group("end"))
        return f"{match.group('head')},{start},{end},{match.group('rest')}"
    parts = line.split(",")
    if len(parts) >= 3:
        parts[1] = normalize_timestamp(parts[1])
        parts[2] = normalize_timestamp(parts[2])
    return ",".join(parts)


def fix_dialogue_timestamps(text: str) -> str:
    return "\n".join(_fix_event_line(line) if _is_event(line) else line for line in text.split("\n"))


def normalize_ass(text: str) -> str:
    """Structural repair followed by timestamp repair."""
    return fix_dialogue_timestamps(normalize_structure(text))
