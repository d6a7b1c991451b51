"""ASS/SSA to WebVTT conversion.

Position tags are translated before formatting tags are stripped:
``\\anN`` follows the numpad layout (7-8-9 top, 4-5-6 middle, 1-2-3 bottom)
and ``\\pos(x,y)`` is read against a 1920x1080 canvas. Cues that share
start, end and position are merged into one multi-line cue.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ConversionFailure

log = logging.getLogger("animesub.vtt")

CANVAS_WIDTH = 1920
CANVAS_HEIGHT = 1080

ASS_TIMESTAMP_RE = re.compile(r"^(\d+):(\d{2}):(\d{2})\.(\d{2})$")
ALIGNMENT_TAG_RE = re.compile(r"\{[^}]*\\an([1-9])[^}]*\}")
POSITION_TAG_RE = re.compile(r"\{[^}]*\\pos\(\s*(\d+(?:\.\d+)?)\s*,\s*(\d+(?:\.\d+)?)\s*\)[^}]*\}")
OVERRIDE_BLOCK_RE = re.compile(r"\{[^}]*\}")
EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

TEXT_FIELD_INDEX = 9


@dataclass
class DialogueCue:
    start_ms: int
    end_ms: int
    text: str
    position: Optional[str] = None

    @property
    def key(self) -> Tuple[int, int, Optional[str]]:
        return self.start_ms, self.end_ms, self.position


def ass_timestamp_to_ms(timestamp: str) -> Optional[int]:
    match = ASS_TIMESTAMP_RE.match(timestamp.strip())
    if not match:
        return None
    hours, minutes, seconds, centis = (int(group) for group in match.groups())
    return ((hours * 60 + minutes) * 60 + seconds) * 1000 + centis * 10


def format_vtt_timestamp(ms: int) -> str:
    hours, rest = divmod(ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def detect_position(raw_text: str) -> Optional[str]:
    """Return a VTT cue-settings string, or None for bottom-center."""
    match = ALIGNMENT_TAG_RE.search(raw_text)
    if match:
        an = int(match.group(1))
        if an in (1, 2, 3):
            line = "line:90%"
        elif an in (7, 8, 9):
            line = "line:10%"
        else:
            line = "line:50%"
        if an in (1, 4, 7):
            horizontal = "position:10% align:left"
        elif an in (3, 6, 9):
            horizontal = "position:90% align:right"
        else:
            horizontal = "position:50% align:center"
        return f"{line} {horizontal}"

    match = POSITION_TAG_RE.search(raw_text)
    if match:
        x_pct = _round_half_up(float(match.group(1)) / CANVAS_WIDTH * 100)
        y_pct = _round_half_up(float(match.group(2)) / CANVAS_HEIGHT * 100)
        if x_pct < 33:
            align = "align:left"
        elif x_pct > 66:
            align = "align:right"
        else:
            align = "align:center"
        return f"line:{y_pct}% position:{x_pct}% {align}"

    return None


def strip_ass_tags(text: str) -> str:
    text = OVERRIDE_BLOCK_RE.sub("", text)
    text = text.replace("\\N", "\n").replace("\\n", "\n").replace("\\h", "\u00a0")
    text = EXCESS_NEWLINES_RE.sub("\n\n", text)
    return text.strip()


def parse_dialogues(ass_text: str) -> List[DialogueCue]:
    cues: List[DialogueCue] = []
    for line in ass_text.split("\n"):
        if not line.startswith("Dialogue:"):
            continue
        parts = line.split(",")
        if len(parts) <= TEXT_FIELD_INDEX:
            continue
        start = ass_timestamp_to_ms(parts[1])
        end = ass_timestamp_to_ms(parts[2])
        if start is None or end is None:
            continue
        raw_text = ",".join(parts[TEXT_FIELD_INDEX:]).strip()
        position = detect_position(raw_text)
        text = strip_ass_tags(raw_text)
        if not text:
            continue
        cues.append(DialogueCue(start, end, text, position))
    return cues


def merge_simultaneous(cues: Iterable[DialogueCue]) -> List[DialogueCue]:
    """Sort cues and fold those with an identical (start, end, position)."""
    ordered = sorted(cues, key=lambda cue: (cue.start_ms, cue.end_ms))
    merged: List[DialogueCue] = []
    by_key: Dict[Tuple[int, int, Optional[str]], DialogueCue] = {}
    for cue in ordered:
        existing = by_key.get(cue.key)
        if existing is not None:
            existing.text += "\n" + cue.text
            continue
        copy = DialogueCue(cue.start_ms, cue.end_ms, cue.text, cue.position)
        by_key[cue.key] = copy
        merged.append(copy)
    return merged


def render_vtt(cues: List[DialogueCue]) -> str:
    blocks = []
    for index, cue in enumerate(cues, start=1):
        timing = f"{format_vtt_timestamp(cue.start_ms)} --> {format_vtt_timestamp(cue.end_ms)}"
        if cue.position:
            timing = f"{timing} {cue.position}"
        blocks.append(f"{index}\n{timing}\n{cue.text}")
    return "WEBVTT\n\n" + "\n\n".join(blocks) + "\n"


def ass_to_vtt(ass_text: str) -> str:
    cues = merge_simultaneous(parse_dialogues(ass_text))
    if not cues:
        raise ConversionFailure("ASS document has no convertible dialogue")
    log.info("Converted ASS to WebVTT: %d cues", len(cues))
    return render_vtt(cues)
