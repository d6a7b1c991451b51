from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

ORIGINAL = "org"
ENGLISH = "en"


@dataclass(frozen=True)
class TitleInfo:
    title: str
    year: Optional[int] = None
    season: Optional[int] = None
    episode: Optional[int] = None


@dataclass(frozen=True)
class SearchStrategy:
    query: str
    variant: str  # ORIGINAL or ENGLISH, the site's ``pTitle`` value
    priority: int = 0


@dataclass(frozen=True)
class SubtitleCandidate:
    """One search result row. ``hash`` is short-lived; refresh before download."""

    id: str
    hash: str
    title_org: str = ""
    title_eng: str = ""
    title_alt: str = ""
    author: str = ""
    format_hint: str = ""
    download_count: int = 0
    description: str = ""
    season: Optional[int] = None
    episode: Optional[int] = None
    strategy: Optional[SearchStrategy] = None


@dataclass(frozen=True)
class OutputSubtitle:
    data: bytes
    mime_type: str
    extension: str  # without the leading dot

    @property
    def filename(self) -> str:
        return f"subtitle.{self.extension}"
