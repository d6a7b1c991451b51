"""Search query planning.

Queries go from most to least specific: season+episode, episode only,
season only, then the bare title. Specific queries return fewer and more
relevant rows; the bare title is the last resort with maximum recall.
"""

from __future__ import annotations

import re
from typing import List, Optional

from .models import ENGLISH, ORIGINAL, SearchStrategy

WHITESPACE_RE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    return WHITESPACE_RE.sub(" ", (title or "").replace("-", " ")).strip()


def plan_strategies(title: str, season: Optional[int] = None, episode: Optional[int] = None) -> List[SearchStrategy]:
    clean = normalize_title(title)
    planned: List[SearchStrategy] = []
    seen = set()

    def add(variant: str, query: str) -> None:
        key = (variant, query)
        if key in seen:
            return
        seen.add(key)
        planned.append(SearchStrategy(query=query, variant=variant, priority=len(planned)))

    multi_season = bool(season and season > 1)
    if episode is not None:
        ep = f"{episode:02d}"
        if multi_season:
            add(ENGLISH, f"{clean} Season {season} ep{ep}")
            add(ENGLISH, f"{clean} {season} ep{ep}")
            add(ENGLISH, f"{clean} S{season} ep{ep}")
        add(ORIGINAL, f"{clean} ep{ep}")
        add(ENGLISH, f"{clean} ep{ep}")
        if multi_season:
            add(ENGLISH, f"{clean} Season {season}")
            add(ENGLISH, f"{clean} {season}")

    add(ORIGINAL, clean)
    add(ENGLISH, clean)
    return planned
