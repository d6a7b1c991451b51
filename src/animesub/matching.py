"""Season/episode matching of search results.

Filtering is strict: a row that declares a different episode or season is
dropped, a row that declares nothing is kept. Season/episode numbers come
from the free-text titles (see ``parse_episode_info``).
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from .models import SearchStrategy, SubtitleCandidate

log = logging.getLogger("animesub.matching")

DEFAULT_AGGREGATE_CAP = 5

# Tried in this order for each title; the first hit for a field wins.
EPISODE_RE = re.compile(r"(?:ep|episode)\s*(\d+)", re.IGNORECASE)
SEASON_RE = re.compile(r"\b(?:Season|S)\s*(\d+)|(\d+)(?:nd|rd|th)\s+Season", re.IGNORECASE)
IMPLICIT_SEASON_RE = re.compile(r"\s(\d)\s+ep\d+", re.IGNORECASE)


def parse_episode(title: str) -> Optional[int]:
    match = EPISODE_RE.search(title)
    return int(match.group(1)) if match else None


def parse_season(title: str) -> Optional[int]:
    match = SEASON_RE.search(title)
    if not match:
        return None
    return int(match.group(1) or match.group(2))


def parse_implicit_season(title: str) -> Optional[int]:
    """``Title 2 ep05`` style: a lone digit right before the episode tag."""
    match = IMPLICIT_SEASON_RE.search(title)
    return int(match.group(1)) if match else None


def parse_episode_info(*titles: str) -> Tuple[Optional[int], Optional[int]]:
    """Return (season, episode) recovered from the original/English/alt titles."""
    season: Optional[int] = None
    episode: Optional[int] = None
    for title in filter(None, titles):
        if episode is None:
            episode = parse_episode(title)
        if season is None:
            season = parse_season(title)
        if season is None and episode is not None:
            season = parse_implicit_season(title)
        if season is not None and episode is not None:
            break
    return season, episode


def accepts(candidate: SubtitleCandidate, season: Optional[int], episode: Optional[int]) -> bool:
    if episode is not None and candidate.episode is not None and candidate.episode != episode:
        return False
    if season is not None and candidate.season is not None and candidate.season != season:
        return False
    # No season marker on the row reads as season 1 (and is kept either way).
    return True


def match_candidates(
    candidates: Sequence[SubtitleCandidate],
    season: Optional[int],
    episode: Optional[int],
) -> List[SubtitleCandidate]:
    if season is None and episode is None:
        return list(candidates)
    return [candidate for candidate in candidates if accepts(candidate, season, episode)]


def is_exact_match(candidate: SubtitleCandidate, season: Optional[int], episode: Optional[int]) -> bool:
    if candidate.episode != episode:
        return False
    return season is None or season == 1 or candidate.season == season


def rank_candidates(candidates: Iterable[SubtitleCandidate]) -> List[SubtitleCandidate]:
    return sorted(candidates, key=lambda c: c.download_count or 0, reverse=True)


class CandidateAggregator:
    """Collects matched rows strategy by strategy until it has enough.

    ``add`` returns True once searching can stop: the strategy produced an
    exact episode match, or ``cap`` unique rows were collected.
    """

    def __init__(self, season: Optional[int], episode: Optional[int], cap: int = DEFAULT_AGGREGATE_CAP) -> None:
        self.season = season
        self.episode = episode
        self.cap = cap
        self.done = False
        self._seen: Set[str] = set()
        self._collected: List[SubtitleCandidate] = []

    def __len__(self) -> int:
        return len(self._collected)

    def add(self, strategy: SearchStrategy, candidates: Sequence[SubtitleCandidate]) -> bool:
        matched = match_candidates(candidates, self.season, self.episode)
        for candidate in matched:
            if candidate.id in self._seen:
                continue
            self._seen.add(candidate.id)
            self._collected.append(replace(candidate, strategy=strategy))

        if any(is_exact_match(c, self.season, self.episode) for c in matched):
            log.info("Exact match for %r, stopping search", strategy.query)
            self.done = True
        elif len(self._collected) >= self.cap:
            log.info("Collected %d subtitles, stopping search", len(self._collected))
            self.done = True
        return self.done

    def ranked(self) -> List[SubtitleCandidate]:
        return rank_candidates(self._collected)


def aggregate(
    results: Iterable[Tuple[SearchStrategy, Sequence[SubtitleCandidate]]],
    season: Optional[int],
    episode: Optional[int],
    cap: int = DEFAULT_AGGREGATE_CAP,
) -> List[SubtitleCandidate]:
    """Merge per-strategy results in order; ``results`` is consumed lazily
    and later strategies are never pulled once the aggregator is done."""
    aggregator = CandidateAggregator(season, episode, cap)
    for strategy, candidates in results:
        if aggregator.add(strategy, candidates):
            break
    return aggregator.ranked()
