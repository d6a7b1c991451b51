from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote

import httpx

from .cache import TTLCache
from .errors import MetadataUnavailable
from .models import TitleInfo

log = logging.getLogger("animesub.metadata")

# Prefer v3 endpoint; fall back to cinemeta-live if needed
CINEMETA_BASES = [
    "https://v3-cinemeta.strem.io",
    "https://cinemeta-live.strem.io",
]
KITSU_ANIME_URL = "https://kitsu.io/api/edge/anime/{kitsu_id}"
KITSU_HEADERS = {
    "Accept": "application/vnd.api+json",
    "Content-Type": "application/vnd.api+json",
}
YEAR_RE = re.compile(r"(19|20)\d{2}")


@dataclass
class ContentId:
    prefix: str  # "tt" or "kitsu"
    base: str
    season: Optional[int]
    episode: Optional[int]


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    value = value.strip()
    return int(value) if value.isdigit() else None


def parse_content_id(content_type: str, raw_id: str) -> ContentId:
    """Parse Stremio ids that may be URL-encoded once or twice.

    - tt0369179                   (movie)
    - tt0369179:1:2               (series S01E02)
    - tt0369179%3A1%3A2           (encoded once)
    - kitsu:7442:5                (anime episode 5, always season 1)
    """
    s = raw_id or ""
    # Decode up to twice to handle cases like %253A -> %3A -> :
    for _ in range(2):
        decoded = unquote(s)
        if decoded == s:
            break
        s = decoded

    parts = s.split(":")
    if parts[0] == "kitsu":
        kitsu_id = parts[1] if len(parts) > 1 else ""
        episode = _to_int(parts[2]) if len(parts) > 2 else None
        return ContentId(prefix="kitsu", base=kitsu_id, season=1, episode=episode)

    season = episode = None
    if content_type == "series" and len(parts) >= 3:
        season = _to_int(parts[1])
        episode = _to_int(parts[2])
    return ContentId(prefix="tt", base=parts[0], season=season, episode=episode)


def normalize_year(raw: object) -> Optional[int]:
    if raw is None:
        return None
    match = YEAR_RE.search(str(raw))
    return int(match.group(0)) if match else None


class MetadataResolver:
    """Resolve Stremio ids to a title via Cinemeta (IMDb) or Kitsu."""

    def __init__(
        self,
        cache: TTLCache,
        timeout: float = 4.0,
        retries: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.cache = cache
        self.timeout = timeout
        self.retries = max(0, retries)
        self.transport = transport

    async def resolve(self, content_type: str, raw_id: str) -> TitleInfo:
        cache_key = f"{content_type}:{raw_id}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        content_id = parse_content_id(content_type, raw_id)
        last_exc: Optional[Exception] = None
        info: Optional[TitleInfo] = None
        for attempt in range(self.retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    if content_id.prefix == "kitsu":
                        info = await self._from_kitsu(client, content_id)
                    else:
                        info = await self._from_cinemeta(client, content_type, content_id)
                break
            except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
                last_exc = exc
                log.warning("Metadata lookup failed (attempt %d): %s", attempt + 1, exc)

        if info is None or not info.title:
            raise MetadataUnavailable(f"No title for {content_type} {raw_id}") from last_exc

        log.info("Resolved %s -> %r s%s e%s", raw_id, info.title, info.season, info.episode)
        self.cache.put(cache_key, info)
        return info

    async def _from_cinemeta(self, client: httpx.AsyncClient, content_type: str, content_id: ContentId) -> Optional[TitleInfo]:
        for base in CINEMETA_BASES:
            url = f"{base}/meta/{content_type}/{content_id.base}.json"
            resp = await client.get(url)
            if resp.status_code == 404:
                # Try next base
                continue
            resp.raise_for_status()
            meta = resp.json().get("meta") or {}
            return TitleInfo(
                title=(meta.get("name") or "").strip(),
                year=normalize_year(meta.get("year") or meta.get("releaseInfo")),
                season=content_id.season,
                episode=content_id.episode,
            )
        return None

    async def _from_kitsu(self, client: httpx.AsyncClient, content_id: ContentId) -> Optional[TitleInfo]:
        resp = await client.get(KITSU_ANIME_URL.format(kitsu_id=content_id.base), headers=KITSU_HEADERS)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        attributes = resp.json()["data"]["attributes"]
        titles = attributes.get("titles") or {}
        title = (
            titles.get("en")
            or titles.get("en_jp")
            or attributes.get("canonicalTitle")
            or titles.get("ja_jp")
            or ""
        )
        return TitleInfo(
            title=title.strip(),
            year=normalize_year(attributes.get("startDate")),
            season=content_id.season,
            episode=content_id.episode,
        )
