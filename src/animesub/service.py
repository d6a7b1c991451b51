from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlencode

from .ass import normalize_ass
from .cache import TTLCache
from .encoding import decode_subtitle
from .errors import AnimeSubError, MetadataUnavailable, NoCandidatesFound, SearchTimeout
from .extract import ArchiveTool, extract_subtitle, is_zip
from .matching import CandidateAggregator
from .metadata import MetadataResolver
from .models import OutputSubtitle, SearchStrategy, SubtitleCandidate, TitleInfo
from .settings import Settings
from .sources.animesub import AnimeSubClient
from .strategies import plan_strategies
from .vtt import ass_to_vtt

log = logging.getLogger("animesub.service")

LANG_ISO639_2 = "pol"
DEFAULT_FORMAT = "srt"
KNOWN_EXTENSIONS = {"ass", "ssa", "srt", "txt", "sub", "vtt"}
ASS_EXTENSIONS = {".ass", ".ssa"}
UNMARKED_OUTPUT = {".ass", ".ssa", ".vtt"}  # libass and VTT parsers want no BOM

ASS_MARKERS = ("[Script Info]", "[V4+ Styles]", "Dialogue:")
SRT_CUE_RE = re.compile(r"^\d+\s*\n\d{2}:\d{2}:\d{2},\d{3}\s*-->", re.MULTILINE)
NEWLINE_RE = re.compile(r"\r?\n")
SNIFF_BYTES = 200


@dataclass
class DownloadRequest:
    id: str
    hash: str
    query: str = ""
    type: str = "org"
    format: str = DEFAULT_FORMAT
    convert: str = ""

    @property
    def wants_vtt(self) -> bool:
        return self.convert.lower() == "vtt"


def infer_format(candidate: SubtitleCandidate) -> str:
    description = (candidate.description or "").lower()
    hint = (candidate.format_hint or "").lower()
    if ".ass" in description or "ass" in hint:
        return "ass"
    if ".ssa" in description or "ssa" in hint:
        return "ssa"
    return DEFAULT_FORMAT


def display_name(candidate: SubtitleCandidate, fmt: str) -> str:
    parts = [
        candidate.title_eng or candidate.title_org,
        f"by {candidate.author}" if candidate.author else None,
        f"⬇ {candidate.download_count}" if candidate.download_count else None,
    ]
    label = " | ".join(part for part in parts if part)
    return f"{label} [{fmt.upper()}]"


def build_download_url(
    base_url: str,
    candidate: SubtitleCandidate,
    strategy: SearchStrategy,
    fmt: str = DEFAULT_FORMAT,
    convert_to_vtt: bool = False,
) -> str:
    params = {
        "id": candidate.id,
        "hash": candidate.hash,
        "query": strategy.query,
        "type": strategy.variant,
        "format": fmt,
    }
    if convert_to_vtt:
        params["convert"] = "vtt"
    ext = "vtt" if convert_to_vtt else fmt
    return f"{base_url.rstrip('/')}/subtitles/download.{ext}?{urlencode(params)}"


def to_stremio_subtitles(candidates: Sequence[SubtitleCandidate], base_url: str) -> List[Dict[str, str]]:
    subtitles: List[Dict[str, str]] = []
    for candidate in candidates:
        strategy = candidate.strategy or SearchStrategy(query=candidate.title_org, variant="org")
        fmt = infer_format(candidate)
        subtitles.append(
            {
                "id": f"animesub-{candidate.id}",
                "url": build_download_url(base_url, candidate, strategy, fmt),
                "lang": LANG_ISO639_2,
                "name": display_name(candidate, fmt),
            }
        )
        if fmt in ("ass", "ssa"):
            subtitles.append(
                {
                    "id": f"animesub-{candidate.id}-vtt",
                    "url": build_download_url(base_url, candidate, strategy, fmt, convert_to_vtt=True),
                    "lang": LANG_ISO639_2,
                    "name": display_name(candidate, "vtt"),
                }
            )
    return subtitles


def extension_from_hint(hint: str) -> str:
    hint = (hint or "").lower().lstrip(".")
    return f".{hint}" if hint in KNOWN_EXTENSIONS else f".{DEFAULT_FORMAT}"


def sniff_extension(data: bytes, extension: str, from_archive: bool) -> str:
    """Correct the declared extension from the first bytes of the payload."""
    preview = data[:SNIFF_BYTES].decode("utf-8", errors="ignore")
    if from_archive:
        if extension == ".txt" and ("[Script Info]" in preview or "Dialogue:" in preview):
            return ".ass"
        return extension
    if any(marker in preview for marker in ASS_MARKERS):
        return ".ass"
    if SRT_CUE_RE.search(preview.lstrip("\ufeff").replace("\r\n", "\n")):
        return ".srt"
    return extension


def encode_output(text: str, extension: str) -> OutputSubtitle:
    cleaned = (text or "").replace("\x00", "")
    if extension not in UNMARKED_OUTPUT:
        cleaned = "\ufeff" + cleaned
    mime_type = "text/vtt; charset=utf-8" if extension == ".vtt" else "text/plain; charset=utf-8"
    return OutputSubtitle(data=cleaned.encode("utf-8"), mime_type=mime_type, extension=extension.lstrip("."))


class SubtitleService:
    """Discovery and download pipelines on top of the site client."""

    def __init__(
        self,
        settings: Settings,
        resolver: Optional[MetadataResolver] = None,
        client: Optional[AnimeSubClient] = None,
        archive_tool: Optional[ArchiveTool] = None,
    ) -> None:
        self.settings = settings
        self.resolver = resolver or MetadataResolver(
            TTLCache(default_ttl=settings.meta_cache_ttl, max_size=settings.cache_max_size),
            timeout=settings.metadata_timeout,
            retries=settings.metadata_retries,
        )
        self.client = client or AnimeSubClient(
            TTLCache(default_ttl=settings.search_cache_ttl, max_size=settings.cache_max_size),
            base_url=settings.base_url,
            user_agent=settings.user_agent,
            search_timeout=settings.search_timeout,
            download_timeout=settings.download_timeout,
        )
        self.archive_tool = archive_tool or ArchiveTool(
            settings.archive_tool,
            timeout=settings.archive_tool_timeout,
            max_output=settings.archive_tool_max_output,
        )

    # -- discovery ---------------------------------------------------------

    async def discover(self, content_type: str, raw_id: str, base_url: str) -> List[Dict[str, str]]:
        """Ranked Stremio subtitle entries; any failure yields an empty list."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.discovery_deadline
        try:
            info = await self._resolve_title(content_type, raw_id, deadline)
            candidates = await self.find_candidates(info, deadline)
            if not candidates:
                raise NoCandidatesFound(f"No subtitles for {info.title!r}")
        except AnimeSubError as exc:
            log.warning("Discovery for %s %s: %s", content_type, raw_id, exc)
            return []
        except Exception:  # noqa: BLE001
            log.exception("Discovery for %s %s failed", content_type, raw_id)
            return []

        subtitles = to_stremio_subtitles(candidates[: self.settings.max_results], base_url)
        log.info("Returning %d subtitles for %s", len(subtitles), raw_id)
        return subtitles

    def _time_left(self, deadline: float) -> float:
        return deadline - asyncio.get_running_loop().time()

    async def _resolve_title(self, content_type: str, raw_id: str, deadline: float) -> TitleInfo:
        try:
            return await asyncio.wait_for(self.resolver.resolve(content_type, raw_id), timeout=max(0.0, self._time_left(deadline)))
        except asyncio.TimeoutError as exc:
            raise MetadataUnavailable(f"Metadata lookup for {raw_id} timed out") from exc

    async def _run_strategy(self, strategy: SearchStrategy, http, deadline: float) -> List[SubtitleCandidate]:
        budget = min(self.settings.search_timeout, self._time_left(deadline) - self.settings.deadline_margin)
        if budget <= 0:
            raise SearchTimeout(f"No time left for {strategy.query!r}")
        try:
            return await asyncio.wait_for(self.client.search(strategy.query, strategy.variant, client=http), timeout=budget)
        except asyncio.TimeoutError as exc:
            raise SearchTimeout(f"Search {strategy.query!r} exceeded {budget:.1f}s") from exc

    async def find_candidates(self, info: TitleInfo, deadline: float) -> List[SubtitleCandidate]:
        """Fan out every planned strategy at once, aggregate in priority order."""
        strategies = plan_strategies(info.title, info.season, info.episode)
        aggregator = CandidateAggregator(info.season, info.episode, cap=self.settings.max_aggregate)

        async with self.client.session() as http:
            tasks: List[Tuple[SearchStrategy, asyncio.Task]] = [
                (strategy, asyncio.create_task(self._run_strategy(strategy, http, deadline)))
                for strategy in strategies
            ]
            try:
                for strategy, task in tasks:
                    try:
                        candidates = await task
                    except SearchTimeout as exc:
                        log.warning("%s", exc)
                        candidates = []
                    if aggregator.add(strategy, candidates):
                        break
            finally:
                pending = [task for _strategy, task in tasks if not task.done()]
                for task in pending:
                    task.cancel()
                if pending:
                    await asyncio.gather(*pending, return_exceptions=True)

        return aggregator.ranked()

    # -- download ----------------------------------------------------------

    async def resolve_download(self, request: DownloadRequest) -> OutputSubtitle:
        """Fetch and normalize one subtitle; steps run strictly in order."""
        raw = await self.client.download(request.id, request.hash, request.query, request.type)

        archived = is_zip(raw)
        extracted = await asyncio.to_thread(extract_subtitle, raw, extension_from_hint(request.format), self.archive_tool)
        extension = sniff_extension(extracted.data, extracted.extension, archived)

        decoded = decode_subtitle(extracted.data)
        log.info("Decoded %s payload as %s", extension, decoded.encoding)
        text = decoded.content

        if extension in ASS_EXTENSIONS:
            text = normalize_ass(text)
            if request.wants_vtt:
                text = ass_to_vtt(text)
                extension = ".vtt"
        elif extension == ".srt":
            text = NEWLINE_RE.sub("\r\n", text)

        return encode_output(text, extension)
