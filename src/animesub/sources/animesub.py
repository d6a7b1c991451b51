# -*- coding: utf-8 -*-
"""animesub.info search scraper and downloader.

Search pages are ISO-8859-2 HTML; every result is a ``table.Napisy`` with
three ``tr.KNap`` rows (titles, author, download count) and a ``tr.KKom``
row holding the POST form whose ``sh`` field is the short-lived download
hash.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from ..cache import TTLCache
from ..errors import AccessRejected
from ..extract import is_zip
from ..matching import parse_episode_info
from ..models import SubtitleCandidate

log = logging.getLogger("animesub.sources.animesub")

PAGE_ENCODING = "ISO-8859-2"
SORT_BY_DOWNLOADS = "pobrn"
DOWNLOAD_BUTTON = "Pobierz napisy"

# The site answers an expired/invalid hash with an HTML error page.
SECURITY_ERROR_MARKERS = (
    b"zabezpiecze",
    "Błąd".encode("utf-8"),
    "Błąd".encode("iso-8859-2"),
)
SUBTITLE_MARKERS = (b"-->", b"Dialogue:", b"}{")


def _headers(user_agent: str) -> Dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Charset": "ISO-8859-2,utf-8;q=0.7,*;q=0.3",
        "Accept-Language": "pl,en;q=0.9",
    }


def _cell_text(cells, index: int) -> str:
    if len(cells) <= index:
        return ""
    return cells[index].get_text().strip()


def _parse_count(text: str) -> int:
    token = (text or "").split(" ")[0]
    return int(token) if token.isdigit() else 0


def parse_search_results(html: str) -> List[SubtitleCandidate]:
    soup = BeautifulSoup(html, "html.parser")
    subtitles: List[SubtitleCandidate] = []
    for table in soup.select("table.Napisy"):
        style = (table.get("style") or "").replace(" ", "")
        if "text-align:center" not in style:
            continue
        rows = table.select("tr.KNap")
        if len(rows) < 3:
            continue

        row1 = rows[0].find_all("td")
        row2 = rows[1].find_all("td")
        row3 = rows[2].find_all("td")
        title_org = _cell_text(row1, 0)
        title_eng = _cell_text(row2, 0)
        title_alt = _cell_text(row3, 0)

        author = ""
        if len(row2) > 1:
            link = row2[1].find("a")
            author = link.get_text().strip() if link else ""
            if not author:
                author = row2[1].get_text().strip().lstrip("~")

        download_row = table.select_one("tr.KKom")
        form = download_row.find("form", attrs={"method": lambda m: m and m.upper() == "POST"}) if download_row else None
        if form is None:
            continue
        id_input = form.find("input", attrs={"name": "id"})
        sh_input = form.find("input", attrs={"name": "sh"})
        subtitle_id = id_input.get("value") if id_input else None
        download_hash = sh_input.get("value") if sh_input else None
        if not subtitle_id or not download_hash:
            continue
        description_cell = download_row.select_one('td.KNap[align="left"]')

        season, episode = parse_episode_info(title_org, title_eng, title_alt)
        subtitles.append(
            SubtitleCandidate(
                id=str(subtitle_id),
                hash=str(download_hash),
                title_org=title_org,
                title_eng=title_eng,
                title_alt=title_alt,
                author=author,
                format_hint=_cell_text(row1, 3),
                download_count=_parse_count(_cell_text(row3, 3)),
                description=description_cell.get_text().strip() if description_cell else "",
                season=season,
                episode=episode,
            )
        )
    return subtitles


def find_fresh_hash(html: str, subtitle_id: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    for form in soup.find_all("form", attrs={"action": "sciagnij.php"}):
        if (form.get("method") or "").upper() != "POST":
            continue
        id_input = form.find("input", attrs={"name": "id"})
        if id_input is not None and str(id_input.get("value")) == str(subtitle_id):
            sh_input = form.find("input", attrs={"name": "sh"})
            if sh_input is not None and sh_input.get("value"):
                return str(sh_input.get("value"))
    return None


def is_access_error(data: bytes) -> bool:
    if is_zip(data):
        return False
    if not any(marker in data for marker in SECURITY_ERROR_MARKERS):
        return False
    return not any(marker in data for marker in SUBTITLE_MARKERS)


class AnimeSubClient:
    def __init__(
        self,
        cache: TTLCache,
        base_url: str = "http://animesub.info",
        user_agent: str = "Mozilla/5.0",
        search_timeout: float = 5.0,
        download_timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.cache = cache
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.search_timeout = search_timeout
        self.download_timeout = download_timeout
        self.transport = transport

    @property
    def search_url(self) -> str:
        return f"{self.base_url}/szukaj.php"

    @property
    def download_url(self) -> str:
        return f"{self.base_url}/sciagnij.php"

    def session(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=_headers(self.user_agent),
            timeout=timeout or self.search_timeout,
            follow_redirects=True,
            max_redirects=2,
            transport=self.transport,
        )

    def _search_params(self, query: str, variant: str) -> Dict[str, str]:
        return {"szukane": query, "pTitle": variant, "pSortuj": SORT_BY_DOWNLOADS}

    async def search(self, query: str, variant: str, client: Optional[httpx.AsyncClient] = None) -> List[SubtitleCandidate]:
        cache_key = f"{variant}:{query}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        log.info("Searching %r (%s)", query, variant)
        try:
            if client is None:
                async with self.session() as own_client:
                    resp = await own_client.get(self.search_url, params=self._search_params(query, variant))
            else:
                resp = await client.get(self.search_url, params=self._search_params(query, variant))
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            log.warning("Search %r failed: %s", query, exc)
            return []

        results = parse_search_results(resp.content.decode(PAGE_ENCODING, errors="replace"))
        log.info("Found %d subtitles for %r", len(results), query)
        self.cache.put(cache_key, results)
        return results

    async def download(self, subtitle_id: str, download_hash: str, query: str, variant: str) -> bytes:
        """Fetch the raw payload, re-reading the hash from a fresh search first.

        Hashes seen at discovery time may have expired; the fresh search also
        sets the session cookies the download form expects.
        """
        async with self.session(self.download_timeout) as client:
            referer = self.search_url
            fresh_hash = None
            if query:
                try:
                    resp = await client.get(self.search_url, params=self._search_params(query, variant or "org"))
                    resp.raise_for_status()
                    referer = str(resp.url)
                    fresh_hash = find_fresh_hash(resp.content.decode(PAGE_ENCODING, errors="replace"), subtitle_id)
                except httpx.HTTPError as exc:
                    log.warning("Hash refresh search failed: %s", exc)
            else:
                log.warning("No query for subtitle %s, cannot refresh its hash", subtitle_id)

            if fresh_hash and fresh_hash != download_hash:
                log.info("Refreshed hash for subtitle %s", subtitle_id)
            resp = await client.post(
                self.download_url,
                data={"id": subtitle_id, "sh": fresh_hash or download_hash, "single_file": DOWNLOAD_BUTTON},
                headers={"Referer": referer, "Origin": self.base_url},
            )
            resp.raise_for_status()

        data = resp.content
        log.info("Downloaded %d bytes for subtitle %s", len(data), subtitle_id)
        if is_access_error(data):
            raise AccessRejected("animesub.info rejected the download hash (invalid or expired)")
        return data
