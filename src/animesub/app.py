from __future__ import annotations

import logging
import uuid
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from . import __version__
from .common import REQUEST_ID, configure_logging
from .errors import AnimeSubError
from .service import DownloadRequest, SubtitleService
from .settings import settings

# ---------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------
configure_logging(settings.log_level, settings.json_logs, settings.log_file)
log = logging.getLogger("animesub.app")

# ---------------------------------------------------------------------
# App + middleware
# ---------------------------------------------------------------------
app = FastAPI(title="AnimeSub.info Subtitles for Stremio")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
    token = REQUEST_ID.set(rid)
    try:
        response = await call_next(request)
    finally:
        REQUEST_ID.reset(token)
    response.headers["X-Request-ID"] = rid
    return response


_service: Optional[SubtitleService] = None


def get_service() -> SubtitleService:
    global _service
    if _service is None:
        _service = SubtitleService(settings)
    return _service


# ---------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------
MANIFEST = {
    "id": "community.animesub.info",
    "version": __version__,
    "name": "ASI Sub",
    "description": "Polskie napisy do anime z animesub.info",
    "logo": "https://i.imgur.com/qKLYVZx.png",
    "resources": ["subtitles"],
    "types": ["movie", "series"],
    "idPrefixes": ["tt", "kitsu"],
    "catalogs": [],
    "behaviorHints": {"configurable": False, "configurationRequired": False},
}


@app.get("/")
@app.get("/manifest.json")
async def manifest() -> JSONResponse:
    return JSONResponse(MANIFEST)


# ---------------------------------------------------------------------
# Subtitles
# ---------------------------------------------------------------------
def _request_base(request: Request) -> str:
    """Public scheme://host for download links, honoring reverse proxies."""
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.url.netloc
    return f"{proto}://{host}".rstrip("/")


async def _subtitles_response(media_type: str, item_id: str, request: Request, service: SubtitleService) -> JSONResponse:
    log.info("Subtitles request %s %s", media_type, item_id)
    subtitles = await service.discover(media_type, item_id, _request_base(request))
    return JSONResponse({"subtitles": subtitles})


@app.get("/subtitles/download.{ext}")
async def download(
    ext: str,
    id: Optional[str] = Query(None),
    hash: Optional[str] = Query(None),
    query: str = Query(""),
    type: str = Query("org"),
    format: str = Query("srt"),
    convert: str = Query(""),
    service: SubtitleService = Depends(get_service),
) -> Response:
    if not id or not hash:
        return Response("Missing id or hash", status_code=400, media_type="text/plain")

    if ext.lower() == "vtt" and not convert:
        convert = "vtt"
    request = DownloadRequest(id=id, hash=hash, query=query, type=type, format=format, convert=convert)
    try:
        output = await service.resolve_download(request)
    except (AnimeSubError, httpx.HTTPError) as exc:
        log.warning("Download of subtitle %s failed: %s", id, exc)
        return Response(f"Error: {exc}", status_code=500, media_type="text/plain")
    except Exception as exc:  # noqa: BLE001
        log.exception("Download of subtitle %s crashed", id)
        return Response(f"Error: {exc}", status_code=500, media_type="text/plain")

    headers = {
        "Content-Disposition": f'inline; filename="{output.filename}"',
        "Cache-Control": "public, max-age=86400",
        "X-Content-Type-Options": "nosniff",
    }
    return Response(content=output.data, media_type=output.mime_type, headers=headers)


@app.get("/subtitles/{media_type}/{item_id}.json")
async def subtitles(media_type: str, item_id: str, request: Request, service: SubtitleService = Depends(get_service)):
    return await _subtitles_response(media_type, item_id, request, service)


@app.get("/subtitles/{media_type}/{item_id}/{extra}.json")
async def subtitles_with_extra(
    media_type: str, item_id: str, extra: str, request: Request, service: SubtitleService = Depends(get_service)
):
    # Player hints (videoHash, filename, ...) are not used for matching.
    return await _subtitles_response(media_type, item_id, request, service)


@app.get("/subtitles/{media_type}/{item_id}")
async def subtitles_plain(media_type: str, item_id: str, request: Request, service: SubtitleService = Depends(get_service)):
    return await _subtitles_response(media_type, item_id, request, service)


# ---------------------------------------------------------------------
# Other resources: empty answers instead of 404, Stremio probes them
# ---------------------------------------------------------------------
@app.get("/catalog/{rest:path}")
async def catalog(rest: str) -> JSONResponse:
    return JSONResponse({"metas": []})


@app.get("/meta/{rest:path}")
async def meta(rest: str) -> JSONResponse:
    return JSONResponse({"meta": {}})


@app.get("/stream/{rest:path}")
async def stream(rest: str) -> JSONResponse:
    return JSONResponse({"streams": []})
