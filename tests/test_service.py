import asyncio
import io
import zipfile

import httpx
import pytest

from animesub import service as service_module
from animesub.errors import ArchiveExtractionFailure, MetadataUnavailable
from animesub.extract import CommandResult
from animesub.models import SearchStrategy, SubtitleCandidate, TitleInfo
from animesub.service import DownloadRequest, SubtitleService
from animesub.settings import Settings

BASE = "http://localhost:7000"


def _cand(id, downloads=0, episode=None, fmt="", description="", title_eng=""):
    return SubtitleCandidate(
        id=str(id),
        hash=f"h{id}",
        title_org=f"Mushishi {id}",
        title_eng=title_eng,
        author="ktoś",
        format_hint=fmt,
        download_count=downloads,
        description=description,
        episode=episode,
    )


class FakeResolver:
    def __init__(self, info=None, error=None):
        self.info = info
        self.error = error

    async def resolve(self, content_type, raw_id):
        if self.error:
            raise self.error
        return self.info


class FakeClient:
    def __init__(self, results=None, delays=None, payload=b""):
        self.results = results or {}
        self.delays = delays or {}
        self.payload = payload
        self.downloads = []

    def session(self):
        return httpx.AsyncClient()

    async def search(self, query, variant, client=None):
        await asyncio.sleep(self.delays.get(query, 0))
        return self.results.get(query, [])

    async def download(self, subtitle_id, download_hash, query, variant):
        self.downloads.append((subtitle_id, download_hash, query, variant))
        return self.payload


class FailingTool:
    executable = "fake7z"

    def list_entries(self, path):
        return CommandResult(b"", "fake7z unavailable")

    def extract_entry(self, path, name):
        return CommandResult(b"", "fake7z unavailable")


def _service(client, info=TitleInfo("Mushishi", season=1, episode=1), resolver=None, **overrides):
    settings = Settings(**overrides)
    return SubtitleService(settings, resolver=resolver or FakeResolver(info), client=client, archive_tool=FailingTool())


def _zip(name, content):
    bio = io.BytesIO()
    with zipfile.ZipFile(bio, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(name, content)
    return bio.getvalue()


# -- helpers ---------------------------------------------------------------


@pytest.mark.parametrize(
    ("candidate", "expected"),
    [
        (_cand(1, description="Wersja .ASS z karaoke"), "ass"),
        (_cand(1, fmt="ASS"), "ass"),
        (_cand(1, fmt="Advanced SSA"), "ssa"),
        (_cand(1, description="plik .ssa"), "ssa"),
        (_cand(1, fmt="MicroDVD"), "srt"),
    ],
)
def test_infer_format(candidate, expected):
    assert service_module.infer_format(candidate) == expected


def test_display_name():
    assert service_module.display_name(_cand(1, downloads=42, title_eng="Mushishi ep01"), "ass") == "Mushishi ep01 | by ktoś | ⬇ 42 [ASS]"
    assert service_module.display_name(SubtitleCandidate(id="2", hash="x", title_org="Mushishi"), "srt") == "Mushishi [SRT]"


def test_build_download_url():
    strategy = SearchStrategy("Mushishi ep01", "org")
    url = service_module.build_download_url(BASE + "/", _cand(5), strategy, "ass", convert_to_vtt=True)
    assert url == f"{BASE}/subtitles/download.vtt?id=5&hash=h5&query=Mushishi+ep01&type=org&format=ass&convert=vtt"


def test_extension_from_hint():
    assert service_module.extension_from_hint("ASS") == ".ass"
    assert service_module.extension_from_hint("exe") == ".srt"
    assert service_module.extension_from_hint("") == ".srt"


# -- discovery -------------------------------------------------------------


def test_discover_stops_on_exact_match_and_builds_entries():
    client = FakeClient(
        {
            "Mushishi ep01": [_cand(1, downloads=120, episode=1, fmt="ASS", title_eng="Mushishi ep01")],
            "Mushishi": [_cand(2, downloads=999)],
        }
    )
    subtitles = asyncio.run(_service(client).discover("series", "tt0807832:1:1", BASE))

    assert [s["id"] for s in subtitles] == ["animesub-1", "animesub-1-vtt"]
    assert all(s["lang"] == "pol" for s in subtitles)
    assert subtitles[0]["url"] == f"{BASE}/subtitles/download.ass?id=1&hash=h1&query=Mushishi+ep01&type=org&format=ass"
    assert subtitles[0]["name"] == "Mushishi ep01 | by ktoś | ⬇ 120 [ASS]"
    assert subtitles[1]["url"].endswith("&format=ass&convert=vtt")
    assert subtitles[1]["name"].endswith("[VTT]")


def test_discover_treats_timed_out_strategy_as_empty():
    client = FakeClient(
        results={"Mushishi ep01": [_cand(1, episode=1)], "Mushishi": [_cand(2, downloads=5)]},
        delays={"Mushishi ep01": 5},
    )
    subtitles = asyncio.run(_service(client, search_timeout=0.05).discover("series", "tt0807832:1:1", BASE))
    assert [s["id"] for s in subtitles] == ["animesub-2"]


def test_discover_respects_global_deadline():
    client = FakeClient(results={"Mushishi": [_cand(2)]}, delays={"Mushishi": 1, "Mushishi ep01": 1})
    svc = _service(client, discovery_deadline=0.3, deadline_margin=0.2)
    subtitles, elapsed = asyncio.run(_timed(svc.discover("series", "tt0807832:1:1", BASE)))
    assert subtitles == []
    assert elapsed < 0.9


async def _timed(coro):
    loop = asyncio.get_running_loop()
    started = loop.time()
    result = await coro
    return result, loop.time() - started


def test_discover_ranks_and_trims_results():
    rows = [_cand(i, downloads=i) for i in range(12)]
    client = FakeClient({"Kimi no Na wa": rows})
    svc = _service(client, info=TitleInfo("Kimi no Na wa"))
    subtitles = asyncio.run(svc.discover("movie", "tt5311514", BASE))
    assert [s["id"] for s in subtitles] == [f"animesub-{i}" for i in range(11, 1, -1)]


@pytest.mark.parametrize("error", [MetadataUnavailable("no title"), ValueError("boom")])
def test_discover_never_raises(error):
    svc = _service(FakeClient(), resolver=FakeResolver(error=error))
    assert asyncio.run(svc.discover("movie", "tt0000001", BASE)) == []


def test_discover_without_candidates_is_empty():
    assert asyncio.run(_service(FakeClient()).discover("series", "tt0807832:1:1", BASE)) == []


# -- download --------------------------------------------------------------

ASS_TXT = (
    "[Script Info]\r\nTitle: x\r\n\r\n[Events]\r\n"
    "Dialogue: 0,0:00:01,00,0:00:02,Default,,0,0,0,,Zażółć\r\n"
    "Dialogue: 0,0:00:01,00,0:00:02,Default,,0,0,0,,gęślą\r\n"
)


def test_download_zipped_ass_in_txt_is_repaired():
    client = FakeClient(payload=_zip("odc01.txt", ASS_TXT.encode("windows-1250")))
    request = DownloadRequest(id="1", hash="h1", query="Mushishi ep01", type="org", format="ass")
    output = asyncio.run(_service(client).resolve_download(request))

    assert output.extension == "ass"
    assert output.filename == "subtitle.ass"
    assert output.mime_type == "text/plain; charset=utf-8"
    assert output.data.startswith(b"[Script Info]\nTitle: Subtitle\nScriptType: v4.00+")
    assert "Dialogue: 0,0:00:01.00,0:00:02.00,Default,,0,0,0,,Zażółć".encode("utf-8") in output.data
    assert client.downloads == [("1", "h1", "Mushishi ep01", "org")]


def test_download_converts_ass_to_vtt():
    client = FakeClient(payload=_zip("odc01.ass", ASS_TXT.encode("utf-8")))
    request = DownloadRequest(id="1", hash="h1", format="ass", convert="vtt")
    output = asyncio.run(_service(client).resolve_download(request))

    assert output.extension == "vtt"
    assert output.mime_type == "text/vtt; charset=utf-8"
    assert output.data.decode("utf-8") == "WEBVTT\n\n1\n00:00:01.000 --> 00:00:02.000\nZażółć\ngęślą\n"


def test_download_srt_gets_bom_and_crlf():
    payload = "1\n00:00:01,000 --> 00:00:02,000\nCześć\x00\n".encode("utf-8")
    output = asyncio.run(_service(FakeClient(payload=payload)).resolve_download(DownloadRequest(id="1", hash="h1")))

    assert output.extension == "srt"
    assert output.data == "\ufeff1\r\n00:00:01,000 --> 00:00:02,000\r\nCześć\r\n".encode("utf-8")


def test_download_sniffs_ass_served_without_hint():
    payload = ("[Script Info]\nScriptType: v4.00+\n" + ASS_TXT).encode("utf-8")
    output = asyncio.run(_service(FakeClient(payload=payload)).resolve_download(DownloadRequest(id="1", hash="h1", format="srt")))
    assert output.extension == "ass"
    assert not output.data.startswith(b"\xef\xbb\xbf")


def test_download_non_ass_ignores_vtt_request():
    request = DownloadRequest(id="1", hash="h1", format="txt", convert="vtt")
    output = asyncio.run(_service(FakeClient(payload=b"{1}{25}Hej|tam")).resolve_download(request))
    assert output.extension == "txt"
    assert output.data == b"\xef\xbb\xbf{1}{25}Hej|tam"


def test_download_archive_without_subtitle_fails():
    client = FakeClient(payload=_zip("cover.jpg", b"\xff\xd8\xff"))
    with pytest.raises(ArchiveExtractionFailure):
        asyncio.run(_service(client).resolve_download(DownloadRequest(id="1", hash="h1")))
