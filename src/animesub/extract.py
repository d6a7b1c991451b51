from __future__ import annotations

import io
import logging
import os
import re
import subprocess
import tempfile
import threading
import time
import zipfile
import zlib
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .errors import ArchiveExtractionFailure

log = logging.getLogger("animesub.extract")

ZIP_SIGNATURE = b"PK"
SUBTITLE_NAME_RE = re.compile(r"\.(txt|srt|ass|ssa|sub)$", re.IGNORECASE)
READ_CHUNK = 64 * 1024
STDERR_KEEP = 4096


@dataclass(frozen=True)
class ExtractedSubtitle:
    data: bytes
    extension: str  # lower-case, with leading dot


@dataclass(frozen=True)
class CommandResult:
    stdout: bytes
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _read_capped(stream, limit: int, sink: bytearray) -> bool:
    """Copy ``stream`` into ``sink``; False as soon as more than ``limit`` bytes arrive."""
    while True:
        chunk = stream.read(READ_CHUNK)
        if not chunk:
            return True
        if len(sink) + len(chunk) > limit:
            return False
        sink.extend(chunk)


def _stop(proc: subprocess.Popen) -> None:
    if proc.poll() is None:
        proc.kill()
    proc.wait()


def run_command(args: Sequence[str], timeout: float, max_output: int) -> CommandResult:
    """Run an external command to completion, never raising.

    Stdout is read incrementally; the child is killed once it exceeds
    ``max_output`` bytes or ``timeout`` seconds.
    """
    deadline = time.monotonic() + timeout
    with tempfile.TemporaryFile() as stderr_file:
        try:
            proc = subprocess.Popen(list(args), stdout=subprocess.PIPE, stderr=stderr_file)
        except OSError as exc:
            return CommandResult(b"", f"{args[0]} unavailable: {exc}")

        with proc:
            stdout = bytearray()
            within_cap: List[bool] = []
            reader = threading.Thread(
                target=lambda: within_cap.append(_read_capped(proc.stdout, max_output, stdout)),
                daemon=True,
            )
            reader.start()
            reader.join(timeout)

            if reader.is_alive():
                _stop(proc)
                reader.join(1.0)
                return CommandResult(b"", f"{args[0]} timed out after {timeout:.1f}s")
            if not within_cap[0]:
                _stop(proc)
                return CommandResult(b"", f"{args[0]} output exceeds {max_output} bytes")
            try:
                returncode = proc.wait(timeout=max(0.0, deadline - time.monotonic()))
            except subprocess.TimeoutExpired:
                _stop(proc)
                return CommandResult(b"", f"{args[0]} timed out after {timeout:.1f}s")

        if returncode != 0:
            stderr_file.seek(0)
            stderr = stderr_file.read(STDERR_KEEP).decode("utf-8", errors="replace").strip()
            return CommandResult(bytes(stdout), f"{args[0]} exit code {returncode}: {stderr[:200]}")
        return CommandResult(bytes(stdout))



class ArchiveTool:
    """7-Zip compatible command line extractor used for exotic zip methods."""

    def __init__(self, executable: str = "7z", timeout: float = 10.0, max_output: int = 10 * 1024 * 1024):
        self.executable = executable
        self.timeout = timeout
        self.max_output = max_output

    def list_entries(self, path: str) -> CommandResult:
        return run_command([self.executable, "l", "-slt", path], self.timeout, self.max_output)

    def extract_entry(self, path: str, name: str) -> CommandResult:
        return run_command([self.executable, "e", "-so", path, name], self.timeout, self.max_output)


def is_zip(data: bytes) -> bool:
    return len(data) > 2 and data[:2] == ZIP_SIGNATURE


def _extension(name: str) -> str:
    return os.path.splitext(name)[1].lower()


def _extract_with_zipfile(data: bytes) -> Optional[ExtractedSubtitle]:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = [info.filename for info in archive.infolist() if not info.is_dir()]
            log.info("Archive entries: %s", ", ".join(names))
            target = next((name for name in names if SUBTITLE_NAME_RE.search(name)), None)
            if target is None:
                return None
            content = archive.read(target)
    except (zipfile.BadZipFile, NotImplementedError, RuntimeError, zlib.error, EOFError) as exc:
        log.warning("zipfile could not extract archive: %s", exc)
        return None
    if not content:
        return None
    return ExtractedSubtitle(content, _extension(target))


def _subtitle_from_listing(listing: bytes) -> Optional[str]:
    for line in listing.decode("utf-8", errors="replace").splitlines():
        if line.startswith("Path = "):
            name = line[len("Path = "):].strip()
            if SUBTITLE_NAME_RE.search(name):
                return name
    return None


def _extract_with_tool(data: bytes, tool: ArchiveTool) -> Optional[ExtractedSubtitle]:
    with tempfile.TemporaryDirectory(prefix="animesub_") as tmp_dir:
        archive_path = os.path.join(tmp_dir, "subtitle.zip")
        with open(archive_path, "wb") as fh:
            fh.write(data)

        listing = tool.list_entries(archive_path)
        if not listing.ok:
            log.warning("Archive listing failed: %s", listing.error)
            return None
        name = _subtitle_from_listing(listing.stdout)
        if name is None:
            log.info("No subtitle entry found by %s", tool.executable)
            return None

        extracted = tool.extract_entry(archive_path, name)
        if not extracted.ok:
            log.warning("Archive extraction failed: %s", extracted.error)
            return None
        if not extracted.stdout:
            return None
        return ExtractedSubtitle(extracted.stdout, _extension(name))


def extract_subtitle(data: bytes, extension: str, tool: Optional[ArchiveTool] = None) -> ExtractedSubtitle:
    """Unpack a zipped subtitle; anything else passes through unchanged.

    ``extension`` is the hint used for non-archive payloads.
    """
    if not is_zip(data):
        return ExtractedSubtitle(data, extension)

    extracted = _extract_with_zipfile(data)
    if extracted is not None:
        log.info("zipfile extracted %d bytes (%s)", len(extracted.data), extracted.extension)
        return extracted

    fallback = tool or ArchiveTool()
    log.info("Falling back to %s", fallback.executable)
    extracted = _extract_with_tool(data, fallback)
    if extracted is not None:
        log.info("%s extracted %d bytes (%s)", fallback.executable, len(extracted.data), extracted.extension)
        return extracted

    raise ArchiveExtractionFailure("Could not extract subtitle from archive (unsupported compression)")
