"""Logging setup shared by the addon modules.

Text logs by default; structured JSON lines when ``json_logs`` is enabled.
Every record carries the request id of the HTTP request being served.
"""

from __future__ import annotations

import contextvars
import datetime
import json
import logging
import logging.handlers
import sys
from typing import List

# Per-request context for correlation
REQUEST_ID: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%H:%M:%S"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload = {
            "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="seconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        rid = REQUEST_ID.get("")
        if rid:
            payload["rid"] = rid
        return json.dumps(payload, ensure_ascii=False)


class RequestIdFilter(logging.Filter):
    """Prefix text log lines with the current request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        rid = REQUEST_ID.get("")
        if rid and not getattr(record, "_rid_tagged", False):
            record.msg = f"[rid={rid}] {record.msg}"
            record._rid_tagged = True
        return True


def _build_handlers(json_logs: bool, log_file: str) -> List[logging.Handler]:
    formatter: logging.Formatter
    if json_logs:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    handlers: List[logging.Handler] = [stream]

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            mode="a",
            encoding="utf-8",
            maxBytes=1_000_000,
            backupCount=3,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not json_logs:
        for handler in handlers:
            handler.addFilter(RequestIdFilter())
    return handlers


def configure_logging(level: str = "INFO", json_logs: bool = False, log_file: str = "") -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(level=level, handlers=_build_handlers(json_logs, log_file), force=True)
    logging.getLogger("animesub").setLevel(level)
    for noisy in ("httpx", "httpcore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
