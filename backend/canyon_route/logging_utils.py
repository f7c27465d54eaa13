from __future__ import annotations

import logging
import re
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

# Mapbox credentials travel in the query string; never let them reach a log sink.
_TOKEN_QUERY_RE = re.compile(r"(access_token=)[^&\s]+")
_SECRET_FIELDS: frozenset[str] = frozenset({"access_token", "token"})


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def redact_token(text: str) -> str:
    return _TOKEN_QUERY_RE.sub(r"\1***", text)


def _scrub(fields: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in fields.items():
        if key in _SECRET_FIELDS:
            out[key] = "***" if value else value
        elif isinstance(value, str):
            out[key] = redact_token(value)
        else:
            out[key] = value
    return out


def _writable_log_dir(out_dir: str) -> Path | None:
    """First of ``<out_dir>/logs``, ``./out/logs`` or a temp directory that accepts a file handler."""
    candidates = (
        Path(out_dir) / "logs",
        Path.cwd() / "out" / "logs",
        Path(gettempdir()) / "canyon-route" / "logs",
    )
    for log_dir in candidates:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            marker = log_dir / ".write-check"
            marker.write_bytes(b"")
            marker.unlink()
        except OSError:
            continue
        return log_dir
    return None


def get_logger() -> logging.Logger:
    logger = logging.getLogger("canyon_route")
    if getattr(logger, "_configured", False):
        return logger

    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False
    formatter = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    log_dir = _writable_log_dir(settings.out_dir)
    if log_dir is not None:
        try:
            events = logging.FileHandler(log_dir / "route_engine.log.jsonl", encoding="utf-8")
        except OSError:
            events = None
        if events is not None:
            events.setFormatter(formatter)
            logger.addHandler(events)

    logger._configured = True  # type: ignore[attr-defined]
    return logger


LOGGER: logging.Logger | None = None


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one structured record; the event name doubles as the message."""
    global LOGGER
    if LOGGER is None:
        LOGGER = get_logger()
    LOGGER.log(level, event, extra={"event": event, **_scrub(fields)})
