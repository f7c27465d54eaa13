from __future__ import annotations

import asyncio
import logging

import pytest

import canyon_route.logging_utils as logging_utils
from canyon_route.engine import RouteEngine
from canyon_route.errors import (
    FROZEN_REASON_CODES,
    NoRouteFoundError,
    RouteEngineError,
    RoutingServiceError,
    TerrainFetchError,
    normalize_reason_code,
)
from canyon_route.settings import Settings, settings


def test_redact_token_in_urls() -> None:
    url = "https://api.mapbox.com/v4/tile.pngraw?access_token=pk.abc123&foo=1"
    assert logging_utils.redact_token(url) == "https://api.mapbox.com/v4/tile.pngraw?access_token=***&foo=1"


def test_log_event_scrubs_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    records: list[logging.LogRecord] = []

    class _Capture(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            records.append(record)

    logger = logging.getLogger("canyon_route.test_capture")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(_Capture())
    monkeypatch.setattr(logging_utils, "LOGGER", logger)

    logging_utils.log_event(
        "route_segment_fallback",
        level=logging.WARNING,
        access_token="pk.secret",
        error="GET https://x/y?access_token=pk.secret failed",
    )

    [record] = records
    assert record.levelno == logging.WARNING
    assert record.getMessage() == "route_segment_fallback"
    assert record.event == "route_segment_fallback"  # type: ignore[attr-defined]
    assert record.access_token == "***"  # type: ignore[attr-defined]
    assert "pk.secret" not in record.error  # type: ignore[attr-defined]


def test_errors_carry_reason_codes() -> None:
    err = TerrainFetchError("Terrain request failed (500).", status_code=500)
    assert isinstance(err, RouteEngineError)
    assert err.reason_code in FROZEN_REASON_CODES
    assert str(err) == "Terrain request failed (500)."
    assert err.details == {"status_code": 500}

    assert str(NoRouteFoundError()) == "No route found for this segment."
    assert RoutingServiceError("boom").details is None


def test_normalize_reason_code() -> None:
    assert normalize_reason_code("no_route_found") == "no_route_found"
    assert normalize_reason_code("SomethingElse") == "route_engine_error"
    assert normalize_reason_code("", default="x") == "x"


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAPBOX_ACCESS_TOKEN", "  pk.env  ")
    monkeypatch.setenv("DIRECTIONS_BASE_URL", "https://example.test/directions/v5/mapbox/")
    monkeypatch.setenv("ROUTING_PROFILE", "Walking")
    monkeypatch.setenv("ROUTE_SEGMENT_CACHE_MAX_ENTRIES", "25")

    cfg = Settings()
    assert cfg.mapbox_access_token == "pk.env"
    assert cfg.directions_base_url == "https://example.test/directions/v5/mapbox"
    assert cfg.routing_profile == "walking"
    assert cfg.route_segment_cache_max_entries == 25
    assert cfg.terrain_tile_zoom == 14
    assert cfg.terrain_tile_size == 512


def test_engine_defaults_come_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "route_segment_cache_max_entries", 7)
    monkeypatch.setattr(settings, "segment_concurrency", 2)
    monkeypatch.setattr(settings, "mapbox_access_token", "pk.configured")

    async def scenario() -> tuple[int, int, bool]:
        engine = RouteEngine.from_settings()
        try:
            return engine.cache_stats()["max_entries"], engine.segment_concurrency, engine.has_access_token
        finally:
            await engine.aclose()

    assert asyncio.run(scenario()) == (7, 2, True)


def test_log_dir_falls_back_to_working_directory(tmp_path, monkeypatch) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("occupied", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    log_dir = logging_utils._writable_log_dir(str(blocker))

    assert log_dir is not None
    assert log_dir.resolve() == (tmp_path / "out" / "logs").resolve()
