from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_out_dir() -> str:
    # Keep generated routes and logs in backend/out by default.
    return str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping tokens and endpoints out of code."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mapbox_access_token: str = Field(default="", alias="MAPBOX_ACCESS_TOKEN")

    directions_base_url: str = Field(
        default="https://api.mapbox.com/directions/v5/mapbox",
        alias="DIRECTIONS_BASE_URL",
    )
    routing_profile: str = Field(default="walking", alias="ROUTING_PROFILE")
    directions_max_retries: int = Field(default=1, ge=1, le=8, alias="DIRECTIONS_MAX_RETRIES")

    terrain_tile_url_template: str = Field(
        default="https://api.mapbox.com/v4/mapbox.terrain-rgb/{z}/{x}/{y}@2x.pngraw",
        alias="TERRAIN_TILE_URL_TEMPLATE",
    )
    terrain_tile_zoom: int = Field(default=14, ge=0, le=22, alias="TERRAIN_TILE_ZOOM")
    terrain_tile_size: int = Field(default=512, ge=1, le=4096, alias="TERRAIN_TILE_SIZE")

    route_segment_cache_max_entries: int = Field(
        default=400,
        ge=1,
        le=100_000,
        alias="ROUTE_SEGMENT_CACHE_MAX_ENTRIES",
    )
    # Segments of one run resolved at the same time (order of composition is unaffected)
    segment_concurrency: int = Field(default=4, ge=1, le=64, alias="SEGMENT_CONCURRENCY")

    http_timeout_s: float = Field(default=20.0, ge=1.0, le=120.0, alias="HTTP_TIMEOUT_S")
    http_connect_timeout_s: float = Field(default=5.0, ge=0.5, le=60.0, alias="HTTP_CONNECT_TIMEOUT_S")

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @model_validator(mode="after")
    def _strip_endpoints(self) -> "Settings":
        self.mapbox_access_token = self.mapbox_access_token.strip()
        self.directions_base_url = self.directions_base_url.rstrip("/")
        self.routing_profile = (self.routing_profile or "walking").strip().lower()
        return self


settings = Settings()
