from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from .models import RouteFeature
from .settings import settings


def route_feature_collection(route: RouteFeature) -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [route.to_geojson()],
    }


def suggest_route_filename(now: datetime) -> str:
    return f"route_{now:%Y-%m-%d_%H-%M-%S}.geojson"


def routes_dir(out_dir: str | None = None) -> Path:
    p = Path(out_dir or settings.out_dir) / "routes"
    p.mkdir(parents=True, exist_ok=True)
    return p


def write_route_geojson(
    route: RouteFeature,
    *,
    out_dir: str | None = None,
    now: datetime | None = None,
) -> Path:
    """Write the route as a one-feature FeatureCollection and return the file path."""
    stamp = now or datetime.now()
    path = routes_dir(out_dir) / suggest_route_filename(stamp)
    path.write_text(json.dumps(route_feature_collection(route), indent=2), encoding="utf-8")
    return path
