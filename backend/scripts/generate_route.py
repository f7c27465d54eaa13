from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Sequence

from canyon_route.engine import RouteEngine, RouteGeneration
from canyon_route.models import Waypoint
from canyon_route.route_export import write_route_geojson
from canyon_route.settings import settings
from canyon_route.waypoints import normalize_waypoints, round_coordinate


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate a walking route from a waypoint list and save it as GeoJSON."
    )
    parser.add_argument("--input-json", required=True)
    parser.add_argument("--mode", choices=["straight", "route"], default="straight")
    parser.add_argument("--access-token", default=None)
    parser.add_argument("--out-dir", default=None)
    return parser


def load_waypoints(path: str, *, default_mode: str = "straight") -> list[Waypoint]:
    """Accepts ``[[lng, lat], ...]`` or ``[{"coordinates": [lng, lat], "segment_mode": ...}, ...]``,
    optionally wrapped as ``{"waypoints": [...]}``."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("waypoints")
    if not isinstance(payload, list):
        raise ValueError("JSON payload must be a list of waypoints")

    points: list[Waypoint] = []
    for index, item in enumerate(payload):
        if isinstance(item, (list, tuple)) and len(item) == 2:
            coordinate = round_coordinate((float(item[0]), float(item[1])))
            points.append(Waypoint(coordinates=coordinate, segment_mode=None if index == 0 else default_mode))
        elif isinstance(item, dict):
            data: dict[str, Any] = dict(item)
            data["coordinates"] = round_coordinate(tuple(data["coordinates"]))  # type: ignore[arg-type]
            if index > 0:
                data.setdefault("segment_mode", default_mode)
            points.append(Waypoint.model_validate(data))
        else:
            raise ValueError(f"waypoint {index} must be [lng, lat] or an object with 'coordinates'")

    if len(points) < 2:
        raise ValueError("at least two waypoints are required")
    return normalize_waypoints(points)


async def run_generation(
    waypoints: Sequence[Waypoint],
    *,
    access_token: str,
    engine: RouteEngine | None = None,
) -> RouteGeneration:
    owned = engine is None
    engine = engine or RouteEngine(access_token=access_token)
    try:
        return await engine.generate(waypoints)
    finally:
        if owned:
            await engine.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    waypoints = load_waypoints(args.input_json, default_mode=args.mode)
    token = args.access_token or settings.mapbox_access_token

    generation = asyncio.run(run_generation(waypoints, access_token=token))
    path = write_route_geojson(generation.route, out_dir=args.out_dir)

    props = generation.route.properties
    print(
        json.dumps(
            {
                "path": str(path),
                "distance_m": round(props.distance_m, 1),
                "duration_s": round(props.duration_s, 1),
                "segments": len(props.segments),
                "warnings": generation.warnings,
                "status": generation.status_text,
            },
            indent=2,
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
