from __future__ import annotations

from datetime import UTC, datetime
from typing import Iterable, Sequence

from .errors import RouteCompositionFailure
from .geodesy import Coordinate
from .models import GeoJSONLineString, RouteFeature, RouteProperties, Waypoint
from .segments import ResolvedSegment


def append_coordinate(target: list[Coordinate], candidate: Coordinate) -> None:
    if not target or target[-1] != candidate:
        target.append(candidate)


def append_coordinates(target: list[Coordinate], candidates: Iterable[Coordinate]) -> None:
    for candidate in candidates:
        append_coordinate(target, candidate)


def merge_segment_geometry(start: Coordinate, segments: Sequence[ResolvedSegment]) -> list[Coordinate]:
    """Concatenate segment polylines left to right without repeated vertices.

    Each segment is pinned to its waypoints, so a road-snapped service
    geometry still begins and ends on the points the user placed.
    """
    merged: list[Coordinate] = []
    append_coordinate(merged, start)
    for segment in sorted(segments, key=lambda s: s.index):
        append_coordinate(merged, segment.start)
        append_coordinates(merged, segment.coordinates)
        append_coordinate(merged, segment.end)
    return merged


def compose_route(
    waypoints: Sequence[Waypoint],
    segments: Sequence[ResolvedSegment],
    *,
    profile: str = "walking",
    generated_at: datetime | None = None,
) -> RouteFeature:
    if not waypoints:
        raise RouteCompositionFailure()

    ordered = sorted(segments, key=lambda s: s.index)
    coordinates = merge_segment_geometry(waypoints[0].coordinates, ordered)
    if len(coordinates) < 2:
        raise RouteCompositionFailure()

    # Fallback segments count too: the route must stay walkable end to end.
    distance_m = sum(float(segment.distance_m) for segment in ordered)
    duration_s = sum(float(segment.duration_s) for segment in ordered)
    stamp = generated_at or datetime.now(UTC)

    return RouteFeature(
        geometry=GeoJSONLineString(coordinates=coordinates),
        properties=RouteProperties(
            distance_m=distance_m,
            duration_s=duration_s,
            profile=profile,
            start=waypoints[0].coordinates,
            end=waypoints[-1].coordinates,
            waypoints=[point.coordinates for point in waypoints[1:-1]],
            segments=[segment.summary() for segment in ordered],
            generated_at=stamp.isoformat().replace("+00:00", "Z"),
        ),
    )


def segment_warnings(segments: Sequence[ResolvedSegment]) -> list[str]:
    return [segment.warning for segment in sorted(segments, key=lambda s: s.index) if segment.warning]
