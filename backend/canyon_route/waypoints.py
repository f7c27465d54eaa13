from __future__ import annotations

from typing import Literal, Sequence

from .models import Coordinate, SegmentMode, Waypoint, validate_lon_lat

COORDINATE_DECIMALS = 6
DEFAULT_SEGMENT_MODE: SegmentMode = "straight"


class DuplicateWaypointError(ValueError):
    pass


def round_coordinate(coordinate: Coordinate) -> Coordinate:
    lon, lat = validate_lon_lat(coordinate)
    return (round(lon, COORDINATE_DECIMALS), round(lat, COORDINATE_DECIMALS))


def parse_coordinate_input(raw: str) -> Coordinate:
    """Parse ``"lng, lat"`` typed by a user into a rounded coordinate."""
    trimmed = (raw or "").strip()
    if not trimmed:
        raise ValueError("Coordinate is required.")

    parts = [part.strip() for part in trimmed.split(",")]
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError("Use format: lng, lat (e.g. 9.1951612, 48.2951951).")

    try:
        lng = float(parts[0])
        lat = float(parts[1])
    except ValueError:
        raise ValueError("Longitude and latitude must be valid numbers.") from None
    if lng != lng or lat != lat:
        raise ValueError("Longitude and latitude must be valid numbers.")

    if lng < -180 or lng > 180:
        raise ValueError("Longitude must be between -180 and 180.")
    if lat < -90 or lat > 90:
        raise ValueError("Latitude must be between -90 and 90.")

    return round_coordinate((lng, lat))


def normalize_waypoints(points: Sequence[Waypoint]) -> list[Waypoint]:
    """Re-derive roles and segment modes from list position.

    Roles held by the caller are never trusted, with one exception: a lone
    point that was the end stays the end.
    """
    if not points:
        return []

    if len(points) == 1:
        only = points[0]
        role = "end" if only.role == "end" else "start"
        return [only.model_copy(update={"role": role, "segment_mode": None})]

    last_index = len(points) - 1
    out: list[Waypoint] = []
    for index, point in enumerate(points):
        if index == 0:
            out.append(point.model_copy(update={"role": "start", "segment_mode": None}))
            continue
        out.append(
            point.model_copy(
                update={
                    "role": "end" if index == last_index else "waypoint",
                    "segment_mode": point.segment_mode or DEFAULT_SEGMENT_MODE,
                }
            )
        )
    return out


def is_route_ready(points: Sequence[Waypoint]) -> bool:
    return len(points) >= 2 and points[0].role == "start" and points[-1].role == "end"


def waypoints_equal(a: Sequence[Waypoint], b: Sequence[Waypoint]) -> bool:
    if len(a) != len(b):
        return False
    for left, right in zip(a, b):
        if (
            left.id != right.id
            or left.role != right.role
            or left.segment_mode != right.segment_mode
            or left.coordinates != right.coordinates
        ):
            return False
    return True


def set_boundary_point(
    points: Sequence[Waypoint],
    target: Literal["start", "end"],
    coordinate: Coordinate,
) -> list[Waypoint]:
    coordinate = round_coordinate(coordinate)
    current = list(points)

    if target == "start":
        if not current:
            return normalize_waypoints([Waypoint(role="start", coordinates=coordinate)])
        if len(current) == 1 and current[0].role == "end":
            return normalize_waypoints([Waypoint(role="start", coordinates=coordinate), current[0]])
        current[0] = current[0].model_copy(update={"coordinates": coordinate})
        return normalize_waypoints(current)

    if not current:
        return normalize_waypoints([Waypoint(role="end", coordinates=coordinate)])
    if len(current) == 1 and current[0].role == "start":
        return normalize_waypoints([current[0], Waypoint(role="end", coordinates=coordinate)])
    current[-1] = current[-1].model_copy(update={"coordinates": coordinate})
    return normalize_waypoints(current)


def inherited_segment_mode(points: Sequence[Waypoint], insertion_index: int) -> SegmentMode:
    """Mode of the segment a new point at ``insertion_index`` would split."""
    if len(points) < 2:
        return DEFAULT_SEGMENT_MODE
    if insertion_index <= 0:
        return points[1].segment_mode or DEFAULT_SEGMENT_MODE
    if insertion_index >= len(points):
        return points[-1].segment_mode or DEFAULT_SEGMENT_MODE
    return points[insertion_index].segment_mode or DEFAULT_SEGMENT_MODE


def insert_waypoint(points: Sequence[Waypoint], insertion_index: int, coordinate: Coordinate) -> list[Waypoint]:
    coordinate = round_coordinate(coordinate)
    current = list(points)
    index = min(max(insertion_index, 0), len(current))

    previous_point = current[index - 1] if index > 0 else None
    next_point = current[index] if index < len(current) else None
    if (previous_point is not None and previous_point.coordinates == coordinate) or (
        next_point is not None and next_point.coordinates == coordinate
    ):
        raise DuplicateWaypointError("Cannot insert duplicate consecutive points.")

    mode = inherited_segment_mode(current, index)
    current.insert(index, Waypoint(role="waypoint", coordinates=coordinate, segment_mode=mode))
    if index == 0 and len(current) > 1:
        # The old start now ends the first segment.
        current[1] = current[1].model_copy(update={"segment_mode": mode})
    return normalize_waypoints(current)


def _index_of(points: Sequence[Waypoint], point_id: str) -> int:
    for index, point in enumerate(points):
        if point.id == point_id:
            return index
    raise KeyError(point_id)


def move_waypoint(points: Sequence[Waypoint], point_id: str, coordinate: Coordinate) -> list[Waypoint]:
    current = list(points)
    index = _index_of(current, point_id)
    current[index] = current[index].model_copy(update={"coordinates": round_coordinate(coordinate)})
    return normalize_waypoints(current)


def delete_waypoint(points: Sequence[Waypoint], point_id: str) -> list[Waypoint]:
    _index_of(points, point_id)
    return normalize_waypoints([point for point in points if point.id != point_id])


def reorder_waypoints(points: Sequence[Waypoint], active_id: str, over_id: str) -> list[Waypoint]:
    """Move ``active_id`` to the position currently held by ``over_id``."""
    current = list(points)
    old_index = _index_of(current, active_id)
    new_index = _index_of(current, over_id)
    if old_index == new_index:
        return normalize_waypoints(current)
    current.insert(new_index, current.pop(old_index))
    return normalize_waypoints(current)


def set_segment_mode(points: Sequence[Waypoint], point_id: str, mode: SegmentMode) -> list[Waypoint]:
    current = list(points)
    index = _index_of(current, point_id)
    if index == 0:
        return normalize_waypoints(current)
    current[index] = current[index].model_copy(update={"segment_mode": mode})
    return normalize_waypoints(current)
