from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_M = 6_371_000.0
MERCATOR_MAX_LAT = 85.05112878

# Walking model: 5 km/h on the flat, +1 h per 600 m of ascent, +1 h per 1000 m of descent.
WALKING_SPEED_KMH = 5.0
ASCENT_M_PER_HOUR = 600.0
DESCENT_M_PER_HOUR = 1000.0

Coordinate = tuple[float, float]


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in metres between two (lon, lat) points."""
    lat1 = math.radians(a[1])
    lat2 = math.radians(b[1])
    dphi = lat2 - lat1
    dlambda = math.radians(b[0] - a[0])

    sin_lat = math.sin(dphi / 2.0)
    sin_lon = math.sin(dlambda / 2.0)
    h = sin_lat * sin_lat + math.cos(lat1) * math.cos(lat2) * sin_lon * sin_lon
    c = 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))
    return EARTH_RADIUS_M * c


def straight_segment_duration_s(distance_m: float, delta_elevation_m: float) -> float:
    """Walking time for an unrouted segment; ``delta_elevation_m`` is end minus start."""
    distance_km = distance_m / 1000.0
    duration_h = (
        distance_km / WALKING_SPEED_KMH
        + max(delta_elevation_m, 0.0) / ASCENT_M_PER_HOUR
        + max(-delta_elevation_m, 0.0) / DESCENT_M_PER_HOUR
    )
    return max(0.0, duration_h * 3600.0)


@dataclass(frozen=True)
class TilePixel:
    zoom: int
    tile_x: int
    tile_y: int
    pixel_x: int
    pixel_y: int

    @property
    def tile_key(self) -> tuple[int, int, int]:
        return (self.zoom, self.tile_x, self.tile_y)


def project_to_tile_pixel(lon: float, lat: float, zoom: int, *, tile_size: int = 512) -> TilePixel:
    """Web-Mercator (slippy map) tile address and pixel offset for a point."""
    clamped_lat = max(-MERCATOR_MAX_LAT, min(MERCATOR_MAX_LAT, lat))
    lat_rad = math.radians(clamped_lat)
    scale = 2.0**zoom

    x = ((lon + 180.0) / 360.0) * scale
    y = ((1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0) * scale

    tile_x = math.floor(x)
    tile_y = math.floor(y)
    return TilePixel(
        zoom=zoom,
        tile_x=tile_x,
        tile_y=tile_y,
        pixel_x=math.floor((x - tile_x) * tile_size),
        pixel_y=math.floor((y - tile_y) * tile_size),
    )
