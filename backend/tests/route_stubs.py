from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import Any, Awaitable, Callable

import httpx
import numpy as np
from rasterio.io import MemoryFile

from canyon_route.engine import RouteEngine
from canyon_route.route_cache import RouteSegmentCache
from canyon_route.routing_directions import DirectionsClient
from canyon_route.terrain import TerrainTileClient

DIRECTIONS_BASE = "https://api.test/directions/v5/mapbox"
TERRAIN_TEMPLATE = "https://api.test/v4/terrain-rgb/{z}/{x}/{y}@2x.pngraw"


def terrain_rgb(elevation_m: float) -> tuple[int, int, int]:
    value = int(round((elevation_m + 10_000.0) * 10.0))
    return value // 65536, (value // 256) % 256, value % 256


def raster_bytes(data: np.ndarray) -> bytes:
    count, height, width = data.shape
    with MemoryFile() as memfile:
        with memfile.open(driver="GTiff", width=width, height=height, count=count, dtype=str(data.dtype)) as ds:
            ds.write(data)
        memfile.seek(0)
        return memfile.read()


@lru_cache(maxsize=64)
def terrain_tile_bytes(elevation_m: float, size: int = 4) -> bytes:
    r, g, b = terrain_rgb(elevation_m)
    data = np.empty((3, size, size), dtype=np.uint8)
    data[0], data[1], data[2] = r, g, b
    return raster_bytes(data)


def _coords_from_path(path: str) -> tuple[tuple[float, float], tuple[float, float]]:
    pair = path.rsplit("/", 1)[-1]
    first, second = pair.split(";")
    a = tuple(float(v) for v in first.split(","))
    b = tuple(float(v) for v in second.split(","))
    return (a[0], a[1]), (b[0], b[1])


def default_route_payload(start: tuple[float, float], end: tuple[float, float]) -> dict[str, Any]:
    mid = ((start[0] + end[0]) / 2.0, (start[1] + end[1]) / 2.0 + 0.0005)
    return {
        "code": "Ok",
        "routes": [
            {
                "distance": 1500.0,
                "duration": 1100.0,
                "geometry": {
                    "type": "LineString",
                    "coordinates": [
                        [start[0] + 0.0001, start[1] + 0.0001],
                        [mid[0], mid[1]],
                        [end[0] - 0.0001, end[1] - 0.0001],
                    ],
                },
            }
        ],
    }


StubHandler = Callable[[httpx.Request], Awaitable[httpx.Response] | httpx.Response]


class StubServices:
    """Routing and terrain endpoints behind one MockTransport."""

    def __init__(self) -> None:
        self.directions_requests: list[httpx.Request] = []
        self.tile_requests: list[httpx.Request] = []
        self.directions_handler: StubHandler | None = None
        self.tile_handler: StubHandler | None = None
        self.tile_status = 200
        # Elevation by tile x; anything unlisted is 0 m.
        self.tile_elevations: dict[int, float] = {}

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/directions/"):
            self.directions_requests.append(request)
            if self.directions_handler is not None:
                result = self.directions_handler(request)
                if asyncio.iscoroutine(result):
                    result = await result
                return result  # type: ignore[return-value]
            start, end = _coords_from_path(request.url.path)
            return httpx.Response(200, json=default_route_payload(start, end))

        if "/terrain-rgb/" in request.url.path:
            self.tile_requests.append(request)
            if self.tile_handler is not None:
                result = self.tile_handler(request)
                if asyncio.iscoroutine(result):
                    result = await result
                return result  # type: ignore[return-value]
            if self.tile_status != 200:
                return httpx.Response(self.tile_status, content=b"")
            parts = request.url.path.split("/")
            tile_x = int(parts[-2])
            return httpx.Response(200, content=terrain_tile_bytes(float(self.tile_elevations.get(tile_x, 0.0))))

        return httpx.Response(404, json={"message": "not found"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    def engine(self, *, access_token: str = "pk.test", max_entries: int = 400, **kwargs: Any) -> RouteEngine:
        client = self.client()
        return RouteEngine(
            access_token=access_token,
            directions=DirectionsClient(base_url=DIRECTIONS_BASE, profile="walking", client=client),
            terrain_tiles=TerrainTileClient(url_template=TERRAIN_TEMPLATE, client=client),
            cache=RouteSegmentCache(max_entries=max_entries),
            profile="walking",
            terrain_zoom=14,
            terrain_tile_size=512,
            **kwargs,
        )
