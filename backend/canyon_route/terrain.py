from __future__ import annotations

import asyncio
import warnings
from collections.abc import Awaitable
from typing import TypeVar

import httpx
import numpy as np
from rasterio.errors import NotGeoreferencedWarning, RasterioError
from rasterio.io import MemoryFile

from .cancellation import CancellationToken
from .errors import MissingCredentialError, RunCancelled, TerrainDecodeError, TerrainFetchError
from .geodesy import Coordinate, TilePixel, project_to_tile_pixel

T = TypeVar("T")

# Mapbox terrain-RGB: height = -10000 + (R * 256 * 256 + G * 256 + B) * 0.1
TERRAIN_RGB_BASE_M = -10_000.0
TERRAIN_RGB_STEP_M = 0.1


def decode_terrain_rgb(raster: np.ndarray, pixel_x: int, pixel_y: int) -> float:
    """Elevation in metres of one pixel of a ``(bands, height, width)`` raster.

    The pixel is clamped into the raster, so offsets computed for a larger
    nominal tile size still land on an edge pixel.
    """
    if raster.ndim != 3 or raster.shape[0] < 3 or raster.shape[1] == 0 or raster.shape[2] == 0:
        raise TerrainDecodeError("Terrain raster must have three colour bands.")
    height, width = int(raster.shape[1]), int(raster.shape[2])
    x = max(0, min(width - 1, int(pixel_x)))
    y = max(0, min(height - 1, int(pixel_y)))

    r = int(raster[0, y, x])
    g = int(raster[1, y, x])
    b = int(raster[2, y, x])
    return TERRAIN_RGB_BASE_M + (r * 65536 + g * 256 + b) * TERRAIN_RGB_STEP_M


def decode_tile_payload(payload: bytes) -> np.ndarray:
    """Decode an image payload (PNG, TIFF, ...) into a ``(3, height, width)`` uint8 array."""
    if not payload:
        raise TerrainDecodeError("Terrain tile payload is empty.")
    try:
        with warnings.catch_warnings():
            # Terrain tiles are plain images without georeferencing.
            warnings.simplefilter("ignore", NotGeoreferencedWarning)
            with MemoryFile(payload) as memfile:
                with memfile.open() as ds:
                    if ds.count < 3:
                        raise TerrainDecodeError(f"Terrain tile has {ds.count} band(s); expected RGB.")
                    data = ds.read(indexes=[1, 2, 3])
    except (RasterioError, OSError, ValueError) as e:
        raise TerrainDecodeError(f"Terrain tile could not be decoded: {e}") from e

    if data.dtype != np.uint8:
        raise TerrainDecodeError(f"Terrain tile has {data.dtype} samples; expected 8-bit RGB.")
    return data


class TerrainTileClient:
    def __init__(
        self,
        *,
        url_template: str,
        timeout_s: float = 20.0,
        connect_timeout_s: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url_template = url_template
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s, connect=connect_timeout_s))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_tile(self, zoom: int, tile_x: int, tile_y: int, *, access_token: str) -> np.ndarray:
        url = self.url_template.format(z=zoom, x=tile_x, y=tile_y)
        try:
            resp = await self._client.get(url, params={"access_token": access_token})
        except httpx.HTTPError as e:
            msg = str(e).strip()
            raise TerrainFetchError(
                f"Terrain request failed: {type(e).__name__}: {msg}" if msg else f"Terrain request failed: {type(e).__name__}"
            ) from e
        if not resp.is_success:
            raise TerrainFetchError(f"Terrain request failed ({resp.status_code}).", status_code=resp.status_code)
        return decode_tile_payload(resp.content)


class TerrainElevationResolver:
    """Point elevations for one generation run.

    Tile rasters and point elevations are memoized as shared tasks, so any
    number of concurrent lookups of the same tile or coordinate cost a single
    fetch. All tasks are attached to the run's cancellation token.
    """

    def __init__(
        self,
        tiles: TerrainTileClient,
        *,
        access_token: str,
        token: CancellationToken,
        zoom: int = 14,
        tile_size: int = 512,
    ) -> None:
        self._tiles = tiles
        self._access_token = access_token
        self._token = token
        self.zoom = zoom
        self.tile_size = tile_size
        self._tile_tasks: dict[tuple[int, int, int], asyncio.Task[np.ndarray]] = {}
        self._elevation_tasks: dict[Coordinate, asyncio.Task[float]] = {}
        self.tile_fetches = 0

    def _spawn(self, coro: Awaitable[T]) -> asyncio.Task[T]:
        task = asyncio.ensure_future(coro)
        self._token.attach(task)
        return task

    async def resolve_elevation(self, coordinate: Coordinate) -> float:
        self._token.raise_if_cancelled()
        key = (float(coordinate[0]), float(coordinate[1]))
        task = self._elevation_tasks.get(key)
        if task is None:
            task = self._spawn(self._lookup(key))
            self._elevation_tasks[key] = task
        # Shielded: one caller giving up must not cancel the lookup for the others.
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._token.cancelled:
                raise RunCancelled() from None
            raise

    async def _lookup(self, coordinate: Coordinate) -> float:
        pixel = project_to_tile_pixel(coordinate[0], coordinate[1], self.zoom, tile_size=self.tile_size)
        raster = await self._tile(pixel)
        return decode_terrain_rgb(raster, pixel.pixel_x, pixel.pixel_y)

    async def _tile(self, pixel: TilePixel) -> np.ndarray:
        task = self._tile_tasks.get(pixel.tile_key)
        if task is None:
            task = self._spawn(self._fetch(pixel))
            self._tile_tasks[pixel.tile_key] = task
        return await asyncio.shield(task)

    async def _fetch(self, pixel: TilePixel) -> np.ndarray:
        if not self._access_token:
            raise MissingCredentialError("Missing Mapbox token for terrain lookup.")
        self.tile_fetches += 1
        return await self._tiles.fetch_tile(pixel.zoom, pixel.tile_x, pixel.tile_y, access_token=self._access_token)

    def discard(self) -> None:
        """Drop both caches and cancel lookups nobody is waiting for any more."""
        for task in (*self._elevation_tasks.values(), *self._tile_tasks.values()):
            if not task.done():
                task.cancel()
        self._tile_tasks.clear()
        self._elevation_tasks.clear()
