from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from .cancellation import CancellationToken
from .errors import RunCancelled
from .geodesy import Coordinate, haversine_m, straight_segment_duration_s
from .logging_utils import log_event
from .models import SegmentMode, SegmentSummary, Waypoint
from .route_cache import CachedRouteSegment, RouteSegmentCache, segment_cache_key
from .routing_directions import DirectionsClient
from .terrain import TerrainElevationResolver


def _error_text(error: BaseException) -> str:
    text = str(error).strip()
    return text or "Unexpected error."


@dataclass(frozen=True)
class ResolvedSegment:
    """Segment ``index`` connects waypoint ``index - 1`` to waypoint ``index``."""

    index: int
    start: Coordinate
    end: Coordinate
    mode: SegmentMode
    distance_m: float
    duration_s: float
    coordinates: tuple[Coordinate, ...]
    failed: bool = False
    error: str | None = None

    @property
    def warning(self) -> str | None:
        if not self.failed:
            return None
        return f"Segment {self.index} fallback to straight line: {self.error}"

    def summary(self) -> SegmentSummary:
        return SegmentSummary(
            index=self.index,
            from_=self.start,
            to=self.end,
            mode=self.mode,
            distance_m=self.distance_m,
            duration_s=self.duration_s,
            failed=self.failed,
            error=self.error,
        )


class SegmentResolver:
    def __init__(
        self,
        *,
        directions: DirectionsClient,
        cache: RouteSegmentCache,
        terrain: TerrainElevationResolver,
        access_token: str,
        token: CancellationToken,
        credential_current: Callable[[], bool] | None = None,
    ) -> None:
        self._directions = directions
        self._cache = cache
        self._terrain = terrain
        self._access_token = access_token
        self._token = token
        self._credential_current = credential_current or (lambda: True)
        self.routing_requests = 0
        self._inflight: dict[str, asyncio.Task[CachedRouteSegment]] = {}

    async def resolve(self, index: int, previous: Waypoint, current: Waypoint) -> ResolvedSegment:
        self._token.raise_if_cancelled()
        start = previous.coordinates
        end = current.coordinates
        mode: SegmentMode = current.segment_mode or "straight"

        if mode == "straight":
            return await self._straight(index, start, end)

        try:
            routed = await self._routed(start, end)
        except RunCancelled:
            raise
        except Exception as e:
            # A superseded run never degrades; it just stops.
            self._token.raise_if_cancelled()
            fallback = await self._straight(index, start, end, mode="route")
            failed = replace(fallback, failed=True, error=_error_text(e))
            log_event(
                "route_segment_fallback",
                level=logging.WARNING,
                segment_index=index,
                reason_code=getattr(e, "reason_code", type(e).__name__),
                error=failed.error,
            )
            return failed

        return ResolvedSegment(
            index=index,
            start=start,
            end=end,
            mode="route",
            distance_m=routed.distance,
            duration_s=routed.duration,
            coordinates=routed.coordinates,
        )

    async def _routed(self, start: Coordinate, end: Coordinate) -> CachedRouteSegment:
        cached = self._cache.get(start, end)
        if cached is not None:
            return cached

        key = segment_cache_key(start, end)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_routed(start, end))
            self._token.attach(task)
            self._inflight[key] = task
            task.add_done_callback(lambda _t: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _fetch_routed(self, start: Coordinate, end: Coordinate) -> CachedRouteSegment:
        self.routing_requests += 1
        segment = await self._directions.fetch_segment(start=start, end=end, access_token=self._access_token)
        self._token.raise_if_cancelled()
        if self._credential_current():
            self._cache.set(start, end, segment)
        return segment

    async def _straight(
        self,
        index: int,
        start: Coordinate,
        end: Coordinate,
        *,
        mode: SegmentMode = "straight",
    ) -> ResolvedSegment:
        distance_m = haversine_m(start, end)
        duration_s = await self.straight_duration_s(start, end, distance_m)
        return ResolvedSegment(
            index=index,
            start=start,
            end=end,
            mode=mode,
            distance_m=distance_m,
            duration_s=duration_s,
            coordinates=(start, end),
        )

    async def straight_duration_s(self, start: Coordinate, end: Coordinate, distance_m: float) -> float:
        """Elevation-corrected walking time; flat terrain when elevation is unavailable."""
        try:
            start_m, end_m = await asyncio.gather(
                self._terrain.resolve_elevation(start),
                self._terrain.resolve_elevation(end),
            )
        except RunCancelled:
            raise
        except Exception as e:
            self._token.raise_if_cancelled()
            log_event(
                "terrain_elevation_degraded",
                level=logging.DEBUG,
                reason_code=getattr(e, "reason_code", type(e).__name__),
                error=_error_text(e),
            )
            return straight_segment_duration_s(distance_m, 0.0)
        return straight_segment_duration_s(distance_m, end_m - start_m)
