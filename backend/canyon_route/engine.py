from __future__ import annotations

import asyncio
import itertools
import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from .cancellation import CancellationToken
from .errors import MissingCredentialError, RouteEngineError, RouteNotReadyError, RunCancelled, normalize_reason_code
from .logging_utils import log_event
from .models import RouteElevations, RouteFeature, Waypoint
from .route_cache import RouteSegmentCache
from .route_composition import compose_route, segment_warnings
from .routing_directions import DirectionsClient
from .segments import ResolvedSegment, SegmentResolver
from .settings import settings
from .terrain import TerrainElevationResolver, TerrainTileClient
from .waypoints import is_route_ready, normalize_waypoints, waypoints_equal


def _js_round(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class RouteGeneration:
    route: RouteFeature
    warnings: list[str]
    segments: tuple[ResolvedSegment, ...]
    routing_requests: int = 0
    terrain_tile_fetches: int = 0

    @property
    def status_text(self) -> str:
        if self.warnings:
            return f"Route ready with warnings: {' | '.join(self.warnings)}"
        return "Route ready."


class RouteEngine:
    """Resolves and composes walking routes.

    Constructed once per process. It owns the transports and the long-lived
    route-segment cache, which is reset only when the access token changes.
    Terrain caches belong to a single generation run.
    """

    def __init__(
        self,
        *,
        access_token: str = "",
        directions: DirectionsClient | None = None,
        terrain_tiles: TerrainTileClient | None = None,
        cache: RouteSegmentCache | None = None,
        profile: str | None = None,
        terrain_zoom: int | None = None,
        terrain_tile_size: int | None = None,
        segment_concurrency: int | None = None,
    ) -> None:
        self.profile = profile or settings.routing_profile
        self.terrain_zoom = settings.terrain_tile_zoom if terrain_zoom is None else terrain_zoom
        self.terrain_tile_size = settings.terrain_tile_size if terrain_tile_size is None else terrain_tile_size
        self.segment_concurrency = max(1, segment_concurrency or settings.segment_concurrency)

        self.directions = directions or DirectionsClient(
            base_url=settings.directions_base_url,
            profile=self.profile,
            timeout_s=settings.http_timeout_s,
            connect_timeout_s=settings.http_connect_timeout_s,
            max_retries=settings.directions_max_retries,
        )
        self.terrain_tiles = terrain_tiles or TerrainTileClient(
            url_template=settings.terrain_tile_url_template,
            timeout_s=settings.http_timeout_s,
            connect_timeout_s=settings.http_connect_timeout_s,
        )
        self.cache = cache or RouteSegmentCache(max_entries=settings.route_segment_cache_max_entries)
        self._access_token = (access_token or "").strip()
        # Bumped on every rotation; answers fetched under an older credential are not cached.
        self._credential_epoch = 0

    @classmethod
    def from_settings(cls) -> RouteEngine:
        return cls(access_token=settings.mapbox_access_token)

    async def aclose(self) -> None:
        await self.directions.aclose()
        await self.terrain_tiles.aclose()

    @property
    def has_access_token(self) -> bool:
        return bool(self._access_token)

    def set_access_token(self, access_token: str) -> bool:
        """Rotate the credential. Returns True when it changed (and the cache was reset)."""
        token = (access_token or "").strip()
        if token == self._access_token:
            return False
        self._access_token = token
        self._credential_epoch += 1
        cleared = self.cache.clear()
        log_event("route_cache_cleared", reason="credential_rotated", cleared=cleared)
        return True

    def _terrain_resolver(self, token: CancellationToken) -> TerrainElevationResolver:
        return TerrainElevationResolver(
            self.terrain_tiles,
            access_token=self._access_token,
            token=token,
            zoom=self.terrain_zoom,
            tile_size=self.terrain_tile_size,
        )

    async def generate(
        self,
        waypoints: Sequence[Waypoint],
        *,
        token: CancellationToken | None = None,
    ) -> RouteGeneration:
        """Run one generation: resolve every segment, then compose.

        Raises ``RunCancelled`` when ``token`` fires; ``MissingCredentialError``
        and ``RouteCompositionFailure`` are the only failures of a ready route.
        """
        points = normalize_waypoints(waypoints)
        if not is_route_ready(points):
            raise RouteNotReadyError()
        if not self._access_token:
            raise MissingCredentialError()

        token = token or CancellationToken()
        token.raise_if_cancelled()
        terrain = self._terrain_resolver(token)
        epoch = self._credential_epoch
        resolver = SegmentResolver(
            directions=self.directions,
            cache=self.cache,
            terrain=terrain,
            access_token=self._access_token,
            token=token,
            credential_current=lambda: self._credential_epoch == epoch,
        )
        sem = asyncio.Semaphore(self.segment_concurrency)

        async def one(index: int) -> ResolvedSegment:
            async with sem:
                return await resolver.resolve(index, points[index - 1], points[index])

        tasks = [asyncio.ensure_future(one(index)) for index in range(1, len(points))]
        for task in tasks:
            token.attach(task)
        try:
            segments = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            if token.cancelled:
                raise RunCancelled() from None
            raise
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            terrain.discard()

        token.raise_if_cancelled()
        route = compose_route(points, segments, profile=self.profile)
        return RouteGeneration(
            route=route,
            warnings=segment_warnings(segments),
            segments=tuple(segments),
            routing_requests=resolver.routing_requests,
            terrain_tile_fetches=terrain.tile_fetches,
        )

    async def resolve_route_elevations(
        self,
        route: RouteFeature,
        *,
        token: CancellationToken | None = None,
    ) -> RouteElevations:
        """Start and end elevation of a finished route, in whole metres."""
        if not self._access_token:
            raise MissingCredentialError()
        token = token or CancellationToken()
        terrain = self._terrain_resolver(token)
        try:
            start_m, end_m = await asyncio.gather(
                terrain.resolve_elevation(route.properties.start),
                terrain.resolve_elevation(route.properties.end),
            )
        finally:
            terrain.discard()
        token.raise_if_cancelled()
        return RouteElevations(start_m=_js_round(start_m), end_m=_js_round(end_m))

    def cache_stats(self) -> dict[str, int]:
        return self.cache.snapshot()

    def clear_cache(self) -> int:
        cleared = self.cache.clear()
        log_event("route_cache_cleared", reason="manual", cleared=cleared)
        return cleared


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    SUPERSEDED = "superseded"
    FAILED = "failed"


@dataclass(frozen=True)
class RouteUpdate:
    """What the coordinator publishes: a finished route, a failure, or a cleared route."""

    run_id: int
    state: RunState
    route: RouteFeature | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    reason_code: str | None = None

    @property
    def status_text(self) -> str:
        if self.state is RunState.FAILED:
            return f"Failed to generate route: {self.error}"
        if self.state is RunState.COMPLETED:
            if self.warnings:
                return f"Route ready with warnings: {' | '.join(self.warnings)}"
            return "Route ready."
        return ""


@dataclass
class GenerationRun:
    run_id: int
    waypoints: tuple[Waypoint, ...]
    token: CancellationToken = field(default_factory=CancellationToken)
    state: RunState = RunState.RUNNING
    task: asyncio.Task[None] | None = None
    started_at: float = field(default_factory=time.monotonic)


class RouteCoordinator:
    """Keeps the published route in step with the latest waypoint list.

    Every structural change starts a new run and cancels the one in flight;
    only the newest run can ever publish.
    """

    def __init__(
        self,
        engine: RouteEngine,
        *,
        on_publish: Callable[[RouteUpdate], None] | None = None,
    ) -> None:
        self._engine = engine
        self._on_publish = on_publish
        self._ids = itertools.count(1)
        self._waypoints: list[Waypoint] = []
        self._current: GenerationRun | None = None
        self._state = RunState.IDLE
        self._last_update: RouteUpdate | None = None

    @property
    def waypoints(self) -> list[Waypoint]:
        return list(self._waypoints)

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def current_run(self) -> GenerationRun | None:
        return self._current

    @property
    def last_update(self) -> RouteUpdate | None:
        return self._last_update

    @property
    def route(self) -> RouteFeature | None:
        update = self._last_update
        return update.route if update is not None else None

    def apply(self, edit: Callable[[list[Waypoint]], list[Waypoint]]) -> GenerationRun | None:
        """Apply a waypoint edit (see ``canyon_route.waypoints``) and regenerate."""
        return self.update_waypoints(edit(self.waypoints))

    def update_waypoints(self, points: Sequence[Waypoint]) -> GenerationRun | None:
        normalized = normalize_waypoints(points)
        # A failed list is retried as-is: the credential may have been set since.
        if waypoints_equal(normalized, self._waypoints) and self._state not in (RunState.IDLE, RunState.FAILED):
            return self._current
        self._waypoints = normalized
        return self.regenerate()

    def regenerate(self) -> GenerationRun | None:
        """Start a run for the current list, superseding any run in flight."""
        self._supersede()
        points = self._waypoints
        if not is_route_ready(points):
            self._current = None
            self._state = RunState.IDLE
            self._publish(RouteUpdate(run_id=0, state=RunState.IDLE))
            return None

        run = GenerationRun(run_id=next(self._ids), waypoints=tuple(points))
        self._current = run
        self._state = RunState.RUNNING
        run.task = asyncio.get_running_loop().create_task(self._execute(run))
        run.token.attach(run.task)
        log_event("route_run_started", run_id=run.run_id, waypoint_count=len(points))
        return run

    def _supersede(self) -> None:
        run = self._current
        if run is None or run.state is not RunState.RUNNING:
            return
        run.state = RunState.SUPERSEDED
        run.token.cancel()
        log_event("route_run_superseded", run_id=run.run_id)

    def _is_live(self, run: GenerationRun) -> bool:
        return self._current is run and not run.token.cancelled

    async def _execute(self, run: GenerationRun) -> None:
        try:
            generation = await self._engine.generate(run.waypoints, token=run.token)
        except RunCancelled:
            run.state = RunState.SUPERSEDED
            return
        except asyncio.CancelledError:
            run.state = RunState.SUPERSEDED
            raise
        except Exception as e:
            if not self._is_live(run):
                run.state = RunState.SUPERSEDED
                return
            reason_code = normalize_reason_code(getattr(e, "reason_code", ""))
            message = str(e).strip() or "Unexpected error."
            run.state = RunState.FAILED
            self._state = RunState.FAILED
            log_event(
                "route_run_failed",
                level=logging.WARNING if isinstance(e, RouteEngineError) else logging.ERROR,
                run_id=run.run_id,
                reason_code=reason_code,
                error=message,
            )
            self._publish(RouteUpdate(run_id=run.run_id, state=RunState.FAILED, error=message, reason_code=reason_code))
            return

        if not self._is_live(run):
            run.state = RunState.SUPERSEDED
            return

        run.state = RunState.COMPLETED
        self._state = RunState.COMPLETED
        log_event(
            "route_run_completed",
            run_id=run.run_id,
            segment_count=len(generation.segments),
            fallback_count=len(generation.warnings),
            distance_m=round(generation.route.properties.distance_m, 3),
            duration_s=round(generation.route.properties.duration_s, 3),
            routing_requests=generation.routing_requests,
            terrain_tile_fetches=generation.terrain_tile_fetches,
            elapsed_ms=round((time.monotonic() - run.started_at) * 1000.0, 2),
        )
        self._publish(
            RouteUpdate(
                run_id=run.run_id,
                state=RunState.COMPLETED,
                route=generation.route,
                warnings=list(generation.warnings),
            )
        )

    def _publish(self, update: RouteUpdate) -> None:
        self._last_update = update
        if self._on_publish is not None:
            self._on_publish(update)

    async def wait(self) -> RouteUpdate | None:
        """Wait until no run is in flight, following any run that supersedes the awaited one."""
        while True:
            run = self._current
            if run is None or run.task is None or run.task.done():
                return self._last_update
            await asyncio.wait({run.task})

    async def aclose(self) -> None:
        run = self._current
        self._supersede()
        if run is not None and run.task is not None and not run.task.done():
            await asyncio.wait({run.task})
