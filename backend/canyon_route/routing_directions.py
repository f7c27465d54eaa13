from __future__ import annotations

import asyncio
from typing import Any, Final

import httpx

from .errors import NoRouteFoundError, RoutingServiceError
from .geodesy import Coordinate
from .route_cache import CachedRouteSegment

_RETRYABLE_STATUS: Final[set[int]] = {408, 425, 429, 500, 502, 503, 504}


def _format_directions_error(resp: httpx.Response) -> str:
    """Prefer the service's own ``message``; otherwise report the status."""
    try:
        data = resp.json()
        if isinstance(data, dict):
            message = data.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
    except ValueError:
        pass
    return f"Directions API request failed ({resp.status_code})."


def parse_route_candidate(route: dict[str, Any]) -> CachedRouteSegment:
    geom = route.get("geometry")
    coords = geom.get("coordinates") if isinstance(geom, dict) else None
    if not isinstance(coords, list) or not coords:
        raise NoRouteFoundError()

    out: list[Coordinate] = []
    for pt in coords:
        if (
            isinstance(pt, (list, tuple))
            and len(pt) >= 2
            and isinstance(pt[0], (int, float))
            and isinstance(pt[1], (int, float))
        ):
            out.append((float(pt[0]), float(pt[1])))
    if not out:
        raise NoRouteFoundError()

    try:
        distance = float(route.get("distance", 0.0))
        duration = float(route.get("duration", 0.0))
    except (TypeError, ValueError) as e:
        raise RoutingServiceError(f"Directions API returned an invalid route: {e}") from e
    return CachedRouteSegment(distance=max(0.0, distance), duration=max(0.0, duration), coordinates=tuple(out))


class DirectionsClient:
    """Async client for a Mapbox-compatible directions endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        profile: str = "walking",
        timeout_s: float = 20.0,
        connect_timeout_s: float = 5.0,
        max_retries: int = 1,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.max_retries = max(1, int(max_retries))

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=connect_timeout_s),
            headers={"accept": "application/json"},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_routes(self, *, start: Coordinate, end: Coordinate, access_token: str) -> list[dict[str, Any]]:
        """Candidate routes for exactly two endpoints, best first."""
        coords = f"{start[0]},{start[1]};{end[0]},{end[1]}"
        url = f"{self.base_url}/{self.profile}/{coords}"
        params = {
            "geometries": "geojson",
            "overview": "full",
            "access_token": access_token,
        }

        last_err: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                resp = await self._client.get(url, params=params)
            except httpx.HTTPError as e:
                # httpx exceptions can stringify to "" (e.g. some timeouts), so include the type.
                msg = str(e).strip()
                last_err = RoutingServiceError(f"{type(e).__name__}: {msg}" if msg else type(e).__name__)
            else:
                if resp.status_code in _RETRYABLE_STATUS:
                    last_err = RoutingServiceError(_format_directions_error(resp), status_code=resp.status_code)
                elif not resp.is_success:
                    raise RoutingServiceError(_format_directions_error(resp), status_code=resp.status_code)
                else:
                    return self._routes_from(resp)

            if attempt < self.max_retries - 1:
                await asyncio.sleep(min(0.25 * (2**attempt), 2.0))

        if isinstance(last_err, RoutingServiceError):
            raise last_err
        raise RoutingServiceError("Directions API request failed.")

    @staticmethod
    def _routes_from(resp: httpx.Response) -> list[dict[str, Any]]:
        try:
            data = resp.json()
        except ValueError as e:
            raise RoutingServiceError("Directions API returned a non-JSON payload.") from e
        if not isinstance(data, dict):
            raise RoutingServiceError("Directions API returned an unexpected payload.")

        routes = data.get("routes")
        if not isinstance(routes, list) or not routes:
            raise NoRouteFoundError()
        return [route for route in routes if isinstance(route, dict)]

    async def fetch_segment(self, *, start: Coordinate, end: Coordinate, access_token: str) -> CachedRouteSegment:
        routes = await self.fetch_routes(start=start, end=end, access_token=access_token)
        if not routes:
            raise NoRouteFoundError()
        return parse_route_candidate(routes[0])
