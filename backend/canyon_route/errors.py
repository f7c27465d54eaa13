from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "terrain_fetch_failed",
        "terrain_decode_failed",
        "no_route_found",
        "routing_service_failed",
        "missing_access_token",
        "route_composition_failed",
        "route_not_ready",
    }
)


@dataclass
class RouteEngineError(RuntimeError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class TerrainFetchError(RouteEngineError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(
            reason_code="terrain_fetch_failed",
            message=message,
            details={"status_code": status_code} if status_code is not None else None,
        )


class TerrainDecodeError(RouteEngineError):
    def __init__(self, message: str) -> None:
        super().__init__(reason_code="terrain_decode_failed", message=message)


class NoRouteFoundError(RouteEngineError):
    def __init__(self, message: str = "No route found for this segment.") -> None:
        super().__init__(reason_code="no_route_found", message=message)


class RoutingServiceError(RouteEngineError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(
            reason_code="routing_service_failed",
            message=message,
            details={"status_code": status_code} if status_code is not None else None,
        )


class MissingCredentialError(RouteEngineError):
    def __init__(self, message: str = "Missing Mapbox access token.") -> None:
        super().__init__(reason_code="missing_access_token", message=message)


class RouteCompositionFailure(RouteEngineError):
    def __init__(self, message: str = "Route geometry could not be generated.") -> None:
        super().__init__(reason_code="route_composition_failed", message=message)


class RouteNotReadyError(RouteEngineError):
    def __init__(self, message: str = "A route needs a start and an end point.") -> None:
        super().__init__(reason_code="route_not_ready", message=message)


class RunCancelled(Exception):
    """A generation run was superseded; its result must never be published."""


def normalize_reason_code(reason_code: str, *, default: str = "route_engine_error") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
