from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

from .geodesy import Coordinate
from .logging_utils import log_event


@dataclass(frozen=True)
class CachedRouteSegment:
    distance: float
    duration: float
    coordinates: tuple[Coordinate, ...]


def segment_cache_key(start: Coordinate, end: Coordinate) -> str:
    return f"{start[0]:.6f},{start[1]:.6f}|{end[0]:.6f},{end[1]:.6f}"


class RouteSegmentCache:
    """Routing-service answers keyed by directed endpoint pair.

    Bounded by entry count; on overflow the whole table is dropped rather than
    evicting single entries.
    """

    def __init__(self, *, max_entries: int) -> None:
        self._max_entries = max(1, int(max_entries))
        self._lock = Lock()
        self._items: dict[str, CachedRouteSegment] = {}

        self._hits = 0
        self._misses = 0
        self._clears = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def get(self, start: Coordinate, end: Coordinate) -> CachedRouteSegment | None:
        key = segment_cache_key(start, end)
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry

    def set(self, start: Coordinate, end: Coordinate, value: CachedRouteSegment) -> None:
        key = segment_cache_key(start, end)
        overflowed = 0
        with self._lock:
            if key not in self._items and len(self._items) >= self._max_entries:
                overflowed = len(self._items)
                self._items.clear()
                self._clears += 1
            self._items[key] = value
        if overflowed:
            log_event("route_cache_cleared", reason="overflow", cleared=overflowed)

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            if cleared:
                self._clears += 1
            return cleared

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "clears": self._clears,
                "max_entries": self._max_entries,
            }
