"""Player-made routes between forts."""

from __future__ import annotations

import json
import logging
import math
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Sequence

log = logging.getLogger(__name__)

FLOAT_TOLERANCE = 1e-6
REFRESH_SECONDS = 900
MAX_DESCRIPTION_RUNES = 255


def _compact_json(value: Any) -> str:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    for char, escape in (("<", "\\u003c"), (">", "\\u003e"), ("&", "\\u0026"),
                         ("\u2028", "\\u2028"), ("\u2029", "\\u2029")):
        text = text.replace(char, escape)
    return text


def truncate_utf8(text: str, max_runes: int) -> tuple[str, bool]:
    """Cut ``text`` to at most ``max_runes`` characters; report whether it was cut."""
    if len(text) <= max_runes:
        return text, False
    return text[:max_runes], True


@dataclass(frozen=True)
class SharedRoute:
    """A route as received from the game."""

    id: str
    name: str = ""
    short_code: str = ""
    description: str = ""
    distance_meters: int = 0
    duration_seconds: int = 0
    start_fort_id: str = ""
    start_image: str = ""
    start_lat: float = 0.0
    start_lon: float = 0.0
    end_fort_id: str = ""
    end_image: str = ""
    end_lat: float = 0.0
    end_lon: float = 0.0
    image_url: str = ""
    image_border_color: str = ""
    reversible: bool = False
    type: int = 0
    version: int = 0
    waypoints: Sequence[Any] = field(default_factory=tuple)
    tags: Sequence[str] = field(default_factory=tuple)


@dataclass
class Route:
    """A stored route."""

    id: str
    name: str = ""
    shortcode: str = ""
    description: str = ""
    distance_meters: int = 0
    duration_seconds: int = 0
    end_fort_id: str = ""
    end_image: str = ""
    end_lat: float = 0.0
    end_lon: float = 0.0
    image: str = ""
    image_border_color: str = ""
    reversible: bool = False
    start_fort_id: str = ""
    start_image: str = ""
    start_lat: float = 0.0
    start_lon: float = 0.0
    tags: Optional[str] = None
    type: int = 0
    updated: int = 0
    version: int = 0
    waypoints: str = ""

    def update_from_shared_route(self, shared: SharedRoute, now: int) -> None:
        """Copy the fields of a shared route onto this record."""
        self.name = shared.name
        if shared.short_code:
            self.shortcode = shared.short_code
        self.description = shared.description
        truncated_text, truncated = truncate_utf8(self.description, MAX_DESCRIPTION_RUNES)
        if truncated:
            log.warning("truncating description for route id '%s'. Orig description: %s",
                        self.id, self.description)
            self.description = truncated_text
        self.distance_meters = shared.distance_meters
        self.duration_seconds = shared.duration_seconds
        self.end_fort_id = shared.end_fort_id
        self.end_image = shared.end_image
        self.end_lat = shared.end_lat
        self.end_lon = shared.end_lon
        self.image = shared.image_url
        self.image_border_color = shared.image_border_color
        self.reversible = shared.reversible
        self.start_fort_id = shared.start_fort_id
        self.start_image = shared.start_image
        self.start_lat = shared.start_lat
        self.start_lon = shared.start_lon
        self.type = shared.type
        self.updated = now
        self.version = shared.version
        self.waypoints = _compact_json(list(shared.waypoints) if shared.waypoints else None)
        if shared.tags:
            self.tags = _compact_json(list(shared.tags))


def _close(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=0.0, abs_tol=FLOAT_TOLERANCE)


def has_changes_route(old: Route, new: Route) -> bool:
    """Return whether two routes differ in any stored field that matters."""
    return (
        old.name != new.name
        or old.shortcode != new.shortcode
        or old.description != new.description
        or old.distance_meters != new.distance_meters
        or old.duration_seconds != new.duration_seconds
        or old.end_fort_id != new.end_fort_id
        or not _close(old.end_lat, new.end_lat)
        or not _close(old.end_lon, new.end_lon)
        or old.image != new.image
        or old.image_border_color != new.image_border_color
        or old.reversible != new.reversible
        or old.start_fort_id != new.start_fort_id
        or not _close(old.start_lat, new.start_lat)
        or not _close(old.start_lon, new.start_lon)
        or old.tags != new.tags
        or old.type != new.type
        or old.version != new.version
        or old.waypoints != new.waypoints
    )


class RouteStore:
    """Cache of routes backed by optional load and write callables.

    The writer is called as ``writer(route, insert)`` where ``insert`` tells
    whether the route is new.
    """

    def __init__(
        self,
        loader: Optional[Callable[[str], Optional[Route]]] = None,
        writer: Optional[Callable[[Route, bool], None]] = None,
    ) -> None:
        self.loader = loader
        self.writer = writer
        self._cache: dict[str, Route] = {}
        self._lock = threading.RLock()

    def get(self, route_id: str) -> Optional[Route]:
        """Return a copy of the route, loading it on a cache miss."""
        with self._lock:
            cached = self._cache.get(route_id)
            if cached is not None:
                return replace(cached)
            if self.loader is None:
                return None
            loaded = self.loader(route_id)
            if loaded is None:
                return None
            self._cache[route_id] = replace(loaded)
            return replace(loaded)

    def save(self, route: Route, now: int) -> bool:
        """Write the route unless it is unchanged and was saved in the last 15 minutes.

        Returns whether it was written. Writer errors propagate.
        """
        with self._lock:
            try:
                old = self.get(route.id)
            except Exception as exc:
                log.error("loading route %s failed: %s", route.id, exc)
                old = None
            if old is not None and not has_changes_route(old, route):
                if old.updated > now - REFRESH_SECONDS:
                    return False
            if self.writer is not None:
                self.writer(route, old is None)
            self._cache[route.id] = replace(route)
            return True

    def update_with_shared_route(self, shared: SharedRoute, now: int) -> Route:
        """Apply a shared route to the stored record, save it, and return it."""
        with self._lock:
            route = self.get(shared.id)
            if route is None:
                route = Route(id=shared.id)
            route.update_from_shared_route(shared, now)
            self.save(route, now)
            return route