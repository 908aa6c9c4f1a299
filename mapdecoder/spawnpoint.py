"""Spawnpoints: where wild Pokémon appear and when they despawn."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional

log = logging.getLogger(__name__)

FLOAT_TOLERANCE = 1e-6
SEEN_REFRESH_SECONDS = 3600
MAX_DESPAWN_HINT_MS = 90000


@dataclass
class Spawnpoint:
    """A spawnpoint record."""

    id: int
    lat: float
    lon: float
    updated: int = 0
    last_seen: int = 0
    despawn_sec: Optional[int] = None


@dataclass(frozen=True)
class WildSighting:
    """The parts of a wild Pokémon sighting that concern its spawnpoint."""

    spawn_point_id: str
    latitude: float
    longitude: float
    time_till_hidden_ms: int = 0


def _close(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=0.0, abs_tol=FLOAT_TOLERANCE)


def has_changes_spawnpoint(old: Spawnpoint, new: Spawnpoint) -> bool:
    """Return whether ``new`` differs meaningfully from ``old``.

    Despawn seconds within 2 of each other, or either side of the hour
    boundary, are treated as unchanged.
    """
    if (
        not _close(old.lat, new.lat)
        or not _close(old.lon, new.lon)
        or (old.despawn_sec is None) != (new.despawn_sec is None)
    ):
        return True
    if old.despawn_sec is None or new.despawn_sec is None:
        return False
    old_sec, new_sec = old.despawn_sec, new.despawn_sec
    if old_sec <= 1 and new_sec >= 3598:
        return False
    if new_sec <= 1 and old_sec >= 3598:
        return False
    return abs(old_sec - new_sec) > 2


def second_of_hour(timestamp: int) -> int:
    """Return minute * 60 + second of a Unix timestamp in local time."""
    date = datetime.fromtimestamp(timestamp)
    return date.minute * 60 + date.second


class SpawnpointStore:
    """Cache of spawnpoints backed by optional load and write callables."""

    def __init__(
        self,
        loader: Optional[Callable[[int], Optional[Spawnpoint]]] = None,
        writer: Optional[Callable[[Spawnpoint], None]] = None,
    ) -> None:
        self.loader = loader
        self.writer = writer
        self._cache: dict[int, Spawnpoint] = {}
        self._lock = threading.RLock()

    def get(self, spawnpoint_id: int) -> Optional[Spawnpoint]:
        """Return a copy of the spawnpoint, loading it on a cache miss."""
        with self._lock:
            cached = self._cache.get(spawnpoint_id)
            if cached is not None:
                return replace(cached)
            if self.loader is None:
                return None
            loaded = self.loader(spawnpoint_id)
            if loaded is None:
                return None
            self._cache[spawnpoint_id] = replace(loaded)
            return replace(loaded)

    def _lookup(self, spawnpoint_id: int) -> Optional[Spawnpoint]:
        try:
            return self.get(spawnpoint_id)
        except Exception as exc:
            log.error("loading spawnpoint %d failed: %s", spawnpoint_id, exc)
            return Spawnpoint(id=spawnpoint_id, lat=0.0, lon=0.0)

    def _write(self, spawnpoint: Spawnpoint) -> bool:
        if self.writer is None:
            return True
        try:
            self.writer(spawnpoint)
        except Exception as exc:
            log.error("error updating spawnpoint %s", exc)
            return False
        return True

    def update(self, spawnpoint: Spawnpoint, now: int) -> bool:
        """Store the spawnpoint if it changed; return whether it was written."""
        with self._lock:
            old = self._lookup(spawnpoint.id)
            if old is not None and not has_changes_spawnpoint(old, spawnpoint):
                return False
            spawnpoint.updated = now
            spawnpoint.last_seen = now
            if not self._write(spawnpoint):
                return False
            self._cache[spawnpoint.id] = replace(spawnpoint)
            return True

    def seen(self, spawnpoint_id: int, now: int) -> bool:
        """Refresh last_seen if it is over an hour old; return whether it was written."""
        with self._lock:
            cached = self._cache.get(spawnpoint_id)
            if cached is None:
                return False
            if now - cached.last_seen <= SEEN_REFRESH_SECONDS:
                return False
            refreshed = replace(cached, last_seen=now)
            if not self._write(refreshed):
                return False
            self._cache[spawnpoint_id] = refreshed
            return True

    def update_from_wild(self, wild: WildSighting, timestamp_ms: int, now: int) -> None:
        """Record what a wild sighting tells about its spawnpoint.

        Raises ValueError if the spawnpoint id is not hexadecimal.
        """
        spawn_id = int(wild.spawn_point_id, 16)
        if 0 < wild.time_till_hidden_ms <= MAX_DESPAWN_HINT_MS:
            expire = (timestamp_ms + wild.time_till_hidden_ms) // 1000
            self.update(
                Spawnpoint(
                    id=spawn_id,
                    lat=wild.latitude,
                    lon=wild.longitude,
                    despawn_sec=second_of_hour(expire),
                ),
                now,
            )
            return
        with self._lock:
            if self._lookup(spawn_id) is None:
                self.update(Spawnpoint(id=spawn_id, lat=wild.latitude, lon=wild.longitude), now)
            else:
                self.seen(spawn_id, now)