"""Power spots (stations): battles and the Pokémon stationed at them."""

from __future__ import annotations

import json
import logging
import math
import threading
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional

from mapdecoder.routes import truncate_utf8

log = logging.getLogger(__name__)

FLOAT_TOLERANCE = 1e-6
REFRESH_SECONDS = 900
MAX_NAME_RUNES = 255

BREAD_DOUGH_MODE = 2
BREAD_DOUGH_MODE_2 = 3


def _ms_to_seconds(ms: int) -> int:
    """Integer division by 1000 that truncates toward zero."""
    return -((-ms) // 1000) if ms < 0 else ms // 1000


@dataclass(frozen=True)
class BattlePokemon:
    """The Pokémon fought in a station battle."""

    pokemon_id: int
    move1: int = 0
    move2: int = 0
    form: int = 0
    costume: int = 0
    gender: int = 0
    alignment: int = 0
    bread_mode: int = 0
    stamina: int = 0
    cp_multiplier: float = 0.0


@dataclass(frozen=True)
class StationInfo:
    """A station as received from the game.

    ``battle_level`` is None when the station carries no battle details.
    """

    id: str
    name: str = ""
    lat: float = 0.0
    lon: float = 0.0
    start_time_ms: int = 0
    end_time_ms: int = 0
    cooldown_complete_ms: int = 0
    is_battle_available: bool = False
    battle_level: Optional[int] = None
    battle_window_start_ms: int = 0
    battle_window_end_ms: int = 0
    battle_pokemon: Optional[BattlePokemon] = None
    reward_pokemon_id: Optional[int] = None


@dataclass(frozen=True)
class StationedPokemon:
    """A Pokémon stationed at a power spot."""

    pokemon_id: int
    form: int = 0
    costume: int = 0
    gender: int = 0
    bread_mode: int = 0

    @property
    def is_gmax(self) -> bool:
        return self.bread_mode in (BREAD_DOUGH_MODE, BREAD_DOUGH_MODE_2)


@dataclass
class Station:
    """A stored station record."""

    id: str
    lat: float = 0.0
    lon: float = 0.0
    name: str = ""
    cell_id: int = 0
    start_time: int = 0
    end_time: int = 0
    cooldown_complete: int = 0
    is_battle_available: bool = False
    is_inactive: bool = False
    updated: int = 0

    battle_level: Optional[int] = None
    battle_start: Optional[int] = None
    battle_end: Optional[int] = None
    battle_pokemon_id: Optional[int] = None
    battle_pokemon_form: Optional[int] = None
    battle_pokemon_costume: Optional[int] = None
    battle_pokemon_gender: Optional[int] = None
    battle_pokemon_alignment: Optional[int] = None
    battle_pokemon_bread_mode: Optional[int] = None
    battle_pokemon_move_1: Optional[int] = None
    battle_pokemon_move_2: Optional[int] = None
    battle_pokemon_stamina: Optional[int] = None
    battle_pokemon_cp_multiplier: Optional[float] = None

    total_stationed_pokemon: Optional[int] = None
    total_stationed_gmax: Optional[int] = None
    stationed_pokemon: Optional[str] = None

    def update_from_station_info(self, info: StationInfo, cell_id: int) -> "Station":
        """Copy the fields of a received station onto this record."""
        self.id = info.id
        self.name = info.name
        truncated_name, truncated = truncate_utf8(info.name, MAX_NAME_RUNES)
        if truncated:
            log.warning("truncating name for station id '%s'. Orig name: %s", info.id, info.name)
            self.name = truncated_name
        self.lat = info.lat
        self.lon = info.lon
        self.start_time = _ms_to_seconds(info.start_time_ms)
        self.end_time = _ms_to_seconds(info.end_time_ms)
        self.cooldown_complete = info.cooldown_complete_ms
        self.is_battle_available = info.is_battle_available
        if info.battle_level is not None:
            self.battle_level = info.battle_level
            self.battle_start = _ms_to_seconds(info.battle_window_start_ms)
            self.battle_end = _ms_to_seconds(info.battle_window_end_ms)
            pokemon = info.battle_pokemon
            if pokemon is not None:
                self.battle_pokemon_id = pokemon.pokemon_id
                self.battle_pokemon_move_1 = pokemon.move1
                self.battle_pokemon_move_2 = pokemon.move2
                self.battle_pokemon_form = pokemon.form
                self.battle_pokemon_costume = pokemon.costume
                self.battle_pokemon_gender = pokemon.gender
                self.battle_pokemon_alignment = pokemon.alignment
                self.battle_pokemon_bread_mode = pokemon.bread_mode
                self.battle_pokemon_stamina = pokemon.stamina
                self.battle_pokemon_cp_multiplier = float(pokemon.cp_multiplier)
                if info.reward_pokemon_id is not None and info.reward_pokemon_id != pokemon.pokemon_id:
                    log.info("[DYNAMAX] Pokemon reward differs from battle: Battle %s - Reward %s",
                             pokemon.pokemon_id, info.reward_pokemon_id)
        self.cell_id = cell_id
        return self

    def update_stationed_pokemon(self, stationed: Iterable[StationedPokemon], total: int) -> "Station":
        """Record the Pokémon stationed here and the reported total."""
        details = [
            {
                "pokemon_id": p.pokemon_id,
                "form": p.form,
                "costume": p.costume,
                "gender": p.gender,
                "bread_mode": p.bread_mode,
            }
            for p in stationed
        ]
        gmax = sum(1 for p in details if p["bread_mode"] in (BREAD_DOUGH_MODE, BREAD_DOUGH_MODE_2))
        self.stationed_pokemon = json.dumps(details or None, separators=(",", ":"))
        self.total_stationed_pokemon = total
        self.total_stationed_gmax = gmax
        return self

    def reset_stationed_pokemon(self) -> "Station":
        """Clear the stationed Pokémon after the game reports the details missing."""
        self.stationed_pokemon = "[]"
        self.total_stationed_pokemon = 0
        self.total_stationed_gmax = 0
        return self


def _close(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=0.0, abs_tol=FLOAT_TOLERANCE)


def has_changes_station(old: Station, new: Station) -> bool:
    """Return whether two station records differ in a field that matters."""
    return (
        old.id != new.id
        or old.name != new.name
        or old.start_time != new.start_time
        or old.end_time != new.end_time
        or old.stationed_pokemon != new.stationed_pokemon
        or old.cooldown_complete != new.cooldown_complete
        or old.is_battle_available != new.is_battle_available
        or old.battle_level != new.battle_level
        or old.battle_start != new.battle_start
        or old.battle_end != new.battle_end
        or old.battle_pokemon_id != new.battle_pokemon_id
        or old.battle_pokemon_form != new.battle_pokemon_form
        or old.battle_pokemon_costume != new.battle_pokemon_costume
        or old.battle_pokemon_gender != new.battle_pokemon_gender
        or old.battle_pokemon_alignment != new.battle_pokemon_alignment
        or old.battle_pokemon_bread_mode != new.battle_pokemon_bread_mode
        or old.battle_pokemon_move_1 != new.battle_pokemon_move_1
        or old.battle_pokemon_move_2 != new.battle_pokemon_move_2
        or old.battle_pokemon_stamina != new.battle_pokemon_stamina
        or old.battle_pokemon_cp_multiplier != new.battle_pokemon_cp_multiplier
        or not _close(old.lat, new.lat)
        or not _close(old.lon, new.lon)
    )


class StationStore:
    """Cache of stations backed by optional load and write callables.

    The writer is called as ``writer(station, insert)``. Records fetched from
    the loader are not cached; only saved records are.
    """

    def __init__(
        self,
        loader: Optional[Callable[[str], Optional[Station]]] = None,
        writer: Optional[Callable[[Station, bool], None]] = None,
    ) -> None:
        self.loader = loader
        self.writer = writer
        self._cache: dict[str, Station] = {}
        self._lock = threading.RLock()

    def get(self, station_id: str) -> Optional[Station]:
        """Return a copy of the station, or None if it is unknown."""
        with self._lock:
            cached = self._cache.get(station_id)
            if cached is not None:
                return replace(cached)
            if self.loader is None:
                return None
            loaded = self.loader(station_id)
            return None if loaded is None else replace(loaded)

    def save(self, station: Station, now: int) -> bool:
        """Write the station unless unchanged and saved in the last 15 minutes.

        Returns whether the record was stored. A failed insert leaves nothing
        cached; a failed update is logged and the record is cached anyway.
        """
        with self._lock:
            try:
                old = self.get(station.id)
            except Exception as exc:
                log.error("loading station %s failed: %s", station.id, exc)
                old = None
            if old is not None and not has_changes_station(old, station):
                if old.updated > now - REFRESH_SECONDS:
                    return False
            station.updated = now
            if self.writer is not None:
                try:
                    self.writer(station, old is None)
                except Exception as exc:
                    if old is None:
                        log.error("insert station: %s", exc)
                        return False
                    log.error("update station %s", exc)
            self._cache[station.id] = replace(station)
            return True

    def _apply(self, station_id: str, change: Callable[[Station], object], now: int) -> str:
        with self._lock:
            try:
                station = self.get(station_id)
            except Exception as exc:
                log.error("get station %s", exc)
                return "Error getting station"
            if station is None:
                log.info("Stationed pokemon details for station %s not found", station_id)
                return f"Stationed pokemon details for station {station_id} not found"
            change(station)
            self.save(station, now)
            return f"StationedPokemonDetails {station_id}"

    def update_with_station_details(
        self, station_id: str, stationed: Iterable[StationedPokemon], total: int, now: int
    ) -> str:
        """Record stationed Pokémon for a known station; return a status message."""
        stationed = list(stationed)
        return self._apply(station_id, lambda s: s.update_stationed_pokemon(stationed, total), now)

    def reset_stationed_pokemon(self, station_id: str, now: int) -> str:
        """Clear stationed Pokémon for a known station; return a status message."""
        return self._apply(station_id, lambda s: s.reset_stationed_pokemon(), now)