"""Pokémon records: display changes, IV bookkeeping and expiry estimates."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from mapdecoder.spawnpoint import second_of_hour

log = logging.getLogger(__name__)

FLOAT_TOLERANCE = 1e-6

WEATHER_NONE = 0
WEATHER_PARTLY_CLOUDY = 3
DITTO_POKEMON_ID = 132

UNKNOWN_EXPIRY_SECONDS = 20 * 60
EXTENDED_EXPIRY_SECONDS = 10 * 60
VERIFIED_GRACE_SECONDS = 60
WEATHER_LEVEL_BOOST = 5


class SeenType(str, Enum):
    """How a Pokémon was last seen."""

    CELL = "nearby_cell"
    NEARBY_STOP = "nearby_stop"
    WILD = "wild"
    ENCOUNTER = "encounter"
    LURE_WILD = "lure_wild"
    LURE_ENCOUNTER = "lure_encounter"
    TAPPABLE_ENCOUNTER = "tappable_encounter"
    TAPPABLE_LURE_ENCOUNTER = "tappable_lure_encounter"


@dataclass(frozen=True)
class PokemonDisplay:
    """How the game displays a Pokémon."""

    form: int = 0
    costume: int = 0
    gender: int = 0
    weather_boosted_condition: int = WEATHER_NONE
    is_strong_pokemon: bool = False
    shiny: bool = False


@dataclass
class PokemonScan:
    """One encounter's IVs and level, as kept in a Pokémon's scan history."""

    weather: int = WEATHER_NONE
    strong: bool = False
    attack: int = 0
    defense: int = 0
    stamina: int = 0
    cell_weather: int = WEATHER_NONE
    pokemon: int = 0
    costume: int = 0
    gender: int = 0
    form: int = 0
    level: int = 0
    confirmed: bool = False

    @property
    def iv(self) -> tuple[int, int, int]:
        """The (attack, defense, stamina) triple."""
        return self.attack, self.defense, self.stamina

    @property
    def is_boosted(self) -> bool:
        return self.weather != WEATHER_NONE


@dataclass
class Pokemon:
    """A Pokémon record.

    ``first_seen_timestamp`` of 0 marks a record that was never saved.
    ``scan_history`` holds the encounters used to reason about weather and Ditto.
    """

    id: int = 0
    pokestop_id: Optional[str] = None
    spawn_id: Optional[int] = None
    lat: float = 0.0
    lon: float = 0.0
    weight: Optional[float] = None
    size: Optional[int] = None
    height: Optional[float] = None
    expire_timestamp: Optional[int] = None
    updated: Optional[int] = None
    pokemon_id: int = 0
    move1: Optional[int] = None
    move2: Optional[int] = None
    gender: Optional[int] = None
    cp: Optional[int] = None
    atk_iv: Optional[int] = None
    def_iv: Optional[int] = None
    sta_iv: Optional[int] = None
    iv: Optional[float] = None
    form: Optional[int] = None
    level: Optional[int] = None
    is_strong: Optional[bool] = None
    weather: Optional[int] = None
    costume: Optional[int] = None
    first_seen_timestamp: int = 0
    changed: int = 0
    cell_id: Optional[int] = None
    expire_timestamp_verified: bool = False
    display_pokemon_id: Optional[int] = None
    is_ditto: bool = False
    seen_type: Optional[SeenType] = None
    shiny: Optional[bool] = None
    username: Optional[str] = None
    capture1: Optional[float] = None
    capture2: Optional[float] = None
    capture3: Optional[float] = None
    pvp: Optional[str] = None
    is_event: int = 0
    scan_history: list[PokemonScan] = field(default_factory=list)

    def is_new_record(self) -> bool:
        """Return whether this record has never been saved."""
        return self.first_seen_timestamp == 0

    def remaining_duration(self, now: int, default: Optional[float] = None) -> Optional[float]:
        """Seconds to keep this record cached: until a minute past a verified expiry, else ``default``."""
        if self.expire_timestamp_verified:
            time_left = VERIFIED_GRACE_SECONDS + (self.expire_timestamp or 0) - now
            if time_left > 1:
                return time_left
        return default

    def calculate_iv(self, attack: int, defense: int, stamina: int) -> None:
        """Set the three IVs and the IV percentage."""
        self.atk_iv = attack
        self.def_iv = defense
        self.sta_iv = stamina
        self.iv = (attack + defense + stamina) / 0.45

    def clear_iv(self, cp: bool) -> None:
        """Forget the IVs; with ``cp`` also forget CP and PvP and downgrade the seen type."""
        self.atk_iv = None
        self.def_iv = None
        self.sta_iv = None
        self.iv = None
        if cp:
            if self.seen_type == SeenType.LURE_ENCOUNTER:
                self.seen_type = SeenType.LURE_WILD
            elif self.seen_type == SeenType.ENCOUNTER:
                self.seen_type = SeenType.WILD
            self.cp = None
            self.pvp = None

    def set_unknown_timestamp(self, now: int) -> None:
        """Guess an expiry when the real one is unknown or has passed."""
        if self.expire_timestamp is None:
            self.expire_timestamp = now + UNKNOWN_EXPIRY_SECONDS
        elif self.expire_timestamp < now:
            self.expire_timestamp = now + EXTENDED_EXPIRY_SECONDS

    def set_expire_timestamp_from_spawnpoint(
        self, despawn_sec: Optional[int], timestamp_ms: int, trustworthy: bool
    ) -> None:
        """Set the expiry from the spawnpoint's despawn second of the hour.

        An untrustworthy timestamp never overrides an already verified expiry.
        Without a known despawn second, an expiry is guessed.
        """
        if not trustworthy and self.expire_timestamp_verified:
            return
        if not self.spawn_id:
            return
        self.expire_timestamp_verified = False
        now = int(timestamp_ms / 1000)
        if despawn_sec is not None:
            offset = despawn_sec - second_of_hour(now)
            if offset < 0:
                offset += 3600
            self.expire_timestamp = now + offset
            self.expire_timestamp_verified = True
        else:
            self.set_unknown_timestamp(now)

    def set_pokemon_display(self, pokemon_id: int, display: PokemonDisplay) -> None:
        """Apply species and display; a changed appearance discards encounter details."""
        if not self.is_new_record():
            old_id = (self.display_pokemon_id or 0) if self.is_ditto else self.pokemon_id
            if (
                old_id != pokemon_id
                or self.form != display.form
                or self.costume != display.costume
                or self.gender != display.gender
                or bool(self.is_strong) != display.is_strong_pokemon
            ):
                log.debug(
                    "Pokemon %d changed from (%d,%d,%d,%d,%s) to (%d,%d,%d,%d,%s)",
                    self.id, old_id, self.form or 0, self.costume or 0, self.gender or 0,
                    bool(self.is_strong), pokemon_id, display.form, display.costume,
                    display.gender, display.is_strong_pokemon,
                )
                self.weight = None
                self.height = None
                self.size = None
                self.move1 = None
                self.move2 = None
                self.cp = None
                self.shiny = None
                self.is_ditto = False
                self.display_pokemon_id = None
                self.pvp = None
        if self.is_new_record() or not self.is_ditto:
            self.pokemon_id = pokemon_id
        self.gender = display.gender
        self.form = display.form
        self.costume = display.costume
        if not self.is_new_record():
            self.repopulate_iv(display.weather_boosted_condition, display.is_strong_pokemon)
        self.weather = display.weather_boosted_condition
        self.is_strong = display.is_strong_pokemon

    def repopulate_iv(self, weather: int, is_strong: bool) -> None:
        """Pick IVs and level from the scan history to suit a new weather or strength."""
        if not self.is_ditto:
            is_boosted = weather != WEATHER_NONE
            current_boosted = (self.weather or 0) != WEATHER_NONE
            if is_strong == bool(self.is_strong) and current_boosted == is_boosted:
                return
        elif is_strong:
            log.error("Strong Ditto cannot be handled: %d", self.id)
            self.clear_iv(True)
            return
        else:
            is_boosted = weather == WEATHER_PARTLY_CLOUDY
            if ((self.weather or 0) == WEATHER_PARTLY_CLOUDY) == is_boosted:
                return

        matching, boost_matches = self.locate_scan(is_strong, is_boosted)
        if matching is None:
            self.level = None
            self.clear_iv(True)
            return

        old_level = self.level or 0
        if self.atk_iv is not None:
            old_iv = (self.atk_iv, self.def_iv, self.sta_iv)
        else:
            old_iv = (-1, -1, -1)
        level = matching.level
        if boost_matches or is_strong:
            self.calculate_iv(matching.attack, matching.defense, matching.stamina)
            if self.seen_type == SeenType.LURE_WILD:
                self.seen_type = SeenType.LURE_ENCOUNTER
            elif self.seen_type == SeenType.WILD:
                self.seen_type = SeenType.ENCOUNTER
        else:
            self.clear_iv(True)
        if not boost_matches:
            level += WEATHER_LEVEL_BOOST if is_boosted else -WEATHER_LEVEL_BOOST
        self.level = level
        if level != old_level or (
            self.atk_iv is not None and (self.atk_iv, self.def_iv, self.sta_iv) != old_iv
        ):
            self.cp = None
            self.pvp = None

    def locate_scan(self, is_strong: bool, is_boosted: bool) -> tuple[Optional[PokemonScan], bool]:
        """Find a scan of the given strength, preferring one with the given boost.

        Returns the scan and whether its boost matched.
        """
        best: Optional[PokemonScan] = None
        for entry in self.scan_history:
            if entry.strong != is_strong:
                continue
            if entry.is_boosted == is_boosted:
                return entry, True
            best = entry
        return best, False

    def locate_all_scans(
        self,
    ) -> tuple[Optional[PokemonScan], Optional[PokemonScan], Optional[PokemonScan]]:
        """Return the latest (unboosted, boosted, strong) scans in the history."""
        unboosted = boosted = strong = None
        for entry in self.scan_history:
            if entry.strong:
                strong = entry
            elif entry.is_boosted:
                boosted = entry
            else:
                unboosted = entry
        return unboosted, boosted, strong


def _close(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=0.0, abs_tol=FLOAT_TOLERANCE)


def _close_optional(a: Optional[float], b: Optional[float]) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return _close(a, b)


def has_changes_pokemon(old: Pokemon, new: Pokemon) -> bool:
    """Return whether two records differ in a stored field that matters.

    Username, IV percentage and PvP are ignored; coordinates, weight, height
    and capture rates are compared with a small tolerance.
    """
    exact = (
        "id", "pokestop_id", "spawn_id", "size", "expire_timestamp", "updated",
        "pokemon_id", "move1", "move2", "gender", "cp", "atk_iv", "def_iv", "sta_iv",
        "form", "level", "is_strong", "weather", "costume", "first_seen_timestamp",
        "changed", "cell_id", "expire_timestamp_verified", "display_pokemon_id",
        "is_ditto", "seen_type", "shiny", "is_event",
    )
    if any(getattr(old, name) != getattr(new, name) for name in exact):
        return True
    if not _close(old.lat, new.lat) or not _close(old.lon, new.lon):
        return True
    return not all(
        _close_optional(getattr(old, name), getattr(new, name))
        for name in ("weight", "height", "capture1", "capture2", "capture3")
    )