"""Applying map sightings and encounters to Pokémon records.

Lookups of spawnpoints, pokestops and weather are left to the caller, which
passes in what it found: a despawn second, a stop location, a cell weather.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from mapdecoder.ditto import DittoDisguises, EncounterDetails, ScanRules, record_encounter
from mapdecoder.pokemon import (
    WEATHER_NONE,
    WEATHER_PARTLY_CLOUDY,
    Pokemon,
    PokemonDisplay,
    SeenType,
)
from mapdecoder.s2cell import cell_center, cell_id_from_lat_lng, midpoint

log = logging.getLogger(__name__)

ENCOUNTER_CELL_LEVEL = 15
TAPPABLE_LURE_SECONDS = 120

CpCalculator = Callable[[int, int, int, int, int, int, float], int]

_UINT64_MASK = (1 << 64) - 1


def _seconds(ms: int) -> int:
    """Milliseconds to seconds, truncating toward zero."""
    return -((-ms) // 1000) if ms < 0 else ms // 1000


def _to_int64(value: int) -> int:
    value &= _UINT64_MASK
    return value - (1 << 64) if value >= 1 << 63 else value


@dataclass(frozen=True)
class WildPokemon:
    """A wild Pokémon at an exact location."""

    encounter_id: int
    spawn_point_id: str
    latitude: float
    longitude: float
    pokemon_id: int
    display: PokemonDisplay = field(default_factory=PokemonDisplay)


@dataclass(frozen=True)
class MapPokemon:
    """A Pokémon sitting at a lured pokestop; ``spawnpoint_id`` is the stop's id."""

    encounter_id: int
    spawnpoint_id: str
    pokedex_type_id: int = 0
    display: Optional[PokemonDisplay] = None
    expiration_time_ms: int = 0


@dataclass(frozen=True)
class NearbyPokemon:
    """A Pokémon known only to be near a pokestop (``fort_id``) or within a cell."""

    pokedex_number: int
    display: PokemonDisplay = field(default_factory=PokemonDisplay)
    fort_id: str = ""


@dataclass(frozen=True)
class StopLocation:
    """A known pokestop's id and position."""

    id: str
    lat: float
    lon: float


@dataclass(frozen=True)
class TappableRequest:
    """The request that revealed a tappable Pokémon."""

    encounter_id: int
    location_hint_lat: float
    location_hint_lng: float
    spawnpoint_id: str = ""
    fort_id: str = ""


def wild_significant_update(pokemon: Pokemon, wild: WildPokemon, now: int) -> bool:
    """Return whether a wild sighting differs enough from the record to be written."""
    display = wild.display
    return (
        pokemon.seen_type in (SeenType.CELL, SeenType.NEARBY_STOP)
        or pokemon.pokemon_id != wild.pokemon_id
        or (pokemon.form or 0) != display.form
        or (pokemon.weather or 0) != display.weather_boosted_condition
        or (pokemon.costume or 0) != display.costume
        or (pokemon.gender or 0) != display.gender
        or (not pokemon.expire_timestamp_verified and (pokemon.expire_timestamp or 0) < now)
    )


def _add_wild_pokemon(pokemon: Pokemon, wild: WildPokemon, despawn_sec: Optional[int],
                      timestamp_ms: int, trustworthy: bool) -> None:
    if wild.encounter_id != pokemon.id:
        raise ValueError(f"unmatched encounter id {wild.encounter_id} for pokemon {pokemon.id}")
    pokemon.lat = wild.latitude
    pokemon.lon = wild.longitude
    pokemon.spawn_id = int(wild.spawn_point_id, 16)
    pokemon.set_expire_timestamp_from_spawnpoint(despawn_sec, timestamp_ms, trustworthy)
    pokemon.set_pokemon_display(wild.pokemon_id, wild.display)


def update_from_wild(pokemon: Pokemon, wild: WildPokemon, cell_id: int, timestamp_ms: int,
                     username: str, despawn_sec: Optional[int]) -> None:
    """Apply a wild sighting; ``despawn_sec`` is the spawnpoint's, if known.

    Raises ValueError if the encounter id does not match or the spawnpoint id
    is not hexadecimal.
    """
    pokemon.is_event = 0
    if pokemon.seen_type in (None, SeenType.CELL, SeenType.NEARBY_STOP):
        pokemon.seen_type = SeenType.WILD
    _add_wild_pokemon(pokemon, wild, despawn_sec, timestamp_ms, True)
    pokemon.username = username
    pokemon.cell_id = cell_id


def update_from_map(pokemon: Pokemon, sighting: MapPokemon, stop: Optional[StopLocation],
                    cell_id: int, timestamp_ms: int, username: str) -> None:
    """Apply a lure sighting to a record never saved before.

    ``stop`` is the lured pokestop; an unknown stop leaves the record as it is.
    """
    if not pokemon.is_new_record():
        # lure details are never overwritten by seeing the Pokémon again
        return
    pokemon.is_event = 0
    pokemon.id = sighting.encounter_id
    if stop is None:
        return
    pokemon.pokestop_id = stop.id
    pokemon.lat = stop.lat
    pokemon.lon = stop.lon
    pokemon.seen_type = SeenType.LURE_WILD

    if sighting.display is not None:
        pokemon.set_pokemon_display(sighting.pokedex_type_id, sighting.display)
    else:
        log.warning("[POKEMON] map sighting missing display for %d", pokemon.id)
    if pokemon.username is None:
        pokemon.username = username

    if sighting.expiration_time_ms > 0 and not pokemon.expire_timestamp_verified:
        pokemon.expire_timestamp = _seconds(sighting.expiration_time_ms)
        pokemon.expire_timestamp_verified = True
    else:
        pokemon.expire_timestamp_verified = False
    pokemon.cell_id = cell_id


def update_from_nearby(pokemon: Pokemon, sighting: NearbyPokemon, stop: Optional[StopLocation],
                       cell_id: int, timestamp_ms: int, username: str) -> None:
    """Apply a nearby sighting; ``stop`` is the pokestop named by ``fort_id``, if known.

    A better location is never downgraded: a wild record stays where it is, and
    a stop sighting is never replaced by a cell one.
    """
    pokemon.is_event = 0
    pokemon.set_pokemon_display(sighting.pokedex_number, sighting.display)
    pokemon.username = username

    lat = lon = 0.0
    override = pokemon.is_new_record()
    use_cell = True
    if sighting.fort_id:
        if pokemon.seen_type in (None, SeenType.CELL):
            override = True  # a better estimate is available
        elif pokemon.seen_type != SeenType.NEARBY_STOP:
            return
        if stop is None:
            override = pokemon.is_new_record()
        else:
            pokemon.seen_type = SeenType.NEARBY_STOP
            pokemon.pokestop_id = sighting.fort_id
            lat, lon = stop.lat, stop.lon
            use_cell = False
    if use_cell:
        if not override and pokemon.seen_type != SeenType.CELL:
            return
        lat, lon = cell_center(cell_id & _UINT64_MASK)
        pokemon.seen_type = SeenType.CELL
    if override:
        pokemon.lat, pokemon.lon = lat, lon
    else:
        pokemon.lat, pokemon.lon = midpoint(pokemon.lat, pokemon.lon, lat, lon)
    pokemon.cell_id = cell_id
    pokemon.set_unknown_timestamp(_seconds(timestamp_ms))


def update_from_encounter(pokemon: Pokemon, wild: WildPokemon, encounter: EncounterDetails,
                          timestamp_ms: int, despawn_sec: Optional[int],
                          cell_weather: Optional[int], username: str,
                          disguises: DittoDisguises, rules: Optional[ScanRules] = None) -> None:
    """Apply a wild encounter, recording its IVs and checking for Ditto.

    Raises ValueError if the encounter id does not match or the spawnpoint id
    is not hexadecimal.
    """
    pokemon.is_event = 0
    _add_wild_pokemon(pokemon, wild, despawn_sec, timestamp_ms, False)
    if pokemon.seen_type not in (SeenType.TAPPABLE_ENCOUNTER, SeenType.TAPPABLE_LURE_ENCOUNTER):
        pokemon.seen_type = SeenType.ENCOUNTER
    record_encounter(pokemon, replace(encounter, username=username), cell_weather, disguises, rules)
    if pokemon.cell_id is None:
        cell = cell_id_from_lat_lng(pokemon.lat, pokemon.lon, ENCOUNTER_CELL_LEVEL)
        pokemon.cell_id = _to_int64(cell)


def update_from_disk_encounter(pokemon: Pokemon, pokemon_id: int, encounter: EncounterDetails,
                               cell_weather: Optional[int], username: str,
                               disguises: DittoDisguises,
                               rules: Optional[ScanRules] = None) -> None:
    """Apply an encounter at a lure; ``pokemon_id`` is the species shown."""
    pokemon.is_event = 0
    pokemon.set_pokemon_display(pokemon_id, encounter.display)
    pokemon.seen_type = SeenType.LURE_ENCOUNTER
    record_encounter(pokemon, replace(encounter, username=username), cell_weather, disguises, rules)


def update_from_tappable(pokemon: Pokemon, request: TappableRequest, encounter: EncounterDetails,
                         timestamp_ms: int, despawn_sec: Optional[int],
                         cell_weather: Optional[int], username: str,
                         disguises: DittoDisguises, rules: Optional[ScanRules] = None) -> None:
    """Apply a tappable encounter at a spawnpoint or a pokestop.

    Raises ValueError if the spawnpoint id is not hexadecimal.
    """
    pokemon.is_event = 0
    pokemon.lat = request.location_hint_lat
    pokemon.lon = request.location_hint_lng

    if request.spawnpoint_id:
        pokemon.seen_type = SeenType.TAPPABLE_ENCOUNTER
        pokemon.spawn_id = int(request.spawnpoint_id, 16)
        pokemon.set_expire_timestamp_from_spawnpoint(despawn_sec, timestamp_ms, False)
    elif request.fort_id:
        pokemon.seen_type = SeenType.TAPPABLE_LURE_ENCOUNTER
        pokemon.pokestop_id = request.fort_id
        # despawn times of fort tappables are unknown
        pokemon.expire_timestamp = _seconds(timestamp_ms) + TAPPABLE_LURE_SECONDS
        pokemon.expire_timestamp_verified = False
    if pokemon.username is None:
        pokemon.username = username
    pokemon.set_pokemon_display(encounter.pokemon_id, encounter.display)
    record_encounter(pokemon, replace(encounter, username=username), cell_weather, disguises, rules)


def recompute_cp(pokemon: Pokemon, cell_weather: Optional[int],
                 calculate_cp: Optional[CpCalculator]) -> Optional[int]:
    """Fill in a missing CP from the known IVs and level; return the CP.

    ``calculate_cp(pokemon_id, form, costume, attack, defense, stamina, level)``
    does the arithmetic; a failure leaves CP unset. For an unboosted Ditto in
    partly cloudy weather (``cell_weather``), the boosted IVs it shows are used.
    """
    if pokemon.cp is not None or calculate_cp is None:
        return pokemon.cp
    should_override = False
    override = None
    if pokemon.is_ditto:
        display_pokemon = pokemon.display_pokemon_id or 0
        if (pokemon.weather or 0) == WEATHER_NONE:
            if cell_weather is None:
                log.warning("[POKEMON] Failed to obtain weather for Pokemon %d", pokemon.id)
            elif cell_weather == WEATHER_PARTLY_CLOUDY:
                should_override = True
                scan, boost_matches = pokemon.locate_scan(False, False)
                if scan is not None and boost_matches:
                    override = scan
    else:
        display_pokemon = pokemon.pokemon_id

    form = pokemon.form or 0
    try:
        if should_override:
            if override is None:
                return None
            cp = calculate_cp(display_pokemon, form, 0, override.attack, override.defense,
                              override.stamina, float(override.level))
        else:
            if pokemon.atk_iv is None or pokemon.level is None:
                return None
            cp = calculate_cp(display_pokemon, form, 0, pokemon.atk_iv, pokemon.def_iv or 0,
                              pokemon.sta_iv or 0, float(pokemon.level))
    except Exception as exc:
        log.warning("Pokemon %d %d CP unset due to error %s", pokemon.id, display_pokemon, exc)
        return None
    pokemon.cp = int(cp)
    return pokemon.cp