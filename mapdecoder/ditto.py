"""Ditto detection from successive encounters of the same Pokémon.

A Ditto disguises itself as another species. Its level and IVs follow the
weather boost of Ditto itself (boosted only by partly cloudy weather), not
that of the disguise, so comparing encounters taken under different weather
reveals it. Four weather states are distinguished:

- 00: no weather boost
- 0P: disguise unboosted but Ditto boosted by partly cloudy weather
- B0: weather boosts the disguise but not Ditto
- PP: partly cloudy boosts both disguise and Ditto

0N/BN/PN denote a normal spawn under the corresponding weather.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from mapdecoder.pokemon import (
    DITTO_POKEMON_ID,
    WEATHER_LEVEL_BOOST,
    WEATHER_NONE,
    WEATHER_PARTLY_CLOUDY,
    Pokemon,
    PokemonDisplay,
    PokemonScan,
)

log = logging.getLogger(__name__)


class DittoError(Exception):
    """An encounter contradicts the scan history; the history should be cleared."""


def _never(*_scans: PokemonScan) -> bool:
    return False


@dataclass(frozen=True)
class ScanRules:
    """Judgements about a scan that the detector relies on.

    ``must_be_boosted(scan)`` and ``must_be_unboosted(scan)`` tell whether a
    scan's IVs or level prove its weather boost; ``must_have_rerolled(scan,
    previous)`` tells whether the spawn must have changed between two scans.
    Unset rules claim nothing is certain.
    """

    must_be_boosted: Callable[[PokemonScan], bool] = field(default=_never)
    must_be_unboosted: Callable[[PokemonScan], bool] = field(default=_never)
    must_have_rerolled: Callable[[PokemonScan, PokemonScan], bool] = field(default=_never)


class DittoDisguises:
    """The species recently confirmed as Ditto disguises, with when each was last seen."""

    def __init__(self) -> None:
        self._last_seen: dict[int, float] = {}
        self._lock = threading.Lock()

    def confirm(self, pokemon_id: int, now: Optional[float] = None) -> Optional[float]:
        """Record a disguise as seen at ``now``; return when it was seen before, if ever."""
        if now is None:
            now = time.time()
        with self._lock:
            previous = self._last_seen.get(pokemon_id)
            self._last_seen[pokemon_id] = now
            snapshot = dict(self._last_seen)
        if previous is not None:
            log.debug("[DITTO] Disguise %d reseen after %.0fs", pokemon_id, now - previous)
        else:
            current = " ".join(f"{pid} ({now - seen:.0f}s)" for pid, seen in snapshot.items())
            log.info("[DITTO] New disguise %d found. Current disguises %s", pokemon_id, current)
        return previous

    def seen(self, pokemon_id: int) -> bool:
        """Return whether this species has been confirmed as a disguise."""
        with self._lock:
            return pokemon_id in self._last_seen


@dataclass(frozen=True)
class EncounterDetails:
    """What an encounter reveals about a Pokémon.

    ``username``, when given, replaces the record's username.
    """

    pokemon_id: int
    display: PokemonDisplay = field(default_factory=PokemonDisplay)
    cp: int = 0
    move1: int = 0
    move2: int = 0
    height_m: float = 0.0
    weight_kg: float = 0.0
    size: int = 0
    individual_attack: int = 0
    individual_defense: int = 0
    individual_stamina: int = 0
    cp_multiplier: float = 0.0
    username: Optional[str] = None


def check_scans(old: Optional[PokemonScan], new: PokemonScan) -> None:
    """Raise DittoError if a previous scan disagrees with the new one on IVs."""
    if old is None or old.iv == new.iv:
        return
    raise DittoError(f"Unexpected IV mismatch {old} != {new}")


def cp_multiplier_to_level(cp_multiplier: float) -> int:
    """Return the whole Pokémon level for a CP multiplier."""
    if cp_multiplier < 0.734:
        value = (58.215688455154954 * cp_multiplier - 2.7012478057856497) * cp_multiplier \
            + 1.3220677708486794
    elif cp_multiplier < 0.795:
        value = 171.34093607855277 * cp_multiplier - 94.95626666368578
    else:
        value = 199.99995231630976 * cp_multiplier - 117.55996066890287
    return int(value)


def _set_ditto(pokemon: Pokemon, mode: str, is_ditto: bool,
               old: Optional[PokemonScan], new: PokemonScan) -> None:
    if is_ditto:
        log.debug("[POKEMON] %d: %s Ditto found %s -> %s", pokemon.id, mode, old, new)
        pokemon.is_ditto = True
        pokemon.display_pokemon_id = pokemon.pokemon_id
        pokemon.pokemon_id = DITTO_POKEMON_ID
    else:
        log.debug("[POKEMON] %d: %s not Ditto found %s -> %s", pokemon.id, mode, old, new)


def _reset_ditto(pokemon: Pokemon, mode: str, old: Optional[PokemonScan],
                 aux: Optional[PokemonScan], new: PokemonScan) -> None:
    log.debug("[POKEMON] %d: %s Ditto was reset %s (%s) -> %s", pokemon.id, mode, old, aux, new)
    pokemon.is_ditto = False
    pokemon.display_pokemon_id = None
    pokemon.pokemon_id = 0


def _detect_known_ditto(pokemon: Pokemon, scan: PokemonScan,
                        unboosted: Optional[PokemonScan],
                        boosted: Optional[PokemonScan]) -> Optional[PokemonScan]:
    if boosted is not None:
        unboosted_level = boosted.level - WEATHER_LEVEL_BOOST
    elif unboosted is not None:
        unboosted_level = unboosted.level
    else:
        _reset_ditto(pokemon, "?", None, None, scan)
        raise DittoError("Missing past scans. Ditto will be reset")
    # scans kept for a known Ditto are always confirmed
    scan.confirmed = True
    if scan.weather == WEATHER_NONE:
        if scan.cell_weather == WEATHER_PARTLY_CLOUDY:
            if scan.level == unboosted_level:
                _reset_ditto(pokemon, "0N", unboosted, boosted, scan)
                check_scans(unboosted, scan)
                return scan
            if scan.level == unboosted_level + WEATHER_LEVEL_BOOST:
                # a 0P Ditto shows the same IVs as when boosted
                scan.weather = WEATHER_PARTLY_CLOUDY
                check_scans(boosted, scan)
                return unboosted
            raise DittoError(f"Unexpected 0P Ditto level change, {unboosted}/{boosted} -> {scan}")
        check_scans(unboosted, scan)
        return scan
    if scan.weather == WEATHER_PARTLY_CLOUDY:
        check_scans(boosted, scan)
        return scan
    if scan.level == unboosted_level:
        scan.weather = WEATHER_NONE
        check_scans(unboosted, scan)
        return scan
    if scan.level == unboosted_level + WEATHER_LEVEL_BOOST:
        _reset_ditto(pokemon, "BN", boosted, unboosted, scan)
        check_scans(boosted, scan)
        return scan
    raise DittoError(f"Unexpected B0 Ditto level change, {unboosted}/{boosted} -> {scan}")


def detect_ditto(pokemon: Pokemon, scan: PokemonScan,
                 disguises: DittoDisguises,
                 rules: Optional[ScanRules] = None) -> Optional[PokemonScan]:
    """Return the scan whose IVs and level a caught Pokémon would have.

    May update ``pokemon``'s Ditto attributes and the weather of ``scan`` and
    of scans in its history. None means a 0P Ditto whose unboosted IVs are
    unknown. Raises DittoError when the history contradicts the new scan.
    """
    rules = rules or ScanRules()
    unboosted, boosted, strong = pokemon.locate_all_scans()

    if scan.strong:
        if strong is not None:
            expected = strong.level
            is_boosted = scan.is_boosted
            if strong.is_boosted != is_boosted:
                expected += WEATHER_LEVEL_BOOST if is_boosted else -WEATHER_LEVEL_BOOST
            if scan.level != expected or scan.iv != strong.iv:
                raise DittoError(f"Unexpected strong Pokemon (Ditto?), {strong} -> {scan}")
        return scan

    if pokemon.is_ditto:
        return _detect_known_ditto(pokemon, scan, unboosted, boosted)

    is_boosted = scan.is_boosted
    matching: Optional[PokemonScan] = None
    if unboosted is not None or boosted is not None:
        if unboosted is not None and boosted is not None:
            # with both IV sets known they must be correct
            if unboosted.level == scan.level:
                if is_boosted:
                    _set_ditto(pokemon, ">B0", True, unboosted, scan)
                    disguises.confirm(scan.pokemon)
                    scan.weather = WEATHER_NONE
                    return scan
                check_scans(unboosted, scan)
                return scan
            if boosted.level == scan.level:
                if is_boosted:
                    check_scans(boosted, scan)
                    return scan
                _set_ditto(pokemon, ">0P", True, boosted, scan)
                disguises.confirm(scan.pokemon)
                scan.weather = WEATHER_PARTLY_CLOUDY
                return unboosted
            raise DittoError(f"Unexpected third level found {unboosted}, {boosted} vs {scan}")

        adjustment = 0
        if is_boosted:
            if boosted is not None:
                matching = boosted
            else:
                matching = unboosted
                adjustment = WEATHER_LEVEL_BOOST
        else:
            if unboosted is not None:
                matching = unboosted
            else:
                matching = boosted
                adjustment = -WEATHER_LEVEL_BOOST
        assert matching is not None

        # A Ditto in 00/PP state is undetectable; the other transitions are handled here.
        difference = scan.level - (matching.level + adjustment)
        if difference == 5:
            return _level_rose(pokemon, scan, matching, unboosted, disguises, rules)
        if difference == -5:
            return _level_fell(pokemon, scan, matching, disguises, rules)
        if difference == 10:
            _set_ditto(pokemon, "B0>0P", True, matching, scan)
            disguises.confirm(scan.pokemon)
            matching.weather = WEATHER_NONE
            scan.weather = WEATHER_PARTLY_CLOUDY
            return matching  # the unboosted guess was wrong
        if difference == -10:
            _set_ditto(pokemon, "0P>B0", True, matching, scan)
            disguises.confirm(scan.pokemon)
            matching.weather = WEATHER_PARTLY_CLOUDY
            scan.weather = WEATHER_NONE
            return scan
        if difference != 0:
            raise DittoError(f"Unexpected level {matching} -> {scan}")

    if is_boosted:
        if rules.must_be_unboosted(scan):
            _set_ditto(pokemon, "B0", True, matching, scan)
            disguises.confirm(scan.pokemon)
            scan.weather = WEATHER_NONE
            scan.confirmed = True
            check_scans(unboosted, scan)
            return scan
        scan.confirmed = rules.must_be_boosted(scan)
        check_scans(boosted, scan)
        return scan
    if rules.must_be_boosted(scan):
        _set_ditto(pokemon, "0P", True, matching, scan)
        disguises.confirm(scan.pokemon)
        scan.weather = WEATHER_PARTLY_CLOUDY
        scan.confirmed = True
        check_scans(boosted, scan)
        return unboosted
    scan.confirmed = rules.must_be_unboosted(scan)
    check_scans(unboosted, scan)
    return scan


def _level_rose(pokemon: Pokemon, scan: PokemonScan, matching: PokemonScan,
                unboosted: Optional[PokemonScan], disguises: DittoDisguises,
                rules: ScanRules) -> Optional[PokemonScan]:
    if scan.weather == WEATHER_NONE:
        if matching.weather == WEATHER_NONE:
            _set_ditto(pokemon, "00/0N>0P", True, matching, scan)
            disguises.confirm(scan.pokemon)
            scan.weather = WEATHER_PARTLY_CLOUDY
            return unboosted
        if matching.weather == WEATHER_PARTLY_CLOUDY:
            check_scans(matching, scan)
            _set_ditto(pokemon, "PN>0P", True, matching, scan)
            disguises.confirm(scan.pokemon)
            scan.weather = WEATHER_PARTLY_CLOUDY
            scan.confirmed = True
            return unboosted
        check_scans(matching, scan)
        if scan.cell_weather != WEATHER_PARTLY_CLOUDY:
            if rules.must_have_rerolled(scan, matching):
                _set_ditto(pokemon, "B0>00/[0N]", False, matching, scan)
            else:
                # most likely B0>00 if the species did not reroll
                _set_ditto(pokemon, "B0>[00]/0N", True, matching, scan)
            scan.confirmed = True
        elif matching.confirmed or rules.must_be_boosted(scan):
            _set_ditto(pokemon, "BN>0P", True, matching, scan)
            disguises.confirm(scan.pokemon)
            scan.weather = WEATHER_PARTLY_CLOUDY
            scan.confirmed = True
            return unboosted
        else:
            # guess a hidden 0P state only when the disguise pool makes it likely
            if disguises.seen(scan.pokemon) and not disguises.seen(matching.pokemon):
                _set_ditto(pokemon, "BN>[0P] or B0>0N", True, matching, scan)
                scan.weather = WEATHER_PARTLY_CLOUDY
                return unboosted
            _set_ditto(pokemon, "BN>0P or B0>[0N]", False, matching, scan)
        matching.weather = WEATHER_NONE
    elif scan.weather == WEATHER_PARTLY_CLOUDY:
        # a Ditto and a reroll into a non-Ditto cannot be told apart
        if rules.must_have_rerolled(scan, matching):
            _set_ditto(pokemon, "B0>PP/[PN]", False, matching, scan)
        else:
            _set_ditto(pokemon, "B0>[PP]/PN", True, matching, scan)
        matching.weather = WEATHER_NONE
    else:
        _set_ditto(pokemon, "B0>BN", False, matching, scan)
        matching.weather = WEATHER_NONE
    return scan


def _level_fell(pokemon: Pokemon, scan: PokemonScan, matching: PokemonScan,
                disguises: DittoDisguises, rules: ScanRules) -> Optional[PokemonScan]:
    if scan.weather == WEATHER_NONE:
        if rules.must_have_rerolled(scan, matching):
            _set_ditto(pokemon, "0P>00/[0N]", False, matching, scan)
        else:
            _set_ditto(pokemon, "0P>[00]/0N", True, matching, scan)
        matching.weather = WEATHER_PARTLY_CLOUDY
        return scan
    if scan.weather == WEATHER_PARTLY_CLOUDY:
        _set_ditto(pokemon, "0P>PN", False, matching, scan)
        matching.weather = WEATHER_PARTLY_CLOUDY
        scan.confirmed = True
        check_scans(matching, scan)
        return scan
    if matching.weather != WEATHER_NONE:
        _set_ditto(pokemon, "BN/PP/PN>B0", True, matching, scan)
        disguises.confirm(scan.pokemon)
        scan.weather = WEATHER_NONE
        return scan
    check_scans(matching, scan)
    if rules.must_be_boosted(scan):
        _set_ditto(pokemon, "0P>BN", False, matching, scan)
        matching.weather = WEATHER_PARTLY_CLOUDY
        scan.confirmed = True
    elif matching.confirmed or matching.cell_weather != WEATHER_PARTLY_CLOUDY:
        _set_ditto(pokemon, "00/0N>B0", True, matching, scan)
        disguises.confirm(scan.pokemon)
        scan.weather = WEATHER_NONE
        scan.confirmed = True
    else:
        if disguises.seen(scan.pokemon) and not disguises.seen(matching.pokemon):
            _set_ditto(pokemon, "0N>[B0] or 0P>BN", True, matching, scan)
            scan.weather = WEATHER_NONE
            return scan
        _set_ditto(pokemon, "0N>B0 or 0P>[BN]", False, matching, scan)
        matching.weather = WEATHER_PARTLY_CLOUDY
    return scan


def record_encounter(pokemon: Pokemon, encounter: EncounterDetails,
                     cell_weather: Optional[int], disguises: DittoDisguises,
                     rules: Optional[ScanRules] = None) -> None:
    """Apply an encounter to the record and its scan history.

    The display must already have been applied to ``pokemon``. ``cell_weather``
    is the weather of the Pokémon's weather cell, used when the display shows
    no boost; None when it is unknown.
    """
    display = encounter.display
    if encounter.username is not None:
        pokemon.username = encounter.username
    pokemon.shiny = display.shiny
    pokemon.cp = encounter.cp
    pokemon.move1 = encounter.move1
    pokemon.move2 = encounter.move2
    pokemon.height = float(encounter.height_m)
    pokemon.size = encounter.size
    pokemon.weight = float(encounter.weight_kg)

    weather = pokemon.weather or 0
    scan = PokemonScan(
        weather=weather,
        strong=bool(pokemon.is_strong),
        attack=encounter.individual_attack,
        defense=encounter.individual_defense,
        stamina=encounter.individual_stamina,
        cell_weather=weather,
        pokemon=encounter.pokemon_id,
        costume=display.costume,
        gender=display.gender,
        form=display.form,
    )
    if scan.cell_weather == WEATHER_NONE:
        if cell_weather is None:
            log.warning("Failed to obtain weather for Pokemon %d", pokemon.id)
        else:
            scan.cell_weather = cell_weather
    scan.level = cp_multiplier_to_level(encounter.cp_multiplier)

    error: Optional[DittoError] = None
    try:
        caught = detect_ditto(pokemon, scan, disguises, rules)
    except DittoError as exc:
        error = exc
        caught = scan
        log.error("[POKEMON] Unexpected %d: %s", pokemon.id, exc)

    if caught is None:  # only a 0P Ditto
        pokemon.level = scan.level - WEATHER_LEVEL_BOOST
        pokemon.clear_iv(False)
    else:
        pokemon.level = caught.level
        pokemon.calculate_iv(caught.attack, caught.defense, caught.stamina)

    if error is None:
        kept = [
            entry for entry in pokemon.scan_history
            if entry.strong != scan.strong
            or (not entry.strong and entry.is_boosted != scan.is_boosted)
        ]
        kept.append(scan)
        pokemon.scan_history = kept
    else:
        scan.confirmed = False
        scan.weather = weather
        pokemon.scan_history = [scan]