"""Per-area, per-context rules that decide which parts of a scan to process."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

AreaMatcher = Callable[[float, float, Sequence[str]], bool]


@dataclass(frozen=True)
class ScanRule:
    """A configured rule; unset switches default to on."""

    area_names: Sequence[str] = ()
    scan_context: Sequence[str] = ()
    process_pokemon: Optional[bool] = None
    process_wilds: Optional[bool] = None
    process_nearby: Optional[bool] = None
    process_weather: Optional[bool] = None
    process_pokestops: Optional[bool] = None
    process_gyms: Optional[bool] = None
    process_stations: Optional[bool] = None
    process_cells: Optional[bool] = None
    process_tappables: Optional[bool] = None


@dataclass(frozen=True)
class ScanParameters:
    """What to process from one scan."""

    process_pokemon: bool = True
    process_wild: bool = True
    process_nearby: bool = True
    process_weather: bool = True
    process_pokestops: bool = True
    process_gyms: bool = True
    process_stations: bool = True
    process_cells: bool = True
    process_tappables: bool = True


def _on(value: Optional[bool]) -> bool:
    return True if value is None else value


def find_scan_configuration(
    rules: Sequence[ScanRule],
    scan_context: str,
    lat: float,
    lon: float,
    match_areas: Optional[AreaMatcher] = None,
) -> ScanParameters:
    """Return the parameters of the first rule matching the location and context.

    ``match_areas(lat, lon, area_names)`` tells whether the location lies in
    one of the named areas; without it, rules restricted to areas never match.
    Contexts are compared case-insensitively. With no matching rule, everything
    is processed.
    """
    wanted = scan_context.casefold()
    for rule in rules:
        if rule.area_names:
            if match_areas is None or not match_areas(lat, lon, rule.area_names):
                continue
        if rule.scan_context and not any(c.casefold() == wanted for c in rule.scan_context):
            continue
        return ScanParameters(
            process_pokemon=_on(rule.process_pokemon),
            process_wild=_on(rule.process_wilds),
            process_nearby=_on(rule.process_nearby),
            process_weather=_on(rule.process_weather),
            process_pokestops=_on(rule.process_pokestops),
            process_gyms=_on(rule.process_gyms),
            process_stations=_on(rule.process_stations),
            process_cells=_on(rule.process_cells),
            process_tappables=_on(rule.process_tappables),
        )
    return ScanParameters()