# mapdecoder

`mapdecoder` turns raw map observations into tracked records. The observations cover
wild, lured, nearby and encountered Pokémon, spawnpoints, routes, stations and S2
cells. The package decides when a record has really changed and should be written
again. It works out expiry times from spawnpoint despawn seconds and keeps a scan
history for each Pokémon. From that history it detects Ditto in disguise, using
changes in level and weather boost.

Everything is plain Python with no third-party dependencies.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## What is inside

| Module | Purpose |
| --- | --- |
| `mapdecoder.s2cell` | S2 cell geometry: `cell_level`, `cell_center`, `cell_id_from_lat_lng` and `midpoint`. `S2CellStore.cells_to_save` returns the cells not refreshed in the last 15 minutes and passes them to an optional writer. |
| `mapdecoder.spawnpoint` | `Spawnpoint`, `WildSighting`, `has_changes_spawnpoint` and `second_of_hour`. `SpawnpointStore` learns the despawn second from a time-till-hidden of up to 90 seconds and refreshes `last_seen` at most once an hour. |
| `mapdecoder.routes` | `SharedRoute`, `Route`, `RouteStore`, `truncate_utf8` and `has_changes_route`. |
| `mapdecoder.station` | `StationInfo`, `BattlePokemon`, `StationedPokemon`, `Station`, `StationStore` and `has_changes_station`. |
| `mapdecoder.scanarea` | `ScanRule`, `ScanParameters` and `find_scan_configuration`. The first rule that matches the scan context (compared case-insensitively) and the area decides what to process. |
| `mapdecoder.pokemon` | The `Pokemon` record, `SeenType`, `PokemonDisplay`, `PokemonScan` and `has_changes_pokemon`. |
| `mapdecoder.ditto` | `detect_ditto`, `record_encounter`, `check_scans`, `cp_multiplier_to_level`, `DittoDisguises`, `ScanRules`, `EncounterDetails` and `DittoError`. |
| `mapdecoder.sightings` | Updates a `Pokemon` from wild, map (lure), nearby, encounter, disk-encounter and tappable sightings: `update_from_wild`, `update_from_map`, `update_from_nearby`, `update_from_encounter`, `update_from_disk_encounter` and `update_from_tappable`. Also `wild_significant_update` and `recompute_cp`. |

The stores for spawnpoints, routes, stations and cells keep their records in
dictionaries. They take optional `loader` and `writer` callables, so you can put your
own persistence behind them.

## Examples

Spawnpoints and cells:

```python
from mapdecoder.s2cell import cell_center, cell_id_from_lat_lng
from mapdecoder.spawnpoint import SpawnpointStore, WildSighting

spawnpoints = SpawnpointStore()
spawnpoints.update_from_wild(
    WildSighting(spawn_point_id="47c3a1b", latitude=51.5, longitude=-0.12,
                 time_till_hidden_ms=60_000),
    timestamp_ms=1_700_000_000_000,
    now=1_700_000_000,
)
print(spawnpoints.get(int("47c3a1b", 16)).despawn_sec)

cell = cell_id_from_lat_lng(51.5, -0.12, 15)
print(cell_center(cell))
```

Applying a wild sighting to a Pokémon record:

```python
from mapdecoder.pokemon import Pokemon, PokemonDisplay
from mapdecoder.sightings import WildPokemon, update_from_wild

pokemon = Pokemon(id=1234567890)
wild = WildPokemon(
    encounter_id=1234567890,
    spawn_point_id="47c3a1b",
    latitude=51.5,
    longitude=-0.12,
    pokemon_id=25,
    display=PokemonDisplay(form=0, gender=1),
)
update_from_wild(pokemon, wild, cell_id=0, timestamp_ms=1_700_000_000_000,
                 username="scanner", despawn_sec=1800)
print(pokemon.seen_type, pokemon.expire_timestamp, pokemon.expire_timestamp_verified)
```

Lookups that a sighting depends on are passed in by the caller: a spawnpoint's despawn
second, a pokestop's location (`StopLocation`) and a cell's weather.

## What it does not do

- There is no store for Pokémon records. Nothing saves a `Pokemon`, caches it, or
  decides when it should be written. You keep the records and persist them yourself.
- No webhooks or statistics are produced.
- There is no database, network server or command-line program. The package provides
  data types and functions only.
- PvP ranks are not computed. `recompute_cp` takes your own CP calculator as an
  argument.