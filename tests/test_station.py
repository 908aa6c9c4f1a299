import json
from dataclasses import replace

import pytest

from mapdecoder.station import (
    BattlePokemon,
    Station,
    StationedPokemon,
    StationInfo,
    StationStore,
    has_changes_station,
)


def _station(**kwargs):
    base = dict(id="st1", lat=51.5, lon=-0.12, name="Spot", start_time=100, end_time=200)
    base.update(kwargs)
    return Station(**base)


def test_identical_stations_have_no_changes():
    assert has_changes_station(_station(), _station()) is False


def test_name_change_is_a_change():
    assert has_changes_station(_station(), _station(name="Other")) is True


def test_tiny_coordinate_drift_is_ignored():
    assert has_changes_station(_station(), _station(lat=51.5 + 1e-8)) is False
    assert has_changes_station(_station(), _station(lat=51.6)) is True


def test_totals_and_cell_are_not_compared():
    assert has_changes_station(_station(), _station(total_stationed_pokemon=5, cell_id=42)) is False


def test_update_from_station_info_copies_fields():
    pokemon = BattlePokemon(pokemon_id=25, move1=1, move2=2, form=3, stamina=100, cp_multiplier=0.5)
    info = StationInfo(
        id="st1", name="Spot", lat=1.0, lon=2.0,
        start_time_ms=1_700_000_000_999, end_time_ms=1_700_000_100_000,
        cooldown_complete_ms=1234, is_battle_available=True,
        battle_level=3, battle_window_start_ms=5000, battle_window_end_ms=9000,
        battle_pokemon=pokemon,
    )
    station = Station(id="")
    result = station.update_from_station_info(info, cell_id=77)
    assert result is station
    assert station.start_time == info.start_time_ms // 1000
    assert station.end_time == info.end_time_ms // 1000
    assert station.cooldown_complete == info.cooldown_complete_ms
    assert station.battle_level == 3
    assert station.battle_start == 5
    assert station.battle_pokemon_id == 25
    assert station.battle_pokemon_form == 3
    assert station.battle_pokemon_cp_multiplier == 0.5
    assert station.cell_id == 77
    assert (station.lat, station.lon) == (1.0, 2.0)


def test_missing_battle_details_keep_previous_values():
    station = _station(battle_level=5, battle_pokemon_id=150)
    station.update_from_station_info(StationInfo(id="st1", name="Spot"), cell_id=1)
    assert station.battle_level == 5
    assert station.battle_pokemon_id == 150


def test_long_name_is_truncated():
    station = Station(id="")
    station.update_from_station_info(StationInfo(id="x", name="é" * 300), cell_id=1)
    assert station.name == "é" * 255


def test_stationed_pokemon_json_and_gmax_count():
    stationed = [
        StationedPokemon(pokemon_id=1, bread_mode=2),
        StationedPokemon(pokemon_id=4, form=7, bread_mode=3),
        StationedPokemon(pokemon_id=7, bread_mode=1),
    ]
    station = _station().update_stationed_pokemon(stationed, total=10)
    decoded = json.loads(station.stationed_pokemon)
    assert [p["pokemon_id"] for p in decoded] == [1, 4, 7]
    assert decoded[1]["form"] == 7
    assert list(decoded[0]) == ["pokemon_id", "form", "costume", "gender", "bread_mode"]
    assert station.total_stationed_gmax == sum(p.is_gmax for p in stationed)
    assert station.total_stationed_gmax == 2
    assert station.total_stationed_pokemon == 10


def test_no_stationed_pokemon_gives_null():
    station = _station().update_stationed_pokemon([], total=0)
    assert station.stationed_pokemon == "null"
    assert station.total_stationed_gmax == 0


def test_reset_stationed_pokemon():
    station = _station(stationed_pokemon="[1]", total_stationed_pokemon=4, total_stationed_gmax=1)
    station.reset_stationed_pokemon()
    assert station.stationed_pokemon == "[]"
    assert station.total_stationed_pokemon == 0
    assert station.total_stationed_gmax == 0


def test_save_inserts_then_skips_unchanged_recent():
    writes = []
    store = StationStore(writer=lambda s, insert: writes.append((s.id, insert)))
    assert store.save(_station(), now=1000) is True
    assert store.save(_station(), now=1100) is False
    assert writes == [("st1", True)]
    assert store.get("st1").updated == 1000


def test_save_rewrites_unchanged_after_refresh_window():
    writes = []
    store = StationStore(writer=lambda s, insert: writes.append(insert))
    store.save(_station(), now=1000)
    assert store.save(_station(), now=3000) is True
    assert writes == [True, False]


def test_loaded_records_are_not_cached():
    calls = []

    def loader(station_id):
        calls.append(station_id)
        return _station(id=station_id)

    store = StationStore(loader=loader)
    assert store.get("a").id == "a"
    store.get("a")
    assert calls == ["a", "a"]


def test_failed_insert_is_not_cached():
    def writer(station, insert):
        raise RuntimeError("db down")

    store = StationStore(writer=writer)
    assert store.save(_station(), now=10) is False
    assert store.get("st1") is None


def test_failed_update_is_still_cached():
    stored = {"st1": _station(updated=1)}

    def writer(station, insert):
        if not insert:
            raise RuntimeError("db down")

    store = StationStore(loader=stored.get, writer=writer)
    assert store.save(_station(name="New"), now=5000) is True
    assert store.get("st1").name == "New"


def test_update_with_station_details_for_unknown_station():
    store = StationStore()
    message = store.update_with_station_details("nope", [], 0, now=1)
    assert message == "Stationed pokemon details for station nope not found"


def test_update_with_station_details_loader_error():
    def loader(station_id):
        raise RuntimeError("boom")

    store = StationStore(loader=loader)
    assert store.update_with_station_details("x", [], 0, now=1) == "Error getting station"


def test_update_with_station_details_saves():
    store = StationStore()
    store.save(_station(), now=1)
    message = store.update_with_station_details("st1", [StationedPokemon(pokemon_id=9)], 3, now=2)
    assert message == "StationedPokemonDetails st1"
    saved = store.get("st1")
    assert json.loads(saved.stationed_pokemon)[0]["pokemon_id"] == 9
    assert saved.total_stationed_pokemon == 3


def test_reset_via_store():
    store = StationStore()
    store.save(_station(stationed_pokemon="[{}]"), now=1)
    assert store.reset_stationed_pokemon("st1", now=2) == "StationedPokemonDetails st1"
    assert store.get("st1").stationed_pokemon == "[]"


def test_get_returns_copy():
    store = StationStore()
    store.save(_station(), now=1)
    copy = store.get("st1")
    copy.name = "changed"
    assert store.get("st1").name == "Spot"
    assert replace(copy, name="Spot") == store.get("st1")


@pytest.mark.parametrize("ms", [0, 999, 1000, 123456])
def test_time_fields_are_whole_seconds(ms):
    station = Station(id="")
    station.update_from_station_info(StationInfo(id="a", start_time_ms=ms), cell_id=0)
    assert station.start_time * 1000 <= ms < (station.start_time + 1) * 1000