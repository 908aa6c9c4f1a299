from dataclasses import replace

import pytest

from mapdecoder.pokemon import (
    DITTO_POKEMON_ID,
    WEATHER_PARTLY_CLOUDY,
    Pokemon,
    PokemonDisplay,
    PokemonScan,
    SeenType,
    has_changes_pokemon,
)
from mapdecoder.spawnpoint import second_of_hour


def _scanned_pokemon():
    unboosted = PokemonScan(weather=0, attack=10, defense=11, stamina=12, level=20)
    boosted = PokemonScan(weather=WEATHER_PARTLY_CLOUDY, attack=13, defense=14, stamina=15, level=25)
    p = Pokemon(id=1, pokemon_id=16, first_seen_timestamp=100, weather=0, is_strong=False,
                level=20, cp=300, seen_type=SeenType.WILD, form=0, costume=0, gender=1)
    p.calculate_iv(10, 11, 12)
    p.scan_history = [unboosted, boosted]
    return p, unboosted, boosted


def test_seen_type_values():
    assert SeenType.CELL == "nearby_cell"
    assert SeenType("tappable_lure_encounter") is SeenType.TAPPABLE_LURE_ENCOUNTER


def test_is_new_record():
    assert Pokemon(id=5).is_new_record()
    assert not Pokemon(id=5, first_seen_timestamp=10).is_new_record()


def test_remaining_duration():
    p = Pokemon(expire_timestamp=1000, expire_timestamp_verified=True)
    assert p.remaining_duration(900) == 60 + 1000 - 900
    assert p.remaining_duration(2000, default=7) == 7
    assert Pokemon(expire_timestamp=1000).remaining_duration(900) is None


def test_calculate_and_clear_iv():
    p = Pokemon(cp=500, pvp="{}", seen_type=SeenType.ENCOUNTER)
    p.calculate_iv(15, 15, 15)
    assert (p.atk_iv, p.def_iv, p.sta_iv) == (15, 15, 15)
    assert p.iv == pytest.approx(100.0)
    p.clear_iv(False)
    assert p.iv is None and p.cp == 500
    p.calculate_iv(1, 2, 3)
    p.clear_iv(True)
    assert p.atk_iv is None and p.cp is None and p.pvp is None
    assert p.seen_type == SeenType.WILD


def test_clear_iv_lure_downgrade():
    p = Pokemon(seen_type=SeenType.LURE_ENCOUNTER)
    p.clear_iv(True)
    assert p.seen_type == SeenType.LURE_WILD


def test_set_unknown_timestamp():
    p = Pokemon()
    p.set_unknown_timestamp(1000)
    assert p.expire_timestamp == 1000 + 20 * 60
    p.set_unknown_timestamp(1000 + 30 * 60)
    assert p.expire_timestamp == 1000 + 30 * 60 + 10 * 60
    before = p.expire_timestamp
    p.set_unknown_timestamp(1000)
    assert p.expire_timestamp == before


@pytest.mark.parametrize("despawn", [0, 1234, 3599])
def test_expire_from_spawnpoint(despawn):
    p = Pokemon(spawn_id=0xABC)
    ts_ms = 1_700_000_123_456
    p.set_expire_timestamp_from_spawnpoint(despawn, ts_ms, True)
    assert p.expire_timestamp_verified
    offset = p.expire_timestamp - ts_ms // 1000
    assert 0 <= offset < 3600
    assert second_of_hour(p.expire_timestamp) == despawn


def test_expire_from_spawnpoint_untrusted_keeps_verified():
    p = Pokemon(spawn_id=1, expire_timestamp=42, expire_timestamp_verified=True)
    p.set_expire_timestamp_from_spawnpoint(100, 1_700_000_000_000, False)
    assert p.expire_timestamp == 42 and p.expire_timestamp_verified


def test_expire_from_spawnpoint_without_spawn_or_despawn():
    p = Pokemon()
    p.set_expire_timestamp_from_spawnpoint(100, 1_700_000_000_000, True)
    assert p.expire_timestamp is None
    q = Pokemon(spawn_id=1, expire_timestamp_verified=True)
    q.set_expire_timestamp_from_spawnpoint(None, 1_700_000_000_000, True)
    assert not q.expire_timestamp_verified
    assert q.expire_timestamp == 1_700_000_000 + 20 * 60


def test_has_changes_pokemon():
    p, _, _ = _scanned_pokemon()
    p.weight = 1.5
    q = replace(p, scan_history=[])
    assert not has_changes_pokemon(p, q)
    assert not has_changes_pokemon(p, replace(q, lat=p.lat + 1e-9, username="ash", pvp="x"))
    assert has_changes_pokemon(p, replace(q, cp=301))
    assert has_changes_pokemon(p, replace(q, weight=None))
    assert has_changes_pokemon(p, replace(q, lon=p.lon + 0.01))


def test_set_display_new_record():
    p = Pokemon(id=3)
    display = PokemonDisplay(form=7, costume=2, gender=1, weather_boosted_condition=WEATHER_PARTLY_CLOUDY,
                             is_strong_pokemon=True)
    p.set_pokemon_display(25, display)
    assert (p.pokemon_id, p.form, p.costume, p.gender) == (25, 7, 2, 1)
    assert p.weather == WEATHER_PARTLY_CLOUDY and p.is_strong is True


def test_set_display_change_resets_details():
    p, _, _ = _scanned_pokemon()
    p.weight, p.move1, p.shiny = 2.0, 10, True
    p.set_pokemon_display(19, PokemonDisplay(gender=1))
    assert p.pokemon_id == 19
    assert p.weight is None and p.move1 is None and p.shiny is None and p.cp is None


def test_set_display_keeps_ditto_species():
    p = Pokemon(id=1, first_seen_timestamp=1, is_ditto=True, display_pokemon_id=16,
                pokemon_id=DITTO_POKEMON_ID, form=0, costume=0, gender=1, weather=0,
                is_strong=False, cp=10)
    p.set_pokemon_display(16, PokemonDisplay(gender=1))
    assert p.pokemon_id == DITTO_POKEMON_ID
    assert p.is_ditto and p.cp == 10


def test_repopulate_to_boosted_scan():
    p, _, boosted = _scanned_pokemon()
    p.repopulate_iv(WEATHER_PARTLY_CLOUDY, False)
    assert p.level == boosted.level
    assert (p.atk_iv, p.def_iv, p.sta_iv) == boosted.iv
    assert p.seen_type == SeenType.ENCOUNTER
    assert p.cp is None


def test_repopulate_without_matching_boost():
    p, unboosted, _ = _scanned_pokemon()
    p.scan_history = [unboosted]
    p.repopulate_iv(WEATHER_PARTLY_CLOUDY, False)
    assert p.level == unboosted.level + 5
    assert p.atk_iv is None and p.cp is None


def test_repopulate_no_scans_and_unchanged():
    p, _, _ = _scanned_pokemon()
    p.repopulate_iv(0, False)
    assert p.level == 20 and p.cp == 300
    p.scan_history = []
    p.repopulate_iv(WEATHER_PARTLY_CLOUDY, False)
    assert p.level is None and p.atk_iv is None


def test_repopulate_strong_ditto_clears():
    p = Pokemon(is_ditto=True, cp=100, atk_iv=1, def_iv=2, sta_iv=3)
    p.repopulate_iv(0, True)
    assert p.atk_iv is None and p.cp is None


def test_locate_scans():
    p, unboosted, boosted = _scanned_pokemon()
    strong = PokemonScan(strong=True, level=30)
    p.scan_history.append(strong)
    assert p.locate_all_scans() == (unboosted, boosted, strong)
    assert p.locate_scan(False, True) == (boosted, True)
    p.scan_history = [unboosted]
    assert p.locate_scan(False, True) == (unboosted, False)
    assert p.locate_scan(True, False) == (None, False)