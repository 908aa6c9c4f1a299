import pytest

from mapdecoder.s2cell import (
    S2Cell,
    S2CellStore,
    cell_center,
    cell_id_from_lat_lng,
    cell_level,
    midpoint,
)

FACE_ZERO = 1 << 60


def test_face_cell_level_and_center():
    assert cell_level(FACE_ZERO) == 0
    lat, lon = cell_center(FACE_ZERO)
    assert lat == pytest.approx(0.0, abs=1e-9)
    assert lon == pytest.approx(0.0, abs=1e-9)


@pytest.mark.parametrize("lat,lon", [(51.5, -0.12), (-33.9, 151.2), (40.7, -74.0), (0.1, 179.9)])
@pytest.mark.parametrize("level", [10, 15, 20])
def test_round_trip_level_and_center(lat, lon, level):
    cid = cell_id_from_lat_lng(lat, lon, level)
    assert cell_level(cid) == level
    c_lat, c_lon = cell_center(cid)
    assert c_lat == pytest.approx(lat, abs=0.1)
    assert c_lon == pytest.approx(lon, abs=0.1)
    assert cell_id_from_lat_lng(c_lat, c_lon, level) == cid


def test_leaf_cells_are_odd():
    assert cell_id_from_lat_lng(12.3, 45.6) % 2 == 1
    assert cell_level(cell_id_from_lat_lng(12.3, 45.6)) == 30


def test_parent_contains_child():
    child = cell_id_from_lat_lng(48.85, 2.35, 15)
    c_lat, c_lon = cell_center(child)
    assert cell_id_from_lat_lng(c_lat, c_lon, 10) == cell_id_from_lat_lng(48.85, 2.35, 10)


def test_invalid_inputs():
    with pytest.raises(ValueError):
        cell_id_from_lat_lng(0, 0, 31)
    with pytest.raises(ValueError):
        cell_level(0)


def test_midpoint():
    assert midpoint(10, 20, 10, 20) == pytest.approx((10, 20))
    assert midpoint(0, 0, 0, 90) == pytest.approx((0, 45))
    assert midpoint(1, 2, 3, 4) == pytest.approx(midpoint(3, 4, 1, 2))


def test_store_skips_recent_cells():
    written = []
    store = S2CellStore(writer=written.append)
    cid = cell_id_from_lat_lng(51.5, -0.12, 15)

    first = store.cells_to_save([cid], 1000)
    assert [c.id for c in first] == [cid]
    assert first[0].level == 15
    assert first[0].updated == 1000
    assert written == [first]

    assert store.cells_to_save([cid], 1010) == []

    later = store.cells_to_save([cid], 1000 + 901)
    assert len(later) == 1
    assert later[0].updated == 1901
    assert later[0].latitude == first[0].latitude


def test_store_does_not_cache_on_failure():
    calls = []

    def failing(cells):
        calls.append(cells)
        raise RuntimeError("down")

    store = S2CellStore(writer=failing)
    cid = cell_id_from_lat_lng(1.0, 1.0, 15)
    assert store.cells_to_save([cid], 500) == []
    assert store.cells_to_save([cid], 501) == []
    assert len(calls) == 2


def test_store_without_writer_caches():
    store = S2CellStore()
    cid = cell_id_from_lat_lng(1.0, 1.0, 12)
    saved = store.cells_to_save([cid], 10)
    assert isinstance(saved[0], S2Cell) and saved[0].id == cid
    assert store.cells_to_save([cid], 11) == []