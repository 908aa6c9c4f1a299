import json

import pytest

from mapdecoder.routes import (
    Route,
    RouteStore,
    SharedRoute,
    has_changes_route,
    truncate_utf8,
)


def test_truncate_utf8():
    assert truncate_utf8("héllo", 3) == ("hél", True)
    assert truncate_utf8("abc", 5) == ("abc", False)
    assert truncate_utf8("abc", 3) == ("abc", False)


def make_shared(**kwargs):
    base = dict(id="r1", name="Loop", short_code="ABC", description="nice",
                start_lat=1.0, start_lon=2.0, end_lat=3.0, end_lon=4.0, version=2)
    base.update(kwargs)
    return SharedRoute(**base)


def test_update_from_shared_route_fields():
    route = Route(id="r1")
    route.update_from_shared_route(make_shared(tags=("a", "b"), waypoints=({"fort_id": "x"},)), now=500)
    assert route.name == "Loop"
    assert route.shortcode == "ABC"
    assert route.updated == 500
    assert (route.start_lat, route.end_lon) == (1.0, 4.0)
    assert json.loads(route.tags) == ["a", "b"]
    assert json.loads(route.waypoints) == [{"fort_id": "x"}]


def test_empty_waypoints_and_short_code_kept():
    route = Route(id="r1", shortcode="OLD", tags='["z"]')
    route.update_from_shared_route(make_shared(short_code=""), now=1)
    assert route.shortcode == "OLD"
    assert route.waypoints == "null"
    assert route.tags == '["z"]'


def test_description_truncated():
    route = Route(id="r1")
    route.update_from_shared_route(make_shared(description="x" * 300), now=1)
    assert len(route.description) == 255


def test_has_changes_route():
    a = Route(id="r", name="n", start_lat=1.0)
    assert has_changes_route(a, Route(id="other", name="n", start_lat=1.0, updated=99)) is False
    assert has_changes_route(a, Route(id="r", name="m", start_lat=1.0)) is True
    assert has_changes_route(a, Route(id="r", name="n", start_lat=1.1)) is True


def test_store_save_insert_then_skip_then_update():
    calls = []
    store = RouteStore(writer=lambda route, insert: calls.append((route.id, insert)))
    route = Route(id="r1", name="n", updated=1000)
    assert store.save(route, 1000) is True
    assert store.save(Route(id="r1", name="n", updated=1000), 1100) is False
    assert store.save(Route(id="r1", name="n", updated=1000), 1000 + 901) is True
    assert store.save(Route(id="r1", name="changed", updated=1000), 1100) is True
    assert calls == [("r1", True), ("r1", False), ("r1", False)]


def test_store_get_from_loader():
    store = RouteStore(loader=lambda rid: Route(id=rid, name="loaded"))
    assert store.get("q").name == "loaded"


def test_update_with_shared_route():
    calls = []
    store = RouteStore(writer=lambda route, insert: calls.append(insert))
    route = store.update_with_shared_route(make_shared(), now=10)
    assert route.id == "r1"
    assert store.get("r1").name == "Loop"
    store.update_with_shared_route(make_shared(name="Other"), now=20)
    assert calls == [True, False]
    assert store.get("r1").name == "Other"


def test_writer_error_propagates():
    def boom(route, insert):
        raise RuntimeError("db down")

    store = RouteStore(writer=boom)
    with pytest.raises(RuntimeError):
        store.save(Route(id="r"), 0)
    assert store.get("r") is None