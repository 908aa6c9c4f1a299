from dataclasses import astuple

from mapdecoder.scanarea import ScanParameters, ScanRule, find_scan_configuration


def test_no_rules_processes_everything():
    params = find_scan_configuration([], "quest", 1.0, 2.0)
    assert all(astuple(params))
    assert params == ScanParameters()


def test_context_rule_matches_case_insensitively():
    rule = ScanRule(scan_context=("Quest",), process_pokemon=False, process_gyms=False)
    params = find_scan_configuration([rule], "QUEST", 0.0, 0.0)
    assert params.process_pokemon is False
    assert params.process_gyms is False
    assert params.process_pokestops is True
    assert params.process_wild is True


def test_context_mismatch_falls_through_to_next_rule():
    rules = [
        ScanRule(scan_context=("raid",), process_cells=False),
        ScanRule(process_weather=False),
    ]
    params = find_scan_configuration(rules, "quest", 0.0, 0.0)
    assert params.process_cells is True
    assert params.process_weather is False


def test_first_matching_rule_wins():
    rules = [ScanRule(process_wilds=False), ScanRule(process_nearby=False)]
    params = find_scan_configuration(rules, "", 0.0, 0.0)
    assert params.process_wild is False
    assert params.process_nearby is True


def test_area_rule_uses_matcher():
    seen = []

    def matcher(lat, lon, names):
        seen.append((lat, lon, tuple(names)))
        return "London" in names

    rules = [
        ScanRule(area_names=("Paris",), process_stations=False),
        ScanRule(area_names=("London",), process_tappables=False),
    ]
    params = find_scan_configuration(rules, "x", 51.5, -0.1, matcher)
    assert params.process_stations is True
    assert params.process_tappables is False
    assert seen == [(51.5, -0.1, ("Paris",)), (51.5, -0.1, ("London",))]


def test_area_rule_without_matcher_never_matches():
    rules = [ScanRule(area_names=("Anywhere",), process_pokemon=False)]
    assert find_scan_configuration(rules, "x", 0.0, 0.0).process_pokemon is True


def test_area_and_context_must_both_match():
    rule = ScanRule(area_names=("A",), scan_context=("quest",), process_pokemon=False)
    params = find_scan_configuration([rule], "raid", 0.0, 0.0, lambda la, lo, n: True)
    assert params.process_pokemon is True
    params = find_scan_configuration([rule], "quest", 0.0, 0.0, lambda la, lo, n: True)
    assert params.process_pokemon is False