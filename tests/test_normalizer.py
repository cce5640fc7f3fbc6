import pytest

from fiberloop.services.normalizer import (
    is_valid_segment,
    normalize_coordinate,
    normalize_name,
    round_coordinates,
    to_latlng_dicts,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("  Ram Nagar (GP) ", "RAM-NAGAR"),
        ("ram   nagar", "RAM-NAGAR"),
        ("Amta (Block) Office", "AMTA-OFFICE"),
        ("BR", "BR"),
        ("(GP) Ram", "(GP)-RAM"),
    ],
)
def test_normalize_name(raw, expected):
    assert normalize_name(raw) == expected


@pytest.mark.parametrize(
    "raw", [" Shiv Pur (GP) ", "Ram Nagar (GP) (Old)", "Amta-(Block)", "(GP) Ram", "Ram(GP)", "Old Ram (Nagar"]
)
def test_normalize_name_is_idempotent(raw):
    once = normalize_name(raw)
    assert normalize_name(once) == once


def test_only_first_parenthetical_is_removed():
    assert normalize_name("Ram Nagar (GP) (Old)") == "RAM-NAGAR-(OLD)"


def test_normalize_name_empty():
    assert normalize_name(None) is None
    assert normalize_name("   ") is None


def test_coordinates_are_rounded_to_six_places():
    assert normalize_coordinate([77.1234564, 28.7654326]) == [77.123456, 28.765433]


def test_altitude_is_ignored():
    assert normalize_coordinate([88.1, 22.5, 12.0]) == [88.1, 22.5]


def test_latlng_mapping_becomes_lon_lat():
    assert normalize_coordinate({"lat": 22.5, "lng": 88.1}) == [88.1, 22.5]
    assert normalize_coordinate({"lat": 22.5, "lon": 88.1}) == [88.1, 22.5]


@pytest.mark.parametrize(
    "pair",
    [[1.0], "88.1,22.5", None, [float("nan"), 1.0], [1.0, float("inf")], ["88.1", "22.5"], [True, 1.0], {"lat": 1.0}],
)
def test_malformed_coordinates_are_rejected(pair):
    assert normalize_coordinate(pair) is None


def test_round_coordinates_drops_bad_vertices():
    assert round_coordinates([[1.0, 2.0], None, [float("nan"), 0.0], {"lat": 4.0, "lng": 3.0}]) == [
        [1.0, 2.0],
        [3.0, 4.0],
    ]
    assert round_coordinates("not a polyline") == []


def test_single_vertex_is_invalid():
    assert not is_valid_segment([[88.1, 22.5]])
    assert not is_valid_segment([])


def test_identical_vertices_are_invalid():
    assert not is_valid_segment([[88.1, 22.5], [88.1, 22.5], [88.1, 22.5]])


def test_vertices_a_meter_apart_are_valid():
    # 0.00001 degrees of latitude is about 1.11 m
    assert is_valid_segment([[0.0, 0.0], [0.0, 0.00001]])


def test_default_threshold_is_one_centimeter():
    # one step of the 6th decimal: about 11 cm of latitude at the equator
    assert is_valid_segment([[0.0, 0.0], [0.0, 0.000001]])
    # the same step of longitude next to the pole is well under a millimeter
    assert not is_valid_segment([[0.0, 89.99], [0.000001, 89.99], [0.000002, 89.99]])


def test_distinct_but_too_close_vertices_are_invalid():
    coords = [[0.0, 0.0], [0.0, 0.000004], [0.0, 0.000008]]
    assert not is_valid_segment(coords, min_distance_km=0.001)


def test_custom_threshold():
    coords = [[0.0, 0.0], [0.0, 0.001]]
    assert is_valid_segment(coords, min_distance_km=0.1)
    assert not is_valid_segment(coords, min_distance_km=0.2)


def test_to_latlng_dicts():
    assert to_latlng_dicts([[88.1, 22.5]]) == [{"lat": 22.5, "lng": 88.1}]
