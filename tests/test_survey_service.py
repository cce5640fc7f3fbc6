import pytest

from fiberloop import config
from fiberloop.models.schemas import ConnectionRecord, PointRecord
from fiberloop.services.survey_service import SurveyService
from fiberloop.utils.geo_utils import haversine_km, polyline_length_km

from conftest import make_point


@pytest.fixture
def records():
    return [
        PointRecord(
            name="Amta (BR)",
            coordinates=[88.01, 22.57, 0],
            properties={
                "description": "Block Router at Amta",
                "ExtendedData": {"lgd_code": "2201", "st_code": 19, "st_name": "WEST BENGAL", "blk_name": "NULL"},
            },
        ),
        PointRecord(name="Ram Nagar", coordinates=[88.02, 22.58], properties={"LGDCode": "140211"}),
        PointRecord(name="Shiv Pur", coordinates=[88.03, 22.56], properties={"lgd": "NULL"}),
        PointRecord(name="ram nagar", coordinates=[88.5, 22.9]),
        PointRecord(name="Broken", coordinates=[float("nan"), 22.5]),
        PointRecord(name="  ", coordinates=[88.1, 22.5]),
    ]


def test_flatten_properties():
    props = SurveyService.flatten_properties(
        {"description": "<b>html</b>", "name": "X", "ExtendedData": {"lgd_code": "12", "remarks": "NULL"}}
    )
    assert props == {"name": "X", "lgd_code": "12", "remarks": None}


def test_anchor_detected_by_description_or_type(records):
    assert SurveyService.find_anchor(records) == "Amta (BR)"
    assert SurveyService.is_anchor({"type": "Block Router"})
    assert SurveyService.is_anchor({"ExtendedData": {"type": "block router"}})
    assert not SurveyService.is_anchor({"type": "GP"})
    assert SurveyService.find_anchor(records[1:]) is None


def test_parse_points(records):
    points = SurveyService.parse_points(records)

    assert [p.name for p in points] == ["AMTA", "RAM-NAGAR", "SHIV-PUR"]
    assert [p.lgd_code for p in points] == ["2201", "140211", config.DEFAULT_LGD_CODE]
    assert points[0].coordinates == [88.01, 22.57]
    assert points[1].coordinates == [88.02, 22.58]
    assert "description" not in points[0].properties


def test_missing_location_codes(records):
    points = SurveyService.parse_points(records)
    assert SurveyService.missing_location_codes(points) == ["SHIV-PUR"]


def test_admin_codes_come_from_first_point(records):
    codes = SurveyService.admin_codes(SurveyService.parse_points(records))
    assert codes["st_code"] == "19"
    assert codes["st_name"] == "WEST BENGAL"
    assert codes["blk_name"] is None
    assert codes["dt_code"] is None
    assert SurveyService.admin_codes([])["st_code"] is None


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Amta to Ram Nagar", ("Amta", "Ram Nagar")),
        ("Amta TO Ram Nagar", ("Amta", "Ram Nagar")),
        ("Toto to Tota to Ram", ("Toto to Tota", "Ram")),
        ("Amta-Ram Nagar", None),
        (None, None),
    ],
)
def test_split_connection_name(name, expected):
    assert SurveyService.split_connection_name(name) == expected


def test_parse_color():
    assert SurveyService.parse_color({"LINE_COLOR": "RGB(255, 0, 16)"}, "#000000") == "#ff0010"
    assert SurveyService.parse_color({"LINE_COLOR": "rgb(300,1,2)"}, "#000000") == "#ff0102"
    assert SurveyService.parse_color({}, "#123456") == "#123456"


def test_parse_connections(records):
    points = SurveyService.parse_points(records)
    connections = [
        ConnectionRecord(
            name="Amta to Ram Nagar",
            coordinates=[[88.01, 22.57], [88.015, 22.575], [88.02, 22.58]],
            properties={"ExtendedData": {"len": "2.5", "LINE_COLOR": "RGB(0,0,255)"}},
        ),
        ConnectionRecord(start="140211", end="Shiv Pur", coordinates=[[88.02, 22.58, 0], [88.03, 22.56, 0]]),
        ConnectionRecord(name="Amta to Nowhere", coordinates=[[88.01, 22.57], [88.0, 22.0]]),
        ConnectionRecord(name="Amta to Shiv Pur", coordinates=[[88.01, 22.57], [88.01, 22.57]]),
        ConnectionRecord(name="no separator", coordinates=[[88.01, 22.57], [88.0, 22.0]]),
        ConnectionRecord(name="Shiv Pur to Amta", coordinates=[[88.03, 22.56], [88.01, 22.57]], length=4.0),
    ]

    segments = SurveyService.parse_connections(connections, points)

    assert [(s.start, s.end) for s in segments] == [
        ("AMTA", "RAM-NAGAR"),
        ("RAM-NAGAR", "SHIV-PUR"),
        ("SHIV-PUR", "AMTA"),
    ]
    assert all(s.existing for s in segments)
    assert segments[0].length == 2.5
    assert segments[0].color == "#0000ff"
    assert segments[1].length == pytest.approx(polyline_length_km([[88.02, 22.58], [88.03, 22.56]]))
    assert segments[1].color == config.EXISTING_COLOR
    assert segments[2].length == 4.0


def test_unparseable_length_is_measured_from_geometry():
    points = [make_point("A", 88.0, 22.0), make_point("B", 88.01, 22.0)]
    record = ConnectionRecord(name="A to B", coordinates=[[88.0, 22.0], [88.01, 22.0]], properties={"len": "n/a"})

    [segment] = SurveyService.parse_connections([record], points)

    assert segment.length == pytest.approx(haversine_km([88.0, 22.0], [88.01, 22.0]))


def test_filter_points_by_distance():
    points = [
        make_point("A", 88.0, 22.0),
        make_point("B", 88.00005, 22.0),  # about 5 m from A
        make_point("C", 88.001, 22.0),
    ]
    assert [p.name for p in SurveyService.filter_points_by_distance(points)] == ["A", "C"]
    assert len(SurveyService.filter_points_by_distance(points, min_distance_m=1.0)) == 3
