from typing import Dict, List, Optional, Tuple

import pytest

from fiberloop.db import create_db_engine
from fiberloop.models.schemas import NetworkPayload, Point, Segment
from fiberloop.services.edit_service import EditService
from fiberloop.services.network_service import NetworkRepository
from fiberloop.services.route_service import RoutePath
from fiberloop.services.tour_service import TourSynthesizer

ADMIN = {
    "st_code": "19",
    "st_name": "WEST BENGAL",
    "dt_code": "341",
    "dt_name": "HOWRAH",
    "blk_code": "2201",
    "blk_name": "AMTA-I",
}


class FakeRouteService:
    """Stands in for the directions adapter; answers from a lookup table."""

    def __init__(self, routes: Optional[Dict[Tuple, RoutePath]] = None, alternatives: Optional[List[RoutePath]] = None):
        self.api_key = "test-key"
        self.routes = routes or {}
        self.alternatives = alternatives or []
        self.calls = []
        self.alternative_calls = []

    def fetch_route(self, from_coords, to_coords):
        key = (tuple(from_coords), tuple(to_coords))
        self.calls.append(key)
        return self.routes.get(key)

    def fetch_alternatives(self, origin, destination, waypoint=None):
        self.alternative_calls.append((origin, destination, waypoint))
        return list(self.alternatives)


def make_point(name, lon, lat, code=None, **properties):
    return Point(name=name, coordinates=[lon, lat], lgd_code=code, properties=properties)


def make_segment(start, end, coords, length, type="existing"):
    return Segment(start=start, end=end, coordinates=coords, length=length, type=type)


def make_payload(result, **overrides):
    data = result.model_dump()
    data.update(ADMIN)
    data.update(user_id=7, user_name="surveyor")
    data.update(overrides)
    return NetworkPayload(**data)


@pytest.fixture
def route_service():
    return FakeRouteService()


@pytest.fixture
def synthesizer(route_service):
    return TourSynthesizer(route_service)


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine):
    return NetworkRepository(engine)


@pytest.fixture
def edit_service(repository, route_service):
    return EditService(repository, route_service)


@pytest.fixture
def square_points():
    return [
        make_point("A", 0.0, 0.0, code="100"),
        make_point("B", 0.0, 0.01, code="101"),
        make_point("C", 0.01, 0.01, code="102"),
        make_point("D", 0.01, 0.0, code="103"),
    ]


@pytest.fixture
def square_connections():
    """A-B and C-D already built; B-C and D-A have to be proposed."""
    return [
        make_segment("A", "B", [[0.0, 0.0], [0.0, 0.005], [0.0, 0.01]], 1.2),
        make_segment("C", "D", [[0.01, 0.01], [0.01, 0.0]], 1.15),
    ]


@pytest.fixture
def synthesized(synthesizer, square_points, square_connections):
    return synthesizer.synthesize(square_points, square_connections, "A", ADMIN)


@pytest.fixture
def saved_network(repository, synthesized):
    return repository.create(make_payload(synthesized))
