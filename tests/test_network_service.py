import gc

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from fiberloop.exceptions import (
    FeatureNotFoundError,
    NetworkNotFoundError,
    PersistenceError,
    SegmentNotFoundError,
)
from fiberloop.models import tables
from fiberloop.services.network_service import NetworkLocks, parse_segment_key

from conftest import make_payload


def _count(engine, table):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar_one()


def _contents(detail):
    points = sorted((p.name, tuple(p.coordinates), p.lgd_code) for p in detail.points)
    connections = sorted(
        (c.start, c.end, round(c.length, 9), c.type, tuple(map(tuple, c.coordinates))) for c in detail.connections
    )
    return points, connections


@pytest.mark.parametrize(
    "key, expected",
    [
        ("A TO B", ("A", "B")),
        ("ram nagar to shiv pur", ("RAM-NAGAR", "SHIV-PUR")),
        ("A-B", None),
    ],
)
def test_parse_segment_key(key, expected):
    assert parse_segment_key(key) == expected


def test_locks_are_per_network():
    locks = NetworkLocks()
    held = locks(1)
    assert locks(1) is held
    assert locks(2) is not held


def test_unused_locks_are_released():
    locks = NetworkLocks()
    held = locks(1)
    with locks(2):
        assert len(locks) == 2
    del held
    gc.collect()
    assert len(locks) == 0


def test_create_persists_points_and_connections(repository, saved_network, synthesized):
    detail = repository.get(saved_network)

    assert detail.network.name == "A"
    assert detail.network.status == "verified"
    assert detail.network.user_name == "surveyor"
    assert detail.network.st_code == "19"
    assert detail.network.created_at is not None
    assert [p.name for p in detail.points] == ["A", "B", "C", "D"]
    assert [(c.start, c.end) for c in detail.connections] == [("A", "B"), ("B", "C"), ("C", "D"), ("D", "A")]
    assert [c.type for c in detail.connections] == ["existing", "proposed", "existing", "proposed"]
    assert detail.connections[0].start_latlong == "100"
    assert detail.connections[0].original_name == "A TO B"
    assert all(c.status == "Pending" for c in detail.connections)
    assert detail.network.total_length == pytest.approx(synthesized.total_length, abs=1e-6)
    assert detail.network.existing_length == pytest.approx(2.35)


def test_totals_come_from_stored_segments(repository, synthesized):
    network_id = repository.create(make_payload(synthesized, total_length=999.0, existing_length=0.0))
    network = repository.get(network_id).network

    assert network.existing_length == pytest.approx(2.35)
    assert network.total_length == pytest.approx(network.existing_length + network.proposed_length)


def test_degenerate_and_malformed_entries_are_skipped(repository, synthesized):
    history = synthesized.model_dump(by_alias=True)["polylineHistory"]
    history["B TO A"] = dict(history["A TO B"], polyline={"coordinates": [{"lat": 0.0, "lng": 0.0}]})
    history["NOT A KEY"] = history["A TO B"]
    network_id = repository.create(make_payload(synthesized, polyline_history=history))

    assert len(repository.get(network_id).connections) == 4


def test_failed_create_leaves_nothing_behind(repository, engine, synthesized, monkeypatch):
    def boom(*args, **kwargs):
        raise OperationalError("INSERT INTO connections", {}, Exception("disk full"))

    monkeypatch.setattr(repository, "_insert_connections", boom)

    with pytest.raises(PersistenceError):
        repository.create(make_payload(synthesized))
    assert _count(engine, tables.networks) == 0
    assert _count(engine, tables.points) == 0


def test_replace_is_idempotent(repository, saved_network, synthesized):
    payload = make_payload(synthesized, status="unverified")

    repository.replace(saved_network, payload)
    first = repository.get(saved_network)
    repository.replace(saved_network, payload)
    second = repository.get(saved_network)

    assert _contents(first) == _contents(second)
    assert second.network.status == "unverified"
    assert second.network.total_length == pytest.approx(first.network.total_length)


def test_replace_swaps_contents(repository, engine, saved_network, synthesizer, square_points):
    smaller = synthesizer.synthesize(square_points[:3], [], "A")
    repository.replace(saved_network, make_payload(smaller))

    detail = repository.get(saved_network)
    assert [p.name for p in detail.points] == ["A", "B", "C"]
    assert len(detail.connections) == 3
    assert all(c.type == "proposed" for c in detail.connections)
    assert detail.network.existing_length == 0.0
    assert _count(engine, tables.connections) == 3


def test_failed_replace_keeps_old_state(repository, saved_network, synthesizer, square_points, monkeypatch):
    before = repository.get(saved_network)

    def boom(*args, **kwargs):
        raise OperationalError("INSERT INTO connections", {}, Exception("lost connection"))

    monkeypatch.setattr(repository, "_insert_connections", boom)
    with pytest.raises(PersistenceError):
        repository.replace(saved_network, make_payload(synthesizer.synthesize(square_points[:2], [], "A")))

    assert _contents(repository.get(saved_network)) == _contents(before)


def test_replace_unknown_network(repository, synthesized):
    with pytest.raises(NetworkNotFoundError):
        repository.replace(404, make_payload(synthesized))


def test_verify_and_unverify(repository, saved_network):
    repository.unverify(saved_network)
    assert repository.get(saved_network).network.status == "unverified"
    repository.verify(saved_network)
    assert repository.get(saved_network).network.status == "verified"

    with pytest.raises(NetworkNotFoundError):
        repository.verify(404)


def test_delete_removes_everything(repository, engine, saved_network):
    repository.delete(saved_network)

    with pytest.raises(NetworkNotFoundError):
        repository.get(saved_network)
    assert _count(engine, tables.points) == 0
    assert _count(engine, tables.connections) == 0

    with pytest.raises(NetworkNotFoundError):
        repository.delete(saved_network)


def test_list_filters_and_paginates(repository, synthesized):
    ids = [repository.create(make_payload(synthesized)) for _ in range(3)]
    repository.create(make_payload(synthesized, st_code="27", status="unverified"))

    page = repository.list(st_code="19", page=1, limit=2)
    assert [n.id for n in page.data] == [ids[2], ids[1]]
    assert page.pagination.total_rows == 3
    assert page.pagination.total_pages == 2
    assert page.filters["st_code"] == "19"

    assert [n.id for n in repository.list(st_code="19", page=2, limit=2).data] == [ids[0]]
    assert repository.list(status="unverified").pagination.total_rows == 1
    assert repository.list(page=5).data == []


def test_find_connection_by_location_codes(repository, saved_network):
    [connection] = repository.find_connection("100", "101")
    assert (connection.start, connection.end) == ("A", "B")
    assert connection.network_id == saved_network

    with pytest.raises(SegmentNotFoundError):
        repository.find_connection("101", "100")
    with pytest.raises(SegmentNotFoundError):
        repository.find_connection("100", "999")


def test_lower_case_history_keys_are_stored(repository, synthesized):
    history = synthesized.model_dump(by_alias=True)["polylineHistory"]
    history = {key.lower(): entry for key, entry in history.items()}

    network_id = repository.create(make_payload(synthesized, polyline_history=history))

    connections = repository.get(network_id).connections
    assert [(c.start, c.end) for c in connections] == [("A", "B"), ("B", "C"), ("C", "D"), ("D", "A")]


def test_update_properties_of_point_and_line(repository, saved_network):
    detail = repository.get(saved_network)
    point = detail.points[0]
    connection = detail.connections[0]

    repository.update_properties(saved_network, "point", point.id, {"owner": "BSNL"})
    repository.update_properties(saved_network, "line", connection.id, {"fiber": "24F"})

    detail = repository.get(saved_network)
    assert next(p for p in detail.points if p.id == point.id).properties == {"owner": "BSNL"}
    assert next(c for c in detail.connections if c.id == connection.id).properties == {"fiber": "24F"}


def test_update_properties_of_missing_row(repository, saved_network, synthesized):
    other = repository.create(make_payload(synthesized))
    foreign_point = repository.get(other).points[0]

    with pytest.raises(FeatureNotFoundError):
        repository.update_properties(saved_network, "line", 9999, {})
    # Rows of another network are not reachable through this one
    with pytest.raises(FeatureNotFoundError):
        repository.update_properties(saved_network, "point", foreign_point.id, {})
    with pytest.raises(NetworkNotFoundError):
        repository.update_properties(404, "point", foreign_point.id, {})
    with pytest.raises(ValueError):
        repository.update_properties(saved_network, "polygon", 1, {})
