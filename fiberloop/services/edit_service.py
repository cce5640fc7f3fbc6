"""Server side of the interactive segment editor"""
import logging
from typing import Any, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import InvalidGeometryError, PersistenceError, SegmentNotFoundError
from ..models import tables
from ..models.schemas import (
    NetworkSummary,
    RerouteRequest,
    SegmentEditRequest,
    SegmentRef,
    SegmentUpdateResponse,
    StoredConnection,
)
from ..utils.geo_utils import polyline_length_km
from .network_service import NetworkRepository
from .normalizer import is_valid_segment, normalize_coordinate, normalize_name, round_coordinates
from .route_service import RouteService

logger = logging.getLogger(__name__)


class EditService:
    """
    Applies single-segment edits to a persisted network.

    Submitted geometry is always re-validated, and network totals are
    recomputed from every stored connection after each edit.
    """

    def __init__(self, repository: NetworkRepository, route_service: RouteService):
        self.repository = repository
        self.route_service = route_service

    def update_segment(self, network_id: int, request: SegmentEditRequest) -> SegmentUpdateResponse:
        """
        Store a client-edited polyline for one connection.

        Args:
            network_id: Network owning the connection
            request: Segment reference, edited coordinates and optional
                length/color/type

        Returns:
            The updated connection and the network with fresh totals

        Raises:
            InvalidGeometryError: Edited geometry is degenerate
            NetworkNotFoundError / SegmentNotFoundError: Unknown references
        """
        coords = round_coordinates(request.coordinates)
        if not is_valid_segment(coords):
            raise InvalidGeometryError("Edited segment geometry is invalid")

        length = request.length
        if length is None or length < 0:
            length = polyline_length_km(coords)

        values = {"coordinates": coords, "length": length}
        if request.color:
            values["color"] = request.color
        if request.type:
            values["type"] = request.type
        return self._apply(network_id, request, values)

    def reroute_segment(self, network_id: int, request: RerouteRequest) -> SegmentUpdateResponse:
        """
        Re-resolve a connection through a dragged waypoint.

        The directions provider is asked for a route start -> waypoint ->
        end; without one the segment becomes two straight legs through the
        waypoint. Type and color are kept.
        """
        row = self._load(network_id, request)
        waypoint = normalize_coordinate({"lat": request.waypoint.lat, "lng": request.waypoint.lng})
        start, end = row.coordinates[0], row.coordinates[-1]

        paths = self.route_service.fetch_alternatives(
            {"lat": start[1], "lng": start[0]},
            {"lat": end[1], "lng": end[0]},
            waypoint={"lat": waypoint[1], "lng": waypoint[0]},
        )
        path = next((p for p in paths if is_valid_segment(p.coordinates)), None)
        if path is not None:
            coords, length = path.coordinates, path.distance_km
        else:
            logger.warning("No route through waypoint for connection %d; using straight legs", row.id)
            coords = [list(start), waypoint, list(end)]
            length = polyline_length_km(coords)

        if not is_valid_segment(coords):
            raise InvalidGeometryError("Rerouted segment geometry is invalid")
        return self._apply(network_id, SegmentRef(connection_id=row.id), {"coordinates": coords, "length": length})

    def _load(self, network_id: int, ref: SegmentRef) -> StoredConnection:
        with self.repository.engine.connect() as conn:
            self.repository.require(conn, network_id)
            return self._find(conn, network_id, ref)

    def _apply(self, network_id: int, ref: SegmentRef, values: dict) -> SegmentUpdateResponse:
        with self.repository.locks(network_id):
            try:
                with self.repository.engine.begin() as conn:
                    self.repository.require(conn, network_id)
                    segment = self._find(conn, network_id, ref)
                    conn.execute(
                        update(tables.connections).where(tables.connections.c.id == segment.id).values(**values)
                    )
                    self.repository.recompute_totals(conn, network_id)
                    updated = self._find(conn, network_id, SegmentRef(connection_id=segment.id))
                    network = self.repository.require(conn, network_id)
            except SQLAlchemyError as exc:
                logger.error("Error updating segment in network %d: %s", network_id, exc)
                raise PersistenceError(f"Failed to update segment: {exc}") from exc

        logger.info("Segment %d of network %d updated (%.3f km)", updated.id, network_id, updated.length)
        return SegmentUpdateResponse(connection=updated, network=NetworkSummary(**network))

    @staticmethod
    def _find(conn: Connection, network_id: int, ref: SegmentRef) -> StoredConnection:
        c = tables.connections.c
        query = select(tables.connections).where(c.network_id == network_id)
        if ref.connection_id is not None:
            query = query.where(c.id == ref.connection_id)
        else:
            refs = _endpoint_refs(ref.start, ref.end)
            query = query.where(
                or_(
                    and_(c.start.in_(refs[0]), c.end.in_(refs[1])),
                    and_(c.start_latlong.in_(refs[0]), c.end_latlong.in_(refs[1])),
                    and_(c.start.in_(refs[1]), c.end.in_(refs[0])),
                    and_(c.start_latlong.in_(refs[1]), c.end_latlong.in_(refs[0])),
                )
            ).order_by(c.id)

        row = conn.execute(query).mappings().first()
        if row is None:
            raise SegmentNotFoundError(f"No connection matches {_describe(ref)} in network {network_id}")
        return StoredConnection(**row)


def _endpoint_refs(start: Optional[str], end: Optional[str]) -> List[List[Any]]:
    """Each endpoint as given and in normalized form, so names and codes both match."""
    return [
        list({value for value in (ref.strip(), normalize_name(ref)) if value})
        for ref in (start or "", end or "")
    ]


def _describe(ref: SegmentRef) -> str:
    if ref.connection_id is not None:
        return f"id {ref.connection_id}"
    return f"{ref.start} TO {ref.end}"
