"""Transactional storage of networks, their points and connections"""
import logging
import math
import re
import threading
import weakref
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .. import config
from ..exceptions import (
    FeatureNotFoundError,
    NetworkNotFoundError,
    PersistenceError,
    SegmentNotFoundError,
)
from ..models import tables
from ..models.schemas import (
    LoopPoint,
    NetworkDetail,
    NetworkListResponse,
    NetworkPayload,
    NetworkSummary,
    Pagination,
    PolylineHistoryEntry,
    StoredConnection,
    StoredPoint,
)
from ..utils.geo_utils import polyline_length_km
from .normalizer import is_valid_segment, normalize_coordinate, normalize_name, round_coordinates

logger = logging.getLogger(__name__)

_SEGMENT_KEY = re.compile(r"^(.+?)\s+TO\s+(.+)$", re.IGNORECASE)


class NetworkLocks:
    """
    One lock per network id, so full replaces of a network run one at a time.

    Locks are held weakly: an id's entry disappears once no caller holds it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()

    def __call__(self, network_id: int) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(network_id, threading.Lock())

    def __len__(self) -> int:
        return len(self._locks)


def parse_segment_key(key: str) -> Optional[Tuple[str, str]]:
    match = _SEGMENT_KEY.match(key.strip())
    if not match:
        return None
    return normalize_name(match.group(1)), normalize_name(match.group(2))


class NetworkRepository:
    """Repository for the networks / points / connections tables"""

    def __init__(self, engine: Engine, locks: Optional[NetworkLocks] = None):
        self.engine = engine
        self.locks = locks or NetworkLocks()

    # ---------- writes ----------

    def create(self, payload: NetworkPayload) -> int:
        """
        Insert a network with its points and connections in one transaction.

        Args:
            payload: Synthesis result plus owner and administrative codes

        Returns:
            Id of the new network

        Raises:
            PersistenceError: Any statement failed; nothing was written
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(insert(tables.networks).values(**self._network_values(payload)))
                network_id = result.inserted_primary_key[0]
                self._insert_contents(conn, network_id, payload)
                self.recompute_totals(conn, network_id, expected=payload)
        except SQLAlchemyError as exc:
            logger.error("Error saving network %s: %s", payload.main_point_name, exc)
            raise PersistenceError(f"Failed to save network: {exc}") from exc
        logger.info("Network %s saved with id %d", payload.main_point_name, network_id)
        return network_id

    def replace(self, network_id: int, payload: NetworkPayload) -> None:
        """
        Overwrite a network: delete its points and connections, update the
        network row, then insert the new contents, all in one transaction.

        Raises:
            NetworkNotFoundError: Unknown network id
            PersistenceError: Any statement failed; the old state is kept
        """
        with self.locks(network_id):
            try:
                with self.engine.begin() as conn:
                    self.require(conn, network_id)
                    conn.execute(delete(tables.points).where(tables.points.c.network_id == network_id))
                    conn.execute(delete(tables.connections).where(tables.connections.c.network_id == network_id))
                    conn.execute(
                        update(tables.networks)
                        .where(tables.networks.c.id == network_id)
                        .values(**self._network_values(payload))
                    )
                    self._insert_contents(conn, network_id, payload)
                    self.recompute_totals(conn, network_id, expected=payload)
            except SQLAlchemyError as exc:
                logger.error("Error updating network %d: %s", network_id, exc)
                raise PersistenceError(f"Failed to update network {network_id}: {exc}") from exc
        logger.info("Network %d replaced", network_id)

    def set_status(self, network_id: int, status: str) -> None:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(tables.networks).where(tables.networks.c.id == network_id).values(status=status)
                )
                if result.rowcount == 0:
                    raise NetworkNotFoundError(network_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update status of network {network_id}: {exc}") from exc
        logger.info("Network %d marked %s", network_id, status)

    def verify(self, network_id: int) -> None:
        self.set_status(network_id, "verified")

    def unverify(self, network_id: int) -> None:
        self.set_status(network_id, "unverified")

    def delete(self, network_id: int) -> None:
        """Delete connections, then points, then the network row."""
        with self.locks(network_id):
            try:
                with self.engine.begin() as conn:
                    self.require(conn, network_id)
                    conn.execute(delete(tables.connections).where(tables.connections.c.network_id == network_id))
                    conn.execute(delete(tables.points).where(tables.points.c.network_id == network_id))
                    conn.execute(delete(tables.networks).where(tables.networks.c.id == network_id))
            except SQLAlchemyError as exc:
                logger.error("Error deleting network %d: %s", network_id, exc)
                raise PersistenceError(f"Failed to delete network {network_id}: {exc}") from exc
        logger.info("Network %d deleted", network_id)

    def update_properties(self, network_id: int, kind: str, row_id: int, properties: Dict[str, Any]) -> None:
        """
        Replace the properties of one point or connection.

        Args:
            network_id: Network the row belongs to
            kind: "point" or "line"
            row_id: Point or connection id
            properties: New properties object

        Raises:
            NetworkNotFoundError: Unknown network id
            FeatureNotFoundError: No such row in this network
            PersistenceError: The update failed
        """
        table = {"point": tables.points, "line": tables.connections}.get(kind)
        if table is None:
            raise ValueError(f"Unknown feature type {kind!r}")

        with self.locks(network_id):
            try:
                with self.engine.begin() as conn:
                    self.require(conn, network_id)
                    result = conn.execute(
                        update(table)
                        .where(table.c.id == row_id, table.c.network_id == network_id)
                        .values(properties=properties)
                    )
                    if result.rowcount == 0:
                        raise FeatureNotFoundError(f"No {kind} with id {row_id} in network {network_id}")
            except SQLAlchemyError as exc:
                logger.error("Error updating %s %d properties: %s", kind, row_id, exc)
                raise PersistenceError(f"Failed to update {kind} {row_id}: {exc}") from exc
        logger.info("Properties of %s %d in network %d updated", kind, row_id, network_id)

    def recompute_totals(self, conn: Connection, network_id: int, expected: Optional[NetworkPayload] = None) -> Dict[str, float]:
        """
        Rewrite the network's lengths from every persisted connection.

        Returns:
            The new existing_length / proposed_length / total_length
        """
        rows = conn.execute(
            select(tables.connections.c.type, func.coalesce(func.sum(tables.connections.c.length), 0.0))
            .where(tables.connections.c.network_id == network_id)
            .group_by(tables.connections.c.type)
        ).all()
        sums = {kind: float(total) for kind, total in rows}
        totals = {
            "existing_length": sums.get("existing", 0.0),
            "proposed_length": sums.get("proposed", 0.0),
        }
        totals["total_length"] = totals["existing_length"] + totals["proposed_length"]

        if expected is not None and not math.isclose(
            expected.total_length, totals["total_length"], abs_tol=config.LENGTH_TOLERANCE_KM
        ):
            logger.warning(
                "Network %d: submitted total %.6f km differs from stored segments %.6f km; using stored",
                network_id, expected.total_length, totals["total_length"],
            )

        conn.execute(update(tables.networks).where(tables.networks.c.id == network_id).values(**totals))
        return totals

    # ---------- reads ----------

    def get(self, network_id: int) -> NetworkDetail:
        with self.engine.connect() as conn:
            network = self.require(conn, network_id)
            point_rows = conn.execute(
                select(tables.points).where(tables.points.c.network_id == network_id).order_by(tables.points.c.id)
            ).mappings().all()
            connection_rows = conn.execute(
                select(tables.connections)
                .where(tables.connections.c.network_id == network_id)
                .order_by(tables.connections.c.id)
            ).mappings().all()
        return NetworkDetail(
            network=NetworkSummary(**network),
            points=[StoredPoint(**row) for row in point_rows],
            connections=[StoredConnection(**row) for row in connection_rows],
        )

    def list(
        self,
        status: Optional[str] = None,
        st_code: Optional[str] = None,
        dt_code: Optional[str] = None,
        blk_code: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> NetworkListResponse:
        """Paginated network summaries, newest first."""
        page = max(page, 1)
        limit = limit or config.DEFAULT_PAGE_SIZE
        filters = {"status": status, "st_code": st_code, "dt_code": dt_code, "blk_code": blk_code}
        conditions = [getattr(tables.networks.c, key) == value for key, value in filters.items() if value]

        with self.engine.connect() as conn:
            total = conn.execute(
                select(func.count()).select_from(tables.networks).where(*conditions)
            ).scalar_one()
            rows = conn.execute(
                select(tables.networks)
                .where(*conditions)
                .order_by(tables.networks.c.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            ).mappings().all()

        return NetworkListResponse(
            pagination=Pagination(
                current_page=page,
                total_pages=math.ceil(total / limit),
                total_rows=total,
                limit=limit,
            ),
            filters=filters,
            data=[NetworkSummary(**row) for row in rows],
        )

    def find_connection(self, from_code: str, to_code: str) -> List[StoredConnection]:
        """
        Connections from one location code to another inside one network.

        Raises:
            SegmentNotFoundError: A point is unknown, the points belong to
                different networks, or nothing connects them
        """
        with self.engine.connect() as conn:
            from_point = self._point_by_code(conn, from_code)
            to_point = self._point_by_code(conn, to_code)
            if from_point["network_id"] != to_point["network_id"]:
                raise SegmentNotFoundError("Both points do not belong to the same network block")
            rows = conn.execute(
                select(tables.connections).where(
                    tables.connections.c.network_id == from_point["network_id"],
                    tables.connections.c.start_latlong == from_code,
                    tables.connections.c.end_latlong == to_code,
                )
            ).mappings().all()
        if not rows:
            raise SegmentNotFoundError("No matching connection found between the given points")
        return [StoredConnection(**row) for row in rows]

    # ---------- helpers ----------

    @staticmethod
    def require(conn: Connection, network_id: int):
        row = conn.execute(select(tables.networks).where(tables.networks.c.id == network_id)).mappings().first()
        if row is None:
            raise NetworkNotFoundError(network_id)
        return row

    @staticmethod
    def _point_by_code(conn: Connection, code: str):
        row = conn.execute(
            select(tables.points).where(tables.points.c.lgd_code == code).order_by(tables.points.c.id)
        ).mappings().first()
        if row is None:
            raise SegmentNotFoundError(f"No point found with location code {code}")
        return row

    @staticmethod
    def _network_values(payload: NetworkPayload) -> Dict:
        name = normalize_name(payload.main_point_name) or payload.main_point_name
        return {
            "name": name,
            "main_point_name": name,
            "total_length": payload.total_length,
            "existing_length": payload.existing_length,
            "proposed_length": payload.proposed_length,
            "st_code": payload.st_code,
            "st_name": payload.st_name,
            "dt_code": payload.dt_code,
            "dt_name": payload.dt_name,
            "blk_code": payload.blk_code,
            "blk_name": payload.blk_name,
            "user_id": payload.user_id,
            "user_name": payload.user_name,
            "status": payload.status,
        }

    def _insert_contents(self, conn: Connection, network_id: int, payload: NetworkPayload) -> None:
        names = self._insert_points(conn, network_id, payload.loop)
        self._insert_connections(conn, network_id, payload.polyline_history, names)

    @staticmethod
    def _insert_points(conn: Connection, network_id: int, loop: List[LoopPoint]) -> set:
        inserted = set()
        for point in loop:
            name = normalize_name(point.name)
            if not name or name in inserted:
                continue
            coords = normalize_coordinate(point.coordinates)
            if coords is None:
                logger.warning("Skipping point %s: invalid coordinates %r", name, point.coordinates)
                continue
            lgd_code = point.lgd_code if point.lgd_code not in ("", "NULL") else config.DEFAULT_LGD_CODE
            conn.execute(
                insert(tables.points).values(
                    network_id=network_id,
                    name=name,
                    coordinates=coords,
                    lgd_code=lgd_code,
                    properties=point.properties,
                )
            )
            inserted.add(name)
        return inserted

    @staticmethod
    def _insert_connections(
        conn: Connection,
        network_id: int,
        history: Dict[str, PolylineHistoryEntry],
        point_names: set,
    ) -> None:
        for key, entry in history.items():
            endpoints = parse_segment_key(key)
            if endpoints is None:
                logger.warning("Skipping polyline history entry: invalid key format %r", key)
                continue
            start, end = endpoints

            coords = round_coordinates(entry.polyline.coordinates)
            if not is_valid_segment(coords):
                logger.warning("Skipping connection %s: invalid coordinates", key)
                continue
            if start not in point_names or end not in point_names:
                logger.warning("Connection %s references a point missing from the network", key)

            meta = entry.segment_data.connection
            conn.execute(
                insert(tables.connections).values(
                    network_id=network_id,
                    start=start,
                    end=end,
                    length=meta.length or polyline_length_km(coords),
                    original_name=key,
                    coordinates=coords,
                    color=meta.color,
                    start_latlong=entry.segment_data.start_cords,
                    end_latlong=entry.segment_data.end_cords,
                    type="existing" if meta.existing else "proposed",
                    status=config.DEFAULT_SEGMENT_STATUS,
                    properties=entry.segment_data.properties,
                )
            )
