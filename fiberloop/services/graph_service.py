"""Adjacency of survey points with existing and proposed edges"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import networkx as nx

from .. import config
from ..models.schemas import Point, Segment
from ..utils.geo_utils import haversine_km, pairwise_distance_matrix_km
from .normalizer import normalize_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Edge:
    """A traversal from one point to another"""
    source: str
    target: str
    weight: float  # km
    existing: bool
    coordinates: Optional[Tuple[Tuple[float, float], ...]] = None
    color: Optional[str] = None


class NetworkGraph:
    """
    Survey points plus the connections already built between them.

    Known connections are stored as existing edges in a networkx graph.
    Every other pair of points is implicitly connectable by a proposed
    edge weighted by great-circle distance, computed on demand.
    """

    def __init__(self, points: List[Point]):
        self.G = nx.Graph()
        self.order: List[str] = []
        self._by_code: Dict[str, str] = {}
        for point in points:
            if point.name in self.G:
                logger.warning("Duplicate point %s ignored", point.name)
                continue
            self.G.add_node(point.name, point=point, index=len(self.order))
            self.order.append(point.name)
            if point.lgd_code != config.DEFAULT_LGD_CODE:
                self._by_code.setdefault(point.lgd_code, point.name)

        self._matrix = None
        if len(self.order) <= config.EAGER_MATRIX_LIMIT:
            self._matrix = pairwise_distance_matrix_km([self.point(n).coordinates for n in self.order])

    @classmethod
    def build(cls, points: List[Point], connections: Iterable[Segment]) -> "NetworkGraph":
        """
        Build the graph from normalized points and known connections.

        Args:
            points: Validated points, in input order
            connections: Known (existing) connections

        Returns:
            NetworkGraph with one existing edge per resolvable connection
        """
        graph = cls(points)
        added = 0
        for connection in connections:
            if graph.add_existing(connection):
                added += 1
        logger.info("Graph built: %d points, %d existing edges", len(graph), added)
        return graph

    def __len__(self) -> int:
        return len(self.order)

    def __contains__(self, name: str) -> bool:
        return name in self.G

    def point(self, name: str) -> Point:
        return self.G.nodes[name]["point"]

    def resolve(self, ref: Optional[str]) -> Optional[str]:
        """Map a connection endpoint (name or location code) to a point name."""
        if ref is None:
            return None
        name = normalize_name(ref)
        if name in self.G:
            return name
        return self._by_code.get(str(ref).strip())

    def add_existing(self, connection: Segment) -> bool:
        start = self.resolve(connection.start)
        end = self.resolve(connection.end)
        if start is None or end is None:
            logger.warning("No matching points for %s to %s", connection.start, connection.end)
            return False
        if start == end:
            return False
        if self.G.has_edge(start, end):
            logger.warning("Duplicate connection %s to %s ignored", start, end)
            return False
        self.G.add_edge(
            start,
            end,
            length=connection.length,
            coordinates=tuple(tuple(c) for c in connection.coordinates),
            color=connection.color,
            source=start,
        )
        return True

    def distance(self, u: str, v: str) -> float:
        if self._matrix is not None:
            return float(self._matrix[self.G.nodes[u]["index"], self.G.nodes[v]["index"]])
        return haversine_km(self.point(u).coordinates, self.point(v).coordinates)

    def edge(self, u: str, v: str) -> Edge:
        """
        Edge from u to v: the known connection if one exists, otherwise a
        proposed edge weighted by haversine distance.
        """
        if self.G.has_edge(u, v):
            data = self.G.edges[u, v]
            coords = data["coordinates"]
            if data["source"] != u:
                coords = tuple(reversed(coords))
            return Edge(u, v, data["length"], True, coords, data.get("color"))
        return Edge(u, v, self.distance(u, v), False)

    def candidates(self, cursor: str, unvisited: Iterable[str]) -> List[Edge]:
        """Edges from the cursor to every unvisited point, in input order."""
        return [self.edge(cursor, name) for name in unvisited if name != cursor]

    def index(self, name: str) -> int:
        return self.G.nodes[name]["index"]
