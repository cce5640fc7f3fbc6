"""Greedy loop construction over survey points"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .. import config
from ..exceptions import SynthesisError
from ..models.schemas import (
    ConnectionMeta,
    LoopPoint,
    Point,
    PolylineGeometry,
    PolylineHistoryEntry,
    Segment,
    SegmentData,
    SynthesisResult,
)
from ..utils.geo_utils import midpoint
from .graph_service import Edge, NetworkGraph
from .normalizer import is_valid_segment, normalize_name, to_latlng_dicts
from .route_service import RouteService

logger = logging.getLogger(__name__)


@dataclass
class Leg:
    """A resolved edge of the loop"""
    edge: Edge
    coordinates: List[List[float]]
    length: float
    color: str
    degenerate: bool = False

    @property
    def existing(self) -> bool:
        return self.edge.existing


def segment_key(start: str, end: str) -> str:
    """Key under which a segment is stored in the polyline history."""
    return f"{start} TO {end}".upper()


def _loop_point(point: Point) -> LoopPoint:
    return LoopPoint(
        name=point.name,
        coordinates=point.coordinates,
        lgd_code=point.lgd_code,
        properties=point.properties or None,
    )


def location_code(point: Point) -> str:
    if point.lgd_code and point.lgd_code != config.DEFAULT_LGD_CODE:
        return point.lgd_code
    return point.name


class TourSynthesizer:
    """
    Builds one closed loop through every point.

    From the anchor, repeatedly moves to the cheapest unvisited point,
    always preferring an existing connection over any proposed one, then
    closes the loop back to the anchor. Proposed edges are routed through
    the directions provider and fall back to straight lines.
    """

    def __init__(self, route_service: RouteService, anchor_policy: Optional[str] = None):
        self.route_service = route_service
        self.anchor_policy = anchor_policy or config.ANCHOR_POLICY

    def synthesize(
        self,
        points: List[Point],
        connections: Optional[List[Segment]] = None,
        anchor_name: Optional[str] = None,
        admin: Optional[Dict[str, Optional[str]]] = None,
    ) -> SynthesisResult:
        """
        Synthesize the loop.

        Args:
            points: Validated points in input order
            connections: Known connections, all treated as existing
            anchor_name: Name of the anchor (block router) point
            admin: State/district/block codes copied onto the result

        Returns:
            SynthesisResult with the loop, per-segment polyline history
            and existing/proposed/total lengths in km

        Raises:
            SynthesisError: Fewer than 2 points, or unknown anchor under
                the strict anchor policy
        """
        graph = NetworkGraph.build(points, connections or [])
        if len(graph) < 2:
            raise SynthesisError(f"At least 2 valid points are required, got {len(graph)}")

        anchor = self.select_anchor(graph, anchor_name)
        logger.info("Synthesizing loop over %d points from anchor %s", len(graph), anchor)

        unvisited = [name for name in graph.order if name != anchor]
        legs: List[Leg] = []
        cursor = anchor

        while unvisited:
            candidates = graph.candidates(cursor, unvisited)
            if not candidates:
                logger.warning("No reachable point from %s; loop left partial", cursor)
                break
            edge = min(candidates, key=lambda e: (not e.existing, e.weight, graph.index(e.target)))
            legs.append(self.resolve_leg(graph, edge))
            unvisited.remove(edge.target)
            cursor = edge.target

        legs.append(self.resolve_leg(graph, graph.edge(cursor, anchor)))
        return self._build_result(graph, anchor, legs, admin or {})

    def select_anchor(self, graph: NetworkGraph, anchor_name: Optional[str]) -> str:
        name = normalize_name(anchor_name)
        if name in graph:
            return name

        if self.anchor_policy == "strict":
            raise SynthesisError(f"Anchor point {anchor_name!r} not found")
        fallback = graph.order[0]
        logger.warning("Anchor point %r not found; using first point %s", anchor_name, fallback)
        return fallback

    def resolve_leg(self, graph: NetworkGraph, edge: Edge) -> Leg:
        """
        Attach geometry and length to an edge.

        Existing edges keep their surveyed geometry. Proposed edges use the
        provider's route when it returns a usable one, otherwise a straight
        two-point segment with haversine length.
        """
        if edge.existing:
            coords = [list(c) for c in edge.coordinates]
            leg = Leg(edge, coords, edge.weight, edge.color or config.EXISTING_COLOR)
        else:
            start = graph.point(edge.source).coordinates
            end = graph.point(edge.target).coordinates
            path = self.route_service.fetch_route(start, end)
            if path is not None and is_valid_segment(path.coordinates):
                leg = Leg(edge, path.coordinates, path.distance_km, config.PROPOSED_COLOR)
            else:
                if path is not None:
                    logger.warning("Degenerate route %s to %s replaced by straight line", edge.source, edge.target)
                leg = Leg(edge, [list(start), list(end)], edge.weight, config.PROPOSED_COLOR)

        if not is_valid_segment(leg.coordinates):
            logger.warning("Segment %s to %s is degenerate and will not be persisted", edge.source, edge.target)
            leg.degenerate = True
        return leg

    @staticmethod
    def _build_result(graph: NetworkGraph, anchor: str, legs: List[Leg], admin: Dict) -> SynthesisResult:
        anchor_point = graph.point(anchor)
        loop = [_loop_point(anchor_point)]
        history: Dict[str, PolylineHistoryEntry] = {}
        existing_length = 0.0
        proposed_length = 0.0

        for leg in legs:
            start = graph.point(leg.edge.source)
            end = graph.point(leg.edge.target)
            loop.append(_loop_point(end))

            if leg.existing:
                existing_length += leg.length
            else:
                proposed_length += leg.length

            history[segment_key(start.name, end.name)] = PolylineHistoryEntry(
                polyline=PolylineGeometry(coordinates=to_latlng_dicts(leg.coordinates)),
                segment_data=SegmentData(
                    connection=ConnectionMeta(length=leg.length, existing=leg.existing, color=leg.color),
                    start_cords=location_code(start),
                    end_cords=location_code(end),
                ),
                degenerate=leg.degenerate,
                midpoint=midpoint(leg.coordinates),
            )

        logger.info(
            "Loop closed: %d segments, existing %.3f km, proposed %.3f km",
            len(legs), existing_length, proposed_length,
        )
        return SynthesisResult(
            loop=loop,
            main_point_name=anchor,
            total_length=existing_length + proposed_length,
            existing_length=existing_length,
            proposed_length=proposed_length,
            polyline_history=history,
            **{key: admin.get(key) for key in ("st_code", "st_name", "dt_code", "dt_name", "blk_code", "blk_name")},
        )
