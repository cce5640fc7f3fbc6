"""Turn parsed KML survey features into validated points and connections"""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from .. import config
from ..models.schemas import ConnectionRecord, Point, PointRecord, Segment
from ..utils.geo_utils import haversine_distance, haversine_km, polyline_length_km
from .normalizer import normalize_name, round_coordinates

logger = logging.getLogger(__name__)

_RGB = re.compile(r"RGB\((\d+),\s*(\d+),\s*(\d+)\)", re.IGNORECASE)
_ADMIN_KEYS = ("st_code", "st_name", "dt_code", "dt_name", "blk_code", "blk_name")


class SurveyService:
    """Service for cleaning survey features before synthesis"""

    @staticmethod
    def flatten_properties(properties: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Merge ExtendedData into the top-level properties.

        'NULL' values become None and the free-text description is dropped.
        """
        props = dict(properties or {})
        props.pop("description", None)
        extended = props.pop("ExtendedData", None)
        if isinstance(extended, dict):
            for key, value in extended.items():
                props[key] = None if value == "NULL" else value
        return props

    @staticmethod
    def is_anchor(properties: Optional[Dict[str, Any]]) -> bool:
        """True when a placemark is marked as the block router."""
        props = properties or {}
        description = props.get("description") or ""
        kind = props.get("type") or (props.get("ExtendedData") or {}).get("type")
        return (
            (isinstance(description, str) and config.ANCHOR_MARKER in description.lower())
            or (isinstance(kind, str) and kind.lower() == config.ANCHOR_MARKER)
        )

    @staticmethod
    def find_anchor(records: Iterable[PointRecord]) -> Optional[str]:
        for record in records:
            if SurveyService.is_anchor(record.properties):
                logger.info("Detected anchor point: %s", record.name)
                return record.name
        return None

    @staticmethod
    def location_code(properties: Dict[str, Any]) -> Optional[str]:
        for key in config.LGD_CODE_KEYS:
            value = properties.get(key)
            if value not in (None, "", "NULL"):
                return str(value)
        return None

    @staticmethod
    def parse_points(records: Iterable[PointRecord]) -> List[Point]:
        """
        Validate point records.

        Records with unusable names or coordinates are dropped with a
        warning; the first record wins when two share a normalized name.

        Returns:
            Points in input order
        """
        points: List[Point] = []
        seen = set()
        for record in records:
            props = SurveyService.flatten_properties(record.properties)
            try:
                point = Point(
                    name=record.name,
                    coordinates=record.coordinates,
                    lgd_code=SurveyService.location_code(props),
                    properties=props,
                )
            except ValidationError as exc:
                logger.warning("Skipping point %r: %s", record.name, exc.errors()[0]["msg"])
                continue
            if point.name in seen:
                continue
            seen.add(point.name)
            points.append(point)
        return points

    @staticmethod
    def missing_location_codes(points: Iterable[Point]) -> List[str]:
        return [p.name for p in points if p.lgd_code == config.DEFAULT_LGD_CODE]

    @staticmethod
    def split_connection_name(name: Optional[str]) -> Optional[Tuple[str, str]]:
        """Split '<start> to <end>' on the last ' to ', case-insensitively."""
        if not name:
            return None
        name = name.strip()
        index = name.lower().rfind(" to ")
        if index == -1:
            return None
        return name[:index].strip(), name[index + 4:].strip()

    @staticmethod
    def parse_color(properties: Dict[str, Any], default: str) -> str:
        match = _RGB.search(str(properties.get("LINE_COLOR") or ""))
        if not match:
            return default
        r, g, b = (min(int(c), 255) for c in match.groups())
        return f"#{r:02x}{g:02x}{b:02x}"

    @staticmethod
    def _surveyed_length(record: ConnectionRecord, props: Dict[str, Any]) -> Optional[float]:
        if record.length:
            return record.length
        for key in config.LENGTH_KEYS:
            try:
                value = float(props.get(key) or 0)
            except (TypeError, ValueError):
                continue
            if value > 0:
                return value
        return None

    @staticmethod
    def parse_connections(records: Iterable[ConnectionRecord], points: List[Point]) -> List[Segment]:
        """
        Validate already-built connections.

        Endpoints come from start/end, or from a '<start> to <end>' name.
        Connections with unknown endpoints or degenerate geometry are
        dropped with a warning.

        Returns:
            Segments typed as existing
        """
        by_name = {p.name: p for p in points}
        by_code = {p.lgd_code: p for p in points if p.lgd_code != config.DEFAULT_LGD_CODE}

        def lookup(ref: Optional[str]) -> Optional[Point]:
            if ref is None:
                return None
            return by_name.get(normalize_name(ref)) or by_code.get(str(ref).strip())

        segments: List[Segment] = []
        for record in records:
            start_ref, end_ref = record.start, record.end
            if not (start_ref and end_ref):
                parts = SurveyService.split_connection_name(record.name)
                if parts is None:
                    logger.warning("Skipping connection with invalid route name: %r", record.name)
                    continue
                start_ref, end_ref = parts

            start, end = lookup(start_ref), lookup(end_ref)
            if start is None or end is None:
                logger.warning("Skipping: no matching points for %s to %s", start_ref, end_ref)
                continue

            props = SurveyService.flatten_properties(record.properties)
            coords = round_coordinates(record.coordinates)
            length = SurveyService._surveyed_length(record, props)
            if length is None:
                length = polyline_length_km(coords) or haversine_km(start.coordinates, end.coordinates)

            try:
                segment = Segment(
                    start=start.name,
                    end=end.name,
                    coordinates=coords,
                    length=length,
                    color=record.color or SurveyService.parse_color(props, config.EXISTING_COLOR),
                    type="existing",
                )
            except ValidationError:
                logger.warning("Skipping: invalid geometry for %s to %s", start.name, end.name)
                continue
            segments.append(segment)
        return segments

    @staticmethod
    def admin_codes(points: List[Point]) -> Dict[str, Optional[str]]:
        """State/district/block codes taken from the first point's properties."""
        props = points[0].properties if points else {}
        return {
            key: (str(props[key]) if props.get(key) not in (None, "") else None)
            for key in _ADMIN_KEYS
        }

    @staticmethod
    def filter_points_by_distance(points: List[Point], min_distance_m: Optional[float] = None) -> List[Point]:
        """
        Thin out GPS clusters.

        Keeps a point only if it is at least min_distance_m from every
        point already kept, scanning in input order.
        """
        if min_distance_m is None:
            min_distance_m = config.MIN_POINT_SPACING_M
        kept: List[Point] = []
        for point in points:
            lon, lat = point.coordinates
            if all(
                haversine_distance(lat, lon, other.coordinates[1], other.coordinates[0]) >= min_distance_m
                for other in kept
            ):
                kept.append(point)
        return kept
