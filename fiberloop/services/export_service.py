"""KML and CSV downloads of a synthesized or stored loop"""
import csv
import io
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Tuple

import simplekml

from .. import config
from ..models.schemas import (
    ConnectionMeta,
    LoopPoint,
    NetworkDetail,
    PolylineGeometry,
    PolylineHistoryEntry,
    SegmentData,
    SynthesisResult,
)
from ..utils.geo_utils import midpoint
from .normalizer import round_coordinates, to_latlng_dicts
from .tour_service import segment_key

logger = logging.getLogger(__name__)

# Alternatives picked in the editor are stored as "<key>-route<N>"
_ROUTE_SUFFIX = re.compile(r"-route\d+$", re.IGNORECASE)

ANCHOR_ICON = "https://maps.google.com/mapfiles/kml/paddle/red-circle.png"
POINT_ICON = "https://maps.google.com/mapfiles/kml/paddle/blu-circle.png"
CSV_HEADER = ["Type", "Name", "Longitude", "Latitude", "Length_km", "Existing"]
KML_MEDIA_TYPE = "application/vnd.google-earth.kml+xml"
CSV_MEDIA_TYPE = "text/csv"


@dataclass
class ExportSegment:
    name: str
    coordinates: List[List[float]]  # [lon, lat]
    length: float
    existing: bool
    color: str


def _kml_color(hex_color: str) -> str:
    value = hex_color.lstrip("#")
    try:
        r, g, b = int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
    except ValueError:
        logger.warning("Invalid segment color %r; using black", hex_color)
        r = g = b = 0
    return simplekml.Color.rgb(r, g, b)


class ExportService:
    """Service for turning a loop into files a GIS tool can open"""

    @staticmethod
    def points(result: SynthesisResult) -> List[LoopPoint]:
        """Loop points once each, in loop order."""
        seen = set()
        unique = []
        for point in result.loop:
            if point.name in seen:
                continue
            seen.add(point.name)
            unique.append(point)
        return unique

    @staticmethod
    def segments(result: SynthesisResult) -> List[ExportSegment]:
        """
        One segment per polyline history key.

        Route alternatives of the same segment ("<key>-route2") collapse
        onto their key; the longest one is kept. Entries with fewer than
        two usable vertices are left out.
        """
        chosen: Dict[str, ExportSegment] = {}
        for key, entry in result.polyline_history.items():
            coords = round_coordinates(entry.polyline.coordinates)
            if len(coords) < 2:
                logger.warning("Segment %s has no drawable geometry; not exported", key)
                continue
            name = _ROUTE_SUFFIX.sub("", key)
            meta = entry.segment_data.connection
            if name in chosen and chosen[name].length >= meta.length:
                continue
            chosen[name] = ExportSegment(name, coords, meta.length, meta.existing, meta.color)
        return list(chosen.values())

    @staticmethod
    def to_csv(result: SynthesisResult) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for point in ExportService.points(result):
            writer.writerow(["Point", point.name, point.coordinates[0], point.coordinates[1], "", ""])
        for segment in ExportService.segments(result):
            writer.writerow(["Line", segment.name, "", "", segment.length, str(segment.existing).lower()])
        return buffer.getvalue()

    @staticmethod
    def to_kml(result: SynthesisResult) -> str:
        """
        Render the loop as KML.

        Args:
            result: Synthesized or stored loop

        Returns:
            KML document with one placemark per point, one line per
            segment (length and existing flag in ExtendedData) and a
            length label at each segment's midpoint
        """
        kml = simplekml.Kml(name=f"Fiber loop {result.main_point_name}")

        anchor_style = simplekml.Style()
        anchor_style.iconstyle.icon.href = ANCHOR_ICON
        point_style = simplekml.Style()
        point_style.iconstyle.icon.href = POINT_ICON
        label_style = simplekml.Style()
        label_style.iconstyle.scale = 0
        label_style.labelstyle.scale = 1.2
        line_styles: Dict[str, simplekml.Style] = {}

        for point in ExportService.points(result):
            placemark = kml.newpoint(name=point.name, coords=[(point.coordinates[0], point.coordinates[1])])
            placemark.style = anchor_style if point.name == result.main_point_name else point_style

        for segment in ExportService.segments(result):
            style = line_styles.get(segment.color)
            if style is None:
                style = simplekml.Style()
                style.linestyle.color = _kml_color(segment.color)
                style.linestyle.width = 4
                line_styles[segment.color] = style

            line = kml.newlinestring(name=segment.name, coords=[tuple(c) for c in segment.coordinates])
            line.style = style
            line.extendeddata.newdata(name="length", value=f"{segment.length:.3f} km")
            line.extendeddata.newdata(name="existing", value=str(segment.existing).lower())

            center = midpoint(segment.coordinates)
            if center is not None:
                label = kml.newpoint(name=f"{segment.length:.3f} km", coords=[(center["lng"], center["lat"])])
                label.style = label_style

        return kml.kml()

    @staticmethod
    def from_network(detail: NetworkDetail) -> SynthesisResult:
        """Rebuild the synthesis wire shape from a stored network."""
        network = detail.network
        loop = [
            LoopPoint(
                name=point.name,
                coordinates=point.coordinates,
                lgd_code=point.lgd_code or config.DEFAULT_LGD_CODE,
                properties=point.properties if isinstance(point.properties, dict) else None,
            )
            for point in detail.points
        ]

        history: Dict[str, PolylineHistoryEntry] = {}
        for connection in detail.connections:
            existing = connection.type == "existing"
            default_color = config.EXISTING_COLOR if existing else config.PROPOSED_COLOR
            history[segment_key(connection.start, connection.end)] = PolylineHistoryEntry(
                polyline=PolylineGeometry(coordinates=to_latlng_dicts(connection.coordinates)),
                segment_data=SegmentData(
                    connection=ConnectionMeta(
                        length=connection.length,
                        existing=existing,
                        color=connection.color or default_color,
                    ),
                    start_cords=connection.start_latlong or connection.start,
                    end_cords=connection.end_latlong or connection.end,
                    properties=connection.properties,
                ),
                midpoint=midpoint(connection.coordinates),
            )

        return SynthesisResult(
            loop=loop,
            main_point_name=network.main_point_name or network.name,
            total_length=network.total_length,
            existing_length=network.existing_length,
            proposed_length=network.proposed_length,
            polyline_history=history,
            st_code=network.st_code,
            st_name=network.st_name,
            dt_code=network.dt_code,
            dt_name=network.dt_name,
            blk_code=network.blk_code,
            blk_name=network.blk_name,
        )

    @staticmethod
    def render(result: SynthesisResult, fmt: str) -> Tuple[str, str]:
        """Document text and media type for "kml" or "csv"."""
        if fmt == "kml":
            return ExportService.to_kml(result), KML_MEDIA_TYPE
        if fmt == "csv":
            return ExportService.to_csv(result), CSV_MEDIA_TYPE
        raise ValueError(f"Unknown export format {fmt!r}")
