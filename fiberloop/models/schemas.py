"""Pydantic models for request/response validation"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .. import config
from ..services.normalizer import (
    is_valid_segment,
    normalize_coordinate,
    normalize_name,
    round_coordinates,
)

SegmentType = Literal["existing", "proposed"]
NetworkStatus = Literal["unverified", "verified"]
FeatureKind = Literal["point", "line"]
ExportFormat = Literal["kml", "csv"]


class WireModel(BaseModel):
    """Base for models exchanged with the map client (camelCase on the wire)"""
    model_config = ConfigDict(populate_by_name=True)


# ---------- Parsed survey input ----------

class PointRecord(BaseModel):
    """A Point feature already extracted from the survey KML"""
    name: Optional[str] = Field(default=None, description="Placemark name as surveyed")
    coordinates: Any = Field(..., description="[lon, lat(, alt)] or {lat, lng}")
    properties: Dict[str, Any] = Field(default_factory=dict, description="Placemark properties / ExtendedData")


class ConnectionRecord(BaseModel):
    """A LineString feature already extracted from the survey KML"""
    name: Optional[str] = Field(default=None, description="Usually '<start> to <end>'")
    start: Optional[str] = None
    end: Optional[str] = None
    coordinates: List[Any] = Field(default_factory=list)
    length: Optional[float] = Field(default=None, description="Surveyed length in km", ge=0)
    color: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)


# ---------- Domain records ----------

class Point(BaseModel):
    """A named survey location with validated coordinates"""
    name: str
    coordinates: List[float]
    lgd_code: str = config.DEFAULT_LGD_CODE
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name", mode="before")
    @classmethod
    def canonical_name(cls, value):
        name = normalize_name(value)
        if not name:
            raise ValueError("Point name is required")
        return name

    @field_validator("coordinates", mode="before")
    @classmethod
    def rounded_coordinates(cls, value):
        coord = normalize_coordinate(value)
        if coord is None:
            raise ValueError(f"Invalid point coordinates: {value!r}")
        return coord

    @field_validator("lgd_code", mode="before")
    @classmethod
    def lgd_or_sentinel(cls, value):
        if value is None or str(value).strip() in {"", "NULL"}:
            return config.DEFAULT_LGD_CODE
        return str(value).strip()


class Segment(BaseModel):
    """A connection between two points with non-degenerate geometry"""
    start: str
    end: str
    coordinates: List[List[float]]
    length: float = Field(..., ge=0, description="Length in km")
    color: Optional[str] = Field(default=None, description="Hex color; the type's color when omitted")
    type: SegmentType = "proposed"
    status: str = config.DEFAULT_SEGMENT_STATUS

    @field_validator("coordinates", mode="before")
    @classmethod
    def valid_geometry(cls, value):
        coords = round_coordinates(value)
        if not is_valid_segment(coords):
            raise ValueError("Segment geometry is degenerate")
        return coords

    @property
    def existing(self) -> bool:
        return self.type == "existing"


# ---------- Synthesis wire contract ----------

class LatLng(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class LoopPoint(WireModel):
    name: str
    coordinates: List[float] = Field(..., min_length=2)
    lgd_code: str = config.DEFAULT_LGD_CODE
    properties: Optional[Dict[str, Any]] = None


class PolylineGeometry(WireModel):
    coordinates: List[Any] = Field(default_factory=list, description="{lat, lng} objects or [lon, lat] pairs")


class ConnectionMeta(WireModel):
    length: float = Field(..., ge=0)
    existing: bool = False
    color: str = config.DEFAULT_SEGMENT_COLOR


class SegmentData(WireModel):
    connection: ConnectionMeta
    start_cords: str = Field(..., alias="startCords", min_length=1)
    end_cords: str = Field(..., alias="endCords", min_length=1)
    properties: Optional[Any] = None


class PolylineHistoryEntry(WireModel):
    polyline: PolylineGeometry
    segment_data: SegmentData = Field(..., alias="segmentData")
    degenerate: bool = False
    midpoint: Optional[Dict[str, float]] = Field(default=None, description="{lat, lng} label position")


class SynthesisResult(WireModel):
    """Loop produced by the tour synthesizer"""
    loop: List[LoopPoint]
    main_point_name: str = Field(..., alias="mainPointName")
    total_length: float = Field(..., alias="totalLength")
    existing_length: float = Field(..., alias="existingLength")
    proposed_length: float = Field(..., alias="proposedLength")
    polyline_history: Dict[str, PolylineHistoryEntry] = Field(default_factory=dict, alias="polylineHistory")
    st_code: Optional[str] = None
    st_name: Optional[str] = None
    dt_code: Optional[str] = None
    dt_name: Optional[str] = None
    blk_code: Optional[str] = None
    blk_name: Optional[str] = None


class SynthesisRequest(WireModel):
    """Parsed survey data to turn into a loop"""
    points: List[PointRecord] = Field(..., min_length=1)
    connections: List[ConnectionRecord] = Field(default_factory=list)
    anchor: Optional[str] = Field(default=None, description="Anchor (block router) point name")
    min_spacing_m: Optional[float] = Field(default=None, ge=0, description="Drop points closer than this many meters to an earlier point")
    user_id: Optional[int] = None
    user_name: Optional[str] = None


class NetworkPayload(SynthesisResult):
    """A (possibly hand-edited) synthesis result submitted for saving"""
    user_id: int
    user_name: str = Field(..., min_length=1)
    status: NetworkStatus = "verified"

    @model_validator(mode="after")
    def admin_codes_present(self):
        missing = [
            key for key in ("st_code", "st_name", "dt_code", "dt_name")
            if not getattr(self, key)
        ]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        return self


# ---------- Interactive editing ----------

class SegmentRef(BaseModel):
    """Identifies one connection by id or by its two endpoints"""
    connection_id: Optional[int] = Field(default=None, gt=0)
    start: Optional[str] = None
    end: Optional[str] = None

    @model_validator(mode="after")
    def id_or_endpoints(self):
        if self.connection_id is None and not (self.start and self.end):
            raise ValueError("Provide connection_id or both start and end")
        return self


class SegmentEditRequest(SegmentRef):
    coordinates: List[Any] = Field(..., description="Edited polyline, {lat, lng} objects or [lon, lat] pairs")
    length: Optional[float] = Field(default=None, description="Client-computed length in km")
    color: Optional[str] = None
    type: Optional[SegmentType] = None


class RerouteRequest(SegmentRef):
    waypoint: LatLng = Field(..., description="Position the segment was dragged through")


class ComputeRouteRequest(WireModel):
    origin: LatLng
    destination: LatLng
    new_pos: Optional[LatLng] = Field(default=None, alias="newPos")


class RouteAlternative(BaseModel):
    route: List[List[float]] = Field(..., description="[lon, lat] vertices")
    distance: float = Field(..., description="Distance in km")


# ---------- Stored rows ----------

class StoredPoint(BaseModel):
    id: int
    network_id: int
    name: str
    coordinates: List[float]
    lgd_code: Optional[str] = None
    properties: Optional[Any] = None


class StoredConnection(BaseModel):
    id: int
    network_id: int
    start: str
    end: str
    length: float
    original_name: Optional[str] = None
    coordinates: List[List[float]]
    color: Optional[str] = None
    start_latlong: Optional[str] = None
    end_latlong: Optional[str] = None
    type: SegmentType
    status: Optional[str] = None
    properties: Optional[Any] = None


class NetworkSummary(BaseModel):
    id: int
    name: str
    main_point_name: Optional[str] = None
    total_length: float
    existing_length: float
    proposed_length: float
    st_code: Optional[str] = None
    st_name: Optional[str] = None
    dt_code: Optional[str] = None
    dt_name: Optional[str] = None
    blk_code: Optional[str] = None
    blk_name: Optional[str] = None
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    status: NetworkStatus
    created_at: Optional[datetime] = None


class NetworkDetail(BaseModel):
    network: NetworkSummary
    points: List[StoredPoint]
    connections: List[StoredConnection]


class Pagination(WireModel):
    current_page: int = Field(..., alias="currentPage")
    total_pages: int = Field(..., alias="totalPages")
    total_rows: int = Field(..., alias="totalRows")
    limit: int


class NetworkListResponse(BaseModel):
    pagination: Pagination
    filters: Dict[str, Optional[str]]
    data: List[NetworkSummary]


class NetworkIdResponse(WireModel):
    success: bool = True
    network_id: int = Field(..., alias="networkId")
    message: str = ""


class SegmentUpdateResponse(BaseModel):
    success: bool = True
    connection: StoredConnection
    network: NetworkSummary


class PropertiesUpdate(BaseModel):
    """New properties for one stored point or connection"""
    type: FeatureKind = Field(..., description="'point' or 'line'")
    id: int = Field(..., gt=0, description="Point or connection id")
    properties: Dict[str, Any] = Field(..., description="Replaces the stored properties")
