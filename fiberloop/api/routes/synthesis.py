"""Loop synthesis endpoints"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from ...exceptions import PersistenceError, SynthesisError
from ...models.schemas import (
    ComputeRouteRequest,
    ExportFormat,
    NetworkIdResponse,
    NetworkPayload,
    RouteAlternative,
    SynthesisRequest,
    SynthesisResult,
)
from ...services.export_service import ExportService
from ...services.network_service import NetworkRepository
from ...services.route_service import RouteService
from ...services.survey_service import SurveyService
from ...services.tour_service import TourSynthesizer
from ..deps import get_repository, get_route_service, get_synthesizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/routes", tags=["Synthesis"])


def _synthesize(request: SynthesisRequest, synthesizer: TourSynthesizer) -> SynthesisResult:
    logger.info("[1/3] Normalizing %d points...", len(request.points))
    points = SurveyService.parse_points(request.points)
    if request.min_spacing_m:
        points = SurveyService.filter_points_by_distance(points, request.min_spacing_m)
    logger.info("      Valid points: %d", len(points))
    missing = SurveyService.missing_location_codes(points)
    if missing:
        logger.warning("      Points without location code: %s", ", ".join(missing))

    logger.info("[2/3] Normalizing %d known connections...", len(request.connections))
    connections = SurveyService.parse_connections(request.connections, points)
    logger.info("      Existing connections: %d", len(connections))

    anchor = request.anchor or SurveyService.find_anchor(request.points)
    logger.info("[3/3] Building loop from anchor %s...", anchor)
    return synthesizer.synthesize(points, connections, anchor, SurveyService.admin_codes(points))


@router.post("/synthesize", response_model=SynthesisResult)
def synthesize_route(
    request: SynthesisRequest,
    synthesizer: TourSynthesizer = Depends(get_synthesizer),
):
    """
    Build a closed loop through every surveyed point.

    Known connections are reused before any proposed segment is added.
    Nothing is persisted; the result can be edited and saved with
    POST /networks.
    """
    try:
        return _synthesize(request, synthesizer)
    except SynthesisError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Synthesis failed")
        raise HTTPException(
            status_code=500,
            detail=f"Error in synthesis: {str(e)}"
        )


@router.post("/generate", response_model=NetworkIdResponse)
def generate_route(
    request: SynthesisRequest,
    synthesizer: TourSynthesizer = Depends(get_synthesizer),
    repository: NetworkRepository = Depends(get_repository),
):
    """
    Synthesize a loop and store it as an unverified network.

    Args:
        request: Parsed survey points, known connections and owner
    """
    try:
        result = _synthesize(request, synthesizer)
        payload = NetworkPayload(
            **result.model_dump(),
            user_id=request.user_id or 0,
            user_name=request.user_name or "system",
            status="unverified",
        )
        network_id = repository.create(payload)
    except (SynthesisError, ValueError) as e:
        # ValueError covers missing administrative codes on the payload
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.exception("Network generation failed")
        raise HTTPException(
            status_code=500,
            detail=f"Error in network generation: {str(e)}"
        )

    return NetworkIdResponse(network_id=network_id, message="Network generated")


@router.post("/compute", response_model=List[RouteAlternative])
def compute_route(
    request: ComputeRouteRequest,
    route_service: RouteService = Depends(get_route_service),
):
    """Alternative driving routes between two points, optionally through a waypoint."""
    paths = route_service.fetch_alternatives(
        request.origin.model_dump(),
        request.destination.model_dump(),
        request.new_pos.model_dump() if request.new_pos else None,
    )
    if not paths:
        raise HTTPException(status_code=404, detail="No routes found")
    return [RouteAlternative(route=p.coordinates, distance=p.distance_km) for p in paths]


@router.post("/export/{fmt}")
def export_route(fmt: ExportFormat, result: SynthesisResult):
    """Download a synthesized loop as KML or CSV."""
    content, media_type = ExportService.render(result, fmt)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="route.{fmt}"'},
    )
