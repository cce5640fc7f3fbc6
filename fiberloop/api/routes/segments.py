"""Interactive segment editing endpoints"""
from fastapi import APIRouter, Depends, HTTPException

from ...exceptions import (
    InvalidGeometryError,
    NetworkNotFoundError,
    PersistenceError,
    SegmentNotFoundError,
)
from ...models.schemas import RerouteRequest, SegmentEditRequest, SegmentUpdateResponse
from ...services.edit_service import EditService
from ..deps import get_edit_service

router = APIRouter(prefix="/networks/{network_id}/segments", tags=["Segments"])


def _apply(action, network_id: int, request) -> SegmentUpdateResponse:
    try:
        return action(network_id, request)
    except InvalidGeometryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (NetworkNotFoundError, SegmentNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("", response_model=SegmentUpdateResponse)
def update_segment(
    network_id: int,
    request: SegmentEditRequest,
    edit_service: EditService = Depends(get_edit_service),
):
    """
    Store an edited polyline for one segment.

    The geometry is validated again on the server and the network totals
    are recomputed from all of its segments.
    """
    return _apply(edit_service.update_segment, network_id, request)


@router.post("/reroute", response_model=SegmentUpdateResponse)
def reroute_segment(
    network_id: int,
    request: RerouteRequest,
    edit_service: EditService = Depends(get_edit_service),
):
    """Re-resolve one segment through the waypoint it was dragged to."""
    return _apply(edit_service.reroute_segment, network_id, request)
