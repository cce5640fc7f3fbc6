"""Network persistence endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ...exceptions import (
    FeatureNotFoundError,
    NetworkNotFoundError,
    PersistenceError,
    SegmentNotFoundError,
)
from ...models.schemas import (
    ExportFormat,
    NetworkDetail,
    NetworkIdResponse,
    NetworkListResponse,
    NetworkPayload,
    NetworkStatus,
    PropertiesUpdate,
    StoredConnection,
)
from ...services.export_service import ExportService
from ...services.network_service import NetworkRepository
from ..deps import get_repository

router = APIRouter(tags=["Networks"])


@router.post("/networks", response_model=NetworkIdResponse)
def save_network(payload: NetworkPayload, repository: NetworkRepository = Depends(get_repository)):
    """
    Save a synthesized (and possibly hand-edited) loop as a new network.

    Segments with invalid keys or degenerate geometry are skipped; any
    database failure rolls the whole save back.
    """
    try:
        network_id = repository.create(payload)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return NetworkIdResponse(network_id=network_id, message="Data saved to database")


@router.get("/networks", response_model=NetworkListResponse)
def list_networks(
    status: Optional[NetworkStatus] = None,
    st_code: Optional[str] = None,
    dt_code: Optional[str] = None,
    blk_code: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    repository: NetworkRepository = Depends(get_repository),
):
    """Paginated networks, newest first, filtered by status and location codes."""
    return repository.list(status=status, st_code=st_code, dt_code=dt_code, blk_code=blk_code, page=page, limit=limit)


@router.get("/networks/{network_id}", response_model=NetworkDetail)
def get_network(network_id: int, repository: NetworkRepository = Depends(get_repository)):
    try:
        return repository.get(network_id)
    except NetworkNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/networks/{network_id}", response_model=NetworkIdResponse)
def replace_network(
    network_id: int,
    payload: NetworkPayload,
    repository: NetworkRepository = Depends(get_repository),
):
    """
    Replace every point and connection of a network.

    Args:
        network_id: Network to overwrite
        payload: Full synthesis result to store in its place
    """
    try:
        repository.replace(network_id, payload)
    except NetworkNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return NetworkIdResponse(network_id=network_id, message=f"Network {network_id} updated successfully")


@router.post("/networks/{network_id}/verify", response_model=NetworkIdResponse)
def verify_network(network_id: int, repository: NetworkRepository = Depends(get_repository)):
    return _set_status(repository, network_id, "verified")


@router.post("/networks/{network_id}/unverify", response_model=NetworkIdResponse)
def unverify_network(network_id: int, repository: NetworkRepository = Depends(get_repository)):
    return _set_status(repository, network_id, "unverified")


def _set_status(repository: NetworkRepository, network_id: int, status: str) -> NetworkIdResponse:
    try:
        repository.set_status(network_id, status)
    except NetworkNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return NetworkIdResponse(network_id=network_id, message=f"Network {status}")


@router.delete("/networks/{network_id}", response_model=NetworkIdResponse)
def delete_network(network_id: int, repository: NetworkRepository = Depends(get_repository)):
    try:
        repository.delete(network_id)
    except NetworkNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return NetworkIdResponse(network_id=network_id, message=f"Network {network_id} deleted successfully")


@router.get("/networks/{network_id}/export/{fmt}")
def export_network(network_id: int, fmt: ExportFormat, repository: NetworkRepository = Depends(get_repository)):
    """Download a stored network as KML or CSV."""
    try:
        detail = repository.get(network_id)
    except NetworkNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    content, media_type = ExportService.render(ExportService.from_network(detail), fmt)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="network-{network_id}.{fmt}"'},
    )


@router.patch("/networks/{network_id}/properties", response_model=NetworkIdResponse)
def update_properties(
    network_id: int,
    update: PropertiesUpdate,
    repository: NetworkRepository = Depends(get_repository),
):
    """Replace the properties of one point or connection of a network."""
    try:
        repository.update_properties(network_id, update.type, update.id, update.properties)
    except (NetworkNotFoundError, FeatureNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return NetworkIdResponse(network_id=network_id, message="Properties updated successfully")


@router.get("/connections", response_model=List[StoredConnection])
def get_connections(
    from_code: str = Query(..., min_length=1),
    to_code: str = Query(..., min_length=1),
    repository: NetworkRepository = Depends(get_repository),
):
    """Segments running from one location code to another."""
    try:
        return repository.find_connection(from_code, to_code)
    except SegmentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
