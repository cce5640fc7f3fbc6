"""Health check endpoint"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ...services.network_service import NetworkRepository
from ...services.route_service import RouteService
from ..deps import get_repository, get_route_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", tags=["Health"])
def health_check(
    repository: NetworkRepository = Depends(get_repository),
    route_service: RouteService = Depends(get_route_service),
):
    """
    Health check endpoint for monitoring.

    Returns:
        Overall status, database reachability and whether proposed
        segments can be routed or fall back to straight lines
    """
    try:
        with repository.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as exc:
        logger.error("Database health check failed: %s", exc)
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "routing": "provider" if route_service.api_key else "straight-line",
    }
