"""FastAPI application factory"""
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from sqlalchemy.engine import Engine

from . import config
from .api.routes import health, networks, segments, synthesis
from .db import create_db_engine
from .services.edit_service import EditService
from .services.network_service import NetworkRepository
from .services.route_service import RouteService
from .services.tour_service import TourSynthesizer


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or config.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(engine: Optional[Engine] = None, route_service: Optional[RouteService] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        engine: Database engine, built from config.DATABASE_URL when omitted
        route_service: Directions adapter, built from config when omitted

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="FiberLoop Route Synthesis API",
        description="Builds closed fiber loops from surveyed block locations and existing cable",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    engine = engine or create_db_engine()
    route_service = route_service or RouteService()
    repository = NetworkRepository(engine)

    app.state.route_service = route_service
    app.state.repository = repository
    app.state.synthesizer = TourSynthesizer(route_service)
    app.state.edit_service = EditService(repository, route_service)

    # Include routers
    app.include_router(health.router)
    app.include_router(synthesis.router)
    app.include_router(networks.router)
    app.include_router(segments.router)

    @app.get("/", include_in_schema=False)
    async def root():
        """Redirect to Swagger documentation"""
        return RedirectResponse(url="/docs")

    return app


def main() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run(create_app(), host=config.HOST, port=config.PORT)
