"""Service instances shared by the routers, stored on app.state"""
from fastapi import Request

from ..services.edit_service import EditService
from ..services.network_service import NetworkRepository
from ..services.route_service import RouteService
from ..services.tour_service import TourSynthesizer


def get_route_service(request: Request) -> RouteService:
    return request.app.state.route_service


def get_repository(request: Request) -> NetworkRepository:
    return request.app.state.repository


def get_synthesizer(request: Request) -> TourSynthesizer:
    return request.app.state.synthesizer


def get_edit_service(request: Request) -> EditService:
    return request.app.state.edit_service
