"""Shared FastAPI dependencies for service collaborators held on app.state."""

from datetime import datetime
from typing import Callable

from fastapi import Request

from ..models.database import utcnow
from ..services.geocoding import GeocodingClient
from ..services.owm_client import OWMClient
from ..services.rate_limiter import RateLimiter


def get_limiter(request: Request) -> RateLimiter:
    return request.app.state.limiter


def get_owm_client(request: Request) -> OWMClient:
    return request.app.state.owm_client


def get_geocoder(request: Request) -> GeocodingClient:
    return request.app.state.geocoder


def get_clock() -> Callable[[], datetime]:
    return utcnow
