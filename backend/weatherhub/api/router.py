"""Top-level API router aggregation."""

from fastapi import APIRouter

from . import alerts, locations, minutely, openweathermap, providers, status, weather_data

api_router = APIRouter(prefix="/api")

api_router.include_router(providers.router)
api_router.include_router(locations.router)
api_router.include_router(weather_data.router)
api_router.include_router(alerts.router)
api_router.include_router(minutely.router)
api_router.include_router(openweathermap.router)
api_router.include_router(status.router)
