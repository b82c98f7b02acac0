"""On-demand OpenWeatherMap fetches for a single location."""

from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..models.database import get_db
from ..services.ingest import IngestService
from ..services.owm_client import OWMClient
from ..services.rate_limiter import RateLimiter
from .deps import get_clock, get_limiter, get_owm_client

router = APIRouter(prefix="/openweathermap", tags=["openweathermap"])


class FetchRequest(BaseModel):
    location_id: int
    provider_id: Optional[int] = None
    units: Optional[str] = None


class FetchCompleteRequest(FetchRequest):
    exclude: list[str] = []


class FetchHistoricalRequest(FetchRequest):
    dt: int
    type: str = "hour"


def _service(db, limiter, client, clock) -> IngestService:
    return IngestService(db, limiter, client=client, clock=clock)


@router.post("/fetch-current")
async def fetch_current(
    body: FetchRequest,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_limiter),
    client: OWMClient = Depends(get_owm_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    report = await _service(db, limiter, client, clock).fetch_current(
        body.location_id, body.provider_id, body.units,
    )
    return {"message": "Current weather data fetched successfully", **report.to_dict()}


@router.post("/fetch-complete")
async def fetch_complete(
    body: FetchCompleteRequest,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_limiter),
    client: OWMClient = Depends(get_owm_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    report = await _service(db, limiter, client, clock).fetch_complete(
        body.location_id, body.provider_id, body.units, exclude=body.exclude,
    )
    return {"message": "Complete weather data fetched successfully", **report.to_dict()}


@router.post("/fetch-historical")
async def fetch_historical(
    body: FetchHistoricalRequest,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_limiter),
    client: OWMClient = Depends(get_owm_client),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    report = await _service(db, limiter, client, clock).fetch_historical(
        body.location_id, body.dt, kind=body.type,
        provider_id=body.provider_id, units=body.units,
    )
    return {"message": "Historical weather data fetched successfully", **report.to_dict()}
