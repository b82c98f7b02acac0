"""Minute-level precipitation endpoints."""

from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..models.database import from_unix, get_db
from ..schemas.weather import MinutelyOut
from ..services.normalize import MinutelyPoint
from ..services.query import QueryService
from ..services.reconciler import Reconciler
from .deps import get_clock

router = APIRouter(prefix="/weather-minutely", tags=["weather-minutely"])


class MinutePoint(BaseModel):
    dt: int = Field(..., ge=1)
    precipitation: Optional[float] = Field(None, ge=0)
    rain: Optional[float] = Field(None, ge=0)
    snow: Optional[float] = Field(None, ge=0)
    precipitation_type: Optional[str] = None
    precipitation_probability: Optional[float] = Field(None, ge=0, le=1)
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_direction: Optional[float] = None


class BulkStore(BaseModel):
    location_id: int
    forecast_dt: Optional[int] = None
    units: Optional[str] = None
    data: list[MinutePoint]


def _dump(points, now: datetime) -> list[dict]:
    return [MinutelyOut.from_record(p, now).model_dump(mode="json", exclude_none=True) for p in points]


@router.get("")
def list_minutely(
    location_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    with_precipitation: bool = False,
    precipitation_type: Optional[str] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    rows = QueryService(db, clock).list_minutely(
        location_id, start, end, with_precipitation, precipitation_type, limit,
    )
    return _dump(rows, clock())


@router.get("/location/{location_id}/next-hour")
def next_hour(
    location_id: int,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    rows = QueryService(db, clock).minutely_next_hour(location_id)
    return {"location_id": location_id, "count": len(rows), "data": _dump(rows, clock())}


@router.get("/location/{location_id}/precipitation")
def precipitation(
    location_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    minutes: Optional[int] = None,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    rows, summary = QueryService(db, clock).precipitation_window(location_id, start, end, minutes)
    return {"location_id": location_id, "summary": summary, "data": _dump(rows, clock())}


@router.get("/location/{location_id}/recent")
def recent(
    location_id: int,
    grouped: bool = False,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    result = QueryService(db, clock).minutely_recent(location_id, grouped=grouped)
    if grouped:
        return {"location_id": location_id, "hours": result}
    return {"location_id": location_id, "count": len(result), "data": _dump(result, clock())}


@router.post("/bulk", status_code=201)
def bulk_store(
    body: BulkStore,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Store up to 61 minute points; timestamps already stored are skipped."""
    location = QueryService(db, clock).require_location(body.location_id)
    points = [
        MinutelyPoint(
            data_timestamp=from_unix(p.dt),
            forecast_minute=i,
            raw_data=p.model_dump(exclude_none=True),
            **p.model_dump(exclude={"dt"}),
        )
        for i, p in enumerate(body.data)
    ]
    result = Reconciler(db, clock).store_minutely(
        location, points, forecast_timestamp=from_unix(body.forecast_dt), units=body.units,
    )
    return {"location_id": location.id, **result.to_dict()}


@router.post("/cleanup")
def cleanup(
    hours_old: int = Query(6, ge=1),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return QueryService(db, clock).cleanup_minutely(hours_old).to_dict()


@router.get("/{record_id}")
def get_point(
    record_id: int,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return _dump([QueryService(db, clock).get_minutely(record_id)], clock())[0]
