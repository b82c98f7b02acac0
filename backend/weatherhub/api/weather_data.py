"""Read endpoints for stored weather records plus the retention sweep."""

from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..models.database import get_db
from ..schemas.weather import WeatherRecordOut
from ..services.query import QueryService
from .deps import get_clock

router = APIRouter(prefix="/weather-data", tags=["weather-data"])


def _dump(records, now: datetime, include_raw: bool = False) -> list[dict]:
    return [
        WeatherRecordOut.from_record(r, now, include_raw).model_dump(mode="json", exclude_none=True)
        for r in records
    ]


@router.get("")
def list_weather(
    location_id: Optional[int] = None,
    data_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    qs = QueryService(db, clock)
    rows = qs.list_weather(location_id, data_type, start_date, end_date, limit)
    return _dump(rows, clock())


@router.get("/location/{location_id}/current")
def current(
    location_id: int,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    record = QueryService(db, clock).current(location_id)
    if record is None:
        return {"location_id": location_id, "data": None}
    return {"location_id": location_id, "data": _dump([record], clock())[0]}


@router.get("/location/{location_id}/hourly")
def hourly(
    location_id: int,
    hours: int = 24,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    rows = QueryService(db, clock).hourly(location_id, hours)
    return {"location_id": location_id, "count": len(rows), "data": _dump(rows, clock())}


@router.get("/location/{location_id}/daily")
def daily(
    location_id: int,
    days: int = 7,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    rows = QueryService(db, clock).daily(location_id, days)
    return {"location_id": location_id, "count": len(rows), "data": _dump(rows, clock())}


@router.get("/location/{location_id}/historical")
def historical(
    location_id: int,
    start_date: datetime,
    end_date: datetime,
    limit: Optional[int] = None,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    rows = QueryService(db, clock).historical(location_id, start_date, end_date, limit)
    return {"location_id": location_id, "count": len(rows), "data": _dump(rows, clock())}


@router.post("/cleanup")
def cleanup(
    days_old: int = Query(30, ge=1),
    data_type: Optional[str] = None,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return QueryService(db, clock).cleanup_weather(days_old, data_type).to_dict()


@router.get("/{record_id}")
def get_record(
    record_id: int,
    include_raw: bool = False,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    record = QueryService(db, clock).get_weather(record_id)
    return _dump([record], clock(), include_raw)[0]
