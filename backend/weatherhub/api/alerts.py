"""Weather alert listing, lifecycle transitions and statistics."""

from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..models.database import get_db
from ..schemas.weather import AlertOut
from ..services.query import QueryService
from .deps import get_clock

router = APIRouter(prefix="/weather-alerts", tags=["weather-alerts"])


def _dump(alerts, now: datetime) -> list[dict]:
    return [AlertOut.from_record(a, now).model_dump(mode="json", exclude_none=True) for a in alerts]


@router.get("")
def list_alerts(
    location_id: Optional[int] = None,
    severity: Optional[str] = None,
    event: Optional[str] = None,
    is_active: Optional[bool] = None,
    acknowledged: Optional[bool] = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    rows = QueryService(db, clock).list_alerts(
        location_id, severity, event, is_active, acknowledged, limit,
    )
    return _dump(rows, clock())


@router.get("/statistics")
def statistics(
    location_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return QueryService(db, clock).alert_statistics(location_id, start_date, end_date)


@router.get("/severity/{severity}")
def by_severity(
    severity: str,
    location_id: Optional[int] = None,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return _dump(QueryService(db, clock).alerts_by_severity(severity, location_id), clock())


@router.get("/location/{location_id}/active")
def active_for_location(
    location_id: int,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    rows = QueryService(db, clock).active_alerts(location_id)
    return {"location_id": location_id, "count": len(rows), "alerts": _dump(rows, clock())}


@router.post("/cleanup")
def cleanup(
    days_old: int = Query(30, ge=1),
    resolved_only: bool = True,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return QueryService(db, clock).cleanup_alerts(days_old, resolved_only).to_dict()


@router.get("/{alert_id}")
def get_alert(
    alert_id: int,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return _dump([QueryService(db, clock).get_alert(alert_id)], clock())[0]


@router.post("/{alert_id}/acknowledge")
def acknowledge(
    alert_id: int,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return _dump([QueryService(db, clock).acknowledge_alert(alert_id)], clock())[0]


@router.post("/{alert_id}/resolve")
def resolve(
    alert_id: int,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return _dump([QueryService(db, clock).resolve_alert(alert_id)], clock())[0]
