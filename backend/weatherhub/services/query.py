"""Read side over the store, alert lifecycle, and cleanup sweeps."""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import NotFound, ValidationFailed
from ..models.alert import SEVERITIES, SEVERITY_ORDER, AlertRecord
from ..models.database import as_utc, utcnow
from ..models.location import Location
from ..models.minutely import MinutelyRecord
from ..models.weather_record import DATA_TYPES, WeatherRecord

logger = logging.getLogger(__name__)

MAX_HOURLY = 48
MAX_DAILY = 8
MAX_ALERTS = 1000
MAX_PRECIP_MINUTES = 120
RECENT_MINUTELY_HOURS = 2


@dataclass
class CleanupResult:
    deleted: int
    cutoff: datetime

    def to_dict(self) -> dict:
        return {"deleted": self.deleted, "cutoff": self.cutoff.isoformat()}


def _bounded(value: int, low: int, high: int, name: str) -> int:
    if not low <= value <= high:
        raise ValidationFailed(f"{name} must be between {low} and {high}", field=name)
    return value


def _severity_rank():
    """SQL CASE ranking severities most-severe first."""
    return case(
        {sev: rank for sev, rank in SEVERITY_ORDER.items()},
        value=AlertRecord.severity,
        else_=len(SEVERITY_ORDER),
    )


class QueryService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def require_location(self, location_id: int) -> Location:
        location = self.db.get(Location, location_id)
        if location is None or location.deleted_at is not None:
            raise NotFound("Location", location_id)
        return location

    # --- Weather records ---

    def _weather(self, location_id: int, data_type: str):
        return self.db.query(WeatherRecord).filter(
            WeatherRecord.location_id == location_id,
            WeatherRecord.data_type == data_type,
        )

    def current(self, location_id: int) -> Optional[WeatherRecord]:
        """Latest current snapshot by data timestamp, or None."""
        self.require_location(location_id)
        return (
            self._weather(location_id, "current")
            .order_by(WeatherRecord.data_timestamp.desc())
            .first()
        )

    def hourly(self, location_id: int, hours: int = 24) -> list[WeatherRecord]:
        _bounded(hours, 1, MAX_HOURLY, "hours")
        self.require_location(location_id)
        return (
            self._weather(location_id, "hourly")
            .filter(WeatherRecord.data_timestamp >= self.clock())
            .order_by(WeatherRecord.data_timestamp)
            .limit(hours)
            .all()
        )

    def daily(self, location_id: int, days: int = 7) -> list[WeatherRecord]:
        _bounded(days, 1, MAX_DAILY, "days")
        self.require_location(location_id)
        start_of_day = self.clock().replace(hour=0, minute=0, second=0, microsecond=0)
        return (
            self._weather(location_id, "daily")
            .filter(WeatherRecord.data_timestamp >= start_of_day)
            .order_by(WeatherRecord.data_timestamp)
            .limit(days)
            .all()
        )

    def historical(
        self,
        location_id: int,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
    ) -> list[WeatherRecord]:
        start, end = as_utc(start), as_utc(end)
        if end < start:
            raise ValidationFailed("end_date must be after start_date", field="end_date")
        self.require_location(location_id)
        q = (
            self._weather(location_id, "historical")
            .filter(WeatherRecord.data_timestamp.between(start, end))
            .order_by(WeatherRecord.data_timestamp)
        )
        if limit is not None:
            q = q.limit(_bounded(limit, 1, 1000, "limit"))
        return q.all()

    def list_weather(
        self,
        location_id: Optional[int] = None,
        data_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[WeatherRecord]:
        _bounded(limit, 1, 1000, "limit")
        start, end = as_utc(start), as_utc(end)
        q = self.db.query(WeatherRecord)
        if location_id is not None:
            q = q.filter(WeatherRecord.location_id == location_id)
        if data_type is not None:
            if data_type not in DATA_TYPES:
                raise ValidationFailed(f"data_type must be one of {DATA_TYPES}", field="data_type")
            q = q.filter(WeatherRecord.data_type == data_type)
        if start is not None:
            q = q.filter(WeatherRecord.data_timestamp >= start)
        if end is not None:
            q = q.filter(WeatherRecord.data_timestamp <= end)
        return q.order_by(WeatherRecord.data_timestamp.desc()).limit(limit).all()

    def get_weather(self, record_id: int) -> WeatherRecord:
        record = self.db.get(WeatherRecord, record_id)
        if record is None:
            raise NotFound("Weather record", record_id)
        return record

    # --- Minutely ---

    def _minutely(self, location_id: int):
        return self.db.query(MinutelyRecord).filter(MinutelyRecord.location_id == location_id)

    def minutely_next_hour(self, location_id: int) -> list[MinutelyRecord]:
        self.require_location(location_id)
        now = self.clock()
        return (
            self._minutely(location_id)
            .filter(MinutelyRecord.data_timestamp.between(now, now + timedelta(hours=1)))
            .order_by(MinutelyRecord.data_timestamp)
            .all()
        )

    def precipitation_window(
        self,
        location_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        minutes: Optional[int] = None,
    ) -> tuple[list[MinutelyRecord], dict]:
        """Minute points over an explicit range, or the next ``minutes`` (1..120)."""
        self.require_location(location_id)
        start, end = as_utc(start), as_utc(end)
        if start is None or end is None:
            minutes = _bounded(minutes if minutes is not None else 60, 1, MAX_PRECIP_MINUTES, "minutes")
            start = self.clock()
            end = start + timedelta(minutes=minutes)
        elif end < start:
            raise ValidationFailed("end must be after start", field="end")

        points = (
            self._minutely(location_id)
            .filter(MinutelyRecord.data_timestamp.between(start, end))
            .order_by(MinutelyRecord.data_timestamp)
            .all()
        )
        return points, summarize_precipitation(points)

    def minutely_recent(self, location_id: int, grouped: bool = False):
        """Last two hours of minute points, newest first; optionally grouped per hour."""
        self.require_location(location_id)
        since = self.clock() - timedelta(hours=RECENT_MINUTELY_HOURS)
        points = (
            self._minutely(location_id)
            .filter(MinutelyRecord.data_timestamp >= since)
            .order_by(MinutelyRecord.data_timestamp.desc())
            .all()
        )
        if not grouped:
            return points
        groups: dict[str, list[MinutelyRecord]] = {}
        for p in points:
            groups.setdefault(p.data_timestamp.strftime("%Y-%m-%d %H:00"), []).append(p)
        result = {}
        for hour, items in groups.items():
            summary = summarize_precipitation(items)
            summary["data_points"] = summary.pop("total_minutes")
            result[hour] = summary
        return result

    def list_minutely(
        self,
        location_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        with_precipitation: bool = False,
        precipitation_type: Optional[str] = None,
        limit: int = 100,
    ) -> list[MinutelyRecord]:
        _bounded(limit, 1, 1000, "limit")
        start, end = as_utc(start), as_utc(end)
        q = self.db.query(MinutelyRecord)
        if location_id is not None:
            q = q.filter(MinutelyRecord.location_id == location_id)
        if start is not None:
            q = q.filter(MinutelyRecord.data_timestamp >= start)
        if end is not None:
            q = q.filter(MinutelyRecord.data_timestamp <= end)
        if with_precipitation:
            q = q.filter(MinutelyRecord.precipitation > 0)
        if precipitation_type is not None:
            q = q.filter(MinutelyRecord.precipitation_type == precipitation_type)
        return q.order_by(MinutelyRecord.data_timestamp).limit(limit).all()

    def get_minutely(self, record_id: int) -> MinutelyRecord:
        record = self.db.get(MinutelyRecord, record_id)
        if record is None:
            raise NotFound("Minutely record", record_id)
        return record

    # --- Alerts ---

    def list_alerts(
        self,
        location_id: Optional[int] = None,
        severity: Optional[str] = None,
        event: Optional[str] = None,
        is_active: Optional[bool] = None,
        acknowledged: Optional[bool] = None,
        limit: int = 100,
    ) -> list[AlertRecord]:
        _bounded(limit, 1, MAX_ALERTS, "limit")
        q = self.db.query(AlertRecord)
        if location_id is not None:
            q = q.filter(AlertRecord.location_id == location_id)
        if severity is not None:
            if severity not in SEVERITIES:
                raise ValidationFailed(f"severity must be one of {SEVERITIES}", field="severity")
            q = q.filter(AlertRecord.severity == severity)
        if event:
            q = q.filter(AlertRecord.event.ilike(f"%{event}%"))
        if is_active is not None:
            q = q.filter(AlertRecord.is_active.is_(is_active))
        if acknowledged is True:
            q = q.filter(AlertRecord.acknowledged_at.isnot(None))
        elif acknowledged is False:
            q = q.filter(AlertRecord.acknowledged_at.is_(None))
        return q.order_by(AlertRecord.start_time.desc()).limit(limit).all()

    def _currently_active(self):
        now = self.clock()
        return self.db.query(AlertRecord).filter(
            AlertRecord.is_active.is_(True),
            AlertRecord.start_time <= now,
            AlertRecord.end_time >= now,
        )

    def active_alerts(self, location_id: int) -> list[AlertRecord]:
        """Alerts in force right now for a location, most severe first."""
        self.require_location(location_id)
        return (
            self._currently_active()
            .filter(AlertRecord.location_id == location_id)
            .order_by(_severity_rank(), AlertRecord.start_time.desc())
            .all()
        )

    def alerts_by_severity(self, severity: str, location_id: Optional[int] = None) -> list[AlertRecord]:
        if severity not in SEVERITIES:
            raise ValidationFailed(f"severity must be one of {SEVERITIES}", field="severity")
        q = self._currently_active().filter(AlertRecord.severity == severity)
        if location_id is not None:
            q = q.filter(AlertRecord.location_id == location_id)
        return q.order_by(AlertRecord.start_time.desc()).all()

    def get_alert(self, alert_id: int) -> AlertRecord:
        alert = self.db.get(AlertRecord, alert_id)
        if alert is None:
            raise NotFound("Alert", alert_id)
        return alert

    def acknowledge_alert(self, alert_id: int) -> AlertRecord:
        """Stamp acknowledged_at.  Leaves is_active untouched."""
        alert = self.get_alert(alert_id)
        alert.acknowledged_at = self.clock()
        self.db.commit()
        self.db.refresh(alert)
        logger.info("Alert %s acknowledged", alert_id)
        return alert

    def resolve_alert(self, alert_id: int) -> AlertRecord:
        """Stamp resolved_at and deactivate.  Calling twice leaves it resolved."""
        alert = self.get_alert(alert_id)
        alert.resolved_at = self.clock()
        alert.is_active = False
        self.db.commit()
        self.db.refresh(alert)
        logger.info("Alert %s resolved", alert_id)
        return alert

    def alert_statistics(
        self,
        location_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict:
        start, end = as_utc(start), as_utc(end)
        q = self.db.query(AlertRecord)
        if location_id is not None:
            q = q.filter(AlertRecord.location_id == location_id)
        if start is not None:
            q = q.filter(AlertRecord.start_time >= start)
        if end is not None:
            q = q.filter(AlertRecord.start_time <= end)
        alerts = q.all()

        now = self.clock()
        by_severity = Counter(a.severity for a in alerts)
        by_event = Counter(a.event for a in alerts)
        return {
            "total_alerts": len(alerts),
            "active_alerts": sum(
                1 for a in alerts if a.is_active and a.start_time <= now <= a.end_time
            ),
            "acknowledged_alerts": sum(1 for a in alerts if a.acknowledged_at is not None),
            "resolved_alerts": sum(1 for a in alerts if a.resolved_at is not None),
            "by_severity": {sev: by_severity.get(sev, 0) for sev in SEVERITIES},
            "by_event_type": dict(by_event.most_common(10)),
        }

    # --- Cleanup sweeps ---

    def cleanup_weather(
        self,
        days_old: int = settings.cleanup_days_old,
        data_type: Optional[str] = None,
    ) -> CleanupResult:
        _bounded(days_old, 1, 3650, "days_old")
        cutoff = self.clock() - timedelta(days=days_old)
        q = self.db.query(WeatherRecord).filter(WeatherRecord.data_timestamp < cutoff)
        if data_type is not None:
            if data_type not in DATA_TYPES:
                raise ValidationFailed(f"data_type must be one of {DATA_TYPES}", field="data_type")
            q = q.filter(WeatherRecord.data_type == data_type)
        deleted = q.delete(synchronize_session=False)
        self.db.commit()
        logger.info("Weather cleanup: %d record(s) older than %s removed", deleted, cutoff)
        return CleanupResult(deleted=deleted, cutoff=cutoff)

    def cleanup_alerts(
        self,
        days_old: int = settings.cleanup_days_old,
        resolved_only: bool = True,
    ) -> CleanupResult:
        _bounded(days_old, 1, 3650, "days_old")
        cutoff = self.clock() - timedelta(days=days_old)
        q = self.db.query(AlertRecord).filter(AlertRecord.end_time < cutoff)
        if resolved_only:
            q = q.filter(AlertRecord.resolved_at.isnot(None))
        deleted = q.delete(synchronize_session=False)
        self.db.commit()
        logger.info("Alert cleanup: %d alert(s) ended before %s removed", deleted, cutoff)
        return CleanupResult(deleted=deleted, cutoff=cutoff)

    def cleanup_minutely(
        self,
        hours_old: int = settings.minutely_cleanup_hours_old,
    ) -> CleanupResult:
        _bounded(hours_old, 1, 24 * 365, "hours_old")
        cutoff = self.clock() - timedelta(hours=hours_old)
        deleted = (
            self.db.query(MinutelyRecord)
            .filter(MinutelyRecord.data_timestamp < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Minutely cleanup: %d point(s) older than %s removed", deleted, cutoff)
        return CleanupResult(deleted=deleted, cutoff=cutoff)

    def table_counts(self) -> dict[str, int]:
        return {
            "locations": self.db.query(func.count(Location.id)).scalar() or 0,
            "weather_records": self.db.query(func.count(WeatherRecord.id)).scalar() or 0,
            "minutely_records": self.db.query(func.count(MinutelyRecord.id)).scalar() or 0,
            "weather_alerts": self.db.query(func.count(AlertRecord.id)).scalar() or 0,
        }


def summarize_precipitation(points: list[MinutelyRecord]) -> dict:
    values = [p.precipitation for p in points if p.precipitation is not None]
    probs = [p.precipitation_probability for p in points if p.precipitation_probability is not None]
    return {
        "total_precipitation": round(sum(values), 3),
        "max_precipitation": max(values) if values else 0.0,
        "avg_probability": round(sum(probs) / len(probs) * 100, 1) if probs else None,
        "minutes_with_precipitation": sum(1 for v in values if v > 0),
        "total_minutes": len(points),
    }
