"""Reconcile a normalized One Call payload against the store.

Each dataset has its own retention window and write rule:

    current     drop snapshots fetched > 1 h ago or superseded; insert fresh
    hourly      drop points older than 48 h; upsert by timestamp
    daily       drop points older than 8 days; upsert by timestamp
    alerts      drop alerts whose end has passed; skip if already stored
    minutely    drop points older than 2 h; skip if already stored
    historical  no retention; upsert by timestamp (on-demand only)

Datasets are committed one at a time.  A failure rolls back that dataset
only and is reported; the others still run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import StoreFailed, ValidationFailed
from ..models.alert import AlertRecord
from ..models.database import utcnow
from ..models.location import Location
from ..models.minutely import MinutelyRecord
from ..models.weather_record import WeatherRecord
from .normalize import (
    AlertNotice,
    CurrentConditions,
    HistoricalPoint,
    MinutelyPoint,
    OneCallPayload,
    record_values,
)
from .owm_client import VALID_UNITS

logger = logging.getLogger(__name__)

API_SOURCE = "openweathermap"
MAX_MINUTELY_BATCH = 61


@dataclass
class DatasetResult:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        d = {
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "deleted": self.deleted,
        }
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class ReconcileReport:
    location_id: int
    datasets: dict[str, DatasetResult] = field(default_factory=dict)

    @property
    def errors(self) -> dict[str, str]:
        return {name: r.error for name, r in self.datasets.items() if r.error}

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "location_id": self.location_id,
            "datasets": {name: r.to_dict() for name, r in self.datasets.items()},
        }


class Reconciler:
    """Applies fetched data for one location inside one session."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    # --- Entry points ---

    def apply(
        self,
        location: Location,
        payload: OneCallPayload,
        units: Optional[str] = None,
    ) -> ReconcileReport:
        """Reconcile every dataset present in the payload."""
        now = self.clock()
        units = units or location.units
        report = ReconcileReport(location_id=location.id)

        if payload.current is not None:
            self._run(report, "current", self._current, location, payload.current, units, now)
        if payload.hourly is not None:
            self._run(report, "hourly", self._upsert_forecast, location, "hourly",
                      payload.hourly, units, now,
                      timedelta(hours=settings.hourly_retention_hours))
        if payload.daily is not None:
            self._run(report, "daily", self._upsert_forecast, location, "daily",
                      payload.daily, units, now,
                      timedelta(days=settings.daily_retention_days))
        if payload.alerts is not None:
            self._run(report, "alerts", self._alerts, location, payload.alerts, now)
        if payload.minutely is not None:
            issued = payload.current.data_timestamp if payload.current is not None else now
            self._run(report, "minutely", self._minutely, location, payload.minutely,
                      units, now, issued, True)

        if report.errors:
            logger.warning(
                "Location %s reconciled with errors: %s", location.id, report.errors,
            )
        else:
            logger.info("Location %s reconciled: %s", location.id, report.to_dict()["datasets"])
        return report

    def apply_historical(
        self,
        location: Location,
        points: list[HistoricalPoint],
        units: Optional[str] = None,
    ) -> ReconcileReport:
        now = self.clock()
        report = ReconcileReport(location_id=location.id)
        self._run(report, "historical", self._upsert_forecast, location, "historical",
                  points, units or location.units, now, None)
        return report

    def store_minutely(
        self,
        location: Location,
        points: list[MinutelyPoint],
        forecast_timestamp: Optional[datetime] = None,
        units: Optional[str] = None,
    ) -> DatasetResult:
        """Bulk insert minute points (1..61) with the skip-on-collision rule."""
        if not 1 <= len(points) <= MAX_MINUTELY_BATCH:
            raise ValidationFailed(
                f"minutely batch must contain 1-{MAX_MINUTELY_BATCH} entries", field="data",
            )
        if units is not None and units not in VALID_UNITS:
            raise ValidationFailed(
                f"units must be one of {', '.join(VALID_UNITS)}", field="units",
            )
        now = self.clock()
        report = ReconcileReport(location_id=location.id)
        self._run(report, "minutely", self._minutely, location, points,
                  units or location.units, now, forecast_timestamp or now, False)
        result = report.datasets["minutely"]
        if result.error:
            raise StoreFailed(f"minutely store failed: {result.error}")
        return result

    # --- Transaction wrapper ---

    def _run(self, report: ReconcileReport, name: str, fn, *args) -> None:
        result = DatasetResult()
        report.datasets[name] = result
        try:
            fn(result, *args)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            # Counts from a rolled-back dataset are meaningless
            report.datasets[name] = DatasetResult(error=str(e) or type(e).__name__)
            logger.error(
                "Reconcile %s failed for location %s: %s", name, report.location_id, e,
                exc_info=True,
            )

    # --- Datasets ---

    def _current(
        self,
        result: DatasetResult,
        location: Location,
        current: CurrentConditions,
        units: str,
        now: datetime,
    ) -> None:
        cutoff = now - timedelta(hours=settings.current_retention_hours)
        base = self.db.query(WeatherRecord).filter(
            WeatherRecord.location_id == location.id,
            WeatherRecord.data_type == "current",
        )
        result.deleted += base.filter(
            (WeatherRecord.created_at < cutoff)
            | (WeatherRecord.data_timestamp <= current.data_timestamp)
        ).delete(synchronize_session=False)

        newer = base.filter(WeatherRecord.data_timestamp > current.data_timestamp).first()
        if newer is not None:
            # Out-of-order delivery: a later snapshot is already stored
            logger.info(
                "Discarding stale current snapshot for location %s (%s < %s)",
                location.id, current.data_timestamp, newer.data_timestamp,
            )
            result.skipped += 1
            return

        self.db.add(WeatherRecord(
            location_id=location.id,
            data_type="current",
            units=units,
            is_forecast=False,
            api_source=API_SOURCE,
            created_at=now,
            updated_at=now,
            **record_values(current),
        ))
        result.inserted += 1

    def _upsert_forecast(
        self,
        result: DatasetResult,
        location: Location,
        data_type: str,
        points: list,
        units: str,
        now: datetime,
        retention: Optional[timedelta],
    ) -> None:
        if retention is not None:
            result.deleted += self.db.query(WeatherRecord).filter(
                WeatherRecord.location_id == location.id,
                WeatherRecord.data_type == data_type,
                WeatherRecord.data_timestamp < now - retention,
            ).delete(synchronize_session=False)

        if not points:
            return

        stamps = {p.data_timestamp for p in points}
        existing = {
            r.data_timestamp: r
            for r in self.db.query(WeatherRecord).filter(
                WeatherRecord.location_id == location.id,
                WeatherRecord.data_type == data_type,
                WeatherRecord.data_timestamp.in_(stamps),
            )
        }

        for point in points:
            values = record_values(point)
            row = existing.get(point.data_timestamp)
            if row is not None:
                for key, value in values.items():
                    setattr(row, key, value)
                row.units = units
                row.updated_at = now
                result.updated += 1
            else:
                row = WeatherRecord(
                    location_id=location.id,
                    data_type=data_type,
                    units=units,
                    is_forecast=data_type in ("hourly", "daily"),
                    api_source=API_SOURCE,
                    created_at=now,
                    updated_at=now,
                    **values,
                )
                self.db.add(row)
                existing[point.data_timestamp] = row
                result.inserted += 1

    def _alerts(
        self,
        result: DatasetResult,
        location: Location,
        alerts: list[AlertNotice],
        now: datetime,
    ) -> None:
        result.deleted += self.db.query(AlertRecord).filter(
            AlertRecord.location_id == location.id,
            AlertRecord.end_time < now,
        ).delete(synchronize_session=False)

        seen = {
            (a.sender_name, a.event, a.start_time)
            for a in self.db.query(AlertRecord).filter(AlertRecord.location_id == location.id)
        }
        for alert in alerts:
            key = (alert.sender_name, alert.event, alert.start_time)
            if key in seen:
                result.skipped += 1
                continue
            self.db.add(AlertRecord(
                location_id=location.id,
                is_active=True,
                created_at=now,
                updated_at=now,
                **record_values(alert),
            ))
            seen.add(key)
            result.inserted += 1

    def _minutely(
        self,
        result: DatasetResult,
        location: Location,
        points: list[MinutelyPoint],
        units: str,
        now: datetime,
        forecast_timestamp: datetime,
        cleanup: bool,
    ) -> None:
        if cleanup:
            result.deleted += self.db.query(MinutelyRecord).filter(
                MinutelyRecord.location_id == location.id,
                MinutelyRecord.data_timestamp
                < now - timedelta(hours=settings.minutely_retention_hours),
            ).delete(synchronize_session=False)

        if not points:
            return

        stamps = {p.data_timestamp for p in points}
        seen = {
            r.data_timestamp
            for r in self.db.query(MinutelyRecord.data_timestamp).filter(
                MinutelyRecord.location_id == location.id,
                MinutelyRecord.data_timestamp.in_(stamps),
            )
        }
        for point in points:
            if point.data_timestamp in seen:
                result.skipped += 1
                continue
            self.db.add(MinutelyRecord(
                location_id=location.id,
                forecast_timestamp=forecast_timestamp,
                units=units,
                api_source=API_SOURCE,
                is_forecast=True,
                created_at=now,
                **record_values(point),
            ))
            seen.add(point.data_timestamp)
            result.inserted += 1
