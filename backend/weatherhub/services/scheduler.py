"""Scheduled ingestion: one cycle over all active locations.

``IngestScheduler.run_cycle`` resolves the provider, then fetches and
reconciles each active location with its own session so one bad location
never blocks the rest.  ``IngestPoller`` drives cycles on a fixed interval
inside the web process and guarantees only one cycle runs at a time.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConfigurationMissing
from ..models.database import SessionLocal, utcnow
from ..models.location import Location
from ..models.weather_record import WeatherRecord
from .owm_client import FetchError, OWMClient
from .providers import ProviderRef, resolve_provider
from .rate_limiter import RateLimiter
from .reconciler import Reconciler, ReconcileReport

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    processed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    aborted: Optional[str] = None
    reports: dict[int, ReconcileReport] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "aborted": self.aborted,
        }


class IngestScheduler:
    def __init__(
        self,
        limiter: RateLimiter,
        session_factory: Callable[[], Session] = SessionLocal,
        client: Optional[OWMClient] = None,
        clock: Callable[[], datetime] = utcnow,
        concurrency: int = settings.ingest_concurrency,
    ):
        self.limiter = limiter
        self.session_factory = session_factory
        self.client = client or OWMClient()
        self.clock = clock
        self.concurrency = max(1, concurrency)

    async def run_cycle(self) -> CycleReport:
        """Fetch + reconcile every active location.  Never raises."""
        report = CycleReport(started_at=self.clock())

        db = self.session_factory()
        try:
            location_ids = [
                row.id for row in db.query(Location.id)
                .filter(Location.is_active.is_(True), Location.deleted_at.is_(None))
                .order_by(Location.id)
            ]
            if not location_ids:
                logger.info("No active locations found for weather update")
                report.aborted = "no_active_locations"
                return self._finish(report)

            try:
                provider = ProviderRef.from_model(resolve_provider(db))
            except ConfigurationMissing as e:
                logger.error("Weather update aborted: %s", e)
                report.aborted = "configuration_missing"
                return self._finish(report)
        finally:
            db.close()

        if not self.limiter.check_allowed(provider.id, provider.rate_limit_minutes):
            logger.info(
                "Provider %s rate limited, skipping cycle (retry in %ds)",
                provider.id, self.limiter.retry_after(provider.id, provider.rate_limit_minutes),
            )
            report.aborted = "rate_limited"
            return self._finish(report)

        sem = asyncio.Semaphore(self.concurrency)

        async def _guarded(location_id: int) -> None:
            async with sem:
                await self._process_location(location_id, provider, report)

        await asyncio.gather(*(_guarded(lid) for lid in location_ids))
        return self._finish(report)

    def _finish(self, report: CycleReport) -> CycleReport:
        report.finished_at = self.clock()
        if report.aborted is None:
            logger.info(
                "Weather update cycle: %d processed, %d skipped, %d failed",
                len(report.processed), len(report.skipped), len(report.failed),
            )
        return report

    def _is_fresh(self, db: Session, location_id: int, provider: ProviderRef) -> bool:
        latest = (
            db.query(WeatherRecord.created_at)
            .filter(
                WeatherRecord.location_id == location_id,
                WeatherRecord.data_type == "current",
            )
            .order_by(WeatherRecord.created_at.desc())
            .first()
        )
        if latest is None:
            return False
        cutoff = self.clock() - timedelta(minutes=provider.rate_limit_minutes)
        return latest.created_at > cutoff

    async def _process_location(
        self,
        location_id: int,
        provider: ProviderRef,
        report: CycleReport,
    ) -> None:
        db = self.session_factory()
        try:
            location = db.get(Location, location_id)
            if location is None:
                report.skipped.append(location_id)
                return

            if self._is_fresh(db, location_id, provider):
                logger.debug("Skipping location %s: data is still fresh", location_id)
                report.skipped.append(location_id)
                return

            payload = await self.client.fetch(location, provider)
            if isinstance(payload, FetchError):
                logger.warning(
                    "Failed to fetch weather data for location %s: %s", location_id, payload,
                )
                report.failed[location_id] = f"fetch failed: {payload}"
                return

            result = Reconciler(db, clock=self.clock).apply(location, payload)
            report.reports[location_id] = result
            if result.ok:
                report.processed.append(location_id)
            else:
                report.failed[location_id] = f"reconcile errors: {result.errors}"
        except Exception as e:
            logger.error("Weather update failed for location %s: %s", location_id, e, exc_info=True)
            report.failed[location_id] = str(e) or type(e).__name__
        finally:
            db.close()


class IngestPoller:
    """Runs ``run_cycle`` every ``interval`` seconds until stopped."""

    def __init__(self, scheduler: IngestScheduler, interval: int = settings.ingest_interval_sec):
        self.scheduler = scheduler
        self.interval = interval
        self._running = False
        self._lock = asyncio.Lock()
        self._cycles = 0
        self._overlaps = 0
        self._errors = 0
        self._last_report: Optional[CycleReport] = None
        self._start_time = time.time()

    @property
    def stats(self) -> dict:
        last = self._last_report
        return {
            "running": self._running,
            "cycles": self._cycles,
            "overlaps_skipped": self._overlaps,
            "errors": self._errors,
            "last_cycle": last.to_dict() if last else None,
            "uptime_seconds": int(time.time() - self._start_time),
        }

    async def trigger(self) -> Optional[CycleReport]:
        """Run one cycle unless one is already in flight (then return None)."""
        if self._lock.locked():
            self._overlaps += 1
            logger.info("Weather update already running, skipping trigger")
            return None
        async with self._lock:
            report = await self.scheduler.run_cycle()
            self._cycles += 1
            self._last_report = report
            return report

    async def run(self) -> None:
        """Main loop. Runs until cancelled or stopped."""
        self._running = True
        self._start_time = time.time()
        logger.info("Ingest poller starting with %ds interval", self.interval)

        while self._running:
            try:
                await self.trigger()
            except asyncio.CancelledError:
                break
            except Exception as e:
                if not self._running:
                    break
                self._errors += 1
                logger.error("Ingest cycle error: %s", e, exc_info=True)

            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
        self._running = False

    def stop(self) -> None:
        self._running = False
