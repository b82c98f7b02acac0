"""On-demand fetches triggered by an API caller.

Same Fetcher/Reconciler path as the scheduled cycle, but errors surface to
the caller: a denied rate limit raises ``RateLimited`` with a retry-after,
an upstream failure raises ``ProviderUnavailable``.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from ..errors import NotFound, ProviderUnavailable, RateLimited, ValidationFailed
from ..models.database import utcnow
from ..models.location import Location
from .owm_client import HISTORICAL_KINDS, VALID_UNITS, FetchError, OWMClient
from .providers import ProviderRef, resolve_provider
from .rate_limiter import RateLimiter
from .reconciler import Reconciler, ReconcileReport

logger = logging.getLogger(__name__)

CURRENT_ONLY_EXCLUDE = ("minutely", "hourly", "daily", "alerts")


class IngestService:
    def __init__(
        self,
        db: Session,
        limiter: RateLimiter,
        client: Optional[OWMClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.limiter = limiter
        self.client = client or OWMClient()
        self.clock = clock

    # --- Helpers ---

    def _location(self, location_id: int) -> Location:
        location = self.db.get(Location, location_id)
        if location is None or location.deleted_at is not None:
            raise NotFound("Location", location_id)
        return location

    @staticmethod
    def _check_units(units: Optional[str]) -> None:
        if units is not None and units not in VALID_UNITS:
            raise ValidationFailed(
                f"units must be one of {', '.join(VALID_UNITS)}", field="units",
            )

    def _provider(self, provider_id: Optional[int]) -> ProviderRef:
        provider = ProviderRef.from_model(resolve_provider(self.db, provider_id))
        if not self.limiter.check_allowed(provider.id, provider.rate_limit_minutes):
            retry = self.limiter.retry_after(provider.id, provider.rate_limit_minutes)
            logger.info("On-demand fetch denied for provider %s (retry in %ds)", provider.id, retry)
            raise RateLimited("API rate limit exceeded", retry_after=retry)
        return provider

    @staticmethod
    def _raise_fetch_error(err: FetchError, what: str) -> None:
        raise ProviderUnavailable(f"Failed to fetch {what}", status=err.status, body=err.body)

    # --- Operations ---

    async def fetch_current(
        self,
        location_id: int,
        provider_id: Optional[int] = None,
        units: Optional[str] = None,
    ) -> ReconcileReport:
        """Fetch current conditions only and store them."""
        self._check_units(units)
        return await self._fetch(
            location_id, provider_id, units, CURRENT_ONLY_EXCLUDE, "current weather data",
        )

    async def fetch_complete(
        self,
        location_id: int,
        provider_id: Optional[int] = None,
        units: Optional[str] = None,
        exclude: Iterable[str] = (),
    ) -> ReconcileReport:
        """Fetch the full One Call payload (minus ``exclude``) and reconcile it."""
        self._check_units(units)
        exclude = list(exclude)
        bad = [e for e in exclude if e not in CURRENT_ONLY_EXCLUDE]
        if bad:
            raise ValidationFailed(
                f"exclude may only contain minutely, hourly, daily, alerts (got {bad})",
                field="exclude",
            )
        return await self._fetch(location_id, provider_id, units, exclude, "complete weather data")

    async def _fetch(
        self,
        location_id: int,
        provider_id: Optional[int],
        units: Optional[str],
        exclude: Iterable[str],
        what: str,
    ) -> ReconcileReport:
        location = self._location(location_id)
        provider = self._provider(provider_id)

        payload = await self.client.fetch(location, provider, exclude=exclude, units=units)
        if isinstance(payload, FetchError):
            self._raise_fetch_error(payload, what)
        self.limiter.record_call(provider.id, provider.rate_limit_minutes)

        return Reconciler(self.db, clock=self.clock).apply(location, payload, units=units)

    async def fetch_historical(
        self,
        location_id: int,
        dt: int,
        kind: str = "hour",
        provider_id: Optional[int] = None,
        units: Optional[str] = None,
    ) -> ReconcileReport:
        """Fetch one past hour (timemachine) or day (day_summary) and upsert it."""
        self._check_units(units)
        if not isinstance(dt, int) or isinstance(dt, bool) or dt < 1:
            raise ValidationFailed("dt must be a positive unix timestamp", field="dt")
        if kind not in HISTORICAL_KINDS:
            raise ValidationFailed("type must be 'hour' or 'day'", field="type")

        location = self._location(location_id)
        provider = self._provider(provider_id)

        points = await self.client.fetch_historical(location, provider, dt, kind=kind, units=units)
        if isinstance(points, FetchError):
            self._raise_fetch_error(points, "historical weather data")
        self.limiter.record_call(provider.id, provider.rate_limit_minutes)

        report = Reconciler(self.db, clock=self.clock).apply_historical(location, points, units=units)
        logger.info(
            "Historical %s fetch for location %s at dt=%d: %s",
            kind, location_id, dt, report.to_dict()["datasets"],
        )
        return report
