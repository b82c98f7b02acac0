"""OpenWeatherMap One Call 3.0 client.

Fetches the One Call payload (current, minutely, hourly, daily, alerts) and
the historical timemachine / day_summary variants for a location, then
hands the decoded JSON to ``normalize`` for typing.  Every failure comes
back as a ``FetchError``; nothing raises past this module.

API docs: https://openweathermap.org/api/one-call-3
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Union

import httpx

from ..config import settings
from .normalize import (
    MALFORMED_ERRORS,
    HistoricalPoint,
    OneCallPayload,
    parse_day_summary,
    parse_onecall,
    parse_timemachine,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = settings.request_timeout  # seconds; a timeout counts as failure
VALID_UNITS = ("standard", "metric", "imperial")
EXCLUDABLE = ("current", "minutely", "hourly", "daily", "alerts")
HISTORICAL_KINDS = {"hour": "timemachine", "day": "day_summary"}
USER_AGENT = "weatherhub/0.1"


@dataclass
class FetchError:
    """Provider call failed.  status is None for transport errors/timeouts."""
    status: Optional[int]
    body: str

    def __str__(self) -> str:
        return f"status={self.status} body={self.body[:200]!r}"


def historical_url(provider_url: str, kind: str) -> str:
    """``.../data/3.0/onecall`` -> ``.../data/3.0/onecall/timemachine`` (or day_summary)."""
    base = provider_url.rstrip("/")
    if not base.endswith("/onecall"):
        base = f"{base}/onecall"
    return f"{base}/{HISTORICAL_KINDS[kind]}"


class OWMClient:
    """Thin async wrapper around the One Call endpoints.

    ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport

    async def _get_json(self, url: str, params: dict) -> Union[dict, FetchError]:
        safe = {k: v for k, v in params.items() if k != "appid"}
        try:
            async with httpx.AsyncClient(
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.get(url, params=params)
        except (httpx.HTTPError, httpx.TimeoutException) as exc:
            logger.warning("OWM request to %s failed (%s): %s", url, safe, exc)
            return FetchError(status=None, body=str(exc))

        if not resp.is_success:
            logger.warning(
                "OWM request to %s returned HTTP %d (%s)", url, resp.status_code, safe,
            )
            return FetchError(status=resp.status_code, body=resp.text)

        try:
            data = resp.json()
        except ValueError:
            logger.warning("OWM response from %s is not JSON", url)
            return FetchError(status=resp.status_code, body=resp.text)
        if not isinstance(data, dict):
            return FetchError(status=resp.status_code, body=resp.text)
        return data

    async def fetch(
        self,
        location,
        provider,
        exclude: Iterable[str] = (),
        units: Optional[str] = None,
    ) -> Union[OneCallPayload, FetchError]:
        """Fetch and normalize the One Call payload for one location."""
        params = {
            "lat": location.latitude,
            "lon": location.longitude,
            "appid": provider.api_key,
            "units": units or location.units or "metric",
        }
        excluded = [e for e in exclude if e in EXCLUDABLE]
        if excluded:
            params["exclude"] = ",".join(excluded)

        data = await self._get_json(provider.url, params)
        if isinstance(data, FetchError):
            return data

        payload = _typed(parse_onecall, data, provider.url)
        if isinstance(payload, FetchError):
            return payload
        logger.debug(
            "OWM fetch for location %s: current=%s hourly=%s daily=%s minutely=%s alerts=%s",
            location.id,
            payload.current is not None,
            _count(payload.hourly), _count(payload.daily),
            _count(payload.minutely), _count(payload.alerts),
        )
        return payload

    async def fetch_historical(
        self,
        location,
        provider,
        dt: int,
        kind: str = "hour",
        units: Optional[str] = None,
    ) -> Union[list[HistoricalPoint], FetchError]:
        """Fetch timemachine (hour) or day_summary (day) rows for a past instant."""
        params = {
            "lat": location.latitude,
            "lon": location.longitude,
            "appid": provider.api_key,
            "units": units or location.units or "metric",
        }
        if kind == "day":
            params["date"] = datetime.fromtimestamp(dt, tz=timezone.utc).date().isoformat()
        else:
            params["dt"] = dt

        url = historical_url(provider.url, kind)
        data = await self._get_json(url, params)
        if isinstance(data, FetchError):
            return data
        if kind == "day":
            return _typed(lambda d: parse_day_summary(d, dt), data, url)
        return _typed(parse_timemachine, data, url)


def _count(items) -> str:
    return "absent" if items is None else str(len(items))


def _typed(parse, data: dict, url: str):
    """Apply a normalizer; a body it cannot type becomes a FetchError."""
    try:
        return parse(data)
    except MALFORMED_ERRORS as exc:
        logger.warning("OWM response from %s is malformed: %s", url, exc)
        return FetchError(status=200, body=f"malformed payload: {exc}")
