"""OpenWeatherMap direct geocoding client (place name -> coordinates)."""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from ..config import settings
from ..errors import ProviderUnavailable, ValidationFailed

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = settings.request_timeout
MIN_QUERY_LEN = 2
MAX_QUERY_LEN = 255
MAX_LIMIT = 50


@dataclass
class GeocodingResult:
    name: str
    latitude: float
    longitude: float
    country: Optional[str] = None
    state: Optional[str] = None
    local_names: dict = field(default_factory=dict)
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "GeocodingResult":
        return cls(
            name=data.get("name", ""),
            latitude=float(data["lat"]),
            longitude=float(data["lon"]),
            country=data.get("country"),
            state=data.get("state"),
            local_names=data.get("local_names") or {},
            raw=data,
        )


class GeocodingClient:
    def __init__(
        self,
        url: str = settings.owm_geocoding_url,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def search(self, text: str, api_key: str, limit: int = 5) -> list[GeocodingResult]:
        """Resolve free text to candidate places.

        Unlike the One Call client this raises: it only backs on-demand
        requests, where the caller needs to see why the lookup failed.
        """
        text = (text or "").strip()
        if not MIN_QUERY_LEN <= len(text) <= MAX_QUERY_LEN:
            raise ValidationFailed(
                f"query must be {MIN_QUERY_LEN}-{MAX_QUERY_LEN} characters", field="q"
            )
        if not 1 <= limit <= MAX_LIMIT:
            raise ValidationFailed(f"limit must be 1-{MAX_LIMIT}", field="limit")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(
                    self.url, params={"q": text, "limit": limit, "appid": api_key},
                )
        except (httpx.HTTPError, httpx.TimeoutException) as exc:
            logger.warning("Geocoding request for %r failed: %s", text, exc)
            raise ProviderUnavailable("Geocoding request failed", body=str(exc)) from exc

        if not resp.is_success:
            logger.warning("Geocoding for %r returned HTTP %d", text, resp.status_code)
            raise ProviderUnavailable(
                "Geocoding request failed", status=resp.status_code, body=resp.text,
            )

        try:
            items = resp.json()
        except ValueError as exc:
            raise ProviderUnavailable(
                "Geocoding response is not JSON", status=resp.status_code, body=resp.text,
            ) from exc

        results = []
        for item in items if isinstance(items, list) else []:
            try:
                results.append(GeocodingResult.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping geocoding result without coordinates: %r", item)
        logger.info("Geocoding %r: %d result(s)", text, len(results))
        return results
