"""Exception types raised by the ingestion and query services.

The scheduled cycle catches these and logs them; on-demand operations let
them propagate so the HTTP layer can translate them into status codes.
"""

from typing import Optional


class WeatherHubError(Exception):
    """Base class for all service-level errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message}


class ConfigurationMissing(WeatherHubError):
    """No usable provider configuration (or API key) is available."""

    status_code = 503


class RateLimited(WeatherHubError):
    """Provider was called less than its minimum interval ago."""

    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["retry_after"] = self.retry_after
        return d


class ProviderUnavailable(WeatherHubError):
    """Provider returned a non-success status, timed out, or sent garbage."""

    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["provider_status"] = self.status
        d["provider_body"] = self.body[:500]
        return d


class ValidationFailed(WeatherHubError):
    """Input outside the accepted domain (bad units, range, dt, ...)."""

    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.field:
            d["field"] = self.field
        return d


class StoreFailed(WeatherHubError):
    """A write to the store failed and was rolled back."""

    status_code = 500


class NotFound(WeatherHubError):
    status_code = 404

    def __init__(self, entity: str, ident):
        super().__init__(f"{entity} {ident} not found")
        self.entity = entity
        self.ident = ident


class DuplicateLocation(WeatherHubError):
    status_code = 409

    def __init__(self, existing_id: int):
        super().__init__(f"Location already exists (id={existing_id})")
        self.existing_id = existing_id

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["existing_id"] = self.existing_id
        return d
