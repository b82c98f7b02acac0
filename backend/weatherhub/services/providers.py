"""Provider configuration store: selection and CRUD."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConfigurationMissing, NotFound, ValidationFailed
from ..models.database import utcnow
from ..models.provider_config import ProviderConfig

logger = logging.getLogger(__name__)

_EDITABLE = ("name", "url", "api_key", "is_active", "is_default", "rate_limit_minutes")


def _live(db: Session):
    return db.query(ProviderConfig).filter(ProviderConfig.deleted_at.is_(None))


def resolve_provider(db: Session, provider_id: Optional[int] = None) -> ProviderConfig:
    """Pick the provider for a fetch.

    An explicit id wins (and must exist).  Otherwise the active config
    flagged ``is_default`` is used, then the oldest active one.
    """
    if provider_id is not None:
        provider = _live(db).filter(ProviderConfig.id == provider_id).first()
        if provider is None:
            raise NotFound("Provider", provider_id)
        return provider

    provider = (
        _live(db)
        .filter(ProviderConfig.is_active.is_(True))
        .order_by(ProviderConfig.is_default.desc(), ProviderConfig.id)
        .first()
    )
    if provider is None:
        raise ConfigurationMissing("No active weather API configuration found")
    if not provider.api_key:
        raise ConfigurationMissing(f"Provider {provider.id} has no API key configured")
    return provider


def list_providers(db: Session, active_only: bool = False) -> list[ProviderConfig]:
    q = _live(db)
    if active_only:
        q = q.filter(ProviderConfig.is_active.is_(True))
    return q.order_by(ProviderConfig.id).all()


def get_provider(db: Session, provider_id: int) -> ProviderConfig:
    provider = _live(db).filter(ProviderConfig.id == provider_id).first()
    if provider is None:
        raise NotFound("Provider", provider_id)
    return provider


def _validate(values: dict) -> None:
    if "rate_limit_minutes" in values and values["rate_limit_minutes"] is not None:
        if not 1 <= int(values["rate_limit_minutes"]) <= 1440:
            raise ValidationFailed("rate_limit_minutes must be 1-1440", field="rate_limit_minutes")
    for key in ("name", "url", "api_key"):
        if key in values and values[key] is not None and not str(values[key]).strip():
            raise ValidationFailed(f"{key} must not be empty", field=key)


def create_provider(db: Session, **values) -> ProviderConfig:
    _validate(values)
    provider = ProviderConfig(**{k: v for k, v in values.items() if k in _EDITABLE and v is not None})
    db.add(provider)
    db.commit()
    db.refresh(provider)
    logger.info("Provider %s created (%s)", provider.id, provider.name)
    return provider


def update_provider(db: Session, provider_id: int, **values) -> ProviderConfig:
    provider = get_provider(db, provider_id)
    _validate(values)
    for key, value in values.items():
        if key in _EDITABLE and value is not None:
            setattr(provider, key, value)
    db.commit()
    db.refresh(provider)
    return provider


def set_provider_active(db: Session, provider_id: int, active: bool) -> ProviderConfig:
    provider = get_provider(db, provider_id)
    provider.is_active = active
    db.commit()
    db.refresh(provider)
    logger.info("Provider %s %s", provider.id, "activated" if active else "deactivated")
    return provider


def delete_provider(db: Session, provider_id: int) -> None:
    """Soft delete."""
    provider = get_provider(db, provider_id)
    provider.deleted_at = utcnow()
    provider.is_active = False
    db.commit()
    logger.info("Provider %s deleted", provider_id)


@dataclass(frozen=True)
class ProviderRef:
    """Detached copy of the fields a fetch needs, safe to share across sessions."""
    id: int
    name: str
    url: str
    api_key: str
    rate_limit_minutes: int

    @classmethod
    def from_model(cls, provider: ProviderConfig) -> "ProviderRef":
        return cls(
            id=provider.id,
            name=provider.name,
            url=provider.url,
            api_key=provider.api_key,
            rate_limit_minutes=provider.rate_limit_minutes or settings.default_rate_limit_minutes,
        )
