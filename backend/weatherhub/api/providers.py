"""CRUD endpoints for weather provider configurations."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config import settings
from ..models.database import get_db
from ..schemas.weather import ProviderConfigOut
from ..services import providers as provider_service

router = APIRouter(prefix="/providers", tags=["providers"])


class ProviderCreate(BaseModel):
    name: str
    url: str = settings.owm_onecall_url
    api_key: str
    is_active: bool = True
    is_default: bool = False
    rate_limit_minutes: Optional[int] = None


class ProviderUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    api_key: Optional[str] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None
    rate_limit_minutes: Optional[int] = None


def _out(p) -> dict:
    return ProviderConfigOut.from_record(p).model_dump(mode="json")


@router.get("")
def list_providers(active_only: bool = False, db: Session = Depends(get_db)):
    return [_out(p) for p in provider_service.list_providers(db, active_only=active_only)]


@router.post("", status_code=201)
def create_provider(body: ProviderCreate, db: Session = Depends(get_db)):
    return _out(provider_service.create_provider(db, **body.model_dump()))


@router.get("/{provider_id}")
def get_provider(provider_id: int, db: Session = Depends(get_db)):
    return _out(provider_service.get_provider(db, provider_id))


@router.put("/{provider_id}")
def update_provider(provider_id: int, body: ProviderUpdate, db: Session = Depends(get_db)):
    return _out(provider_service.update_provider(db, provider_id, **body.model_dump()))


@router.post("/{provider_id}/activate")
def activate_provider(provider_id: int, db: Session = Depends(get_db)):
    return _out(provider_service.set_provider_active(db, provider_id, True))


@router.post("/{provider_id}/deactivate")
def deactivate_provider(provider_id: int, db: Session = Depends(get_db)):
    return _out(provider_service.set_provider_active(db, provider_id, False))


@router.delete("/{provider_id}")
def delete_provider(provider_id: int, db: Session = Depends(get_db)):
    provider_service.delete_provider(db, provider_id)
    return {"deleted": provider_id}
