"""GET /api/status - row counts and ingest poller state."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..models.database import get_db
from ..services.query import QueryService

router = APIRouter()


@router.get("/status")
def status(request: Request, db: Session = Depends(get_db)):
    poller = getattr(request.app.state, "poller", None)
    return {
        "tables": QueryService(db).table_counts(),
        "ingest": poller.stats if poller is not None else None,
    }


@router.post("/ingest/run")
async def run_ingest(request: Request):
    """Trigger one scheduled cycle now (skipped if one is already running)."""
    poller = request.app.state.poller
    report = await poller.trigger()
    if report is None:
        return {"started": False, "reason": "cycle already running"}
    return {"started": True, **report.to_dict()}
