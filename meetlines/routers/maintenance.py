import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meetlines.auth import require_service_role
from meetlines.database import get_db
from meetlines.schemas import AutoEndEventsResponse
from meetlines.services.cities import populate_cities
from meetlines.services.event_closer import close_ended_events

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/functions/v1",
    tags=["maintenance"],
    dependencies=[Depends(require_service_role)],
)


@router.post("/auto-end-events", response_model=AutoEndEventsResponse)
def auto_end_events(db: Session = Depends(get_db)):
    """Close every event whose end date has passed."""
    try:
        return close_ended_events(db)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Error in auto-end-events function")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})


@router.post("/populate-cities")
def populate_cities_endpoint(db: Session = Depends(get_db)):
    """Import the municipality catalogue into the cities table."""
    return populate_cities(db)
