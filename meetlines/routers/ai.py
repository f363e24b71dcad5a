import logging

from fastapi import APIRouter, Depends, Request

from meetlines.auth import require_admin
from meetlines.config import get_settings
from meetlines.errors import MissingFieldError
from meetlines.models import User
from meetlines.rate_limit import limiter
from meetlines.schemas import GenerateDescriptionRequest, GenerateDescriptionResponse
from meetlines.services import ai_description

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["ai"])


def _ai_rate_limit() -> str:
    return get_settings().ai_rate_limit


@router.post("/generate-event-description", response_model=GenerateDescriptionResponse)
@limiter.limit(_ai_rate_limit)
async def generate_event_description(
    request: Request,
    body: GenerateDescriptionRequest,
    user: User = Depends(require_admin),
):
    """Write a short pt-BR marketing description for an event. Admins only."""
    if not (body.title and body.organizer_name and body.event_date and body.location):
        raise MissingFieldError("Missing required fields: title, organizerName, eventDate, location")

    logger.info("Generating description for event: %s", body.title)
    event_info = ai_description.build_event_info(
        title=body.title,
        organizer_name=body.organizer_name,
        event_date=body.event_date,
        location=body.location,
        category=body.category,
        ticket_price=body.ticket_price,
    )
    description = await ai_description.generate_description(event_info)
    return {"success": True, "description": description}
