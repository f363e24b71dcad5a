from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


# Request bodies use the camelCase keys the web client sends. Required
# fields are Optional here so that a missing one is reported by the
# handler with its own message instead of a generic validation error.

class FunctionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ============== Payments ==============

class VerifyTicketPaymentRequest(FunctionRequest):
    session_id: Optional[str] = Field(None, alias="sessionId")


class CreateTicketCheckoutRequest(FunctionRequest):
    ticket_type_id: Optional[str] = Field(None, alias="ticketTypeId")
    quantity: Optional[int] = None
    event_id: Optional[str] = Field(None, alias="eventId")


# ============== AI ==============

class GenerateDescriptionRequest(FunctionRequest):
    title: Optional[str] = None
    organizer_name: Optional[str] = Field(None, alias="organizerName")
    event_date: Optional[str] = Field(None, alias="eventDate")
    location: Optional[str] = None
    category: Optional[str] = None
    ticket_price: Optional[float] = Field(None, alias="ticketPrice")


class GenerateDescriptionResponse(BaseModel):
    success: bool = True
    description: str


# ============== Maintenance ==============

class EndedEvent(BaseModel):
    id: str
    title: str
    end_date: Optional[str] = None
    kind: str


class AutoEndEventsResponse(BaseModel):
    success: bool
    message: str
    endedCount: int
    events: list[EndedEvent]
