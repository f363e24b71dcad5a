import logging

import stripe
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from meetlines.auth import get_current_user
from meetlines.database import get_db
from meetlines.models import User
from meetlines.schemas import CreateTicketCheckoutRequest, VerifyTicketPaymentRequest
from meetlines.services import stripe_connect, ticket_payments
from meetlines.services.stripe_connect import plain

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["payments"])


@router.post("/create-stripe-connect-account")
def create_stripe_connect_account(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create or reuse the organizer's connected account and return an onboarding link."""
    return stripe_connect.create_connect_account(db, user, origin=request.headers.get("origin"))


@router.post("/check-stripe-connect-status")
def check_stripe_connect_status(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Refresh the organizer's payout capability flags from Stripe."""
    return stripe_connect.check_connect_status(db, user)


@router.post("/verify-ticket-payment")
def verify_ticket_payment(
    body: VerifyTicketPaymentRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Complete the caller's sale once its checkout session is paid."""
    return ticket_payments.verify_payment(db, user, body.session_id)


@router.post("/create-ticket-checkout")
def create_ticket_checkout(
    request: Request,
    body: CreateTicketCheckoutRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Open a Checkout Session for a ticket purchase."""
    return ticket_payments.create_checkout(
        db,
        user,
        ticket_type_id=body.ticket_type_id,
        quantity=body.quantity,
        event_id=body.event_id,
        origin=request.headers.get("origin"),
    )


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
):
    """Handle Stripe webhook events."""
    payload = await request.body()

    try:
        event = ticket_payments.construct_webhook_event(payload, stripe_signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("Webhook signature verification failed: %s", e)
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    ticket_payments.handle_webhook_event(db, event.type, plain(event.data.object))
    return {"received": True}
