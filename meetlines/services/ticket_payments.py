"""
Ticket checkout, payment verification and Stripe webhook handling.

A purchase creates a ``pending`` ticket sale plus a Checkout Session that
routes funds to the organizer's connected account (destination charge,
platform keeps the application fee). The sale is completed either by the
buyer's client calling verify-ticket-payment after the redirect or by the
``checkout.session.completed`` webhook. Whichever path completes the sale
also adds its quantity to the ticket type's ``quantity_sold``; the other
path then sees a completed sale and changes nothing.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import stripe
from sqlalchemy.orm import Session, joinedload

from meetlines.config import get_settings
from meetlines.errors import (
    AuthenticationError, AuthorizationError, ConfigurationError, FunctionError,
    MissingFieldError, NotFoundError, UpstreamError,
)
from meetlines.models import (
    EventTicketSettings, FeePayer, Organizer, PaymentStatus, Profile, TicketSale, TicketType, User,
)
from meetlines.services.step_log import StepLogger
from meetlines.services.stripe_connect import configure_stripe


def utcnow():
    return datetime.now(timezone.utc)


def is_session_paid(session) -> bool:
    return session.payment_status == "paid" or session.status == "complete"


def payment_intent_id(session) -> Optional[str]:
    intent = getattr(session, "payment_intent", None)
    if intent is None or isinstance(intent, str):
        return intent
    return getattr(intent, "id", None)


def to_cents(amount: float) -> int:
    """BRL amount to integer cents, halves rounded up."""
    return int(Decimal(str(amount * 100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_fees(unit_price: float, quantity: int, settings: EventTicketSettings) -> dict:
    """Break a purchase down into subtotal, fees and what the buyer pays.

    ``application_fee_cents`` is what the platform keeps out of the charge.
    """
    subtotal = unit_price * quantity
    platform_fee = subtotal * (settings.platform_fee_percentage / 100)
    processing_fee = (
        subtotal * (settings.payment_processing_fee_percentage / 100)
        + settings.payment_processing_fee_fixed * quantity
    )
    if settings.fee_payer == FeePayer.BUYER.value:
        total = subtotal + platform_fee + processing_fee
    else:
        total = subtotal
    return {
        "subtotal": subtotal,
        "platform_fee": platform_fee,
        "processing_fee": processing_fee,
        "total_amount": total,
        "application_fee_cents": to_cents(platform_fee + processing_fee),
    }


def count_sold_tickets(db: Session, sale: TicketSale):
    """Add a newly completed sale to its ticket type's sold count."""
    ticket_type = db.query(TicketType).filter(TicketType.id == sale.ticket_type_id).first()
    if ticket_type:
        ticket_type.quantity_sold = (ticket_type.quantity_sold or 0) + sale.quantity


# ============== verify-ticket-payment ==============

def verify_payment(db: Session, user: User, session_id: Optional[str]) -> dict:
    log_step = StepLogger("VERIFY-TICKET-PAYMENT")
    log_step("Function started")

    if not session_id:
        raise MissingFieldError("Missing required parameter: sessionId")
    log_step("Request received", {"sessionId": session_id})

    if not user.email:
        raise AuthenticationError("User not authenticated or email not available")
    log_step("User authenticated", {"userId": user.id})

    sale = db.query(TicketSale).filter(TicketSale.stripe_checkout_session_id == session_id).first()
    if not sale:
        raise NotFoundError("Sale not found for provided sessionId")
    if sale.user_id != user.id:
        raise AuthorizationError("Sale does not belong to current user")
    log_step("Sale loaded", {"saleId": sale.id, "status": sale.payment_status})

    if sale.payment_status == PaymentStatus.COMPLETED.value:
        log_step("Sale already completed")
        return {"ok": True, "payment_status": PaymentStatus.COMPLETED.value}

    configure_stripe()
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        raise UpstreamError(str(e))
    log_step("Stripe session retrieved", {"status": session.status, "payment_status": session.payment_status})

    if not is_session_paid(session):
        log_step("Session not paid yet")
        return {"ok": False, "payment_status": session.payment_status or session.status}

    sale.payment_status = PaymentStatus.COMPLETED.value
    sale.paid_at = utcnow()
    sale.stripe_payment_intent_id = payment_intent_id(session)
    count_sold_tickets(db, sale)
    db.commit()
    log_step("Sale marked as completed", {"saleId": sale.id})

    return {"ok": True, "payment_status": PaymentStatus.COMPLETED.value}


# ============== create-ticket-checkout ==============

def create_checkout(
    db: Session,
    user: User,
    ticket_type_id: Optional[str],
    quantity: Optional[int],
    event_id: Optional[str],
    origin: Optional[str] = None,
) -> dict:
    log_step = StepLogger("CREATE-TICKET-CHECKOUT")
    log_step("Function started")

    if not user.email:
        raise AuthenticationError("User not authenticated or email not available")
    log_step("User authenticated", {"userId": user.id, "email": user.email})

    log_step("Request received", {"ticketTypeId": ticket_type_id, "quantity": quantity, "eventId": event_id})
    if not ticket_type_id or not quantity or not event_id:
        raise MissingFieldError("Missing required parameters: ticketTypeId, quantity, eventId")

    ticket_type = (
        db.query(TicketType)
        .options(joinedload(TicketType.event))
        .filter(TicketType.id == ticket_type_id)
        .first()
    )
    if not ticket_type:
        raise NotFoundError("Ticket type not found")
    log_step("Ticket type found", {"ticketTypeId": ticket_type.id, "price": ticket_type.price})

    organizer = db.query(Organizer).filter(Organizer.id == ticket_type.event.organizer_id).first()
    if not organizer:
        raise NotFoundError("Organizer not found")
    if organizer.user_id == user.id:
        raise AuthorizationError("Organizadores não podem comprar ingressos dos próprios eventos")
    if not organizer.stripe_account_id or not organizer.stripe_charges_enabled:
        raise FunctionError(
            "Este organizador ainda não configurou pagamentos. Entre em contato com o organizador."
        )
    log_step("User is not the organizer, proceeding with purchase", {
        "stripeAccountId": organizer.stripe_account_id,
    })

    ticket_settings = db.query(EventTicketSettings).filter(EventTicketSettings.event_id == event_id).first()
    if not ticket_settings:
        raise NotFoundError("Ticket settings not found for this event")

    fees = calculate_fees(ticket_type.price, quantity, ticket_settings)
    log_step("Fees calculated", {**fees, "feePayer": ticket_settings.fee_payer})

    configure_stripe()
    settings = get_settings()
    site = (origin or settings.site_url).rstrip("/")

    try:
        customers = stripe.Customer.list(email=user.email, limit=1)
        if customers.data:
            customer_id = customers.data[0].id
            log_step("Existing customer found", {"customerId": customer_id})
        else:
            customer_id = stripe.Customer.create(
                email=user.email,
                metadata={"store_user_id": user.id},
            ).id
            log_step("New customer created", {"customerId": customer_id})
    except stripe.StripeError as e:
        raise UpstreamError(str(e))

    profile = db.query(Profile).filter(Profile.user_id == user.id).first()

    sale = TicketSale(
        user_id=user.id,
        event_id=event_id,
        ticket_type_id=ticket_type.id,
        quantity=quantity,
        unit_price=ticket_type.price,
        subtotal=fees["subtotal"],
        platform_fee=fees["platform_fee"],
        payment_processing_fee=fees["processing_fee"],
        total_amount=fees["total_amount"],
        buyer_name=(profile.display_name if profile and profile.display_name else user.email),
        buyer_email=user.email,
        buyer_phone=profile.phone if profile else None,
        payment_status=PaymentStatus.PENDING.value,
    )
    db.add(sale)
    db.commit()
    db.refresh(sale)
    log_step("Sale record created", {"saleId": sale.id})

    product_data = {"name": f"{ticket_type.name} - {ticket_type.event.title}"}
    if ticket_type.description:
        product_data["description"] = ticket_type.description

    try:
        session = stripe.checkout.Session.create(
            customer=customer_id,
            line_items=[{
                "price_data": {
                    "currency": settings.stripe_currency,
                    "product_data": product_data,
                    "unit_amount": to_cents(fees["total_amount"]),
                },
                "quantity": 1,
            }],
            mode="payment",
            success_url=f"{site}/ticket-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{site}/event/{event_id}?payment=cancelled",
            payment_intent_data={
                "application_fee_amount": fees["application_fee_cents"],
                "transfer_data": {"destination": organizer.stripe_account_id},
            },
            metadata={
                "ticket_sale_id": sale.id,
                "event_id": event_id,
                "user_id": user.id,
                "organizer_id": organizer.id,
            },
        )
    except stripe.StripeError as e:
        raise UpstreamError(str(e))

    sale.stripe_checkout_session_id = session.id
    db.commit()
    log_step("Checkout session created", {"sessionId": session.id, "url": session.url})

    return {"url": session.url, "sessionId": session.id}


# ============== stripe-webhook ==============

def construct_webhook_event(payload: bytes, signature: Optional[str]):
    """Verify the Stripe signature and return the event.

    Raises ``stripe.SignatureVerificationError`` or ``ValueError`` for a bad
    signature or payload.
    """
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
    if not settings.stripe_webhook_secret:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
    if not signature:
        raise MissingFieldError("Missing stripe-signature header")
    stripe.api_key = settings.stripe_secret_key
    return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)


def handle_webhook_event(db: Session, event_type: str, data: dict):
    """Apply one verified webhook event to the ticket sales."""
    log_step = StepLogger("STRIPE-WEBHOOK")
    log_step("Event type received", {"type": event_type})

    if event_type == "checkout.session.completed":
        _handle_checkout_completed(db, data, log_step)
    elif event_type == "checkout.session.expired":
        _handle_checkout_expired(db, data, log_step)
    elif event_type == "payment_intent.succeeded":
        log_step("Processing payment_intent.succeeded", {"paymentIntentId": data.get("id")})
    elif event_type == "payment_intent.payment_failed":
        _handle_payment_failed(db, data, log_step)
    elif event_type == "charge.refunded":
        _handle_charge_refunded(db, data, log_step)
    else:
        log_step("Unhandled event type", {"type": event_type})


def _sale_id_from(session: dict) -> Optional[str]:
    return (session.get("metadata") or {}).get("ticket_sale_id")


def _handle_checkout_completed(db: Session, session: dict, log_step):
    log_step("Processing checkout.session.completed", {"sessionId": session.get("id")})
    sale_id = _sale_id_from(session)
    if not sale_id:
        log_step("No ticket_sale_id in metadata")
        return

    sale = db.query(TicketSale).filter(TicketSale.id == sale_id).first()
    if not sale:
        log_step("Sale not found", {"ticketSaleId": sale_id})
        return
    if sale.payment_status == PaymentStatus.COMPLETED.value:
        log_step("Sale already completed", {"ticketSaleId": sale_id})
        return

    if session.get("payment_status") != "paid" and session.get("status") != "complete":
        return

    intent = session.get("payment_intent")
    sale.payment_status = PaymentStatus.COMPLETED.value
    sale.paid_at = utcnow()
    sale.stripe_payment_intent_id = intent if isinstance(intent, str) else None
    count_sold_tickets(db, sale)
    db.commit()
    log_step("Sale marked as completed", {"ticketSaleId": sale_id})


def _handle_checkout_expired(db: Session, session: dict, log_step):
    log_step("Processing checkout.session.expired", {"sessionId": session.get("id")})
    sale_id = _sale_id_from(session)
    if not sale_id:
        log_step("No ticket_sale_id in metadata")
        return

    sale = (
        db.query(TicketSale)
        .filter(TicketSale.id == sale_id, TicketSale.payment_status == PaymentStatus.PENDING.value)
        .first()
    )
    if sale:
        sale.payment_status = PaymentStatus.CANCELLED.value
        sale.cancelled_at = utcnow()
        db.commit()
        log_step("Sale marked as cancelled", {"ticketSaleId": sale_id})


def _handle_payment_failed(db: Session, intent: dict, log_step):
    log_step("Processing payment_intent.payment_failed", {"paymentIntentId": intent.get("id")})
    sales = db.query(TicketSale).filter(TicketSale.stripe_payment_intent_id == intent.get("id")).all()
    for sale in sales:
        sale.payment_status = PaymentStatus.FAILED.value
    db.commit()


def _handle_charge_refunded(db: Session, charge: dict, log_step):
    log_step("Processing charge.refunded", {"chargeId": charge.get("id")})
    intent_id = charge.get("payment_intent")
    if not intent_id:
        return
    sales = db.query(TicketSale).filter(TicketSale.stripe_payment_intent_id == intent_id).all()
    for sale in sales:
        sale.payment_status = PaymentStatus.REFUNDED.value
        sale.refunded_at = utcnow()
    db.commit()
    log_step("Sale marked as refunded", {"count": len(sales)})
