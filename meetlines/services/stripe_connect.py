"""
Stripe Connect onboarding for organizers.

Each organizer receives ticket revenue through an Express connected
account. The account is created once and its id stored on the organizer;
onboarding links expire, so a fresh one is generated on every request.
"""

from datetime import datetime, timezone
from typing import Optional

import stripe
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meetlines.config import get_settings
from meetlines.errors import AuthenticationError, ConfigurationError, NotFoundError, UpstreamError
from meetlines.models import Organizer, StripeAccountStatus, User
from meetlines.services.step_log import StepLogger


def configure_stripe():
    """Point the stripe module at our secret key, or fail if there is none."""
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise ConfigurationError("STRIPE_SECRET_KEY is not set")
    stripe.api_key = settings.stripe_secret_key


def plain(value):
    """Stripe objects to plain JSON-friendly values."""
    if value is None:
        return None
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return dict(value)
    return value


def _get_organizer(db: Session, user: User) -> Organizer:
    organizer = db.query(Organizer).filter(Organizer.user_id == user.id).first()
    if not organizer:
        raise NotFoundError("Organizer not found")
    return organizer


def create_connect_account(db: Session, user: User, origin: Optional[str] = None) -> dict:
    """Create (or reuse) the organizer's connected account and return an onboarding link."""
    log_step = StepLogger("CREATE-STRIPE-CONNECT")
    log_step("Function started")

    if not user.email:
        raise AuthenticationError("User not authenticated or email not available")
    log_step("User authenticated", {"userId": user.id, "email": user.email})

    organizer = _get_organizer(db, user)
    log_step("Organizer found", {"organizerId": organizer.id})

    configure_stripe()
    site = (origin or get_settings().site_url).rstrip("/")

    account_id = organizer.stripe_account_id
    try:
        if not account_id:
            account = stripe.Account.create(
                type="express",
                country=get_settings().stripe_connect_country,
                email=organizer.email or user.email,
                business_type="individual",
                capabilities={
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                metadata={
                    "organizer_id": organizer.id,
                    "user_id": user.id,
                },
            )
            account_id = account.id
            log_step("Stripe account created", {"accountId": account_id})

            try:
                organizer.stripe_account_id = account_id
                organizer.stripe_account_status = StripeAccountStatus.PENDING.value
                organizer.stripe_connected_at = datetime.now(timezone.utc)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                log_step("Error updating organizer with account ID", {"error": str(e)})
        else:
            log_step("Using existing Stripe account", {"accountId": account_id})

        account_link = stripe.AccountLink.create(
            account=account_id,
            refresh_url=f"{site}/organizer-profile?stripe_refresh=true",
            return_url=f"{site}/organizer-profile?stripe_success=true",
            type="account_onboarding",
        )
    except stripe.StripeError as e:
        raise UpstreamError(str(e))

    log_step("Account link created", {"url": account_link.url})
    return {"url": account_link.url, "accountId": account_id}


def check_connect_status(db: Session, user: User) -> dict:
    """Mirror the connected account's capability flags onto the organizer."""
    log_step = StepLogger("CHECK-STRIPE-STATUS")
    log_step("Function started")
    log_step("User authenticated", {"userId": user.id})

    organizer = _get_organizer(db, user)

    if not organizer.stripe_account_id:
        return {
            "connected": False,
            "onboarding_complete": False,
            "charges_enabled": False,
            "payouts_enabled": False,
        }

    configure_stripe()
    try:
        account = stripe.Account.retrieve(organizer.stripe_account_id)
    except stripe.StripeError as e:
        raise UpstreamError(str(e))

    charges_enabled = bool(account.charges_enabled)
    payouts_enabled = bool(account.payouts_enabled)
    details_submitted = bool(account.details_submitted)
    log_step("Stripe account retrieved", {
        "accountId": account.id,
        "charges_enabled": charges_enabled,
        "payouts_enabled": payouts_enabled,
        "details_submitted": details_submitted,
    })

    try:
        organizer.stripe_account_status = (
            StripeAccountStatus.ACTIVE.value
            if charges_enabled and payouts_enabled
            else StripeAccountStatus.PENDING.value
        )
        organizer.stripe_onboarding_completed = details_submitted
        organizer.stripe_charges_enabled = charges_enabled
        organizer.stripe_payouts_enabled = payouts_enabled
        organizer.stripe_details_submitted = details_submitted
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log_step("Error updating organizer status", {"error": str(e)})

    return {
        "connected": True,
        "account_id": account.id,
        "onboarding_complete": details_submitted,
        "charges_enabled": charges_enabled,
        "payouts_enabled": payouts_enabled,
        "requirements": plain(getattr(account, "requirements", None)),
    }
