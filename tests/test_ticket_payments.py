"""Tests for ticket checkout, payment verification and the Stripe webhook."""

import hashlib
import hmac
import json
import time
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from meetlines.models import EventTicketSettings, TicketSale, TicketType
from meetlines.services.ticket_payments import calculate_fees, to_cents

VERIFY_URL = "/functions/v1/verify-ticket-payment"
CHECKOUT_URL = "/functions/v1/create-ticket-checkout"
WEBHOOK_URL = "/functions/v1/stripe-webhook"
WEBHOOK_SECRET = "whsec_test_123"


def _session(payment_status="paid", status="complete", payment_intent="pi_123"):
    return SimpleNamespace(payment_status=payment_status, status=status, payment_intent=payment_intent)


class TestVerifyTicketPayment:
    def test_missing_session_id(self, client, create_user, auth_headers):
        user = create_user()
        r = client.post(VERIFY_URL, json={}, headers=auth_headers(user))
        assert r.status_code == 500
        assert r.json()["error"] == "Missing required parameter: sessionId"

    def test_unknown_session(self, client, create_user, auth_headers):
        user = create_user()
        r = client.post(VERIFY_URL, json={"sessionId": "cs_missing"}, headers=auth_headers(user))
        assert r.status_code == 500
        assert r.json()["error"] == "Sale not found for provided sessionId"

    def test_other_users_sale_is_rejected_without_mutation(
        self, client, db, create_user, create_event, create_sale, auth_headers,
    ):
        buyer = create_user()
        intruder = create_user()
        sale = create_sale(buyer, create_event())

        with patch("stripe.checkout.Session.retrieve") as retrieve:
            r = client.post(VERIFY_URL, json={"sessionId": "cs_test_123"}, headers=auth_headers(intruder))

        assert r.status_code == 500
        assert r.json()["error"] == "Sale does not belong to current user"
        retrieve.assert_not_called()
        db.expire_all()
        stored = db.get(TicketSale, sale.id)
        assert stored.payment_status == "pending"
        assert stored.paid_at is None

    def test_completed_sale_short_circuits(self, client, create_user, create_event, create_sale, auth_headers):
        buyer = create_user()
        create_sale(buyer, create_event(), payment_status="completed")

        with patch("stripe.checkout.Session.retrieve") as retrieve:
            r = client.post(VERIFY_URL, json={"sessionId": "cs_test_123"}, headers=auth_headers(buyer))

        assert r.status_code == 200
        assert r.json() == {"ok": True, "payment_status": "completed"}
        retrieve.assert_not_called()

    def test_unpaid_session_soft_fails(self, client, db, create_user, create_event, create_sale, auth_headers):
        buyer = create_user()
        sale = create_sale(buyer, create_event())

        with patch("stripe.checkout.Session.retrieve", return_value=_session("unpaid", "open")):
            r = client.post(VERIFY_URL, json={"sessionId": "cs_test_123"}, headers=auth_headers(buyer))

        assert r.status_code == 200
        assert r.json() == {"ok": False, "payment_status": "unpaid"}
        db.expire_all()
        assert db.get(TicketSale, sale.id).payment_status == "pending"

    def test_paid_session_completes_sale(self, client, db, create_user, create_event, create_sale, auth_headers):
        buyer = create_user()
        sale = create_sale(buyer, create_event())

        with patch("stripe.checkout.Session.retrieve", return_value=_session()) as retrieve:
            r = client.post(VERIFY_URL, json={"sessionId": "cs_test_123"}, headers=auth_headers(buyer))

        assert r.status_code == 200, r.text
        assert r.json() == {"ok": True, "payment_status": "completed"}
        retrieve.assert_called_once_with("cs_test_123")
        db.expire_all()
        stored = db.get(TicketSale, sale.id)
        assert stored.payment_status == "completed"
        assert stored.paid_at is not None
        assert stored.stripe_payment_intent_id == "pi_123"

    def test_expanded_payment_intent_object(self, client, db, create_user, create_event, create_sale, auth_headers):
        buyer = create_user()
        sale = create_sale(buyer, create_event())
        session = _session(payment_status="no_payment_required", payment_intent=SimpleNamespace(id="pi_expanded"))

        with patch("stripe.checkout.Session.retrieve", return_value=session):
            r = client.post(VERIFY_URL, json={"sessionId": "cs_test_123"}, headers=auth_headers(buyer))

        assert r.json()["ok"] is True
        db.expire_all()
        assert db.get(TicketSale, sale.id).stripe_payment_intent_id == "pi_expanded"


class TestCalculateFees:
    def test_buyer_pays_fees(self):
        settings = EventTicketSettings(
            platform_fee_percentage=10, payment_processing_fee_percentage=4,
            payment_processing_fee_fixed=0.5, fee_payer="buyer",
        )
        fees = calculate_fees(50.0, 2, settings)
        assert fees["subtotal"] == 100.0
        assert fees["platform_fee"] == pytest.approx(10.0)
        assert fees["processing_fee"] == pytest.approx(5.0)
        assert fees["total_amount"] == pytest.approx(115.0)
        assert fees["application_fee_cents"] == 1500

    def test_organizer_absorbs_fees(self):
        settings = EventTicketSettings(
            platform_fee_percentage=10, payment_processing_fee_percentage=0,
            payment_processing_fee_fixed=0, fee_payer="organizer",
        )
        fees = calculate_fees(80.0, 1, settings)
        assert fees["total_amount"] == 80.0
        assert fees["application_fee_cents"] == 800

    def test_half_cents_round_up(self):
        settings = EventTicketSettings(
            platform_fee_percentage=0, payment_processing_fee_percentage=0,
            payment_processing_fee_fixed=0.125, fee_payer="buyer",
        )
        fees = calculate_fees(10.0, 1, settings)
        assert fees["application_fee_cents"] == 13
        assert to_cents(fees["total_amount"]) == 1013

    def test_to_cents(self):
        assert to_cents(0.125) == 13
        assert to_cents(2.5) == 250
        assert to_cents(0.1 + 0.2) == 30
        assert to_cents(19.99) == 1999


@pytest.fixture
def checkout_setup(create_user, create_organizer, create_event, create_ticket_type, create_ticket_settings):
    organizer_user = create_user()
    organizer = create_organizer(
        user=organizer_user, stripe_account_id="acct_org", stripe_charges_enabled=True,
    )
    event = create_event(organizer=organizer)
    ticket_type = create_ticket_type(event, price=50.0)
    create_ticket_settings(event)
    return SimpleNamespace(organizer_user=organizer_user, organizer=organizer, event=event, ticket_type=ticket_type)


class TestCreateTicketCheckout:
    def _body(self, setup, quantity=2):
        return {"ticketTypeId": setup.ticket_type.id, "quantity": quantity, "eventId": setup.event.id}

    def test_creates_pending_sale_and_session(self, client, db, create_user, auth_headers, checkout_setup):
        buyer = create_user(phone="+55 11 99999-0000")
        checkout = SimpleNamespace(id="cs_new", url="https://checkout.stripe.com/c/cs_new")

        with patch("stripe.Customer.list", return_value=SimpleNamespace(data=[])), \
                patch("stripe.Customer.create", return_value=SimpleNamespace(id="cus_1")), \
                patch("stripe.checkout.Session.create", return_value=checkout) as create:
            r = client.post(CHECKOUT_URL, json=self._body(checkout_setup), headers=auth_headers(buyer))

        assert r.status_code == 200, r.text
        assert r.json() == {"url": "https://checkout.stripe.com/c/cs_new", "sessionId": "cs_new"}

        kwargs = create.call_args.kwargs
        assert kwargs["customer"] == "cus_1"
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 11500
        assert kwargs["line_items"][0]["price_data"]["currency"] == "brl"
        assert kwargs["payment_intent_data"] == {
            "application_fee_amount": 1500,
            "transfer_data": {"destination": "acct_org"},
        }
        assert kwargs["success_url"] == "https://meetlines.test/ticket-success?session_id={CHECKOUT_SESSION_ID}"

        sale = db.query(TicketSale).filter(TicketSale.user_id == buyer.id).one()
        assert sale.payment_status == "pending"
        assert sale.stripe_checkout_session_id == "cs_new"
        assert sale.total_amount == pytest.approx(115.0)
        assert sale.buyer_phone == "+55 11 99999-0000"
        assert kwargs["metadata"]["ticket_sale_id"] == sale.id

    def test_reuses_existing_customer(self, client, create_user, auth_headers, checkout_setup):
        buyer = create_user()
        existing = SimpleNamespace(data=[SimpleNamespace(id="cus_existing")])
        checkout = SimpleNamespace(id="cs_new", url="https://checkout.stripe.com/c/cs_new")

        with patch("stripe.Customer.list", return_value=existing), \
                patch("stripe.Customer.create") as create_customer, \
                patch("stripe.checkout.Session.create", return_value=checkout) as create:
            client.post(CHECKOUT_URL, json=self._body(checkout_setup), headers=auth_headers(buyer))

        create_customer.assert_not_called()
        assert create.call_args.kwargs["customer"] == "cus_existing"

    def test_missing_fields(self, client, create_user, auth_headers):
        buyer = create_user()
        r = client.post(CHECKOUT_URL, json={"quantity": 1}, headers=auth_headers(buyer))
        assert r.status_code == 500
        assert r.json()["error"].startswith("Missing required parameters")

    def test_organizer_cannot_buy_own_tickets(self, client, auth_headers, checkout_setup):
        r = client.post(
            CHECKOUT_URL, json=self._body(checkout_setup), headers=auth_headers(checkout_setup.organizer_user),
        )
        assert r.status_code == 500
        assert r.json()["error"] == "Organizadores não podem comprar ingressos dos próprios eventos"

    def test_organizer_without_payments(self, client, db, create_user, auth_headers, checkout_setup):
        checkout_setup.organizer.stripe_charges_enabled = False
        db.commit()
        buyer = create_user()

        with patch("stripe.checkout.Session.create") as create:
            r = client.post(CHECKOUT_URL, json=self._body(checkout_setup), headers=auth_headers(buyer))

        assert r.status_code == 500
        assert "não configurou pagamentos" in r.json()["error"]
        create.assert_not_called()

    def test_malformed_body_is_a_function_error(self, client, create_user, auth_headers):
        buyer = create_user()
        r = client.post(CHECKOUT_URL, json={"quantity": "many"}, headers=auth_headers(buyer))
        assert r.status_code == 500
        assert r.json()["success"] is False


def _signed(payload: dict, secret: str = WEBHOOK_SECRET):
    body = json.dumps(payload)
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256).hexdigest()
    return body, {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}


def _event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "object": "event", "type": event_type, "data": {"object": obj}}


class TestStripeWebhook:
    def test_invalid_signature(self, client):
        body, headers = _signed(_event("checkout.session.completed", {}), secret="whsec_wrong")
        r = client.post(WEBHOOK_URL, content=body, headers=headers)
        assert r.status_code == 400
        assert r.json() == {"error": "Invalid signature"}

    def test_missing_signature_header(self, client):
        r = client.post(WEBHOOK_URL, content=json.dumps(_event("ping", {})))
        assert r.status_code == 500
        assert r.json()["error"] == "Missing stripe-signature header"

    def test_checkout_completed_marks_sale_and_counts_tickets(
        self, client, db, create_user, create_event, create_ticket_type, create_sale,
    ):
        buyer = create_user()
        event = create_event()
        ticket_type = create_ticket_type(event, quantity_sold=3)
        sale = create_sale(buyer, event, ticket_type=ticket_type, quantity=2)

        body, headers = _signed(_event("checkout.session.completed", {
            "id": "cs_test_123",
            "object": "checkout.session",
            "payment_status": "paid",
            "status": "complete",
            "payment_intent": "pi_hook",
            "metadata": {"ticket_sale_id": sale.id},
        }))
        r = client.post(WEBHOOK_URL, content=body, headers=headers)

        assert r.status_code == 200, r.text
        assert r.json() == {"received": True}
        db.expire_all()
        stored = db.get(TicketSale, sale.id)
        assert stored.payment_status == "completed"
        assert stored.stripe_payment_intent_id == "pi_hook"
        assert db.get(TicketType, ticket_type.id).quantity_sold == 5

    def test_completed_twice_counts_once(self, client, db, create_user, create_event, create_ticket_type, create_sale):
        buyer = create_user()
        event = create_event()
        ticket_type = create_ticket_type(event)
        sale = create_sale(buyer, event, ticket_type=ticket_type, quantity=1)
        payload = _event("checkout.session.completed", {
            "id": "cs_test_123",
            "object": "checkout.session",
            "payment_status": "paid",
            "status": "complete",
            "metadata": {"ticket_sale_id": sale.id},
        })

        for _ in range(2):
            body, headers = _signed(payload)
            client.post(WEBHOOK_URL, content=body, headers=headers)

        db.expire_all()
        assert db.get(TicketType, ticket_type.id).quantity_sold == 1

    def test_verify_then_webhook_counts_tickets_once(
        self, client, db, create_user, create_event, create_ticket_type, create_sale, auth_headers,
    ):
        buyer = create_user()
        event = create_event()
        ticket_type = create_ticket_type(event, quantity_sold=3)
        sale = create_sale(buyer, event, ticket_type=ticket_type, quantity=2)

        with patch("stripe.checkout.Session.retrieve", return_value=_session()):
            r = client.post(VERIFY_URL, json={"sessionId": "cs_test_123"}, headers=auth_headers(buyer))
        assert r.json()["ok"] is True
        db.expire_all()
        assert db.get(TicketType, ticket_type.id).quantity_sold == 5

        body, headers = _signed(_event("checkout.session.completed", {
            "id": "cs_test_123",
            "object": "checkout.session",
            "payment_status": "paid",
            "status": "complete",
            "metadata": {"ticket_sale_id": sale.id},
        }))
        r = client.post(WEBHOOK_URL, content=body, headers=headers)
        assert r.status_code == 200
        db.expire_all()
        assert db.get(TicketType, ticket_type.id).quantity_sold == 5

    def test_expired_session_cancels_pending_sale(self, client, db, create_user, create_event, create_sale):
        buyer = create_user()
        sale = create_sale(buyer, create_event())

        body, headers = _signed(_event("checkout.session.expired", {
            "id": "cs_test_123",
            "object": "checkout.session",
            "metadata": {"ticket_sale_id": sale.id},
        }))
        client.post(WEBHOOK_URL, content=body, headers=headers)

        db.expire_all()
        stored = db.get(TicketSale, sale.id)
        assert stored.payment_status == "cancelled"
        assert stored.cancelled_at is not None

    def test_refund_marks_sale_refunded(self, client, db, create_user, create_event, create_sale):
        buyer = create_user()
        sale = create_sale(buyer, create_event(), payment_status="completed", stripe_payment_intent_id="pi_9")

        body, headers = _signed(_event("charge.refunded", {
            "id": "ch_1",
            "object": "charge",
            "payment_intent": "pi_9",
        }))
        r = client.post(WEBHOOK_URL, content=body, headers=headers)

        assert r.status_code == 200
        db.expire_all()
        assert db.get(TicketSale, sale.id).payment_status == "refunded"

    def test_unhandled_event_is_acknowledged(self, client):
        body, headers = _signed(_event("customer.created", {"id": "cus_1", "object": "customer"}))
        r = client.post(WEBHOOK_URL, content=body, headers=headers)
        assert r.status_code == 200
        assert r.json() == {"received": True}
