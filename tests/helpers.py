from datetime import datetime, timedelta, timezone
from decimal import Decimal

from recovery_api.config import AUTH_TOKEN_SECRET
from recovery_api.db import SessionLocal
from recovery_api.errors import UpstreamFailure
from recovery_api.models import Booking, IndividualService
from recovery_api.passes import issue_tickets
from recovery_api.payments import CheckoutSession, Refund
from recovery_api.security import mint_access_token
from recovery_api.store import PassStore

ADMIN_EMAIL = "staff@example.com"
CUSTOMER_EMAIL = "jamie@example.com"


class FakeGateway:
    """In-memory stand-in for the Stripe gateway."""

    def __init__(self):
        self.sessions = {}
        self.created_sessions = []
        self.refunds = []
        self.refunds_by_key = {}
        self.issued = []
        self.refund_calls = 0
        self.fail_refunds = False
        self.payment_intents = []

    def add_session(self, session_id, **fields) -> CheckoutSession:
        session = CheckoutSession(id=session_id, **fields)
        self.sessions[session_id] = session
        return session

    def create_checkout_session(self, line_items, success_url, cancel_url, metadata, customer_email=None):
        session_id = f"cs_test_{len(self.sessions) + 1:04d}"
        session = self.add_session(
            session_id,
            url=f"https://checkout.stripe.test/{session_id}",
            payment_status="unpaid",
            metadata=dict(metadata),
            customer_email=customer_email,
        )
        self.created_sessions.append({
            "id": session_id,
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
        })
        return session

    def retrieve_checkout_session(self, session_id):
        if session_id not in self.sessions:
            raise UpstreamFailure("Checkout session not found")
        return self.sessions[session_id]

    def create_refund(self, payment_reference, amount_minor, idempotency_key=None):
        self.refund_calls += 1
        # Stripe replays the saved outcome of a key, errors included
        if idempotency_key and idempotency_key in self.refunds_by_key:
            saved = self.refunds_by_key[idempotency_key]
            if isinstance(saved, Exception):
                raise saved
            return saved

        if self.fail_refunds:
            error = UpstreamFailure()
            if idempotency_key:
                self.refunds_by_key[idempotency_key] = error
            raise error

        refund = Refund(id=f"re_{len(self.refunds) + 1:04d}", amount=amount_minor, status="succeeded")
        self.refunds.append((payment_reference, amount_minor))
        self.issued.append((payment_reference, idempotency_key, refund))
        if idempotency_key:
            self.refunds_by_key[idempotency_key] = refund
        return refund

    def find_refund(self, payment_reference, refund_key):
        for reference, key, refund in self.issued:
            if reference == payment_reference and key == refund_key:
                return refund
        return None

    def forget_idempotency_keys(self):
        """What Stripe does 24 hours after a request."""
        self.refunds_by_key.clear()

    def list_payment_intents(self, created_gte, limit=100):
        return [pi for pi in self.payment_intents if pi.created >= created_gte][:limit]


def auth_headers(email=ADMIN_EMAIL, role="admin") -> dict:
    return {"Authorization": f"Bearer {mint_access_token(email, role, AUTH_TOKEN_SECRET)}"}


def seed_pass(total=3, remaining=None, with_tickets=True, code="SMITH-1234", **fields):
    remaining = total if remaining is None else remaining
    now = datetime.now(timezone.utc)
    tickets = [t.model_dump() for t in issue_tickets(code, total, now)] if with_tickets else []
    values = dict(
        redemption_code=code,
        customer_first_name="Jamie",
        customer_last_name="Smith",
        customer_email=CUSTOMER_EMAIL,
        customer_phone="",
        total_passes=total,
        remaining_passes=remaining,
        individual_tickets=tickets,
        redemption_history=[],
        payment_status="paid",
        purchase_amount=Decimal("135.00"),
        stripe_session_id=f"cs_seed_{code}",
        stripe_payment_intent_id=f"pi_seed_{code}",
    )
    values.update(fields)
    return PassStore().create(**values)


def appointment_in(hours=0, minutes=0):
    when = datetime.now(timezone.utc) + timedelta(hours=hours, minutes=minutes)
    return when.strftime("%Y-%m-%d"), when.strftime("%H:%M")


def seed_booking(booking_id="bk_test", hours_ahead=72, **fields) -> Booking:
    appointment_date, appointment_time = appointment_in(hours_ahead)
    values = dict(
        id=booking_id,
        customer_first_name="Jamie",
        customer_last_name="Smith",
        customer_email=CUSTOMER_EMAIL,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        services_selected=[{"service_id": "cryo-full", "service_name": "Full Body Cryo", "price": 120.0}],
        total_amount=Decimal("120.00"),
        estimated_duration=15,
        status="confirmed",
        payment_status="paid",
        payment_intent_id="pi_booking",
    )
    values.update(fields)
    db = SessionLocal()
    try:
        booking = Booking(**values)
        db.add(booking)
        db.commit()
        return booking
    finally:
        db.close()


def seed_individual_service(service_id="is_test", session_id="cs_is_1", **fields) -> IndividualService:
    values = dict(
        id=service_id,
        confirmation_number="VB-123456",
        service_name="Compression Boots",
        price=Decimal("45.00"),
        customer_first_name="Alex",
        customer_last_name="Lee",
        customer_email="alex@example.com",
        payment_status="paid",
        stripe_session_id=session_id,
    )
    values.update(fields)
    db = SessionLocal()
    try:
        service = IndividualService(**values)
        db.add(service)
        db.commit()
        return service
    finally:
        db.close()


def load(model, entity_id):
    db = SessionLocal()
    try:
        return db.get(model, entity_id)
    finally:
        db.close()
