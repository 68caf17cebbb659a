import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

import stripe

from .config import STRIPE_API_VERSION, STRIPE_SECRET_KEY
from .errors import UpstreamFailure

logger = logging.getLogger(__name__)

stripe.api_key = STRIPE_SECRET_KEY
stripe.api_version = STRIPE_API_VERSION


def to_minor_units(amount) -> int:
    """Major currency units (e.g. dollars) to integer cents, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> float:
    return amount / 100


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str] = None
    payment_status: Optional[str] = None
    payment_intent: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    amount_total: Optional[int] = None
    customer_email: Optional[str] = None


@dataclass
class Refund:
    id: str
    amount: int
    status: str


@dataclass
class PaymentIntentSummary:
    id: str
    amount: int
    status: str
    created: int


def _session_from_stripe(session) -> CheckoutSession:
    payment_intent = session.get("payment_intent")
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = payment_intent.get("id")
    return CheckoutSession(
        id=session["id"],
        url=session.get("url"),
        payment_status=session.get("payment_status"),
        payment_intent=payment_intent,
        metadata=dict(session.get("metadata") or {}),
        amount_total=session.get("amount_total"),
        customer_email=session.get("customer_email"),
    )


class PaymentGateway:
    """The handful of Stripe calls the handlers depend on."""

    def create_checkout_session(
        self,
        line_items: List[dict],
        success_url: str,
        cancel_url: str,
        metadata: dict,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                payment_method_types=["card"],
                line_items=line_items,
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=customer_email,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error("stripe checkout session creation failed: %s", e)
            raise UpstreamFailure() from e
        return _session_from_stripe(session)

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except stripe.InvalidRequestError as e:
            logger.warning("stripe checkout session %s not retrievable: %s", session_id, e)
            raise UpstreamFailure("Checkout session not found") from e
        except stripe.StripeError as e:
            logger.error("stripe checkout session retrieval failed: %s", e)
            raise UpstreamFailure() from e
        return _session_from_stripe(session)

    def create_refund(self, payment_reference: str, amount_minor: int, idempotency_key: Optional[str] = None) -> Refund:
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_reference,
                amount=amount_minor,
                metadata={"refund_key": idempotency_key or ""},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error("stripe refund for %s failed: %s", payment_reference, e)
            raise UpstreamFailure() from e
        return Refund(id=refund["id"], amount=refund["amount"], status=refund["status"])

    def find_refund(self, payment_reference: str, refund_key: str) -> Optional[Refund]:
        """Look up a refund created under ``refund_key``.

        Stripe forgets idempotency keys after 24 hours, so the key is also kept
        in the refund metadata.
        """
        try:
            refunds = stripe.Refund.list(payment_intent=payment_reference, limit=100)
        except stripe.StripeError as e:
            logger.error("stripe refund listing for %s failed: %s", payment_reference, e)
            raise UpstreamFailure() from e
        for refund in refunds.data:
            if (refund.get("metadata") or {}).get("refund_key") == refund_key:
                return Refund(id=refund["id"], amount=refund["amount"], status=refund["status"])
        return None

    def list_payment_intents(self, created_gte: int, limit: int = 100) -> List[PaymentIntentSummary]:
        try:
            intents = stripe.PaymentIntent.list(limit=limit, created={"gte": created_gte})
        except stripe.StripeError as e:
            logger.error("stripe payment intent listing failed: %s", e)
            raise UpstreamFailure() from e
        return [
            PaymentIntentSummary(id=pi["id"], amount=pi["amount"], status=pi["status"], created=pi["created"])
            for pi in intents.data
        ]
