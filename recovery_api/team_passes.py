import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import IntegrityError

from .catalog import PASS_PRICING
from .deps import get_gateway, get_pass_store, public_base_url, require
from .errors import InvalidRequest, PolicyRejected
from .models import TeamPass
from .passes import backfill_tickets, issue_tickets, redeem_as_admin, self_redeem
from .payments import PaymentGateway
from .policy import Capability
from .security import Caller
from .store import PassStore, serialize_pass

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/team-passes", tags=["team-passes"])

CODE_ATTEMPTS = 10
SEARCH_LIMIT = 100


def generate_redemption_code(last_name: str) -> str:
    return f"{last_name.upper()}-{1000 + secrets.randbelow(9000)}"


def unique_redemption_code(store: PassStore, last_name: str) -> str:
    code = generate_redemption_code(last_name)
    for _ in range(CODE_ATTEMPTS):
        if not store.filter(TeamPass.redemption_code == code):
            break
        code = generate_redemption_code(last_name)
    return code


class CustomerInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(alias="firstName", min_length=1)
    last_name: str = Field(alias="lastName", min_length=1)
    email: str = Field(min_length=3)
    phone: str = ""


# -------------------------
# Purchase
# -------------------------
class CheckoutReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    passes: int
    customer_info: CustomerInfo = Field(alias="customerInfo")


@router.post("/checkout")
async def create_checkout(
    req: CheckoutReq,
    base_url: str = Depends(public_base_url),
    gateway: PaymentGateway = Depends(get_gateway),
):
    pricing = PASS_PRICING.get(req.passes)
    if pricing is None:
        raise InvalidRequest("Invalid pass quantity")

    session = gateway.create_checkout_session(
        line_items=[{
            "price_data": {
                "currency": "usd",
                "product_data": {
                    "name": f"{req.passes} Team Recovery Passes",
                    "description": f"Recovery session passes for volleyball tournament - ${pricing['per_pass']} per pass",
                },
                "unit_amount": pricing["price"] * 100,
            },
            "quantity": 1,
        }],
        success_url=f"{base_url}/team-pass-success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}/volleyball-recovery",
        customer_email=req.customer_info.email,
        metadata={
            "pass_type": "team_pass",
            "total_passes": str(req.passes),
            "customer_first_name": req.customer_info.first_name,
            "customer_last_name": req.customer_info.last_name,
            "customer_phone": req.customer_info.phone,
        },
    )
    return {"sessionId": session.id, "url": session.url}


class CompleteReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)


@router.post("/complete")
async def complete_purchase(
    req: CompleteReq,
    store: PassStore = Depends(get_pass_store),
    gateway: PaymentGateway = Depends(get_gateway),
):
    existing = store.filter(TeamPass.stripe_session_id == req.session_id)
    if existing:
        logger.info("team pass already exists for session %s", req.session_id)
        return {"success": True, "teamPass": serialize_pass(existing[0])}

    session = gateway.retrieve_checkout_session(req.session_id)
    if session.payment_status != "paid":
        logger.warning("payment not completed for session %s: %s", req.session_id, session.payment_status)
        raise PolicyRejected("Payment not completed")

    metadata = session.metadata
    try:
        total_passes = int(metadata["total_passes"])
        last_name = metadata["customer_last_name"]
    except (KeyError, ValueError):
        raise InvalidRequest("Checkout session is not a team pass purchase")

    code = unique_redemption_code(store, last_name)
    now = datetime.now(timezone.utc)
    try:
        row = store.create(
            redemption_code=code,
            customer_first_name=metadata.get("customer_first_name", ""),
            customer_last_name=last_name,
            customer_email=session.customer_email or "",
            customer_phone=metadata.get("customer_phone", ""),
            total_passes=total_passes,
            remaining_passes=total_passes,
            individual_tickets=[t.model_dump() for t in issue_tickets(code, total_passes, now)],
            redemption_history=[],
            payment_status="paid",
            purchase_amount=Decimal(session.amount_total or 0) / 100,
            stripe_session_id=req.session_id,
            stripe_payment_intent_id=session.payment_intent,
        )
    except IntegrityError:
        # a concurrent completion for the same session won the insert
        existing = store.filter(TeamPass.stripe_session_id == req.session_id)
        if not existing:
            raise
        return {"success": True, "teamPass": serialize_pass(existing[0])}

    logger.info("team pass %s created with %d passes (code %s)", row.id, total_passes, code)
    return {"success": True, "teamPass": serialize_pass(row)}


# -------------------------
# Redemption
# -------------------------
class RedeemReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pass_id: str = Field(alias="passId", min_length=1)
    service_type: Optional[str] = Field(default=None, alias="serviceType")


@router.post("/redeem")
async def redeem(
    req: RedeemReq,
    caller: Caller = Depends(require(Capability.REDEEM_PASSES)),
    store: PassStore = Depends(get_pass_store),
):
    now = datetime.now(timezone.utc)
    row = store.mutate(req.pass_id, lambda state: redeem_as_admin(state, caller.email, req.service_type, now))
    logger.info("team pass %s redeemed by %s", req.pass_id, caller.email)
    return {"success": True, "teamPass": serialize_pass(row)}


class SelfRedeemReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pass_id: str = Field(alias="passId", min_length=1)
    service_type: str = Field(alias="serviceType", min_length=1)


@router.post("/self-redeem")
async def self_redeem_pass(req: SelfRedeemReq, store: PassStore = Depends(get_pass_store)):
    now = datetime.now(timezone.utc)
    row = store.mutate(req.pass_id, lambda state: self_redeem(state, req.service_type, now))
    logger.info("team pass %s self-redeemed for %s", req.pass_id, req.service_type)
    return {"success": True, "teamPass": serialize_pass(row)}


# -------------------------
# Admin tools
# -------------------------
class SearchReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    search_query: Optional[str] = Field(default=None, alias="searchQuery")


@router.post("/search")
async def search(
    req: SearchReq,
    caller: Caller = Depends(require(Capability.SEARCH_PASSES)),
    store: PassStore = Depends(get_pass_store),
):
    query = (req.search_query or "").strip().upper()
    if len(query) < 2:
        return {"results": []}

    passes = store.filter(
        TeamPass.payment_status == "paid",
        order_by=TeamPass.created_at.desc(),
        limit=SEARCH_LIMIT,
    )
    results = [
        serialize_pass(p)
        for p in passes
        if query in p.redemption_code.upper()
        or query in p.customer_last_name.upper()
        or query in p.customer_first_name.upper()
    ]
    return {"results": results}


@router.post("/migrate")
async def migrate_tickets(
    caller: Caller = Depends(require(Capability.MIGRATE_PASSES)),
    store: PassStore = Depends(get_pass_store),
):
    passes = store.all()
    migrated = 0
    for p in passes:
        if p.individual_tickets:
            continue
        logger.info("migrating team pass %s - %s", p.id, p.redemption_code)
        now = datetime.now(timezone.utc)
        outcome = {}

        def backfill(state):
            outcome["state"] = backfill_tickets(state, now)
            return outcome["state"]

        store.mutate(p.id, backfill)
        # None when the pass got its tickets after it was listed
        if outcome.get("state") is not None:
            migrated += 1

    return {
        "success": True,
        "message": f"Migrated {migrated} team passes",
        "total": len(passes),
    }
