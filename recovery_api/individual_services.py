import logging
import secrets
import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .db import SessionLocal
from .deps import get_gateway, public_base_url
from .errors import PolicyRejected
from .models import IndividualService
from .payments import PaymentGateway, to_minor_units
from .team_passes import CustomerInfo

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/individual-services", tags=["individual-services"])


def serialize_service(s: IndividualService) -> dict:
    return {
        "id": s.id,
        "confirmation_number": s.confirmation_number,
        "service_name": s.service_name,
        "price": float(s.price),
        "customer_first_name": s.customer_first_name,
        "customer_last_name": s.customer_last_name,
        "customer_email": s.customer_email,
        "customer_phone": s.customer_phone,
        "payment_status": s.payment_status,
        "stripe_session_id": s.stripe_session_id,
        "event_type": s.event_type,
        "is_redeemed": s.is_redeemed,
        "created_date": str(s.created_at) if s.created_at else None,
    }


def _find_by_session(db, session_id: str):
    return db.execute(
        select(IndividualService).where(IndividualService.stripe_session_id == session_id)
    ).scalar_one_or_none()


class ServiceCheckoutReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_name: str = Field(alias="serviceName", min_length=1)
    price: Decimal = Field(gt=0)
    customer_info: CustomerInfo = Field(alias="customerInfo")


@router.post("/checkout")
async def create_checkout(
    req: ServiceCheckoutReq,
    base_url: str = Depends(public_base_url),
    gateway: PaymentGateway = Depends(get_gateway),
):
    session = gateway.create_checkout_session(
        line_items=[{
            "price_data": {
                "currency": "usd",
                "product_data": {"name": req.service_name, "description": "Tournament Recovery Service"},
                "unit_amount": to_minor_units(req.price),
            },
            "quantity": 1,
        }],
        success_url=f"{base_url}/IndividualServiceSuccess?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{base_url}/VolleyballRecovery",
        customer_email=req.customer_info.email,
        metadata={
            "service_name": req.service_name,
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
async def complete_purchase(req: CompleteReq, gateway: PaymentGateway = Depends(get_gateway)):
    session = gateway.retrieve_checkout_session(req.session_id)
    if session.payment_status != "paid":
        raise PolicyRejected("Payment not completed")

    db = SessionLocal()
    try:
        existing = _find_by_session(db, req.session_id)
        if existing:
            logger.info("individual service already recorded for session %s", req.session_id)
            return {"service": serialize_service(existing)}

        metadata = session.metadata
        service = IndividualService(
            id=f"is_{uuid.uuid4().hex[:12]}",
            confirmation_number=f"VB-{secrets.randbelow(10**6):06d}",
            service_name=metadata.get("service_name", ""),
            price=Decimal(session.amount_total or 0) / 100,
            customer_first_name=metadata.get("customer_first_name", ""),
            customer_last_name=metadata.get("customer_last_name", ""),
            customer_email=session.customer_email or "",
            customer_phone=metadata.get("customer_phone", ""),
            payment_status="paid",
            stripe_session_id=req.session_id,
            event_type="volleyball",
            is_redeemed=False,
        )
        db.add(service)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            service = _find_by_session(db, req.session_id)

        logger.info("individual service %s created for session %s", service.id, req.session_id)
        return {"service": serialize_service(service)}
    finally:
        db.close()
