import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from .catalog import DEFAULT_SERVICE_DURATION_MINUTES, SERVICE_PRICE_MAP
from .db import SessionLocal
from .deps import authenticated_caller, current_caller, get_gateway, get_redis, public_base_url
from .errors import AlreadyCancelled, InvalidRequest, NotFound, PolicyRejected, StatusSyncPending, Unauthorized
from .models import Booking
from .payments import PaymentGateway, from_minor_units
from .policy import can_manage_booking
from .refunds import dispatch_refund, enqueue_reconciliation
from .scheduling import check_change_window
from .security import Caller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _new_booking_id() -> str:
    return f"bk_{uuid.uuid4().hex[:12]}"


def serialize_booking(b: Booking) -> dict:
    return {
        "id": b.id,
        "customer_first_name": b.customer_first_name,
        "customer_last_name": b.customer_last_name,
        "customer_email": b.customer_email,
        "customer_phone": b.customer_phone,
        "service_address": b.service_address,
        "service_city": b.service_city,
        "service_zip": b.service_zip,
        "distance_miles": b.distance_miles,
        "appointment_date": b.appointment_date,
        "appointment_time": b.appointment_time,
        "services_selected": list(b.services_selected or []),
        "total_amount": float(b.total_amount),
        "estimated_duration": b.estimated_duration,
        "special_requests": b.special_requests,
        "marketing_opt_in": b.marketing_opt_in,
        "status": b.status,
        "payment_status": b.payment_status,
        "payment_intent_id": b.payment_intent_id,
        "confirmation_number": b.confirmation_number,
        "booking_type": b.booking_type,
        "created_date": str(b.created_at) if b.created_at else None,
    }


def _load_booking(db, booking_id: str) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    return booking


# -------------------------
# Checkout
# -------------------------
class SelectedService(BaseModel):
    id: str
    name: str
    price: Decimal
    duration: Optional[str] = None


class CustomerData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    email: str
    phone: str = ""
    special_requests: str = Field(default="", alias="specialRequests")
    marketing_opt_in: bool = Field(default=False, alias="marketingOptIn")


class AddressData(BaseModel):
    address: str = ""
    city: str = ""
    zip: str = ""
    distance: Optional[float] = None


class CalendarData(BaseModel):
    date: str
    time: str = Field(pattern=r"^\d{2}:\d{2}$")


class BookingData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_data: CustomerData = Field(alias="customerData")
    address_data: AddressData = Field(alias="addressData")
    calendar_data: CalendarData = Field(alias="calendarData")


class BookingCheckoutReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    services: List[SelectedService] = Field(default_factory=list)
    booking_data: BookingData = Field(alias="bookingData")
    origin: Optional[str] = None


def _duration(service: SelectedService) -> int:
    try:
        return int(service.duration) if service.duration else DEFAULT_SERVICE_DURATION_MINUTES
    except ValueError:
        return DEFAULT_SERVICE_DURATION_MINUTES


@router.post("/checkout")
async def create_checkout(
    req: BookingCheckoutReq,
    caller: Optional[Caller] = Depends(current_caller),
    base_url: str = Depends(public_base_url),
    gateway: PaymentGateway = Depends(get_gateway),
):
    if not req.services:
        raise InvalidRequest("No services selected")

    unknown = [s.id for s in req.services if s.id not in SERVICE_PRICE_MAP]
    if unknown:
        raise InvalidRequest(f"Unknown service ID: {unknown[0]}")

    try:
        appointment_date = date.fromisoformat(req.booking_data.calendar_data.date[:10]).isoformat()
    except ValueError:
        raise InvalidRequest("Invalid appointment date")

    customer = req.booking_data.customer_data
    address = req.booking_data.address_data
    db = SessionLocal()
    try:
        booking = Booking(
            id=_new_booking_id(),
            customer_first_name=customer.first_name,
            customer_last_name=customer.last_name,
            customer_email=customer.email,
            customer_phone=customer.phone,
            service_address=address.address,
            service_city=address.city,
            service_zip=address.zip,
            distance_miles=address.distance,
            appointment_date=appointment_date,
            appointment_time=req.booking_data.calendar_data.time,
            services_selected=[
                {"service_id": s.id, "service_name": s.name, "price": float(s.price)} for s in req.services
            ],
            total_amount=sum((s.price for s in req.services), Decimal("0")),
            estimated_duration=sum(_duration(s) for s in req.services),
            special_requests=customer.special_requests,
            marketing_opt_in=customer.marketing_opt_in,
            status="pending",
            payment_status="pending",
            booking_type="individual",
        )
        db.add(booking)
        db.commit()
    finally:
        db.close()

    origin = (req.origin or base_url).rstrip("/")
    session = gateway.create_checkout_session(
        line_items=[{"price": SERVICE_PRICE_MAP[s.id], "quantity": 1} for s in req.services],
        success_url=f"{origin}/BookSession?session_id={{CHECKOUT_SESSION_ID}}&success=true",
        cancel_url=f"{origin}/BookSession?canceled=true",
        customer_email=customer.email,
        metadata={"booking_id": booking.id, "customer_email": customer.email},
    )
    logger.info("booking %s created (caller=%s)", booking.id, caller.email if caller else "anonymous")
    return {"sessionId": session.id, "url": session.url, "bookingId": booking.id}


class FromSessionReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)


@router.post("/from-session")
async def booking_from_session(req: FromSessionReq, gateway: PaymentGateway = Depends(get_gateway)):
    session = gateway.retrieve_checkout_session(req.session_id)
    booking_id = session.metadata.get("booking_id")
    if not booking_id:
        logger.error("no booking_id in metadata of session %s", req.session_id)
        raise NotFound("Booking ID not found in session")

    db = SessionLocal()
    try:
        booking = _load_booking(db, booking_id)
        booking.status = "confirmed"
        booking.payment_status = "paid"
        booking.payment_intent_id = session.payment_intent
        booking.confirmation_number = "ASC-" + req.session_id[-8:].upper()
        db.commit()
        logger.info("booking %s confirmed from session %s", booking.id, req.session_id)
        return {"booking": serialize_booking(booking)}
    finally:
        db.close()


# -------------------------
# Cancel / reschedule
# -------------------------
class CancelReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    booking_id: str = Field(alias="bookingId", min_length=1)


@router.post("/cancel")
async def cancel_booking(
    req: CancelReq,
    caller: Caller = Depends(authenticated_caller),
    gateway: PaymentGateway = Depends(get_gateway),
    redis=Depends(get_redis),
):
    db = SessionLocal()
    try:
        booking = _load_booking(db, req.booking_id)
        if not can_manage_booking(caller, booking.customer_email):
            raise Unauthorized()
        if booking.status == "cancelled":
            raise AlreadyCancelled()

        check_change_window(
            booking.appointment_date, booking.appointment_time, datetime.now(timezone.utc), action="cancel"
        )

        if not (booking.payment_intent_id and booking.payment_status == "paid"):
            booking.status = "cancelled"
            db.commit()
            logger.info("booking %s cancelled without refund", booking.id)
            return {"success": True, "refunded": False}
    finally:
        db.close()

    try:
        record = dispatch_refund(gateway, "Booking", req.booking_id)
    except StatusSyncPending as e:
        await enqueue_reconciliation(redis, e.payment_reference)
        raise

    logger.info("booking %s cancelled and refunded", req.booking_id)
    return {"success": True, "refunded": True, "refundAmount": from_minor_units(record.amount_minor)}


class RescheduleReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    booking_id: str = Field(alias="bookingId", min_length=1)
    new_date: str = Field(alias="newDate", pattern=r"^\d{4}-\d{2}-\d{2}$")
    new_time: str = Field(alias="newTime", pattern=r"^\d{2}:\d{2}$")


@router.post("/reschedule")
async def reschedule_booking(req: RescheduleReq, caller: Caller = Depends(authenticated_caller)):
    db = SessionLocal()
    try:
        booking = _load_booking(db, req.booking_id)
        if not can_manage_booking(caller, booking.customer_email):
            raise Unauthorized()
        if booking.status in ("cancelled", "completed"):
            raise PolicyRejected("Cannot reschedule cancelled or completed booking")

        check_change_window(
            booking.appointment_date, booking.appointment_time, datetime.now(timezone.utc), action="reschedule"
        )

        booking.appointment_date = req.new_date
        booking.appointment_time = req.new_time
        db.commit()
        logger.info("booking %s rescheduled to %s %s", booking.id, req.new_date, req.new_time)
        return {"success": True, "message": "Booking rescheduled successfully"}
    finally:
        db.close()
