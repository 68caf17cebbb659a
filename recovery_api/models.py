from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class TeamPass(Base):
    __tablename__ = "team_passes"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    redemption_code: Mapped[str] = mapped_column(String, unique=True, index=True)
    customer_first_name: Mapped[str] = mapped_column(String)
    customer_last_name: Mapped[str] = mapped_column(String, index=True)
    customer_email: Mapped[str] = mapped_column(String, index=True)
    customer_phone: Mapped[str] = mapped_column(String, default="")
    total_passes: Mapped[int] = mapped_column(Integer)
    # Written from the ticket list on every update; only authoritative for
    # legacy passes that have no tickets yet.
    remaining_passes: Mapped[int] = mapped_column(Integer)
    individual_tickets: Mapped[list] = mapped_column(JSON, default=list)
    redemption_history: Mapped[list] = mapped_column(JSON, default=list)
    payment_status: Mapped[str] = mapped_column(String, default="paid", index=True)
    purchase_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    stripe_session_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Booking(Base):
    __tablename__ = "bookings"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    customer_first_name: Mapped[str] = mapped_column(String)
    customer_last_name: Mapped[str] = mapped_column(String)
    customer_email: Mapped[str] = mapped_column(String, index=True)
    customer_phone: Mapped[str] = mapped_column(String, default="")
    service_address: Mapped[str] = mapped_column(String, default="")
    service_city: Mapped[str] = mapped_column(String, default="")
    service_zip: Mapped[str] = mapped_column(String, default="")
    distance_miles: Mapped[float | None] = mapped_column(Float, nullable=True)
    appointment_date: Mapped[str] = mapped_column(String)
    appointment_time: Mapped[str] = mapped_column(String)
    services_selected: Mapped[list] = mapped_column(JSON, default=list)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    estimated_duration: Mapped[int] = mapped_column(Integer, default=0)
    special_requests: Mapped[str] = mapped_column(Text, default="")
    marketing_opt_in: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    payment_status: Mapped[str] = mapped_column(String, default="pending", index=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    confirmation_number: Mapped[str | None] = mapped_column(String, nullable=True)
    booking_type: Mapped[str] = mapped_column(String, default="individual")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class IndividualService(Base):
    __tablename__ = "individual_services"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    confirmation_number: Mapped[str] = mapped_column(String, index=True)
    service_name: Mapped[str] = mapped_column(String)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    customer_first_name: Mapped[str] = mapped_column(String)
    customer_last_name: Mapped[str] = mapped_column(String)
    customer_email: Mapped[str] = mapped_column(String, index=True)
    customer_phone: Mapped[str] = mapped_column(String, default="")
    payment_status: Mapped[str] = mapped_column(String, default="paid", index=True)
    stripe_session_id: Mapped[str] = mapped_column(String, unique=True)
    event_type: Mapped[str] = mapped_column(String, default="volleyball")
    is_redeemed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class RefundRecord(Base):
    __tablename__ = "refunds"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_reference: Mapped[str] = mapped_column(String, unique=True, index=True)
    entity_type: Mapped[str] = mapped_column(String)
    entity_id: Mapped[str] = mapped_column(String, index=True)
    amount_minor: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String, index=True)
    attempt: Mapped[int] = mapped_column(Integer, default=1)
    # Stripe idempotency key of the current attempt
    idempotency_key: Mapped[str] = mapped_column(String)
    refund_id: Mapped[str | None] = mapped_column(String, nullable=True)
    refund_status: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
