"""Refund dispatch as a small saga keyed on the payment reference.

A RefundRecord moves PENDING_REFUND -> REFUNDED -> STATUS_SYNCED. A rejected
Stripe call moves it to REFUND_FAILED instead; the next dispatch starts a new
attempt with a new idempotency key. Records are never deleted, so a refund that
Stripe did issue always has a row to land on. ``reconcile_refund`` finishes
whatever step a record is stuck on.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from .db import SessionLocal
from .errors import InvalidRequest, NoPaymentReference, NotFound, StatusSyncPending, UpstreamFailure
from .models import Booking, IndividualService, RefundRecord, TeamPass
from .payments import PaymentGateway, Refund, to_minor_units

logger = logging.getLogger(__name__)

PENDING_REFUND = "PENDING_REFUND"
REFUNDED = "REFUNDED"
STATUS_SYNCED = "STATUS_SYNCED"
REFUND_FAILED = "REFUND_FAILED"

ENTITY_MODELS = {
    "Booking": Booking,
    "TeamPass": TeamPass,
    "IndividualService": IndividualService,
}

RECONCILIATION_STREAM = "refund_reconciliation"


@dataclass
class RefundTarget:
    entity_type: str
    entity_id: str
    payment_reference: Optional[str]
    amount: Decimal


def idempotency_key_for(payment_reference: str, attempt: int) -> str:
    return f"refund:{payment_reference}:{attempt}"


def resolve_target(db, gateway: PaymentGateway, entity_type: str, entity_id: str) -> RefundTarget:
    model = ENTITY_MODELS.get(entity_type)
    if model is None:
        raise InvalidRequest("Invalid entity type")

    entity = db.get(model, entity_id)
    if entity is None:
        raise NotFound(f"{entity_type} not found")

    if entity_type == "Booking":
        reference, amount = entity.payment_intent_id, entity.total_amount
    elif entity_type == "TeamPass":
        reference, amount = entity.stripe_payment_intent_id, entity.purchase_amount
    else:
        # individual purchases only keep the checkout session id
        session = gateway.retrieve_checkout_session(entity.stripe_session_id)
        reference, amount = session.payment_intent, entity.price

    return RefundTarget(entity_type, entity_id, reference, amount)


def _find(db, payment_reference: str) -> Optional[RefundRecord]:
    return db.execute(
        select(RefundRecord).where(RefundRecord.payment_reference == payment_reference)
    ).scalar_one_or_none()


def _claim(db, target: RefundTarget) -> RefundRecord:
    record = _find(db, target.payment_reference)
    if record is None:
        record = RefundRecord(
            payment_reference=target.payment_reference,
            entity_type=target.entity_type,
            entity_id=target.entity_id,
            amount_minor=to_minor_units(target.amount),
            state=PENDING_REFUND,
            attempt=1,
            idempotency_key=idempotency_key_for(target.payment_reference, 1),
        )
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            # another request claimed the same reference first
            db.rollback()
            return _find(db, target.payment_reference)
        return record

    if record.state == REFUND_FAILED:
        attempt = record.attempt + 1
        result = db.execute(
            update(RefundRecord)
            .where(
                RefundRecord.id == record.id,
                RefundRecord.state == REFUND_FAILED,
                RefundRecord.attempt == record.attempt,
            )
            .values(
                state=PENDING_REFUND,
                attempt=attempt,
                idempotency_key=idempotency_key_for(record.payment_reference, attempt),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount == 1:
            logger.info("retrying refund for payment %s (attempt %d)", record.payment_reference, attempt)
        db.refresh(record)
    return record


def _mark_failed(db, record: RefundRecord, attempt: int) -> None:
    # only this attempt's pending claim; a concurrent success stays recorded
    db.execute(
        update(RefundRecord)
        .where(
            RefundRecord.id == record.id,
            RefundRecord.state == PENDING_REFUND,
            RefundRecord.attempt == attempt,
        )
        .values(state=REFUND_FAILED)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _mark_refunded(db, record: RefundRecord, refund: Refund) -> None:
    payment_reference = record.payment_reference
    try:
        db.execute(
            update(RefundRecord)
            .where(
                RefundRecord.id == record.id,
                RefundRecord.state.in_((PENDING_REFUND, REFUND_FAILED)),
            )
            .values(state=REFUNDED, refund_id=refund.id, refund_status=refund.status)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(record)
    except Exception as e:
        db.rollback()
        logger.exception("refund %s issued but not recorded for payment %s", refund.id, payment_reference)
        raise StatusSyncPending(payment_reference) from e
    logger.info(
        "refund %s issued for %s %s (%d minor units)",
        refund.id, record.entity_type, record.entity_id, record.amount_minor,
    )


def _sync_entity_status(db, record: RefundRecord) -> None:
    model = ENTITY_MODELS[record.entity_type]
    values = {"payment_status": "refunded"}
    if record.entity_type == "Booking":
        values["status"] = "cancelled"
    if model is TeamPass:
        values["version"] = TeamPass.version + 1

    db.execute(
        update(model)
        .where(model.id == record.entity_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    record.state = STATUS_SYNCED
    db.commit()


def _advance(db, gateway: PaymentGateway, record: RefundRecord, lookup: bool = False) -> RefundRecord:
    """Move ``record`` forward as far as it goes.

    With ``lookup`` the refund is first searched for on Stripe, which covers
    crashes between the Stripe call and the state write.
    """
    if record.state == REFUND_FAILED and lookup:
        refund = gateway.find_refund(record.payment_reference, record.idempotency_key)
        if refund is not None:
            _mark_refunded(db, record, refund)

    if record.state == PENDING_REFUND:
        attempt = record.attempt
        refund = gateway.find_refund(record.payment_reference, record.idempotency_key) if lookup else None
        if refund is None:
            try:
                refund = gateway.create_refund(
                    record.payment_reference,
                    record.amount_minor,
                    idempotency_key=record.idempotency_key,
                )
            except UpstreamFailure:
                _mark_failed(db, record, attempt)
                raise
        _mark_refunded(db, record, refund)

    if record.state == REFUNDED:
        payment_reference = record.payment_reference
        try:
            _sync_entity_status(db, record)
        except Exception as e:
            db.rollback()
            logger.exception("status sync failed for refunded payment %s", payment_reference)
            raise StatusSyncPending(payment_reference) from e

    return record


def dispatch_refund(gateway: PaymentGateway, entity_type: str, entity_id: str) -> RefundRecord:
    """Refund the payment behind an entity and mark the entity refunded.

    Raises NoPaymentReference when the entity has no payment intent, and
    UpstreamFailure (entity untouched) when Stripe rejects the refund.
    """
    db = SessionLocal()
    try:
        target = resolve_target(db, gateway, entity_type, entity_id)
        if not target.payment_reference:
            raise NoPaymentReference()
        record = _claim(db, target)
        return _advance(db, gateway, record)
    finally:
        db.close()


def reconcile_refund(gateway: PaymentGateway, payment_reference: str) -> Optional[RefundRecord]:
    db = SessionLocal()
    try:
        record = _find(db, payment_reference)
        if record is None:
            logger.warning("no refund record for payment %s", payment_reference)
            return None
        return _advance(db, gateway, record, lookup=True)
    finally:
        db.close()


def unsynced_references() -> List[str]:
    """References still owed a Stripe call or a status write.

    Failed attempts are left for an admin to retry.
    """
    db = SessionLocal()
    try:
        rows = db.execute(
            select(RefundRecord.payment_reference).where(RefundRecord.state.in_((PENDING_REFUND, REFUNDED)))
        ).scalars().all()
        return list(rows)
    finally:
        db.close()


async def enqueue_reconciliation(redis, payment_reference: str) -> None:
    await redis.xadd(RECONCILIATION_STREAM, {"payment_reference": payment_reference})
