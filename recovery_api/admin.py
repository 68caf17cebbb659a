import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, ConfigDict, Field

from .deps import get_gateway, get_redis, require
from .errors import StatusSyncPending
from .idempotency import get_cached_response, set_cached_response
from .payments import PaymentGateway, from_minor_units
from .policy import Capability
from .refunds import dispatch_refund, enqueue_reconciliation
from .security import Caller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

REVENUE_WINDOW_DAYS = 90


# -------------------------
# Refunds
# -------------------------
class RefundReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entity_type: str = Field(alias="entityType")
    entity_id: str = Field(alias="entityId", min_length=1)


@router.post("/refunds")
async def process_refund(
    req: RefundReq,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    caller: Caller = Depends(require(Capability.ISSUE_REFUNDS)),
    gateway: PaymentGateway = Depends(get_gateway),
    redis=Depends(get_redis),
):
    if idempotency_key:
        cached = await get_cached_response(redis, "refund", idempotency_key)
        if cached:
            return cached

    try:
        record = dispatch_refund(gateway, req.entity_type, req.entity_id)
    except StatusSyncPending as e:
        await enqueue_reconciliation(redis, e.payment_reference)
        raise

    logger.info("refund for %s %s processed by %s", req.entity_type, req.entity_id, caller.email)
    resp = {
        "success": True,
        "refund": {
            "id": record.refund_id,
            "amount": from_minor_units(record.amount_minor),
            "status": record.refund_status,
        },
    }
    if idempotency_key:
        await set_cached_response(redis, "refund", idempotency_key, resp)
    return resp


# -------------------------
# Revenue
# -------------------------
def daily_revenue(intents) -> dict:
    """Group succeeded payment intents by UTC day (amounts in major units)."""
    by_day = defaultdict(float)
    succeeded = [pi for pi in intents if pi.status == "succeeded"]
    for pi in succeeded:
        day = datetime.fromtimestamp(pi.created, tz=timezone.utc).date().isoformat()
        by_day[day] += from_minor_units(pi.amount)

    chart = [{"date": day, "amount": amount} for day, amount in sorted(by_day.items())]
    total = sum(item["amount"] for item in chart)
    return {
        "chartData": chart,
        "total": total,
        "average": total / len(chart) if chart else 0,
        "transactionCount": len(succeeded),
    }


@router.post("/revenue")
async def revenue(
    caller: Caller = Depends(require(Capability.VIEW_REVENUE)),
    gateway: PaymentGateway = Depends(get_gateway),
):
    since = int((datetime.now(timezone.utc) - timedelta(days=REVENUE_WINDOW_DAYS)).timestamp())
    return daily_revenue(gateway.list_payment_intents(created_gte=since))
