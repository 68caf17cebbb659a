import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ConfigDict, Field

from .config import SHARED_TICKET_RATE_CAPACITY, SHARED_TICKET_RATE_REFILL_PER_SEC
from .deps import get_pass_store, get_redis
from .errors import NotFound, RateLimited
from .idempotency import get_cached_response, set_cached_response
from .passes import find_ticket_index, redeem_shared_ticket
from .rate_limit import client_ip, consume_token
from .store import PassStore, serialize_pass

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shared-tickets", tags=["shared-tickets"])


async def _throttle(redis, request: Request) -> None:
    ip = client_ip(request)
    allowed = await consume_token(
        redis,
        key=f"shared:{ip}",
        capacity=SHARED_TICKET_RATE_CAPACITY,
        refill_per_sec=SHARED_TICKET_RATE_REFILL_PER_SEC,
    )
    if not allowed:
        logger.warning("shared ticket rate limit hit for %s", ip)
        raise RateLimited()


def _ticket_of(team_pass: dict, ticket_id: str) -> dict:
    for ticket in team_pass["individual_tickets"]:
        if ticket["ticket_id"] == ticket_id:
            return ticket
    raise NotFound("Ticket not found")


class GetTicketReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pass_id: str = Field(alias="passId", min_length=1)
    ticket_id: str = Field(alias="ticketId", min_length=1)


@router.post("/get")
async def get_shared_ticket(
    req: GetTicketReq,
    request: Request,
    redis=Depends(get_redis),
    store: PassStore = Depends(get_pass_store),
):
    await _throttle(redis, request)

    state = store.get(req.pass_id)
    if state is None:
        raise NotFound("Pass not found")
    if find_ticket_index(state.individual_tickets, req.ticket_id) is None:
        raise NotFound("Ticket not found")

    team_pass = serialize_pass(store.get_record(req.pass_id))
    return {"success": True, "ticket": _ticket_of(team_pass, req.ticket_id), "teamPass": team_pass}


class UseTicketReq(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pass_id: str = Field(alias="passId", min_length=1)
    ticket_id: str = Field(alias="ticketId", min_length=1)
    service_type: str = Field(alias="serviceType", min_length=1)


@router.post("/use")
async def use_shared_ticket(
    req: UseTicketReq,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    redis=Depends(get_redis),
    store: PassStore = Depends(get_pass_store),
):
    if idempotency_key:
        cached = await get_cached_response(redis, "shared-ticket-use", idempotency_key)
        if cached:
            return cached

    await _throttle(redis, request)

    now = datetime.now(timezone.utc)
    row = store.mutate(
        req.pass_id,
        lambda state: redeem_shared_ticket(state, req.ticket_id, req.service_type, now),
        not_found_message="Pass not found",
    )
    team_pass = serialize_pass(row)
    resp = {"success": True, "ticket": _ticket_of(team_pass, req.ticket_id), "teamPass": team_pass}
    logger.info("shared ticket %s used on team pass %s", req.ticket_id, req.pass_id)

    if idempotency_key:
        await set_cached_response(redis, "shared-ticket-use", idempotency_key, resp)
    return resp
