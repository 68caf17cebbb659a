"""Team pass redemption bookkeeping.

Everything here is a pure function over ``PassState``: the input is never
modified and a fresh state is returned, so a rejected redemption leaves the
caller's copy exactly as it was loaded.

Ticket selection follows the storage order of ``individual_tickets``. It does
not sort by ``ticket_number``; if the two ever disagree, the earlier entry in
the list wins.
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from .errors import AlreadyUsed, Exhausted, NoTicketAvailable, NotFound

DEFAULT_SERVICE_TYPE = "General Recovery"
SELF_REDEEMED = "Self-redeemed"
MIGRATION_ACTOR = "system_migration"
MIGRATED_SERVICE_TYPE = "Previously redeemed"


class Ticket(BaseModel):
    ticket_id: str
    ticket_number: int
    is_used: bool = False
    used_at: Optional[str] = None
    used_by: Optional[str] = None
    service_type: Optional[str] = None


class Redemption(BaseModel):
    redeemed_at: str
    redeemed_by: str
    service_type: str


class PassState(BaseModel):
    id: str
    redemption_code: str = ""
    total_passes: int
    # counter as persisted; used on its own only while the ticket list is empty
    stored_remaining: int
    individual_tickets: List[Ticket] = Field(default_factory=list)
    redemption_history: List[Redemption] = Field(default_factory=list)
    version: int = 1

    @property
    def remaining_passes(self) -> int:
        if self.individual_tickets:
            return self.total_passes - sum(1 for t in self.individual_tickets if t.is_used)
        return self.stored_remaining


def timestamp(now: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_ticket_id(redemption_code: str, number: int, now: datetime) -> str:
    return f"{redemption_code}-T{number}-{int(now.timestamp() * 1000)}"


def issue_tickets(redemption_code: str, total_passes: int, now: datetime) -> List[Ticket]:
    return [
        Ticket(ticket_id=make_ticket_id(redemption_code, i, now), ticket_number=i)
        for i in range(1, total_passes + 1)
    ]


def first_unused_index(tickets: List[Ticket]) -> Optional[int]:
    for i, ticket in enumerate(tickets):
        if not ticket.is_used:
            return i
    return None


def find_ticket_index(tickets: List[Ticket], ticket_id: str) -> Optional[int]:
    for i, ticket in enumerate(tickets):
        if ticket.ticket_id == ticket_id:
            return i
    return None


def _mark_used(tickets: List[Ticket], index: int, actor: str, service_type: str, now: datetime) -> List[Ticket]:
    updated = list(tickets)
    updated[index] = tickets[index].model_copy(
        update={"is_used": True, "used_at": timestamp(now), "used_by": actor, "service_type": service_type}
    )
    return updated


def _record(state: PassState, tickets: List[Ticket], actor: str, service_type: str, now: datetime) -> PassState:
    redemption = Redemption(redeemed_at=timestamp(now), redeemed_by=actor, service_type=service_type)
    return state.model_copy(
        update={
            "individual_tickets": tickets,
            "redemption_history": [*state.redemption_history, redemption],
            "stored_remaining": state.remaining_passes - 1,
        }
    )


def redeem_as_admin(state: PassState, actor: str, service_type: Optional[str], now: datetime) -> PassState:
    """Staff redemption at the booth.

    Marks the next unused ticket when the pass has a ticket list; legacy passes
    without tickets only have their counter decremented.
    """
    service_type = service_type or DEFAULT_SERVICE_TYPE
    if state.remaining_passes <= 0:
        raise Exhausted()

    tickets = state.individual_tickets
    if tickets:
        index = first_unused_index(tickets)
        if index is None:
            raise NoTicketAvailable()
        tickets = _mark_used(tickets, index, actor, service_type, now)
    return _record(state, tickets, actor, service_type, now)


def self_redeem(state: PassState, service_type: str, now: datetime) -> PassState:
    if state.remaining_passes <= 0:
        raise Exhausted()

    index = first_unused_index(state.individual_tickets)
    if index is None:
        raise NoTicketAvailable()
    tickets = _mark_used(state.individual_tickets, index, SELF_REDEEMED, service_type, now)
    return _record(state, tickets, SELF_REDEEMED, service_type, now)


def redeem_shared_ticket(state: PassState, ticket_id: str, service_type: str, now: datetime) -> PassState:
    index = find_ticket_index(state.individual_tickets, ticket_id)
    if index is None:
        raise NotFound("Ticket not found")
    if state.individual_tickets[index].is_used:
        raise AlreadyUsed()
    if state.remaining_passes <= 0:
        raise Exhausted()

    tickets = _mark_used(state.individual_tickets, index, ticket_id, service_type, now)
    return _record(state, tickets, ticket_id, service_type, now)


def backfill_tickets(state: PassState, now: datetime) -> Optional[PassState]:
    """Build the ticket list for a pass created before tickets were tracked.

    Returns None when the pass already has tickets. Usage is inferred from the
    counter: the first ``total - remaining`` tickets are marked as used by the
    migration.
    """
    if state.individual_tickets:
        return None

    used_count = max(0, min(state.total_passes, state.total_passes - state.stored_remaining))
    stamp = timestamp(now)
    tickets = []
    for i in range(1, state.total_passes + 1):
        used = i <= used_count
        tickets.append(
            Ticket(
                ticket_id=make_ticket_id(state.redemption_code, i, now),
                ticket_number=i,
                is_used=used,
                used_at=stamp if used else None,
                used_by=MIGRATION_ACTOR if used else None,
                service_type=MIGRATED_SERVICE_TYPE if used else None,
            )
        )
    return state.model_copy(update={"individual_tickets": tickets})
