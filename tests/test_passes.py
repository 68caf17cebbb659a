from datetime import datetime, timezone

import pytest

from recovery_api.errors import AlreadyUsed, Exhausted, NoTicketAvailable, NotFound
from recovery_api.passes import (
    MIGRATED_SERVICE_TYPE,
    MIGRATION_ACTOR,
    SELF_REDEEMED,
    PassState,
    Ticket,
    backfill_tickets,
    issue_tickets,
    redeem_as_admin,
    redeem_shared_ticket,
    self_redeem,
    timestamp,
)

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def make_state(total=3, remaining=None, with_tickets=True, code="SMITH-1234") -> PassState:
    remaining = total if remaining is None else remaining
    return PassState(
        id="tp_test",
        redemption_code=code,
        total_passes=total,
        stored_remaining=remaining,
        individual_tickets=issue_tickets(code, total, NOW) if with_tickets else [],
    )


def used_numbers(state: PassState):
    return [t.ticket_number for t in state.individual_tickets if t.is_used]


def test_timestamp_is_utc_millis_with_z():
    assert timestamp(NOW) == "2026-03-14T12:00:00.000Z"


def test_backfill_then_self_redeem_example():
    state = make_state(total=3, remaining=3, with_tickets=False)

    filled = backfill_tickets(state, NOW)
    assert [t.ticket_number for t in filled.individual_tickets] == [1, 2, 3]
    assert not any(t.is_used for t in filled.individual_tickets)
    assert filled.remaining_passes == 3

    redeemed = self_redeem(filled, "Cryotherapy", NOW)
    assert used_numbers(redeemed) == [1]
    assert redeemed.remaining_passes == 2
    assert len(redeemed.redemption_history) == 1
    assert redeemed.redemption_history[0].redeemed_by == SELF_REDEEMED


def test_each_redemption_decrements_once_and_appends_one_entry():
    state = make_state(total=4)
    for redeem in (
        lambda s: redeem_as_admin(s, "staff@example.com", "Cryo", NOW),
        lambda s: self_redeem(s, "Compression", NOW),
        lambda s: redeem_shared_ticket(s, s.individual_tickets[3].ticket_id, "Red Light", NOW),
    ):
        after = redeem(state)
        assert after.remaining_passes == state.remaining_passes - 1
        assert len(after.redemption_history) == len(state.redemption_history) + 1
        assert after.remaining_passes == after.total_passes - len(after.redemption_history)
        state = after


def test_self_redeem_consumes_every_ticket_in_order_then_fails():
    state = make_state(total=3)
    for expected in ([1], [1, 2], [1, 2, 3]):
        state = self_redeem(state, "Cryo", NOW)
        assert used_numbers(state) == expected

    with pytest.raises(Exhausted):
        self_redeem(state, "Cryo", NOW)


def test_ticket_selection_follows_storage_order():
    state = make_state(total=3)
    reordered = state.model_copy(update={"individual_tickets": list(reversed(state.individual_tickets))})

    redeemed = self_redeem(reordered, "Cryo", NOW)

    assert redeemed.individual_tickets[0].ticket_number == 3
    assert redeemed.individual_tickets[0].is_used
    assert used_numbers(redeemed) == [3]


def test_redemption_does_not_touch_input_state():
    state = make_state(total=2)
    before = state.model_dump_json()

    self_redeem(state, "Cryo", NOW)

    assert state.model_dump_json() == before


def test_self_redeem_on_legacy_pass_has_no_ticket_to_pick():
    state = make_state(total=3, remaining=2, with_tickets=False)
    with pytest.raises(NoTicketAvailable):
        self_redeem(state, "Cryo", NOW)


def test_self_redeem_checks_exhaustion_before_ticket_availability():
    state = make_state(total=3, remaining=0, with_tickets=False)
    with pytest.raises(Exhausted):
        self_redeem(state, "Cryo", NOW)


def test_admin_redeem_marks_next_ticket_with_caller():
    state = make_state(total=3)

    redeemed = redeem_as_admin(state, "staff@example.com", None, NOW)

    ticket = redeemed.individual_tickets[0]
    assert ticket.is_used
    assert ticket.used_by == "staff@example.com"
    assert ticket.service_type == "General Recovery"
    assert ticket.used_at == "2026-03-14T12:00:00.000Z"
    assert redeemed.redemption_history[-1].redeemed_by == "staff@example.com"


def test_admin_redeem_on_legacy_pass_decrements_counter():
    state = make_state(total=5, remaining=2, with_tickets=False)

    redeemed = redeem_as_admin(state, "staff@example.com", "Cryo", NOW)

    assert redeemed.remaining_passes == 1
    assert redeemed.individual_tickets == []
    assert len(redeemed.redemption_history) == 1


def test_admin_redeem_exhausted():
    state = make_state(total=2, remaining=0, with_tickets=False)
    with pytest.raises(Exhausted):
        redeem_as_admin(state, "staff@example.com", "Cryo", NOW)


def test_shared_ticket_redeems_that_ticket():
    state = make_state(total=3)
    ticket_id = state.individual_tickets[1].ticket_id

    redeemed = redeem_shared_ticket(state, ticket_id, "Compression", NOW)

    assert used_numbers(redeemed) == [2]
    assert redeemed.individual_tickets[1].service_type == "Compression"
    assert redeemed.redemption_history[-1].redeemed_by == ticket_id


def test_shared_ticket_already_used_leaves_pass_unchanged():
    state = make_state(total=3)
    ticket_id = state.individual_tickets[0].ticket_id
    used = redeem_shared_ticket(state, ticket_id, "Cryo", NOW)
    snapshot = used.model_dump_json()

    with pytest.raises(AlreadyUsed):
        redeem_shared_ticket(used, ticket_id, "Cryo", NOW)

    assert used.model_dump_json() == snapshot


def test_shared_ticket_unknown_id():
    state = make_state(total=3)
    with pytest.raises(NotFound) as exc:
        redeem_shared_ticket(state, "SMITH-1234-T9-0", "Cryo", NOW)
    assert exc.value.message == "Ticket not found"


def test_shared_ticket_checks_balance_independently():
    # more tickets than passes: balance runs out while a ticket is still unused
    tickets = issue_tickets("SMITH-1234", 3, NOW)
    tickets = [tickets[0].model_copy(update={"is_used": True}), tickets[1].model_copy(update={"is_used": True}), tickets[2]]
    state = PassState(id="tp_test", total_passes=2, stored_remaining=0, individual_tickets=tickets)

    with pytest.raises(Exhausted):
        redeem_shared_ticket(state, tickets[2].ticket_id, "Cryo", NOW)


def test_backfill_marks_previously_used_tickets():
    state = make_state(total=5, remaining=2, with_tickets=False)

    filled = backfill_tickets(state, NOW)

    used = [t for t in filled.individual_tickets if t.is_used]
    unused = [t for t in filled.individual_tickets if not t.is_used]
    assert [t.ticket_number for t in used] == [1, 2, 3]
    assert all(t.used_by == MIGRATION_ACTOR for t in used)
    assert all(t.service_type == MIGRATED_SERVICE_TYPE for t in used)
    assert all(t.used_at == timestamp(NOW) for t in used)
    assert all(t.used_at is None and t.used_by is None and t.service_type is None for t in unused)
    assert filled.remaining_passes == 2


def test_backfill_is_idempotent():
    state = make_state(total=3, remaining=1, with_tickets=False)

    filled = backfill_tickets(state, NOW)

    assert backfill_tickets(filled, NOW) is None
    assert backfill_tickets(make_state(total=3), NOW) is None


def test_ticket_ids_are_unique_within_pass():
    tickets = issue_tickets("LEE-5678", 12, NOW)
    assert len({t.ticket_id for t in tickets}) == 12
    assert tickets[0] == Ticket(ticket_id=f"LEE-5678-T1-{int(NOW.timestamp() * 1000)}", ticket_number=1)
