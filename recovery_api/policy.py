from enum import Enum
from typing import Optional

from .security import Caller


class Capability(str, Enum):
    REDEEM_PASSES = "redeem_passes"
    SEARCH_PASSES = "search_passes"
    MIGRATE_PASSES = "migrate_passes"
    ISSUE_REFUNDS = "issue_refunds"
    VIEW_REVENUE = "view_revenue"
    MANAGE_ANY_BOOKING = "manage_any_booking"
    MANAGE_OWN_BOOKINGS = "manage_own_bookings"


ROLE_CAPABILITIES = {
    "admin": frozenset(Capability),
    "user": frozenset({Capability.MANAGE_OWN_BOOKINGS}),
}


def is_allowed(caller: Optional[Caller], capability: Capability) -> bool:
    if caller is None:
        return False
    return capability in ROLE_CAPABILITIES.get(caller.role, frozenset())


def can_manage_booking(caller: Optional[Caller], customer_email: str) -> bool:
    if is_allowed(caller, Capability.MANAGE_ANY_BOOKING):
        return True
    return is_allowed(caller, Capability.MANAGE_OWN_BOOKINGS) and caller.email == customer_email
