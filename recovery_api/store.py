import logging
import uuid
from typing import Callable, List, Optional

from sqlalchemy import select, update

from .config import PASS_UPDATE_RETRIES
from .db import SessionLocal
from .errors import Conflict, NotFound
from .models import TeamPass
from .passes import PassState, Redemption, Ticket

logger = logging.getLogger(__name__)


def new_pass_id() -> str:
    return f"tp_{uuid.uuid4().hex[:12]}"


def to_state(row: TeamPass) -> PassState:
    return PassState(
        id=row.id,
        redemption_code=row.redemption_code,
        total_passes=row.total_passes,
        stored_remaining=row.remaining_passes,
        individual_tickets=[Ticket(**t) for t in (row.individual_tickets or [])],
        redemption_history=[Redemption(**r) for r in (row.redemption_history or [])],
        version=row.version,
    )


def serialize_pass(row: TeamPass) -> dict:
    return {
        "id": row.id,
        "redemption_code": row.redemption_code,
        "customer_first_name": row.customer_first_name,
        "customer_last_name": row.customer_last_name,
        "customer_email": row.customer_email,
        "customer_phone": row.customer_phone,
        "total_passes": row.total_passes,
        "remaining_passes": to_state(row).remaining_passes,
        "individual_tickets": list(row.individual_tickets or []),
        "redemption_history": list(row.redemption_history or []),
        "payment_status": row.payment_status,
        "purchase_amount": float(row.purchase_amount) if row.purchase_amount is not None else None,
        "stripe_session_id": row.stripe_session_id,
        "stripe_payment_intent_id": row.stripe_payment_intent_id,
        "created_date": str(row.created_at) if row.created_at else None,
    }


class PassStore:
    """Team pass persistence with optimistic concurrency.

    Every write carries the version it was computed from; a write against a
    version that has since moved is refused and ``mutate`` re-runs the whole
    read/transform/write cycle.
    """

    def __init__(self, session_factory=SessionLocal, retries: int = PASS_UPDATE_RETRIES):
        self.session_factory = session_factory
        self.retries = retries

    def get_record(self, pass_id: str) -> Optional[TeamPass]:
        db = self.session_factory()
        try:
            return db.get(TeamPass, pass_id)
        finally:
            db.close()

    def get(self, pass_id: str) -> Optional[PassState]:
        row = self.get_record(pass_id)
        return to_state(row) if row else None

    def filter(self, *criteria, order_by=None, limit: Optional[int] = None) -> List[TeamPass]:
        db = self.session_factory()
        try:
            q = select(TeamPass)
            if criteria:
                q = q.where(*criteria)
            if order_by is not None:
                q = q.order_by(order_by)
            if limit:
                q = q.limit(limit)
            return list(db.execute(q).scalars().all())
        finally:
            db.close()

    def all(self) -> List[TeamPass]:
        return self.filter()

    def create(self, **fields) -> TeamPass:
        db = self.session_factory()
        try:
            row = TeamPass(id=fields.pop("id", None) or new_pass_id(), **fields)
            db.add(row)
            db.commit()
            db.refresh(row)
            return row
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def update(self, state: PassState) -> bool:
        """Write ``state`` if the stored version still equals ``state.version``."""
        db = self.session_factory()
        try:
            result = db.execute(
                update(TeamPass)
                .where(TeamPass.id == state.id, TeamPass.version == state.version)
                .values(
                    individual_tickets=[t.model_dump() for t in state.individual_tickets],
                    redemption_history=[r.model_dump() for r in state.redemption_history],
                    remaining_passes=state.remaining_passes,
                    version=TeamPass.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def mutate(
        self,
        pass_id: str,
        transform: Callable[[PassState], Optional[PassState]],
        not_found_message: str = "Team pass not found",
    ) -> TeamPass:
        """Apply ``transform`` to the current state of a pass and persist it.

        ``transform`` may raise to reject the change, or return None to leave
        the pass as it is.
        """
        for attempt in range(1, self.retries + 1):
            state = self.get(pass_id)
            if state is None:
                raise NotFound(not_found_message)

            new_state = transform(state)
            if new_state is None or self.update(new_state):
                return self.get_record(pass_id)

            logger.info("team pass %s changed concurrently (attempt %d/%d)", pass_id, attempt, self.retries)

        logger.warning("giving up on team pass %s after %d conflicting writes", pass_id, self.retries)
        raise Conflict()
