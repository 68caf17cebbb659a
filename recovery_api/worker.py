import asyncio
import logging

from redis.asyncio import Redis

from .config import LOG_LEVEL, REDIS_URL
from .db import Base, engine
from .errors import UpstreamFailure
from .payments import PaymentGateway
from .refunds import RECONCILIATION_STREAM, reconcile_refund, unsynced_references

logger = logging.getLogger(__name__)

LAST_ID_KEY = "worker:refund_reconciliation:last_id"


def process_one(gateway: PaymentGateway, payment_reference: str) -> bool:
    logger.info("[worker] reconciling payment_reference=%s", payment_reference)
    try:
        record = reconcile_refund(gateway, payment_reference)
    except UpstreamFailure as e:
        # stays unsynced; picked up again by the next sweep
        logger.warning("[worker] reconcile_failed payment_reference=%s error=%s", payment_reference, e.message)
        return False
    if record is not None:
        logger.info("[worker] state=%s payment_reference=%s", record.state, payment_reference)
    return True


def sweep(gateway: PaymentGateway) -> int:
    """Reconcile every refund record that has not reached STATUS_SYNCED."""
    references = unsynced_references()
    for ref in references:
        process_one(gateway, ref)
    return len(references)


async def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    Base.metadata.create_all(bind=engine)

    redis = Redis.from_url(REDIS_URL, decode_responses=True)
    gateway = PaymentGateway()

    swept = sweep(gateway)
    logger.info("[worker] startup sweep covered %d refund records", swept)

    # resume where we left off so a backlog is processed after a restart
    last_id = await redis.get(LAST_ID_KEY) or "0-0"

    while True:
        resp = await redis.xread({RECONCILIATION_STREAM: last_id}, block=5000, count=50)
        if not resp:
            continue

        _, messages = resp[0]
        for msg_id, data in messages:
            last_id = msg_id
            process_one(gateway, data["payment_reference"])
            await redis.xdel(RECONCILIATION_STREAM, msg_id)
            await redis.set(LAST_ID_KEY, last_id)


if __name__ == "__main__":
    asyncio.run(main())
