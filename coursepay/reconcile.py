"""Re-run access grants and confirmation emails for paid orders that missed them.

    python -m coursepay.reconcile --max 50
"""
import argparse
import asyncio
import logging
from typing import Tuple

from .errors import PaymentError
from .services.settlement import SettlementEngine

logger = logging.getLogger(__name__)


async def reconcile_unfulfilled(engine: SettlementEngine, limit: int = 100) -> Tuple[int, int]:
    """Returns (checked, fixed)."""
    order_ids = await engine.store.list_unfulfilled(limit)
    fixed = 0
    for order_id in order_ids:
        try:
            if await engine.fulfil(order_id):
                fixed += 1
                logger.info("Order %s fulfilled", order_id)
        except PaymentError as e:
            logger.warning("Order %s: %s", order_id, e)
    return len(order_ids), fixed


async def _run(limit: int) -> Tuple[int, int]:
    from .db import async_session
    from .services.notifications import OutboxEmailSender
    from .services.orders import OrderStore

    engine = SettlementEngine(OrderStore(async_session), OutboxEmailSender(async_session))
    return await reconcile_unfulfilled(engine, limit)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Fulfil paid orders whose access grant or email failed")
    parser.add_argument("--max", type=int, default=100, help="Max orders to process")
    args = parser.parse_args(argv)

    from .config import settings
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    checked, fixed = asyncio.run(_run(args.max))
    print(f"Checked {checked}, fulfilled {fixed} orders.")
    return 0 if checked == fixed else 1


if __name__ == "__main__":
    raise SystemExit(main())
