"""
Order settlement for provider callbacks.

An order starts as ``created`` and moves at most once, to ``paid``, ``failed``
or ``other``. Every processed callback leaves a transaction record, but only
the delivery that wins the ``created`` -> terminal transition grants access
and queues the confirmation email. Later deliveries for the same order are
recorded and acknowledged without side effects.

The status write is the commit point. Granting access and emailing happen
after it. Each is claimed through its own marker on the order, so it runs at
most once even across workers, and a failure releases the claim to be picked
up again by a redelivery or by ``coursepay.reconcile``.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel

from ..domain import Order, OrderStatus, Transaction
from .callback import Callback
from .notifications import EmailSender, purchase_confirmation
from .orders import OrderStore

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    SETTLED = "settled"  # this delivery moved the order out of created
    DUPLICATE = "duplicate"  # order was already terminal, only audited
    PENDING = "pending"  # provider still processing, order stays created


class SettlementResult(BaseModel):
    order_id: str
    status: OrderStatus
    outcome: Outcome
    needs_reconciliation: bool = False


class KeyedLock:
    """One asyncio.Lock per key, dropped when nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self):
        return len(self._locks)


class SettlementEngine:
    def __init__(self, store: OrderStore, email_sender: EmailSender, locks: Optional[KeyedLock] = None):
        self.store = store
        self.email_sender = email_sender
        self.locks = locks if locks is not None else KeyedLock()

    async def settle(self, callback: Callback) -> SettlementResult:
        """
        Apply a validated callback to its order. Raises OrderNotFound for an
        unknown order id and StorageFault if the status write fails.
        """
        async with self.locks.acquire(callback.order_id):
            order = await self.store.get_by_id(callback.order_id)
            incoming = callback.resolved_status
            txn = Transaction(status=incoming, additional_info=callback.model_dump_json())
            self._check_amount(order, callback)

            if incoming is OrderStatus.CREATED:
                await self.store.append_transaction(order.id, txn)
                if not order.status.is_terminal:
                    logger.info("Order %s still in progress at provider (%s)", order.id, callback.order_status)
                    return SettlementResult(order_id=order.id, status=order.status, outcome=Outcome.PENDING)
                changed = False
            else:
                changed = await self.store.transition_if_created(order.id, incoming, txn)

            if not changed:
                # re-read: a concurrent process may have settled it after our load
                order = await self.store.get_by_id(order.id)
                logger.info("Duplicate callback for order %s (status=%s, incoming=%s)",
                            order.id, order.status.value, incoming.value)
                ok = True
                if self._unfulfilled(order):
                    ok = await self._fulfil(order)
                return SettlementResult(order_id=order.id, status=order.status, outcome=Outcome.DUPLICATE,
                                        needs_reconciliation=not ok)

            order.status = incoming
            logger.info("Order %s settled as %s", order.id, incoming.value)
            ok = True
            if incoming is OrderStatus.PAID:
                ok = await self._fulfil(order)
            return SettlementResult(order_id=order.id, status=incoming, outcome=Outcome.SETTLED,
                                    needs_reconciliation=not ok)

    async def fulfil(self, order_id: str) -> bool:
        """Finish the side effects of a paid order. Used by reconciliation."""
        async with self.locks.acquire(order_id):
            order = await self.store.get_by_id(order_id)
            if not self._unfulfilled(order):
                return True
            return await self._fulfil(order)

    @staticmethod
    def _unfulfilled(order: Order) -> bool:
        return order.status is OrderStatus.PAID and not order.is_fulfilled

    async def _fulfil(self, order: Order) -> bool:
        """
        Grant access and queue the email, each only if this worker wins its
        claim. A worker that loses a claim leaves that step to the winner.
        """
        try:
            if order.access_granted_at is None and await self.store.claim_access_grant(order.id):
                try:
                    content = await self.store.get_offer_content(order.offer.id)
                    if not content.course_ids and not content.module_ids:
                        logger.warning("Offer %s of order %s unlocks no content", order.offer.id, order.id)
                    added = await self.store.grant_access(order.student.id, content.course_ids, content.module_ids)
                except Exception:
                    await self.store.release_access_grant(order.id)
                    raise
                logger.info("Granted student %s %d new entitlement(s) for order %s",
                            order.student.id, added, order.id)

            if order.notified_at is None and await self.store.claim_notification(order.id):
                try:
                    await self.email_sender.send(purchase_confirmation(order))
                except Exception:
                    await self.store.release_notification(order.id)
                    raise
        except Exception:
            logger.exception("Order %s is paid but fulfilment failed; left for reconciliation", order.id)
            return False
        return True

    @staticmethod
    def _check_amount(order: Order, callback: Callback) -> None:
        if callback.amount and callback.amount != str(order.amount):
            logger.warning("Callback amount %s differs from order %s amount %s",
                           callback.amount, order.id, order.amount)
        if callback.currency and callback.currency != order.currency:
            logger.warning("Callback currency %s differs from order %s currency %s",
                           callback.currency, order.id, order.currency)
