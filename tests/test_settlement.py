import asyncio
import json

import pytest

from conftest import COURSE_ID, MERCHANT_PASSWORD, MODULE_IDS, callback_payload
from coursepay.domain import OrderStatus
from coursepay.errors import OrderNotFound, StorageFault
from coursepay.services.callback import validate_callback
from coursepay.services.settlement import KeyedLock, Outcome, SettlementEngine


def callback(order_id, order_status="approved", response_status="success"):
    return validate_callback(callback_payload(order_id, order_status, response_status), MERCHANT_PASSWORD)


class FailingEmailSender:
    async def send(self, message):
        raise ConnectionError("smtp down")


class BlockingEmailSender:
    """Records messages, but holds each send until `release` is set."""

    def __init__(self):
        self.sent = []
        self.sending = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, message):
        self.sending.set()
        await self.release.wait()
        self.sent.append(message)


async def test_approved_callback_pays_and_fulfils(settlement, store, email_sender, order):
    result = await settlement.settle(callback(order.id))

    assert result.outcome is Outcome.SETTLED
    assert result.status is OrderStatus.PAID
    assert not result.needs_reconciliation

    loaded = await store.get_by_id(order.id)
    assert loaded.status is OrderStatus.PAID
    assert loaded.is_fulfilled
    assert len(loaded.transactions) == 1
    assert json.loads(loaded.transactions[0].additional_info)["order_id"] == order.id

    for module_id in MODULE_IDS:
        assert await store.has_access("student-1", module_id)

    assert len(email_sender.sent) == 1
    message = email_sender.sent[0]
    assert message.to == "payment@test.com"
    assert "Test Payment" in message.body and "Test Offer" in message.body


async def test_declined_callback_fails_order(settlement, store, email_sender, order):
    result = await settlement.settle(callback(order.id, "declined"))

    assert result.outcome is Outcome.SETTLED
    assert result.status is OrderStatus.FAILED
    assert (await store.get_by_id(order.id)).status is OrderStatus.FAILED
    assert not await store.has_access("student-1", MODULE_IDS[0])
    assert store.grants == 0
    assert email_sender.sent == []


async def test_unrecognized_status_becomes_other(settlement, store, order):
    result = await settlement.settle(callback(order.id, "on_hold"))
    assert result.status is OrderStatus.OTHER
    assert (await store.get_by_id(order.id)).status is OrderStatus.OTHER


async def test_processing_callback_keeps_order_open(settlement, store, email_sender, order):
    result = await settlement.settle(callback(order.id, "processing"))
    assert result.outcome is Outcome.PENDING
    assert result.status is OrderStatus.CREATED

    result = await settlement.settle(callback(order.id, "approved"))
    assert result.outcome is Outcome.SETTLED

    loaded = await store.get_by_id(order.id)
    assert loaded.status is OrderStatus.PAID
    assert [t.status for t in loaded.transactions] == [OrderStatus.CREATED, OrderStatus.PAID]
    assert len(email_sender.sent) == 1


async def test_duplicate_approved_callback_grants_once(settlement, store, email_sender, order):
    first = await settlement.settle(callback(order.id))
    second = await settlement.settle(callback(order.id))

    assert first.outcome is Outcome.SETTLED
    assert second.outcome is Outcome.DUPLICATE
    assert second.status is OrderStatus.PAID
    assert store.grants == 1
    assert len(email_sender.sent) == 1
    assert len((await store.get_by_id(order.id)).transactions) == 2


@pytest.mark.parametrize("first", ["approved", "declined"])
@pytest.mark.parametrize("later", ["approved", "declined", "reversed", "on_hold", "processing"])
async def test_terminal_orders_never_change(settlement, store, order, first, later):
    settled = (await settlement.settle(callback(order.id, first))).status

    await settlement.settle(callback(order.id, later))

    loaded = await store.get_by_id(order.id)
    assert loaded.status is settled
    assert len(loaded.transactions) == 2
    assert store.grants == (1 if first == "approved" else 0)


async def test_concurrent_deliveries_grant_once(settlement, store, email_sender, order):
    results = await asyncio.gather(*[settlement.settle(callback(order.id)) for _ in range(5)])

    assert sorted(r.outcome.value for r in results) == ["duplicate"] * 4 + ["settled"]
    assert store.grants == 1
    assert len(email_sender.sent) == 1
    assert len((await store.get_by_id(order.id)).transactions) == 5
    # per-order locks are released once everyone is done
    assert len(settlement.locks) == 0


async def test_separate_engines_rely_on_conditional_update(store, email_sender, order):
    # two workers that don't share in-process locks
    a = SettlementEngine(store, email_sender, KeyedLock())
    b = SettlementEngine(store, email_sender, KeyedLock())

    assert (await a.settle(callback(order.id))).outcome is Outcome.SETTLED
    assert (await b.settle(callback(order.id))).outcome is Outcome.DUPLICATE
    assert store.grants == 1


async def test_separate_engines_overlapping_send_email_once(store, order):
    sender = BlockingEmailSender()
    a = SettlementEngine(store, sender, KeyedLock())
    b = SettlementEngine(store, sender, KeyedLock())

    first = asyncio.create_task(a.settle(callback(order.id)))
    await sender.sending.wait()
    # a is paid and mid-send; b sees the same paid order without its email yet
    second = asyncio.create_task(b.settle(callback(order.id)))
    await asyncio.sleep(0.1)
    sender.release.set()
    results = await asyncio.gather(first, second)

    assert [r.outcome for r in results] == [Outcome.SETTLED, Outcome.DUPLICATE]
    assert not any(r.needs_reconciliation for r in results)
    assert store.grants == 1
    assert len(sender.sent) == 1
    assert (await store.get_by_id(order.id)).is_fulfilled


@pytest.mark.parametrize("first, settled", [("approved", OrderStatus.PAID), ("declined", OrderStatus.FAILED)])
@pytest.mark.parametrize("later", ["processing", "created"])
async def test_in_flight_callback_after_settlement_is_duplicate(settlement, store, order, first, settled, later):
    await settlement.settle(callback(order.id, first))

    result = await settlement.settle(callback(order.id, later))

    assert result.outcome is Outcome.DUPLICATE
    assert result.status is settled
    assert not result.needs_reconciliation
    assert len((await store.get_by_id(order.id)).transactions) == 2


async def test_in_flight_callback_retries_unfinished_fulfilment(store, email_sender, order):
    await SettlementEngine(store, FailingEmailSender()).settle(callback(order.id))

    result = await SettlementEngine(store, email_sender).settle(callback(order.id, "processing"))

    assert result.outcome is Outcome.DUPLICATE
    assert not result.needs_reconciliation
    assert len(email_sender.sent) == 1
    assert store.grants == 1
    assert (await store.get_by_id(order.id)).is_fulfilled


async def test_unknown_order_raises_without_writes(settlement, store, email_sender):
    with pytest.raises(OrderNotFound):
        await settlement.settle(callback("no-such-order"))
    assert store.grants == 0
    assert email_sender.sent == []


async def test_notification_failure_is_left_for_reconciliation(store, order):
    engine = SettlementEngine(store, FailingEmailSender())

    result = await engine.settle(callback(order.id))

    assert result.status is OrderStatus.PAID
    assert result.needs_reconciliation
    loaded = await store.get_by_id(order.id)
    assert loaded.access_granted_at is not None
    assert loaded.notified_at is None
    assert await store.list_unfulfilled() == [order.id]


async def test_redelivery_retries_unfinished_fulfilment(store, email_sender, order):
    await SettlementEngine(store, FailingEmailSender()).settle(callback(order.id))

    result = await SettlementEngine(store, email_sender).settle(callback(order.id))

    assert result.outcome is Outcome.DUPLICATE
    assert not result.needs_reconciliation
    assert len(email_sender.sent) == 1
    # access was already granted the first time
    assert store.grants == 1
    assert (await store.get_by_id(order.id)).is_fulfilled


async def test_status_write_failure_propagates(settlement, store, order, monkeypatch):
    async def broken(*args, **kwargs):
        raise StorageFault("disk full")

    monkeypatch.setattr(store, "transition_if_created", broken)

    with pytest.raises(StorageFault):
        await settlement.settle(callback(order.id))
    assert (await store.get_by_id(order.id)).status is OrderStatus.CREATED
    assert store.grants == 0


async def test_offer_without_content_still_settles(settlement, store, email_sender):
    from conftest import new_order

    order = await store.create(new_order(offer={"id": "offer-empty", "name": "Empty"}))
    result = await settlement.settle(callback(order.id))

    assert result.status is OrderStatus.PAID
    assert not result.needs_reconciliation
    assert not await store.has_access("student-1", COURSE_ID)
    assert len(email_sender.sent) == 1
