import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("FONDY_MERCHANT_ID", "1396424")
os.environ.setdefault("FONDY_MERCHANT_PASSWORD", "test")
os.environ.setdefault("SERVICE_API_KEY", "service-key")

import pytest
from sqlalchemy.pool import NullPool

from coursepay.db import init_db, make_engine, make_session_factory
from coursepay.domain import OfferInfo, Order, StudentInfo
from coursepay.services.orders import OrderStore
from coursepay.services.settlement import SettlementEngine
from coursepay.services.signature import CALLBACK_SIGNED_FIELDS, sign

MERCHANT_ID = 1396424
MERCHANT_PASSWORD = "test"
COURSE_ID = "course-go"
MODULE_IDS = ["module-1", "module-2"]


class RecordingEmailSender:
    def __init__(self):
        self.sent = []

    async def send(self, message):
        self.sent.append(message)


class CountingStore(OrderStore):
    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.grants = 0

    async def grant_access(self, student_id, course_ids, module_ids):
        self.grants += 1
        return await super().grant_access(student_id, course_ids, module_ids)


def callback_payload(order_id, order_status="approved", response_status="success",
                     password=MERCHANT_PASSWORD, **overrides):
    """A Fondy server callback as it arrives on the wire, signed with `password`."""
    payload = {
        "rrn": "429417347068",
        "masked_card": "444455XXXXXX6666",
        "sender_cell_phone": "",
        "response_status": response_status,
        "sender_account": "",
        "fee": "",
        "rectoken_lifetime": "",
        "reversal_amount": "0",
        "settlement_amount": "0",
        "actual_amount": "10000",
        "order_status": order_status,
        "response_description": "",
        "verification_status": "",
        "order_time": "19.10.2026 12:34:56",
        "actual_currency": "UAH",
        "order_id": order_id,
        "merchant_data": "",
        "tran_type": "purchase",
        "eci": "7",
        "settlement_date": "",
        "payment_system": "card",
        "rectoken": "",
        "approval_code": "027440",
        "merchant_id": MERCHANT_ID,
        "settlement_currency": "",
        "payment_id": 51247263,
        "product_id": "",
        "currency": "UAH",
        "card_bin": 444455,
        "response_code": "",
        "card_type": "VISA",
        "amount": "10000",
        "sender_email": "student@example.com",
        "additional_info": '{"capture_status": null, "bank_name": null}',
        "response_signature_string": "**********|10000|UAH|...",
    }
    payload.update(overrides)
    payload["signature"] = sign(payload, password, CALLBACK_SIGNED_FIELDS)
    return payload


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'coursepay.db'}"


@pytest.fixture
async def session_factory(db_url):
    engine = make_engine(db_url, poolclass=NullPool)
    await init_db(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return CountingStore(session_factory)


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def settlement(store, email_sender):
    return SettlementEngine(store, email_sender)


def new_order(**kwargs):
    data = dict(
        school_id="school-1",
        student=StudentInfo(id="student-1", name="Test Payment", email="payment@test.com"),
        offer=OfferInfo(id="offer-1", name="Test Offer"),
        amount=10000,
        currency="UAH",
    )
    data.update(kwargs)
    return Order(**data)


@pytest.fixture
async def order(store):
    await store.set_offer_content("offer-1", COURSE_ID, MODULE_IDS)
    return await store.create(new_order())
