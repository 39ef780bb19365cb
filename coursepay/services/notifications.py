import logging
from typing import Protocol

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from ..domain import Order
from ..errors import StorageFault
from ..models import EmailOutbox

logger = logging.getLogger(__name__)

PURCHASE_SUBJECT = "Your purchase was successful!"
PURCHASE_BODY = """<h1>{name}, thank you for purchasing "{offer}"!</h1>
<br>
<p>Your course materials are unlocked and waiting for you in your account.</p>
<p>If you have any questions or want to share feedback, just reply to this email.</p>
"""


class SendEmailInput(BaseModel):
    to: str
    subject: str
    body: str


class EmailSender(Protocol):
    async def send(self, message: SendEmailInput) -> None:
        ...


def purchase_confirmation(order: Order) -> SendEmailInput:
    name = order.student.name or "Hi"
    return SendEmailInput(
        to=order.student.email,
        subject=PURCHASE_SUBJECT,
        body=PURCHASE_BODY.format(name=name, offer=order.offer.name),
    )


class OutboxEmailSender:
    """Queues emails in the outbox table; a separate mailer delivers them."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def send(self, message: SendEmailInput) -> None:
        try:
            async with self.session_factory() as session:
                session.add(EmailOutbox(to=message.to, subject=message.subject, body=message.body))
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageFault(f"failed to queue email to {message.to}: {e}") from e
        logger.info("Queued email %r to %s", message.subject, message.to)
