import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    CREATED = "created"
    PAID = "paid"
    FAILED = "failed"
    # provider reported a status we don't recognize
    OTHER = "other"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.CREATED


class StudentInfo(BaseModel):
    id: str
    name: str = ""
    email: str = ""


class OfferInfo(BaseModel):
    id: str
    name: str = ""


class PromoInfo(BaseModel):
    id: str
    code: str = ""


class Transaction(BaseModel):
    status: OrderStatus
    created_at: datetime = Field(default_factory=utcnow)
    additional_info: str = ""


class Order(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    school_id: str
    student: StudentInfo
    offer: OfferInfo
    promo: Optional[PromoInfo] = None
    amount: int = Field(..., ge=0, description="Minor currency units")
    currency: str
    status: OrderStatus = OrderStatus.CREATED
    transactions: List[Transaction] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    access_granted_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None

    @property
    def is_fulfilled(self) -> bool:
        return self.access_granted_at is not None and self.notified_at is not None


class OfferContent(BaseModel):
    """Courses and modules a purchased offer unlocks."""

    offer_id: str
    course_ids: List[str] = Field(default_factory=list)
    module_ids: List[str] = Field(default_factory=list)
