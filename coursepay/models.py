from typing import Optional
from datetime import datetime
from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import SQLModel, Field
from .domain import utcnow


class OrderRecord(SQLModel, table=True):
    __tablename__ = "orders"

    id: str = Field(primary_key=True)
    school_id: str = Field(index=True)

    # snapshots taken when the order is created, never updated afterwards
    student_id: str = Field(index=True)
    student_name: str = ""
    student_email: str = ""
    offer_id: str
    offer_name: str = ""
    promo_id: Optional[str] = None
    promo_code: Optional[str] = None

    amount: int  # minor units
    currency: str
    status: str = Field(default="created", index=True)  # created, paid, failed, other
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    access_granted_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    notified_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class TransactionRecord(SQLModel, table=True):
    __tablename__ = "order_transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: str = Field(foreign_key="orders.id", index=True)
    status: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    additional_info: str = ""  # raw callback as JSON


class OfferContentRecord(SQLModel, table=True):
    __tablename__ = "offer_content"

    id: Optional[int] = Field(default=None, primary_key=True)
    offer_id: str = Field(index=True)
    course_id: str
    module_id: Optional[str] = None


class StudentAccess(SQLModel, table=True):
    __tablename__ = "student_access"
    __table_args__ = (UniqueConstraint("student_id", "kind", "ref_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: str = Field(index=True)
    kind: str  # course, module
    ref_id: str
    granted_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class EmailOutbox(SQLModel, table=True):
    __tablename__ = "email_outbox"

    id: Optional[int] = Field(default=None, primary_key=True)
    to: str
    subject: str
    body: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    sent_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
