from pydantic import BaseModel, Field
from typing import List, Optional
from .domain import OfferInfo, OrderStatus, PromoInfo, StudentInfo, Transaction


class CreateOrderIn(BaseModel):
    student: StudentInfo
    offer: OfferInfo
    promo: Optional[PromoInfo] = None
    amount: int = Field(..., ge=1, description="Amount in minor units e.g. 10000 for 100.00")
    currency: Optional[str] = "UAH"
    description: Optional[str] = None
    response_url: Optional[str] = None  # override default FRONTEND_RETURN_URL


class CreateOrderOut(BaseModel):
    order_id: str
    checkout_url: str
    status: OrderStatus


class OrderOut(BaseModel):
    id: str
    school_id: str
    student: StudentInfo
    offer: OfferInfo
    promo: Optional[PromoInfo] = None
    amount: int
    currency: str
    status: OrderStatus
    transactions: List[Transaction]
    fulfilled: bool


class CallbackAck(BaseModel):
    status: str = "ok"
    order_id: Optional[str] = None
    order_status: Optional[OrderStatus] = None
    outcome: Optional[str] = None
