import logging
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from ..domain import OrderStatus
from ..errors import InvalidSignature, MalformedPayload
from .signature import CALLBACK_SIGNED_FIELDS, verify

logger = logging.getLogger(__name__)

# User-Agent Fondy sends with server callbacks. Only a hint: anyone can forge it.
FONDY_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64; Twisted) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/63.0.3239.108 Safari/537.36"
)

STATUS_APPROVED = "approved"
RESPONSE_SUCCESS = "success"
# provider is still working on the payment, a final callback follows
IN_FLIGHT_STATUSES = frozenset({"created", "processing"})
DECLINED_STATUSES = frozenset({"declined", "expired", "reversed"})


class Callback(BaseModel):
    """Fondy server callback. Every field except the signatures is signed."""

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    order_id: str
    merchant_id: int
    amount: str = ""
    currency: str = ""
    order_status: str  # created; processing; declined; approved; expired; reversed
    response_status: str  # success; failure
    signature: str
    tran_type: str = ""
    sender_cell_phone: str = ""
    sender_account: str = ""
    card_bin: Optional[int] = None
    masked_card: str = ""
    card_type: str = ""
    rrn: str = ""
    approval_code: str = ""
    response_code: Union[int, str, None] = None
    response_description: str = ""
    reversal_amount: str = ""
    settlement_amount: str = ""
    settlement_currency: str = ""
    order_time: str = ""
    settlement_date: str = ""
    eci: str = ""
    fee: str = ""
    payment_system: str = ""
    sender_email: str = ""
    payment_id: Optional[int] = None
    actual_amount: str = ""
    actual_currency: str = ""
    merchant_data: str = ""
    verification_status: str = ""
    rectoken: str = ""
    rectoken_lifetime: str = ""
    product_id: str = ""
    additional_info: str = ""
    response_signature_string: str = ""

    @property
    def is_success(self) -> bool:
        return self.response_status == RESPONSE_SUCCESS

    @property
    def is_approved(self) -> bool:
        return self.order_status == STATUS_APPROVED

    @property
    def resolved_status(self) -> OrderStatus:
        """Order status this callback asks for; CREATED means no transition yet."""
        if not self.is_success or self.order_status in DECLINED_STATUSES:
            return OrderStatus.FAILED
        if self.is_approved:
            return OrderStatus.PAID
        if self.order_status in IN_FLIGHT_STATUSES:
            return OrderStatus.CREATED
        return OrderStatus.OTHER

    def signed_fields(self) -> dict:
        return self.model_dump(include=set(CALLBACK_SIGNED_FIELDS))


def parse_callback(payload: Any) -> Callback:
    if not isinstance(payload, dict):
        raise MalformedPayload("callback body must be a JSON object")
    try:
        return Callback.model_validate(payload)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise MalformedPayload(f"invalid callback fields: {', '.join(fields)}") from e


def validate_callback(payload: Any, password: str) -> Callback:
    """Parse a raw callback and check its signature against the merchant password."""
    callback = parse_callback(payload)
    if not verify(callback.signed_fields(), callback.signature, password, CALLBACK_SIGNED_FIELDS):
        logger.warning("Rejected callback with invalid signature (order_id=%s)", callback.order_id)
        raise InvalidSignature("invalid signature")
    return callback


def check_user_agent(user_agent: Optional[str]) -> bool:
    if user_agent != FONDY_USER_AGENT:
        logger.warning("Callback came with unexpected User-Agent: %r", user_agent)
        return False
    return True
