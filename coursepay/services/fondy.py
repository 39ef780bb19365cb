import logging
import httpx
from typing import Optional
from pydantic import BaseModel
from ..config import settings
from ..errors import ProviderError
from .signature import CHECKOUT_SIGNED_FIELDS, sign

# Docs: https://docs.fondy.eu/en/docs/page/3/
# Test cards: approved 4444555566661111, declined 4444111166665555

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
HEADERS = {"Content-Type": "application/json"}


class GeneratePaymentLinkInput(BaseModel):
    order_id: str
    amount: int  # minor units
    currency: str
    order_desc: str
    callback_url: Optional[str] = None
    response_url: Optional[str] = None
    sender_email: Optional[str] = None
    product_id: Optional[str] = None


class CheckoutRequest(BaseModel):
    order_id: str
    merchant_id: str
    order_desc: str
    amount: str
    currency: str
    response_url: Optional[str] = None
    server_callback_url: Optional[str] = None
    sender_email: Optional[str] = None
    lang: Optional[str] = None
    product_id: Optional[str] = None
    signature: str = ""

    def set_signature(self, password: str) -> None:
        self.signature = sign(self.model_dump(), password, CHECKOUT_SIGNED_FIELDS)

    def to_api(self) -> dict:
        return {"request": self.model_dump(exclude_none=True)}


class FondyClient:
    """Fondy checkout API client."""

    def __init__(self, merchant_id: str, merchant_password: str,
                 checkout_url: str = settings.fondy_checkout_url,
                 timeout: float = settings.fondy_timeout,
                 language: str = settings.fondy_language,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.merchant_id = merchant_id
        self.merchant_password = merchant_password
        self.checkout_url = checkout_url
        self.timeout = timeout
        self.language = language
        self._transport = transport

    def build_checkout_request(self, data: GeneratePaymentLinkInput) -> CheckoutRequest:
        req = CheckoutRequest(
            order_id=data.order_id,
            merchant_id=self.merchant_id,
            order_desc=data.order_desc,
            amount=str(data.amount),
            currency=data.currency,
            server_callback_url=data.callback_url,
            response_url=data.response_url,
            sender_email=data.sender_email,
            product_id=data.product_id,
            lang=self.language,
        )
        req.set_signature(self.merchant_password)
        return req

    async def generate_payment_link(self, data: GeneratePaymentLinkInput) -> str:
        """
        Create a checkout for the order and return the URL to send the buyer to.
        """
        req = self.build_checkout_request(data)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.checkout_url, json=req.to_api(), headers=HEADERS)
        except httpx.TimeoutException as e:
            raise ProviderError(f"fondy checkout timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"fondy checkout request failed: {e}") from e

        try:
            body = resp.json()["response"]
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderError(f"unexpected fondy response (HTTP {resp.status_code})") from e
        if not isinstance(body, dict):
            raise ProviderError(f"unexpected fondy response (HTTP {resp.status_code})")

        if body.get("response_status") == STATUS_SUCCESS and body.get("checkout_url"):
            logger.info("Created checkout for order %s (payment_id=%s)", data.order_id, body.get("payment_id"))
            return body["checkout_url"]

        message = body.get("error_message") or f"checkout failed (HTTP {resp.status_code})"
        logger.warning("Fondy refused checkout for order %s: %s", data.order_id, message)
        raise ProviderError(message)
