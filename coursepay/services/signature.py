"""
Fondy request/response signature.

The signed string is the merchant password followed by the values of every
signed field, ordered by field name and joined with ``|``. Empty values are
left out. The signature is the lowercase hex SHA-1 of that string.
"""
import hashlib
import hmac
from typing import Any, Iterable, Mapping, Optional

# fields that carry the signature itself and are never signed
UNSIGNED_FIELDS = frozenset({"signature", "response_signature_string"})

CHECKOUT_SIGNED_FIELDS = (
    "order_id",
    "merchant_id",
    "order_desc",
    "amount",
    "currency",
    "response_url",
    "server_callback_url",
    "sender_email",
    "lang",
    "product_id",
)

CALLBACK_SIGNED_FIELDS = (
    "order_id",
    "merchant_id",
    "amount",
    "currency",
    "order_status",
    "response_status",
    "tran_type",
    "sender_cell_phone",
    "sender_account",
    "card_bin",
    "masked_card",
    "card_type",
    "rrn",
    "approval_code",
    "response_code",
    "response_description",
    "reversal_amount",
    "settlement_amount",
    "settlement_currency",
    "order_time",
    "settlement_date",
    "eci",
    "fee",
    "payment_system",
    "sender_email",
    "payment_id",
    "actual_amount",
    "actual_currency",
    "merchant_data",
    "verification_status",
    "rectoken",
    "rectoken_lifetime",
    "product_id",
    "additional_info",
)


def _token(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return str(value)


def signature_string(fields: Mapping[str, Any], secret: str,
                     names: Optional[Iterable[str]] = None) -> str:
    """Build the ``secret|v1|v2|...`` string that gets hashed."""
    keys = names if names is not None else fields.keys()
    tokens = [secret]
    for name in sorted(k for k in keys if k not in UNSIGNED_FIELDS):
        token = _token(fields.get(name))
        if token is not None:
            tokens.append(token)
    return "|".join(tokens)


def sign(fields: Mapping[str, Any], secret: str, names: Optional[Iterable[str]] = None) -> str:
    raw = signature_string(fields, secret, names).encode("utf-8")
    return hashlib.sha1(raw).hexdigest()


def verify(fields: Mapping[str, Any], signature: str, secret: str,
           names: Optional[Iterable[str]] = None) -> bool:
    if not signature:
        return False
    expected = sign(fields, secret, names)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
