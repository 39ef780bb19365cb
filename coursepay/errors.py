class PaymentError(Exception):
    """Base class for everything the payment flow raises on purpose."""


class MalformedPayload(PaymentError):
    """Callback body is not an object or lacks required/typed fields."""


class InvalidSignature(PaymentError):
    """Callback signature does not match the merchant secret."""


class OrderNotFound(PaymentError):
    def __init__(self, order_id: str):
        super().__init__(f"order {order_id} doesn't exist")
        self.order_id = order_id


class ProviderError(PaymentError):
    """Outbound call to the payment provider failed or was refused."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StorageFault(PaymentError):
    """Persistence layer failed while reading or writing order state."""
