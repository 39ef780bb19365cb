from fastapi import APIRouter, Depends, HTTPException
import logging
from ..schemas import CreateOrderIn, CreateOrderOut, OrderOut
from ..services.fondy import FondyClient, GeneratePaymentLinkInput
from ..services.orders import OrderStore
from ..domain import Order
from ..errors import OrderNotFound, ProviderError, StorageFault
from ..utils import require_service_api_key, get_order_store, get_fondy_client
from ..config import settings

router = APIRouter(prefix="/payments", tags=["payments"])
logger = logging.getLogger(__name__)


@router.post("/create", response_model=CreateOrderOut, dependencies=[Depends(require_service_api_key)])
async def create_payment(payload: CreateOrderIn,
                         store: OrderStore = Depends(get_order_store),
                         fondy: FondyClient = Depends(get_fondy_client)):
    """Create an order for an offer and a Fondy checkout link for it. Protected by SERVICE API KEY header."""
    order = Order(
        school_id=settings.school_id,
        student=payload.student,
        offer=payload.offer,
        promo=payload.promo,
        amount=payload.amount,
        currency=payload.currency or "UAH",
    )
    try:
        await store.create(order)
    except StorageFault as e:
        raise HTTPException(status_code=500, detail=str(e))

    try:
        checkout_url = await fondy.generate_payment_link(GeneratePaymentLinkInput(
            order_id=order.id,
            amount=order.amount,
            currency=order.currency,
            order_desc=payload.description or order.offer.name or "Payment",
            callback_url=settings.server_callback_url,
            response_url=payload.response_url or settings.frontend_return_url,
        ))
    except ProviderError as e:
        # the order stays `created`; a new attempt creates a new order
        raise HTTPException(status_code=502, detail=e.message)

    return CreateOrderOut(order_id=order.id, checkout_url=checkout_url, status=order.status)


@router.get("/orders/{order_id}", response_model=OrderOut, dependencies=[Depends(require_service_api_key)])
async def order_status(order_id: str, store: OrderStore = Depends(get_order_store)):
    """Order with its full transaction history."""
    try:
        order = await store.get_by_id(order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageFault as e:
        raise HTTPException(status_code=500, detail=str(e))

    return OrderOut(
        id=order.id,
        school_id=order.school_id,
        student=order.student,
        offer=order.offer,
        promo=order.promo,
        amount=order.amount,
        currency=order.currency,
        status=order.status,
        transactions=order.transactions,
        fulfilled=order.is_fulfilled,
    )
