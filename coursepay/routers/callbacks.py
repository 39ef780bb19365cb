from fastapi import APIRouter, Depends, HTTPException, Request
import json
import logging
from ..schemas import CallbackAck
from ..services.callback import check_user_agent, validate_callback
from ..services.settlement import SettlementEngine
from ..errors import InvalidSignature, MalformedPayload, OrderNotFound, StorageFault
from ..utils import get_settlement_engine
from ..config import settings

router = APIRouter(prefix="/callback", tags=["callbacks"])
logger = logging.getLogger(__name__)


# Webhook (Fondy -> POST)
@router.post("/fondy", response_model=CallbackAck)
async def fondy_callback(request: Request, engine: SettlementEngine = Depends(get_settlement_engine)):
    """
    Fondy posts the full, signed payment result here. Anything that passes
    the signature check is acknowledged with 200 so Fondy stops redelivering;
    only storage failures ask for a retry.
    """
    check_user_agent(request.headers.get("user-agent"))

    try:
        payload = json.loads(await request.body())
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON")

    try:
        callback = validate_callback(payload, settings.fondy_merchant_password)
    except MalformedPayload as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidSignature as e:
        raise HTTPException(status_code=403, detail=str(e))

    try:
        result = await engine.settle(callback)
    except OrderNotFound as e:
        # acknowledged anyway: redelivery can't make an unknown order appear
        logger.warning("Callback for unknown order %s (order_status=%s, payment_id=%s)",
                       e.order_id, callback.order_status, callback.payment_id)
        return CallbackAck(order_id=callback.order_id, outcome="unknown_order")
    except StorageFault as e:
        raise HTTPException(status_code=500, detail=str(e))

    return CallbackAck(order_id=result.order_id, order_status=result.status, outcome=result.outcome.value)
