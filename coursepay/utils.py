from fastapi import Depends, Header, HTTPException
from typing import Optional
from .config import settings
from .db import async_session
from .services.fondy import FondyClient
from .services.notifications import OutboxEmailSender
from .services.orders import OrderStore
from .services.settlement import KeyedLock, SettlementEngine

# shared by every request so duplicate callbacks for one order queue up
order_locks = KeyedLock()


def require_service_api_key(x_api_key: Optional[str] = Header(default=None)):
    if x_api_key != settings.service_api_key:
        raise HTTPException(status_code=401, detail="Invalid X-API-KEY")
    return True


def get_session_factory():
    return async_session


def get_order_store(session_factory=Depends(get_session_factory)) -> OrderStore:
    return OrderStore(session_factory)


def get_email_sender(session_factory=Depends(get_session_factory)) -> OutboxEmailSender:
    return OutboxEmailSender(session_factory)


def get_settlement_engine(store: OrderStore = Depends(get_order_store),
                          email_sender: OutboxEmailSender = Depends(get_email_sender)) -> SettlementEngine:
    return SettlementEngine(store, email_sender, order_locks)


def get_fondy_client() -> FondyClient:
    return FondyClient(settings.fondy_merchant_id, settings.fondy_merchant_password)
