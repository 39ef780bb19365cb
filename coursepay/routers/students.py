from fastapi import APIRouter, Depends, HTTPException
from ..services.orders import OrderStore
from ..errors import StorageFault
from ..utils import require_service_api_key, get_order_store

router = APIRouter(prefix="/students", tags=["students"])


@router.get("/{student_id}/modules/{module_id}/access", dependencies=[Depends(require_service_api_key)])
async def module_access(student_id: str, module_id: str, store: OrderStore = Depends(get_order_store)):
    """200 if the student bought a module, 403 until their order is paid."""
    try:
        allowed = await store.has_access(student_id, module_id)
    except StorageFault as e:
        raise HTTPException(status_code=500, detail=str(e))
    if not allowed:
        raise HTTPException(status_code=403, detail="Module is not available to this student")
    return {"student_id": student_id, "module_id": module_id, "access": True}
