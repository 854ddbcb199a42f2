from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from marketplace.api.deps import get_admin_user, get_current_user, get_db
from marketplace.models.schemas import OrderCreate, OrderProgressUpdate, OrderStatusUpdate, OrderUpdate
from marketplace.services import orders_service
from marketplace.utils import serialize

router = APIRouter()


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_order(payload: OrderCreate, user=Depends(get_current_user), db=Depends(get_db)):
    order = await orders_service.create_order(db, user, payload.productId, payload.packageType)
    return {"success": True, "order": serialize(order)}


@router.get("/all")
async def all_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                     status: Optional[str] = None, admin=Depends(get_admin_user), db=Depends(get_db)):
    result = await orders_service.list_orders(db, page, limit, status)
    return {"success": True, **serialize(result)}


@router.get("/user")
async def my_orders(user=Depends(get_current_user), db=Depends(get_db)):
    orders = await orders_service.list_user_orders(db, user["_id"])
    return {"success": True, "orders": serialize(orders)}


@router.get("/{order_id}")
async def get_order(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    order = await orders_service.get_order(db, order_id, user)
    return {"success": True, "order": serialize(order)}


@router.put("/{order_id}/status")
async def update_order_status(order_id: str, payload: OrderStatusUpdate,
                              user=Depends(get_current_user), db=Depends(get_db)):
    order = await orders_service.update_order_status(db, order_id, payload.status, user)
    return {"success": True, "order": serialize(order)}


@router.put("/{order_id}/progress")
async def update_order_progress(order_id: str, payload: OrderProgressUpdate,
                                user=Depends(get_current_user), db=Depends(get_db)):
    order = await orders_service.update_progress(db, order_id, payload.progress, user)
    return {"success": True, "order": serialize(order)}


@router.put("/{order_id}")
async def update_order(order_id: str, payload: OrderUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    order = await orders_service.update_order(db, order_id, payload, user)
    return {"success": True, "order": serialize(order)}


@router.delete("/{order_id}")
async def delete_order(order_id: str, admin=Depends(get_admin_user), db=Depends(get_db)):
    await orders_service.delete_order(db, order_id)
    return {"success": True, "message": "Order deleted successfully"}
