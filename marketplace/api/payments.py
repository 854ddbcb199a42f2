from fastapi import APIRouter, Depends, Query, status

from marketplace.api.deps import get_admin_user, get_current_user, get_db
from marketplace.models.schemas import PaymentCreate, PaymentStatusUpdate
from marketplace.services import payments_service
from marketplace.utils import serialize

router = APIRouter()


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_payment(payload: PaymentCreate, user=Depends(get_current_user), db=Depends(get_db)):
    payment = await payments_service.create_payment(db, user, payload)
    return {"success": True, "payment": serialize(payment)}


@router.get("/order/{order_id}")
async def payment_by_order(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    payment = await payments_service.get_payment_by_order(db, order_id, user)
    return {"success": True, "payment": serialize(payment)}


@router.get("/user")
async def my_payments(user=Depends(get_current_user), db=Depends(get_db)):
    payments = await payments_service.list_user_payments(db, user["_id"])
    return {"success": True, "payments": serialize(payments)}


@router.get("/all")
async def all_payments(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                       admin=Depends(get_admin_user), db=Depends(get_db)):
    result = await payments_service.list_payments(db, page, limit)
    return {"success": True, **serialize(result)}


@router.patch("/{payment_id}/status")
async def update_payment_status(payment_id: str, payload: PaymentStatusUpdate,
                                admin=Depends(get_admin_user), db=Depends(get_db)):
    payment = await payments_service.update_payment_status(db, payment_id, payload.paymentStatus)
    return {"success": True, "payment": serialize(payment)}


@router.delete("/{payment_id}")
async def delete_payment(payment_id: str, admin=Depends(get_admin_user), db=Depends(get_db)):
    await payments_service.delete_payment(db, payment_id)
    return {"success": True, "message": "Payment deleted successfully"}
