import logging
from typing import Any, Dict, List

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from marketplace.core.errors import ForbiddenError, NotFoundError, ValidationError
from marketplace.core.permissions import is_admin
from marketplace.models.schemas import (
    BankTransferDetails,
    CardDetails,
    EWalletDetails,
    NotificationType,
    PaymentCreate,
    PaymentMethod,
    PaymentStatus,
    QRISDetails,
)
from marketplace.services import notifications_service, orders_service
from marketplace.utils import page_window, pagination, to_object_id, utcnow

logger = logging.getLogger(__name__)

DETAIL_MODELS = {
    PaymentMethod.BANK_TRANSFER: BankTransferDetails,
    PaymentMethod.E_WALLET: EWalletDetails,
    PaymentMethod.CARD: CardDetails,
    PaymentMethod.QRIS: QRISDetails,
}


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    field = ".".join(str(p) for p in error.get("loc", ())) or "paymentDetails"
    return f"Invalid payment details: {field}: {error.get('msg')}"


def validate_payment_details(method: Any, details: Dict[str, Any]) -> Dict[str, Any]:
    """Check ``details`` against the shape of ``method`` and return the cleaned payload."""
    try:
        method = PaymentMethod(method)
    except ValueError:
        raise ValidationError(f"Invalid payment method: {method}")

    if not isinstance(details, dict):
        raise ValidationError("Payment details are required")
    try:
        parsed = DETAIL_MODELS[method].model_validate(details)
    except PydanticValidationError as exc:
        raise ValidationError(_first_error(exc))
    return parsed.model_dump()


def payment_amounts(order: Dict[str, Any]) -> Dict[str, float]:
    """Amounts always come from the stored order, never from the request."""
    amount_paid = float(order["totalAmount"])
    service_fee = float(order["serviceFee"])
    admin_fee = float(order["adminFee"])
    return {
        "amountPaid": amount_paid,
        "serviceFee": service_fee,
        "adminFee": admin_fee,
        "totalAmount": amount_paid + service_fee + admin_fee,
    }


async def get_payment_or_404(db, payment_id) -> Dict[str, Any]:
    payment = await db.payments.find_one({"_id": to_object_id(payment_id, "payment id")})
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


async def create_payment(db, buyer: Dict[str, Any], payload: PaymentCreate) -> Dict[str, Any]:
    order = await orders_service.get_order_or_404(db, payload.orderId)
    if str(order["userId"]) != buyer["_id"]:
        raise ForbiddenError("You can only pay for your own orders")

    details = validate_payment_details(payload.paymentMethod, payload.paymentDetails)
    orders_service.ensure_payable(order)

    now = utcnow()
    payment = {
        "orderId": order["_id"],
        "userId": order["userId"],
        "paymentMethod": PaymentMethod(payload.paymentMethod).value,
        "paymentDetails": details,
        **payment_amounts(order),
        "paymentDate": now,
        "paymentStatus": PaymentStatus.COMPLETED.value,
        "transactionId": order["transactionId"],
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        result = await db.payments.insert_one(payment)
    except DuplicateKeyError:
        raise ValidationError("A payment for this transaction already exists")
    payment["_id"] = result.inserted_id
    logger.info(f"Payment {payment['_id']} of {payment['totalAmount']} recorded for order {order['_id']}")

    # second write: a failure here leaves the order unlinked until the next payment write
    await orders_service.link_payment(db, order, payment["_id"])

    await db.users.update_one(
        {"_id": order["userId"]},
        {"$push": {"transactions": {
            "paymentId": payment["_id"],
            "orderId": order["_id"],
            "transactionId": payment["transactionId"],
            "paymentMethod": payment["paymentMethod"],
            "totalAmount": payment["totalAmount"],
            "paymentStatus": payment["paymentStatus"],
            "paymentDate": now,
        }}},
    )
    await notifications_service.create_notification(
        db,
        order["userId"],
        "Payment Received",
        f"Payment for order {order['transactionId']} has been received",
        NotificationType.PAYMENT,
        related_id=order["_id"],
    )
    return payment


async def get_payment_by_order(db, order_id: str, actor: Dict[str, Any]) -> Dict[str, Any]:
    payment = await db.payments.find_one({"orderId": to_object_id(order_id, "order id")})
    if not payment:
        raise NotFoundError("Payment not found")
    if str(payment["userId"]) != actor["_id"] and not is_admin(actor):
        raise ForbiddenError("You are not allowed to view this payment")
    return payment


async def list_user_payments(db, user_id: str) -> List[Dict[str, Any]]:
    cursor = db.payments.find({"userId": to_object_id(user_id, "user id")}).sort("paymentDate", -1)
    return await cursor.to_list(length=None)


async def list_payments(db, page: int, limit: int) -> Dict[str, Any]:
    cursor = db.payments.find({}).sort("paymentDate", -1).skip(page_window(page, limit)).limit(limit)
    payments = await cursor.to_list(length=limit)
    total = await db.payments.count_documents({})
    return {"payments": payments, "pagination": pagination(page, limit, total)}


async def update_payment_status(db, payment_id: str, status: PaymentStatus) -> Dict[str, Any]:
    payment = await db.payments.find_one_and_update(
        {"_id": to_object_id(payment_id, "payment id")},
        {"$set": {"paymentStatus": PaymentStatus(status).value, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not payment:
        raise NotFoundError("Payment not found")

    await db.users.update_one(
        {"_id": payment["userId"], "transactions.paymentId": payment["_id"]},
        {"$set": {"transactions.$.paymentStatus": payment["paymentStatus"]}},
    )
    return payment


async def delete_payment(db, payment_id: str) -> None:
    payment = await get_payment_or_404(db, payment_id)
    await db.payments.delete_one({"_id": payment["_id"]})
    await db.orders.update_one(
        {"_id": payment["orderId"], "paymentId": payment["_id"]},
        {"$set": {"paymentId": None, "updatedAt": utcnow()}},
    )
    await db.users.update_one(
        {"_id": payment["userId"]}, {"$pull": {"transactions": {"paymentId": payment["_id"]}}}
    )
    logger.info(f"Payment {payment['_id']} deleted and unlinked from order {payment['orderId']}")
