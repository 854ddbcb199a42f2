"""
Order workflow.

Status moves are driven by ``VALID_STATUS_TRANSITIONS``. The rule functions at
the top of this module are pure and are checked before any write; the write
itself is conditional on the stored status being a legal predecessor, so a
concurrent or direct update cannot move an order along an edge that is not
in the table.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from marketplace.config import settings
from marketplace.core.errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace.core.permissions import is_admin
from marketplace.models.schemas import NotificationType, OrderStatus, OrderUpdate
from marketplace.services import notifications_service
from marketplace.services.products_service import get_product_or_404
from marketplace.utils import (
    has_money_format,
    page_window,
    pagination,
    to_decimal,
    to_object_id,
    utcnow,
)

logger = logging.getLogger(__name__)

VALID_STATUS_TRANSITIONS = {
    OrderStatus.UNPAID: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.COMPLETED, OrderStatus.FAILED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.FAILED: set(),
}

TRANSACTION_PREFIX = "TRX"


# --- Rules ---
def parse_status(value: Any) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid order status: {value}")


def predecessors(status: OrderStatus) -> List[str]:
    """Statuses from which ``status`` may be reached."""
    return [s.value for s, targets in VALID_STATUS_TRANSITIONS.items() if status in targets]


def check_transition(current: Any, requested: Any) -> None:
    current, requested = parse_status(current), parse_status(requested)
    if requested not in VALID_STATUS_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, requested.value)


def ensure_can_change_status(order: Dict[str, Any], requested: OrderStatus, actor: Dict[str, Any]) -> None:
    """Only the buyer completes a processing order; every other move is admin-only."""
    current = parse_status(order["status"])
    if current == OrderStatus.PROCESSING and requested == OrderStatus.COMPLETED:
        if str(order["userId"]) != actor["_id"]:
            raise ForbiddenError("Only the buyer can mark this order as completed")
        return
    if not is_admin(actor):
        raise ForbiddenError("Only admin can change this order status")


def completion_changes(order: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    changes: Dict[str, Any] = {"progress": 100}
    if not order.get("deliveryDate"):
        changes["deliveryDate"] = now
    return changes


def generate_transaction_id(now: Optional[datetime] = None) -> str:
    # minute resolution: two orders created in the same minute collide on the unique index
    now = now or utcnow()
    return f"{TRANSACTION_PREFIX}{now.strftime('%Y%m%d%H%M')}"


def validate_total_amount(amount: Any) -> float:
    number = to_decimal(amount)
    if number is None or number <= 0:
        raise ValidationError("Total amount must be a positive number")
    if not has_money_format(number):
        raise ValidationError("Total amount must have at most two decimal places")
    return float(number)


# --- Lookups ---
async def get_order_or_404(db, order_id) -> Dict[str, Any]:
    order = await db.orders.find_one({"_id": to_object_id(order_id, "order id")})
    if not order:
        raise NotFoundError("Order not found")
    return order


async def _with_product(db, order: Dict[str, Any]) -> Dict[str, Any]:
    order["product"] = await db.products.find_one({"_id": order["productId"]})
    return order


async def get_order(db, order_id: str, actor: Dict[str, Any]) -> Dict[str, Any]:
    order = await _with_product(db, await get_order_or_404(db, order_id))
    product = order["product"] or {}
    allowed = {str(order["userId"]), str(product.get("seller"))}
    if actor["_id"] not in allowed and not is_admin(actor):
        raise ForbiddenError("You are not allowed to view this order")
    return order


async def list_user_orders(db, user_id: str) -> List[Dict[str, Any]]:
    cursor = db.orders.find({"userId": to_object_id(user_id, "user id")}).sort("createdAt", -1)
    orders = await cursor.to_list(length=None)
    return [await _with_product(db, o) for o in orders]


async def list_orders(db, page: int, limit: int, status: Optional[str] = None) -> Dict[str, Any]:
    query = {"status": parse_status(status).value} if status else {}
    cursor = db.orders.find(query).sort("createdAt", -1).skip(page_window(page, limit)).limit(limit)
    orders = await cursor.to_list(length=limit)
    total = await db.orders.count_documents(query)
    return {"orders": orders, "pagination": pagination(page, limit, total)}


# --- Writes ---
async def create_order(db, buyer: Dict[str, Any], product_id: str, package_type: str) -> Dict[str, Any]:
    product = await get_product_or_404(db, product_id)
    if not product.get("available", True):
        raise ValidationError("Product is not available")

    tier = f"{package_type}_fiture"
    prices = product.get("price") or {}
    if tier not in prices:
        raise ValidationError(f"Invalid package type: {package_type}")
    total_amount = validate_total_amount(prices[tier])

    now = utcnow()
    buyer_id = to_object_id(buyer["_id"], "user id")
    order = {
        "productId": product["_id"],
        "userId": buyer_id,
        "paymentId": None,
        "packageType": package_type,
        "status": OrderStatus.UNPAID.value,
        "progress": 0,
        "deliveryDate": None,
        "serviceFee": settings.SERVICE_FEE,
        "adminFee": settings.ADMIN_FEE,
        "totalAmount": total_amount,
        "transactionId": generate_transaction_id(now),
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        result = await db.orders.insert_one(order)
    except DuplicateKeyError:
        raise ValidationError("An order with the same transaction id already exists, please retry")
    order["_id"] = result.inserted_id

    await db.users.update_one(
        {"_id": buyer_id},
        {"$push": {"orders": {
            "orderId": order["_id"],
            "productId": product["_id"],
            "packageType": package_type,
            "status": order["status"],
            "totalPrice": total_amount,
            "progress": 0,
            "orderDate": now,
        }}},
    )
    logger.info(f"Order {order['_id']} ({order['transactionId']}) created for product {product['_id']}")
    order["product"] = product
    return order


async def _sync_user_summary(db, order: Dict[str, Any]) -> None:
    await db.users.update_one(
        {"_id": order["userId"], "orders.orderId": order["_id"]},
        {"$set": {"orders.$.status": order["status"], "orders.$.progress": order.get("progress", 0)}},
    )


async def set_order_status(db, order_id, new_status: OrderStatus,
                           extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Conditional status write: matches only when the stored status may move to ``new_status``."""
    oid = to_object_id(order_id, "order id")
    changes = dict(extra or {}, status=new_status.value, updatedAt=utcnow())
    order = await db.orders.find_one_and_update(
        {"_id": oid, "status": {"$in": predecessors(new_status)}},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if order:
        return order

    current = await db.orders.find_one({"_id": oid})
    if not current:
        raise NotFoundError("Order not found")
    raise InvalidTransitionError(current["status"], new_status.value)


async def update_order_status(db, order_id: str, requested: Any, actor: Dict[str, Any]) -> Dict[str, Any]:
    requested = parse_status(requested)
    order = await get_order_or_404(db, order_id)

    ensure_can_change_status(order, requested, actor)
    check_transition(order["status"], requested)

    extra = completion_changes(order, utcnow()) if requested == OrderStatus.COMPLETED else {}
    previous = order["status"]
    order = await set_order_status(db, order["_id"], requested, extra)
    logger.info(f"Order {order['_id']} moved from {previous} to {order['status']} by {actor['_id']}")

    await _sync_user_summary(db, order)
    await notifications_service.create_notification(
        db,
        order["userId"],
        "Order Status Updated",
        f"Your order {order['transactionId']} is now {order['status']}",
        NotificationType.ORDER,
        related_id=order["_id"],
    )
    return order


async def update_progress(db, order_id: str, progress: int, actor: Dict[str, Any]) -> Dict[str, Any]:
    if not is_admin(actor):
        raise ForbiddenError("Only admin can update order progress")
    if progress is None or not 0 <= progress <= 100:
        raise ValidationError("Progress must be between 0 and 100")

    oid = to_object_id(order_id, "order id")
    order = await db.orders.find_one_and_update(
        {"_id": oid, "status": OrderStatus.PROCESSING.value},
        {"$set": {"progress": progress, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        await get_order_or_404(db, oid)
        raise ValidationError("Progress can only be updated while the order is Processing")

    await _sync_user_summary(db, order)
    return order


async def update_order(db, order_id: str, payload: OrderUpdate, actor: Dict[str, Any]) -> Dict[str, Any]:
    """Admin edit of delivery date and progress; a status change goes through the workflow."""
    if not is_admin(actor):
        raise ForbiddenError("Only admin can update orders")
    order = await get_order_or_404(db, order_id)

    # every part is checked before the first write
    target = order["status"]
    if payload.status is not None:
        requested = parse_status(payload.status)
        ensure_can_change_status(order, requested, actor)
        check_transition(order["status"], requested)
        target = requested.value
    if payload.progress is not None:
        if not 0 <= payload.progress <= 100:
            raise ValidationError("Progress must be between 0 and 100")
        if target != OrderStatus.PROCESSING.value:
            raise ValidationError("Progress can only be updated while the order is Processing")

    if payload.status is not None:
        order = await update_order_status(db, order["_id"], payload.status, actor)
    if payload.progress is not None:
        order = await update_progress(db, order["_id"], payload.progress, actor)
    if payload.deliveryDate is not None:
        order = await db.orders.find_one_and_update(
            {"_id": order["_id"]},
            {"$set": {"deliveryDate": payload.deliveryDate, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    return order


def ensure_payable(order: Dict[str, Any]) -> None:
    if settings.PAYMENT_REQUIRES_UNPAID_ORDER and order["status"] != OrderStatus.UNPAID.value:
        raise ValidationError(f"Order is already {order['status']} and cannot be paid")


async def link_payment(db, order: Dict[str, Any], payment_id) -> Dict[str, Any]:
    """Mark a paid order as Processing and attach the payment.

    The write does not consult the transition table; a payment against an
    order that is not Unpaid is logged as a warning. ``ensure_payable`` is the
    opt-in guard checked before the payment is stored.
    """
    previous = order["status"]
    if previous != OrderStatus.UNPAID.value:
        logger.warning(f"Payment {payment_id} recorded against order {order['_id']} in status {previous}")

    updated = await db.orders.find_one_and_update(
        {"_id": order["_id"]},
        {"$set": {"status": OrderStatus.PROCESSING.value, "paymentId": payment_id, "updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("Order not found")
    await _sync_user_summary(db, updated)
    return updated


async def delete_order(db, order_id: str) -> None:
    order = await get_order_or_404(db, order_id)
    await db.orders.delete_one({"_id": order["_id"]})
    await db.users.update_one({"_id": order["userId"]}, {"$pull": {"orders": {"orderId": order["_id"]}}})
    await notifications_service.delete_related(db, [order["_id"]])
    logger.info(f"Order {order['_id']} deleted")
