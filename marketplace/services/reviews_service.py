import logging
from typing import Any, Dict, List

from pymongo.errors import DuplicateKeyError

from marketplace.core.errors import ForbiddenError, NotFoundError, ValidationError
from marketplace.core.permissions import is_admin
from marketplace.models.schemas import NotificationType, OrderStatus, ReviewCreate
from marketplace.services import notifications_service, products_service
from marketplace.utils import to_object_id, utcnow

logger = logging.getLogger(__name__)


async def ensure_reviewable(db, buyer_id, product_id, order_id) -> Dict[str, Any]:
    """The order must belong to the buyer, reference the product and be Completed."""
    order = await db.orders.find_one({
        "_id": order_id,
        "userId": buyer_id,
        "productId": product_id,
        "status": OrderStatus.COMPLETED.value,
    })
    if not order:
        raise ValidationError("You can only review products from completed orders")
    return order


async def create_review(db, cache, buyer: Dict[str, Any], payload: ReviewCreate) -> Dict[str, Any]:
    product_id = to_object_id(payload.productId, "product id")
    order_id = to_object_id(payload.orderId, "order id")
    buyer_id = to_object_id(buyer["_id"], "user id")

    product = await products_service.get_product_or_404(db, product_id)
    await ensure_reviewable(db, buyer_id, product_id, order_id)
    if await db.reviews.find_one({"productId": product_id, "userId": buyer_id}):
        raise ValidationError("You have already reviewed this product")

    now = utcnow()
    review = {
        "productId": product_id,
        "userId": buyer_id,
        "orderId": order_id,
        "rating": payload.rating,
        "comment": payload.comment.strip(),
        "reviewDate": now,
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        result = await db.reviews.insert_one(review)
    except DuplicateKeyError:
        raise ValidationError("You have already reviewed this product")
    review["_id"] = result.inserted_id

    rating = await products_service.recalculate_rating(db, cache, product_id)
    logger.info(f"Review {review['_id']} saved, product {product_id} rating is now {rating}")

    await notifications_service.create_notification(
        db,
        product["seller"],
        "New Review",
        f'{buyer.get("name", "A buyer")} rated "{product["name"]}" {payload.rating}/5',
        NotificationType.REVIEW,
        related_id=product_id,
    )
    return review


async def list_product_reviews(db, product_id: str) -> List[Dict[str, Any]]:
    cursor = db.reviews.find({"productId": to_object_id(product_id, "product id")}).sort("reviewDate", -1)
    reviews = await cursor.to_list(length=None)

    user_ids = list({r["userId"] for r in reviews})
    users = {}
    if user_ids:
        for u in await db.users.find({"_id": {"$in": user_ids}}).to_list(length=None):
            users[u["_id"]] = {"_id": u["_id"], "name": u.get("name"), "avatar": u.get("avatar")}
    for r in reviews:
        r["user"] = users.get(r["userId"])
    return reviews


async def delete_review(db, cache, review_id: str, actor: Dict[str, Any]) -> float:
    review = await db.reviews.find_one({"_id": to_object_id(review_id, "review id")})
    if not review:
        raise NotFoundError("Review not found")
    if str(review["userId"]) != actor["_id"] and not is_admin(actor):
        raise ForbiddenError("You can only delete your own reviews")

    await db.reviews.delete_one({"_id": review["_id"]})
    return await products_service.recalculate_rating(db, cache, review["productId"])
