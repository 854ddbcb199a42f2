import json
import logging
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from fastapi.concurrency import run_in_threadpool

from marketplace.config import settings
from marketplace.core.errors import ForbiddenError, NotFoundError, ValidationError
from marketplace.core.permissions import UserRole, is_admin
from marketplace.db.cache import get_json, set_json
from marketplace.models.schemas import NotificationType, ProductCreate, ProductUpdate
from marketplace.services import notifications_service
from marketplace.services.media import is_uploadable
from marketplace.utils import (
    has_money_format,
    ids_of,
    page_window,
    pagination,
    serialize,
    to_decimal,
    to_object_id,
    utcnow,
)

logger = logging.getLogger(__name__)

PRICE_FIELDS = ("complete_fiture", "basic_fiture", "prototype_fiture")

IMAGE_FOLDER, IMAGE_WIDTH = "image products", 500
THUMBNAIL_FOLDER, THUMBNAIL_WIDTH = "thumbnail products", 150


# --- Rules ---
def validate_price(price: Optional[Dict[str, Any]]) -> Dict[str, float]:
    """Every tier is required, non-negative and has at most two fraction digits."""
    if not isinstance(price, dict):
        raise ValidationError("All price fields are required")

    validated = {}
    for field in PRICE_FIELDS:
        raw = price.get(field)
        if raw is None or raw == "":
            raise ValidationError(f"{field} is required")
        number = to_decimal(raw)
        if number is None or number < 0:
            raise ValidationError(f"{field} must be a non-negative number")
        if not has_money_format(number):
            raise ValidationError(f"{field} must have at most two decimal places")
        validated[field] = float(number)
    return validated


def average_rating(ratings: Iterable[int]) -> float:
    ratings = list(ratings)
    if not ratings:
        return 0.0
    mean = Decimal(sum(ratings)) / Decimal(len(ratings))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def product_cache_key(product_id) -> str:
    return f"product_{product_id}"


def _ensure_owner(product: Dict[str, Any], user: Dict[str, Any], message: str) -> None:
    if str(product["seller"]) != user["_id"]:
        raise ForbiddenError(message)


# --- Lookups ---
async def get_product_or_404(db, product_id) -> Dict[str, Any]:
    product = await db.products.find_one({"_id": to_object_id(product_id, "product id")})
    if not product:
        raise NotFoundError("Product not found")
    return product


async def get_product(db, cache, product_id: str) -> Dict[str, Any]:
    cached = await get_json(cache, product_cache_key(product_id))
    if cached:
        return cached

    product = serialize(await get_product_or_404(db, product_id))
    await set_json(cache, product_cache_key(product_id), product, ex=settings.LIST_CACHE_TTL)
    return product


async def _category_id(db, category) -> Any:
    oid = to_object_id(category, "category id")
    if not await db.categories.find_one({"_id": oid}):
        raise NotFoundError("Category not found")
    return oid


def _check_images(images: Dict[str, Optional[str]]) -> None:
    for field, image in images.items():
        if image is not None and not is_uploadable(image):
            raise ValidationError(f"{field} must be a data URI or an http(s) URL")


async def _upload(media, image: Optional[str], folder: str, width: int) -> Dict[str, str]:
    if image is None:
        return {}
    return await run_in_threadpool(media.upload, image, folder, width)


# --- Writes ---
async def create_product(db, media, seller: Dict[str, Any], payload: ProductCreate) -> Dict[str, Any]:
    stored_seller = await db.users.find_one({"_id": to_object_id(seller["_id"], "seller id")})
    if not stored_seller or stored_seller.get("role") != UserRole.SELLER.value:
        raise ForbiddenError("Only sellers can add products.")

    price = validate_price(payload.price)
    _check_images({"image": payload.image, "thumbnail": payload.thumbnail})
    category_id = await _category_id(db, payload.category)

    now = utcnow()
    product = payload.model_dump()
    product.update(
        price=price,
        category=category_id,
        type=payload.type.value,
        image=await _upload(media, payload.image, IMAGE_FOLDER, IMAGE_WIDTH),
        thumbnail=await _upload(media, payload.thumbnail, THUMBNAIL_FOLDER, THUMBNAIL_WIDTH),
        seller=stored_seller["_id"],
        reviews=[],
        purchased=0,
        rating=0,
        available=True,
        createdAt=now,
        updatedAt=now,
    )
    result = await db.products.insert_one(product)
    product["_id"] = result.inserted_id

    await notifications_service.create_notification(
        db,
        stored_seller["_id"],
        "Product Created",
        f'Your product "{product["name"]}" has been created successfully',
        NotificationType.SYSTEM,
        related_id=product["_id"],
    )
    logger.info(f"Product {product['_id']} created by seller {stored_seller['_id']}")
    return product


async def update_product(db, cache, media, user: Dict[str, Any], product_id: str,
                         payload: ProductUpdate) -> Dict[str, Any]:
    product = await get_product_or_404(db, product_id)
    _ensure_owner(product, user, "You can only update your own products")

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "price" in changes:
        changes["price"] = validate_price(changes["price"])
    if "category" in changes:
        changes["category"] = await _category_id(db, changes["category"])
    if "type" in changes:
        changes["type"] = payload.type.value
    _check_images({f: changes[f] for f in ("image", "thumbnail") if f in changes})

    for field, folder, width in (
        ("image", IMAGE_FOLDER, IMAGE_WIDTH),
        ("thumbnail", THUMBNAIL_FOLDER, THUMBNAIL_WIDTH),
    ):
        if field not in changes:
            continue
        old_public_id = (product.get(field) or {}).get("public_id")
        if old_public_id:
            await run_in_threadpool(media.destroy, old_public_id)
        changes[field] = await _upload(media, changes[field], folder, width)

    changes["updatedAt"] = utcnow()
    await db.products.update_one({"_id": product["_id"]}, {"$set": changes})
    product.update(changes)

    await set_json(cache, product_cache_key(product["_id"]), serialize(product), ex=settings.LIST_CACHE_TTL)
    return product


async def toggle_availability(db, cache, user: Dict[str, Any], product_id: str) -> bool:
    product = await get_product_or_404(db, product_id)
    _ensure_owner(product, user, "Unauthorized")

    available = not product.get("available", True)
    await db.products.update_one(
        {"_id": product["_id"]}, {"$set": {"available": available, "updatedAt": utcnow()}}
    )
    product["available"] = available
    await set_json(cache, product_cache_key(product["_id"]), serialize(product), ex=settings.LIST_CACHE_TTL)
    return available


async def delete_product(db, cache, media, user: Dict[str, Any], product_id: str) -> Dict[str, int]:
    """Delete a product and everything hanging off it.

    Order of writes: reviews, orders (and the buyers' embedded summaries),
    notifications, the product itself, then image assets and the cache entry.
    A failure part-way leaves the remaining dependents in place; the product
    document survives until every dependent collection has been cleaned.
    """
    product = await get_product_or_404(db, product_id)
    if not is_admin(user):
        _ensure_owner(product, user, "You can only delete your own products")
    pid = product["_id"]

    reviews = await db.reviews.delete_many({"productId": pid})

    orders = await db.orders.find({"productId": pid}).to_list(length=None)
    order_ids = ids_of(orders)
    if order_ids:
        await db.orders.delete_many({"_id": {"$in": order_ids}})
        await db.users.update_many({"orders.productId": pid}, {"$pull": {"orders": {"productId": pid}}})

    notifications = await notifications_service.delete_related(db, [pid] + order_ids)

    await db.products.delete_one({"_id": pid})

    for field in ("image", "thumbnail"):
        public_id = (product.get(field) or {}).get("public_id")
        if public_id:
            await run_in_threadpool(media.destroy, public_id)
    await cache.delete(product_cache_key(pid))

    summary = {
        "reviews": reviews.deleted_count,
        "orders": len(order_ids),
        "notifications": notifications,
    }
    logger.info(f"Product {pid} deleted with cascade {summary}")
    return summary


async def recalculate_rating(db, cache, product_id) -> float:
    pid = to_object_id(product_id, "product id")
    reviews = await db.reviews.find({"productId": pid}).to_list(length=None)
    rating = average_rating(r["rating"] for r in reviews)
    await db.products.update_one(
        {"_id": pid},
        {"$set": {"rating": rating, "reviews": ids_of(reviews), "updatedAt": utcnow()}},
    )
    await cache.delete(product_cache_key(pid))
    return rating


# --- Listings ---
async def _populate(db, products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    category_ids = list({p["category"] for p in products if p.get("category")})
    seller_ids = list({p["seller"] for p in products if p.get("seller")})

    categories = {}
    if category_ids:
        for c in await db.categories.find({"_id": {"$in": category_ids}}).to_list(length=None):
            categories[c["_id"]] = {"_id": c["_id"], "name": c["name"]}
    sellers = {}
    if seller_ids:
        for s in await db.users.find({"_id": {"$in": seller_ids}}).to_list(length=None):
            sellers[s["_id"]] = {"_id": s["_id"], "name": s.get("name"), "avatar": s.get("avatar")}

    for p in products:
        p["categoryInfo"] = categories.get(p.get("category"))
        p["sellerInfo"] = sellers.get(p.get("seller"))
    return products


async def _paginated(db, cache, cache_key: str, query: Dict[str, Any], page: int, limit: int) -> Dict[str, Any]:
    cached = await get_json(cache, cache_key)
    if cached:
        return cached

    cursor = db.products.find(query).sort("createdAt", -1).skip(page_window(page, limit)).limit(limit)
    products = await _populate(db, await cursor.to_list(length=limit))
    total = await db.products.count_documents(query)

    result = {"products": serialize(products), "pagination": pagination(page, limit, total)}
    await set_json(cache, cache_key, result, ex=settings.LIST_CACHE_TTL)
    return result


async def list_products(db, cache, page: int, limit: int) -> Dict[str, Any]:
    return await _paginated(db, cache, f"all_products_{page}_{limit}", {}, page, limit)


async def list_seller_products(db, cache, seller_id: str, page: int, limit: int) -> Dict[str, Any]:
    query = {"seller": to_object_id(seller_id, "seller id")}
    return await _paginated(db, cache, f"seller_products_{seller_id}_{page}_{limit}", query, page, limit)


async def list_category_products(db, cache, category_id: str, page: int, limit: int) -> Dict[str, Any]:
    query = {"category": to_object_id(category_id, "category id")}
    return await _paginated(db, cache, f"category_products_{category_id}_{page}_{limit}", query, page, limit)


def build_search_query(query: Optional[str] = None, category: Optional[str] = None,
                       tags: Optional[str] = None, type: Optional[str] = None,
                       min_price: Optional[float] = None, max_price: Optional[float] = None) -> Dict[str, Any]:
    search: Dict[str, Any] = {}
    if query:
        pattern = re.escape(query)
        search["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        search["category"] = to_object_id(category, "category id")
    if tags:
        search["tags"] = {"$in": [t.strip() for t in tags.split(",") if t.strip()]}
    if type:
        search["type"] = type
    # tiered prices are filtered on the entry-level (basic) tier
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = float(min_price)
        if max_price is not None:
            price_filter["$lte"] = float(max_price)
        search["price.basic_fiture"] = price_filter
    return search


async def search_products(db, cache, page: int, limit: int, **params) -> Dict[str, Any]:
    query = build_search_query(**params)
    key_params = json.dumps({k: v for k, v in params.items() if v is not None}, sort_keys=True)
    return await _paginated(db, cache, f"search_{key_params}_{page}_{limit}", query, page, limit)
