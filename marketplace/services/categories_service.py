import re
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from marketplace.config import settings
from marketplace.core.errors import NotFoundError, ValidationError
from marketplace.db.cache import get_json, set_json
from marketplace.utils import serialize, to_object_id, utcnow


def _cache_key(category_id) -> str:
    return f"category:{category_id}"


def _name_filter(name: str, exclude_id: Optional[ObjectId] = None) -> Dict[str, Any]:
    query: Dict[str, Any] = {"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return query


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Please enter category name")
    return name


async def find_by_name(db, name: str) -> Optional[Dict[str, Any]]:
    return await db.categories.find_one(_name_filter(name.strip()))


async def create_category(db, cache, name: Optional[str]) -> Dict[str, Any]:
    name = _clean_name(name)
    if await find_by_name(db, name):
        raise ValidationError("Category already exists")

    now = utcnow()
    category = {"name": name, "createdAt": now, "updatedAt": now}
    try:
        result = await db.categories.insert_one(category)
    except DuplicateKeyError:
        raise ValidationError("Category already exists")
    category["_id"] = result.inserted_id

    await set_json(cache, _cache_key(category["_id"]), serialize(category), ex=settings.CATEGORY_CACHE_TTL)
    return category


async def list_categories(db) -> List[Dict[str, Any]]:
    return await db.categories.find({}).sort("createdAt", -1).to_list(length=None)


async def get_category(db, cache, category_id: str) -> Dict[str, Any]:
    cached = await get_json(cache, _cache_key(category_id))
    if cached:
        return cached

    category = await db.categories.find_one({"_id": to_object_id(category_id, "category id")})
    if not category:
        raise NotFoundError("Category not found")

    await set_json(cache, _cache_key(category_id), serialize(category), ex=settings.CATEGORY_CACHE_TTL)
    return category


async def update_category(db, cache, category_id: str, name: Optional[str]) -> Dict[str, Any]:
    name = _clean_name(name)
    oid = to_object_id(category_id, "category id")

    category = await db.categories.find_one({"_id": oid})
    if not category:
        raise NotFoundError("Category not found")
    if await db.categories.find_one(_name_filter(name, exclude_id=oid)):
        raise ValidationError("Category name already exists")

    now = utcnow()
    await db.categories.update_one({"_id": oid}, {"$set": {"name": name, "updatedAt": now}})
    category.update(name=name, updatedAt=now)

    await set_json(cache, _cache_key(category_id), serialize(category), ex=settings.CATEGORY_CACHE_TTL)
    return category


async def delete_category(db, cache, category_id: str) -> None:
    oid = to_object_id(category_id, "category id")
    result = await db.categories.delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise NotFoundError("Category not found")
    await cache.delete(_cache_key(category_id))
