import logging
from typing import Any, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool
from pymongo import ReturnDocument

from marketplace.core import security
from marketplace.core.errors import NotFoundError, ValidationError
from marketplace.core.permissions import UserRole
from marketplace.models.schemas import NotificationType
from marketplace.services import notifications_service
from marketplace.services.auth_service import save_session
from marketplace.utils import to_object_id, utcnow

logger = logging.getLogger(__name__)

AVATAR_FOLDER = "avatars"
AVATAR_WIDTH = 150


async def get_user_or_404(db, user_id) -> Dict[str, Any]:
    user = await db.users.find_one({"_id": to_object_id(user_id, "user id")})
    if not user:
        raise NotFoundError("User not found")
    return user


async def _update_and_cache(db, cache, user_id, changes: Dict[str, Any]) -> Dict[str, Any]:
    changes["updatedAt"] = utcnow()
    user = await db.users.find_one_and_update(
        {"_id": to_object_id(user_id, "user id")},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise NotFoundError("User not found")
    await save_session(cache, user)
    return user


async def update_info(db, cache, user_id, name: Optional[str]) -> Dict[str, Any]:
    if not name:
        return await get_user_or_404(db, user_id)
    return await _update_and_cache(db, cache, user_id, {"name": name.strip()})


async def update_password(db, cache, user_id, old_password: str, new_password: str) -> Dict[str, Any]:
    user = await get_user_or_404(db, user_id)
    if not user.get("password"):
        raise ValidationError("Invalid user")
    if not security.verify_password(old_password, user["password"]):
        raise ValidationError("Invalid old password")
    return await _update_and_cache(db, cache, user_id, {"password": security.hash_password(new_password)})


async def update_avatar(db, cache, media, user_id, avatar: str) -> Dict[str, Any]:
    user = await get_user_or_404(db, user_id)

    old_public_id = (user.get("avatar") or {}).get("public_id")
    if old_public_id:
        await run_in_threadpool(media.destroy, old_public_id)

    uploaded = await run_in_threadpool(media.upload, avatar, AVATAR_FOLDER, AVATAR_WIDTH)
    return await _update_and_cache(db, cache, user_id, {"avatar": uploaded})


async def become_seller(db, cache, user_id) -> Dict[str, Any]:
    user = await get_user_or_404(db, user_id)
    if user.get("role") == UserRole.SELLER.value:
        raise ValidationError("You are already a seller")

    user = await _update_and_cache(db, cache, user_id, {"role": UserRole.SELLER.value})
    await notifications_service.create_notification(
        db,
        user["_id"],
        "Seller Account Activated",
        "You are now a seller! You can start adding products.",
        NotificationType.SYSTEM,
    )
    logger.info(f"User {user['_id']} upgraded to seller")
    return user


# --- Admin ---
async def list_users(db) -> List[Dict[str, Any]]:
    cursor = db.users.find({}, {"password": 0}).sort("createdAt", -1)
    return await cursor.to_list(length=None)


async def update_role(db, cache, email: str, role: UserRole) -> Dict[str, Any]:
    user = await db.users.find_one({"email": email.lower()})
    if not user:
        raise NotFoundError("User not found")
    return await _update_and_cache(db, cache, user["_id"], {"role": UserRole(role).value})


async def delete_user(db, cache, media, user_id) -> None:
    user = await get_user_or_404(db, user_id)

    removed = await notifications_service.delete_for_user(db, user["_id"])
    public_id = (user.get("avatar") or {}).get("public_id")
    if public_id:
        await run_in_threadpool(media.destroy, public_id)

    await db.users.delete_one({"_id": user["_id"]})
    await cache.delete(str(user["_id"]))
    logger.info(f"User {user['_id']} deleted along with {removed} notifications")
