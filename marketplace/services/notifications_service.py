import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from bson import ObjectId

from marketplace.core.errors import ForbiddenError, NotFoundError
from marketplace.core.permissions import is_admin
from marketplace.models.schemas import NotificationType
from marketplace.utils import to_object_id, utcnow

logger = logging.getLogger(__name__)


async def create_notification(
    db,
    user_id,
    title: str,
    message: str,
    type: NotificationType = NotificationType.SYSTEM,
    related_id: Optional[Any] = None,
) -> Dict[str, Any]:
    now = utcnow()
    doc = {
        "userId": to_object_id(user_id, "userId"),
        "title": title,
        "message": message,
        "type": NotificationType(type).value,
        "isRead": False,
        "relatedId": to_object_id(related_id, "relatedId") if related_id else None,
        "notificationDate": now,
        "createdAt": now,
        "updatedAt": now,
    }
    result = await db.notifications.insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


async def list_for_user(db, user_id) -> List[Dict[str, Any]]:
    cursor = db.notifications.find({"userId": to_object_id(user_id, "userId")}).sort("notificationDate", -1)
    return await cursor.to_list(length=None)


async def mark_as_read(db, notification_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    oid = to_object_id(notification_id, "notification id")
    notification = await db.notifications.find_one({"_id": oid})
    if not notification:
        raise NotFoundError("Notification not found")
    if str(notification["userId"]) != user["_id"] and not is_admin(user):
        raise ForbiddenError("You can only update your own notifications")

    await db.notifications.update_one({"_id": oid}, {"$set": {"isRead": True, "updatedAt": utcnow()}})
    notification["isRead"] = True
    return notification


async def delete_old_read(db, days: int) -> int:
    cutoff = utcnow() - timedelta(days=days)
    result = await db.notifications.delete_many({"isRead": True, "notificationDate": {"$lt": cutoff}})
    logger.info(f"Deleted {result.deleted_count} read notifications older than {days} days")
    return result.deleted_count


async def delete_for_user(db, user_id: ObjectId) -> int:
    result = await db.notifications.delete_many({"userId": user_id})
    return result.deleted_count


async def delete_related(db, related_ids: List[ObjectId]) -> int:
    if not related_ids:
        return 0
    result = await db.notifications.delete_many({"relatedId": {"$in": related_ids}})
    return result.deleted_count
