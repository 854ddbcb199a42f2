from fastapi import APIRouter, Depends, status

from marketplace.api.deps import get_admin_user, get_current_user, get_db
from marketplace.config import settings
from marketplace.core.errors import ForbiddenError
from marketplace.core.permissions import is_admin
from marketplace.models.schemas import NotificationCreate
from marketplace.services import notifications_service
from marketplace.utils import serialize

router = APIRouter()


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_notification(payload: NotificationCreate, admin=Depends(get_admin_user), db=Depends(get_db)):
    notification = await notifications_service.create_notification(
        db, payload.userId, payload.title, payload.message, payload.type, payload.relatedId
    )
    return {"success": True, "notification": serialize(notification)}


@router.get("/me")
async def my_notifications(user=Depends(get_current_user), db=Depends(get_db)):
    notifications = await notifications_service.list_for_user(db, user["_id"])
    return {"success": True, "notifications": serialize(notifications)}


@router.get("/user/{user_id}")
async def user_notifications(user_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    if user_id != user["_id"] and not is_admin(user):
        raise ForbiddenError("You can only view your own notifications")
    notifications = await notifications_service.list_for_user(db, user_id)
    return {"success": True, "notifications": serialize(notifications)}


@router.put("/{notification_id}/read")
async def mark_as_read(notification_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    notification = await notifications_service.mark_as_read(db, notification_id, user)
    return {"success": True, "notification": serialize(notification)}


@router.delete("/old")
async def delete_old_notifications(admin=Depends(get_admin_user), db=Depends(get_db)):
    deleted = await notifications_service.delete_old_read(db, settings.NOTIFICATION_RETENTION_DAYS)
    return {"success": True, "deleted": deleted}
