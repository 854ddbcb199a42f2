from fastapi import APIRouter, Depends

from marketplace.api.deps import get_admin_user, get_cache, get_current_user, get_db, get_media
from marketplace.models.schemas import UpdateAvatar, UpdatePassword, UpdateUserInfo, UpdateUserRole
from marketplace.services import users_service
from marketplace.utils import public_user

router = APIRouter()


@router.get("/me")
async def me(user=Depends(get_current_user), db=Depends(get_db)):
    stored = await users_service.get_user_or_404(db, user["_id"])
    return {"success": True, "user": public_user(stored)}


@router.put("/update-user-info")
async def update_user_info(payload: UpdateUserInfo, user=Depends(get_current_user),
                           db=Depends(get_db), cache=Depends(get_cache)):
    updated = await users_service.update_info(db, cache, user["_id"], payload.name)
    return {"success": True, "user": public_user(updated)}


@router.put("/update-user-password")
async def update_user_password(payload: UpdatePassword, user=Depends(get_current_user),
                               db=Depends(get_db), cache=Depends(get_cache)):
    updated = await users_service.update_password(
        db, cache, user["_id"], payload.oldPassword, payload.newPassword
    )
    return {"success": True, "user": public_user(updated)}


@router.put("/update-user-avatar")
async def update_user_avatar(payload: UpdateAvatar, user=Depends(get_current_user), db=Depends(get_db),
                             cache=Depends(get_cache), media=Depends(get_media)):
    updated = await users_service.update_avatar(db, cache, media, user["_id"], payload.avatar)
    return {"success": True, "user": public_user(updated)}


@router.put("/become-seller")
async def become_seller(user=Depends(get_current_user), db=Depends(get_db), cache=Depends(get_cache)):
    updated = await users_service.become_seller(db, cache, user["_id"])
    return {
        "success": True,
        "message": "You are now a seller! You can start adding products.",
        "user": public_user(updated),
    }


# --- Admin ---
@router.get("/get-users")
async def get_users(admin=Depends(get_admin_user), db=Depends(get_db)):
    users = await users_service.list_users(db)
    return {"success": True, "users": [public_user(u) for u in users]}


@router.put("/update-user-role")
async def update_user_role(payload: UpdateUserRole, admin=Depends(get_admin_user),
                           db=Depends(get_db), cache=Depends(get_cache)):
    updated = await users_service.update_role(db, cache, payload.email, payload.role)
    return {"success": True, "user": public_user(updated)}


@router.delete("/delete-user/{user_id}")
async def delete_user(user_id: str, admin=Depends(get_admin_user), db=Depends(get_db),
                      cache=Depends(get_cache), media=Depends(get_media)):
    await users_service.delete_user(db, cache, media, user_id)
    return {"success": True, "message": "User deleted successfully"}
