from fastapi import APIRouter, Depends, status

from marketplace.api.deps import get_admin_user, get_cache, get_db
from marketplace.models.schemas import CategoryPayload
from marketplace.services import categories_service
from marketplace.utils import serialize

router = APIRouter()


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_category(payload: CategoryPayload, admin=Depends(get_admin_user),
                          db=Depends(get_db), cache=Depends(get_cache)):
    category = await categories_service.create_category(db, cache, payload.name)
    return {"success": True, "category": serialize(category)}


@router.get("/all")
async def all_categories(db=Depends(get_db)):
    categories = await categories_service.list_categories(db)
    return {"success": True, "categories": serialize(categories)}


@router.get("/{category_id}")
async def get_category(category_id: str, db=Depends(get_db), cache=Depends(get_cache)):
    category = await categories_service.get_category(db, cache, category_id)
    return {"success": True, "category": serialize(category)}


@router.put("/{category_id}")
async def update_category(category_id: str, payload: CategoryPayload, admin=Depends(get_admin_user),
                          db=Depends(get_db), cache=Depends(get_cache)):
    category = await categories_service.update_category(db, cache, category_id, payload.name)
    return {"success": True, "category": serialize(category)}


@router.delete("/{category_id}")
async def delete_category(category_id: str, admin=Depends(get_admin_user),
                          db=Depends(get_db), cache=Depends(get_cache)):
    await categories_service.delete_category(db, cache, category_id)
    return {"success": True, "message": "Category deleted successfully"}
