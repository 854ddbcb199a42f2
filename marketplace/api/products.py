from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from marketplace.api.deps import get_cache, get_current_user, get_db, get_media, get_seller_user
from marketplace.models.schemas import ProductCreate, ProductUpdate
from marketplace.services import products_service
from marketplace.utils import serialize

router = APIRouter()


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_product(payload: ProductCreate, seller=Depends(get_seller_user),
                         db=Depends(get_db), media=Depends(get_media)):
    product = await products_service.create_product(db, media, seller, payload)
    return {"success": True, "product": serialize(product)}


@router.get("/all")
async def all_products(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                       db=Depends(get_db), cache=Depends(get_cache)):
    result = await products_service.list_products(db, cache, page, limit)
    return {"success": True, **result}


@router.get("/search")
async def search_products(
    query: Optional[str] = None,
    category: Optional[str] = None,
    tags: Optional[str] = None,
    type: Optional[str] = None,
    minPrice: Optional[float] = Query(None, ge=0),
    maxPrice: Optional[float] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db=Depends(get_db),
    cache=Depends(get_cache),
):
    result = await products_service.search_products(
        db, cache, page, limit,
        query=query, category=category, tags=tags, type=type,
        min_price=minPrice, max_price=maxPrice,
    )
    return {"success": True, **result}


@router.get("/seller/my-products")
async def my_products(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                      seller=Depends(get_seller_user), db=Depends(get_db), cache=Depends(get_cache)):
    result = await products_service.list_seller_products(db, cache, seller["_id"], page, limit)
    return {"success": True, **result}


@router.get("/category/{category_id}")
async def products_by_category(category_id: str, page: int = Query(1, ge=1),
                               limit: int = Query(10, ge=1, le=100),
                               db=Depends(get_db), cache=Depends(get_cache)):
    result = await products_service.list_category_products(db, cache, category_id, page, limit)
    return {"success": True, **result}


@router.get("/{product_id}")
async def get_product(product_id: str, db=Depends(get_db), cache=Depends(get_cache)):
    product = await products_service.get_product(db, cache, product_id)
    return {"success": True, "product": product}


@router.put("/{product_id}")
async def update_product(product_id: str, payload: ProductUpdate, seller=Depends(get_seller_user),
                         db=Depends(get_db), cache=Depends(get_cache), media=Depends(get_media)):
    product = await products_service.update_product(db, cache, media, seller, product_id, payload)
    return {"success": True, "product": serialize(product)}


@router.patch("/{product_id}/availability")
async def toggle_availability(product_id: str, seller=Depends(get_seller_user),
                              db=Depends(get_db), cache=Depends(get_cache)):
    available = await products_service.toggle_availability(db, cache, seller, product_id)
    return {"success": True, "available": available}


@router.delete("/{product_id}")
async def delete_product(product_id: str, user=Depends(get_current_user), db=Depends(get_db),
                         cache=Depends(get_cache), media=Depends(get_media)):
    deleted = await products_service.delete_product(db, cache, media, user, product_id)
    return {"success": True, "message": "Product deleted successfully", "deleted": deleted}
