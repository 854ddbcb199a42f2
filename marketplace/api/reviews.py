from fastapi import APIRouter, Depends, status

from marketplace.api.deps import get_cache, get_current_user, get_db
from marketplace.models.schemas import ReviewCreate
from marketplace.services import reviews_service
from marketplace.utils import serialize

router = APIRouter()


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_review(payload: ReviewCreate, user=Depends(get_current_user),
                        db=Depends(get_db), cache=Depends(get_cache)):
    review = await reviews_service.create_review(db, cache, user, payload)
    return {"success": True, "review": serialize(review)}


@router.get("/product/{product_id}")
async def product_reviews(product_id: str, db=Depends(get_db)):
    reviews = await reviews_service.list_product_reviews(db, product_id)
    return {"success": True, "reviews": serialize(reviews)}


@router.delete("/{review_id}")
async def delete_review(review_id: str, user=Depends(get_current_user),
                        db=Depends(get_db), cache=Depends(get_cache)):
    rating = await reviews_service.delete_review(db, cache, review_id, user)
    return {"success": True, "message": "Review deleted successfully", "rating": rating}
