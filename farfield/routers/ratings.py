from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from typing import Optional
from datetime import datetime

from farfield.models.rating import Comment, CommentCreate, CommentPublic, Rating, RatingCreate, RatingPublic
from farfield.models.user import User
from farfield.db.session import get_db
from farfield.core.errors import Forbidden
from farfield.core.responses import success_response
from farfield.services.auth import get_current_account, get_current_account_optional
from farfield.services.notification import handle_comment_event, handle_rating_event
from farfield.services.product import update_product_rating
from farfield.services.purchase import buyer_owns_product

router = APIRouter()

async def _get_product_or_404(db, product_id: str):
    product = await db.products.find_one({"id": product_id})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product

@router.post("/products/{product_id}/ratings")
async def rate_product(
    product_id: str,
    rating_data: RatingCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_account),
    db=Depends(get_db),
):
    """Create or update the current user's rating for a product"""
    product = await _get_product_or_404(db, product_id)

    # Only buyers with a completed purchase may rate
    if not await buyer_owns_product(db, current_user.farcaster_fid, product_id):
        raise Forbidden("You can only rate products you have purchased")

    existing_rating = await db.ratings.find_one({
        "product_id": product_id,
        "rater_fid": current_user.farcaster_fid
    })
    if existing_rating:
        await db.ratings.update_one(
            {"id": existing_rating["id"]},
            {"$set": {"rating": rating_data.rating, "updated_at": datetime.utcnow()}}
        )
        rating_obj = Rating(**{**existing_rating, "rating": rating_data.rating})
        status_code = 200
    else:
        rating_obj = Rating(product_id=product_id, rater_fid=current_user.farcaster_fid, rating=rating_data.rating)
        await db.ratings.insert_one(rating_obj.model_dump())
        status_code = 201
        background_tasks.add_task(
            handle_rating_event, db, product["name"], rating_data.rating,
            current_user.farcaster_fid, product["creator_fid"],
        )

    await update_product_rating(db, product_id)

    return success_response(
        RatingPublic(**rating_obj.model_dump(), can_edit=True),
        "Rating saved successfully",
        status_code=status_code,
    )

@router.get("/products/{product_id}/ratings")
async def get_product_ratings(
    product_id: str,
    current_user: Optional[User] = Depends(get_current_account_optional),
    db=Depends(get_db),
):
    await _get_product_or_404(db, product_id)
    ratings = await db.ratings.find({"product_id": product_id}).sort("created_at", -1).to_list(100)

    result = []
    for rating_data in ratings:
        rating = Rating(**rating_data)
        can_edit = current_user is not None and current_user.farcaster_fid == rating.rater_fid
        result.append(RatingPublic(**rating.model_dump(), can_edit=can_edit))
    return success_response(result)

@router.post("/products/{product_id}/comments")
async def add_comment(
    product_id: str,
    comment_data: CommentCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_account),
    db=Depends(get_db),
):
    product = await _get_product_or_404(db, product_id)

    comment_obj = Comment(product_id=product_id, commentor_fid=current_user.farcaster_fid, comment=comment_data.comment)
    await db.comments.insert_one(comment_obj.model_dump())

    background_tasks.add_task(
        handle_comment_event, db, product["name"], current_user.farcaster_fid, product["creator_fid"],
    )
    return success_response(CommentPublic(**comment_obj.model_dump()), "Comment added successfully", status_code=201)

@router.get("/products/{product_id}/comments")
async def get_comments(product_id: str, db=Depends(get_db)):
    await _get_product_or_404(db, product_id)
    comments = await db.comments.find({"product_id": product_id}).sort("created_at", -1).to_list(100)
    return success_response([CommentPublic(**Comment(**comment).model_dump()) for comment in comments])
