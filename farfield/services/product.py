from typing import List
import logging

from farfield.models.product import empty_ratings_breakdown

logger = logging.getLogger(__name__)

async def update_product_rating(db, product_id: str):
    """Recompute a product's average rating, count and star breakdown"""
    ratings = await db.ratings.find({"product_id": product_id}).to_list(10000)
    breakdown = empty_ratings_breakdown()
    for rating in ratings:
        breakdown[str(rating["rating"])] += 1

    if ratings:
        average_rating = sum(r["rating"] for r in ratings) / len(ratings)
    else:
        average_rating = 0.0

    await db.products.update_one(
        {"id": product_id},
        {"$set": {
            "ratings_score": round(average_rating, 1),
            "total_ratings": len(ratings),
            "ratings_breakdown": breakdown,
        }}
    )

async def record_product_sales(db, product_ids: List[str]) -> int:
    """Increment total_sold once per purchased item.

    Runs sequentially; a failed increment is logged and skipped, never retried.
    Returns the number of products updated.
    """
    updated = 0
    for product_id in product_ids:
        try:
            result = await db.products.update_one(
                {"id": product_id},
                {"$inc": {"total_sold": 1}}
            )
            if result.modified_count:
                updated += 1
            else:
                logger.warning(f"Product {product_id} not found while recording sale")
        except Exception as e:
            logger.error(f"Failed to record sale for product {product_id}: {str(e)}")
    return updated
