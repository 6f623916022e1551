from typing import Optional
import logging

from farfield.models.notification import Notification
from farfield.core.config import settings

logger = logging.getLogger(__name__)

async def enforce_notification_limit(db, user_id: str, limit: int):
    """Keep room for one more notification by pruning the oldest beyond the limit"""
    existing = await db.notifications.find({"user_id": user_id}).sort("created_at", -1).to_list(None)
    stale = existing[limit - 1:]
    if stale:
        await db.notifications.delete_many({"id": {"$in": [n["id"] for n in stale]}})

async def create_notification_helper(
    db,
    user_id: str,
    message: str,
    notification_type: str = "purchase",
) -> Optional[Notification]:
    """Create a notification; failures are logged and never raised"""
    try:
        await enforce_notification_limit(db, user_id, settings.NOTIFICATION_LIMIT)
        notification_obj = Notification(user_id=user_id, type=notification_type, message=message)
        await db.notifications.insert_one(notification_obj.model_dump())
        logger.info(f"Notification created for user {user_id}: {message}")
        return notification_obj
    except Exception as e:
        logger.error(f"Failed to create notification for user {user_id}: {str(e)}")
        return None

async def handle_purchase_event(db, product_id: str, product_name: str, buyer_fid: int, seller_fid: int):
    """Notify buyer and seller about a completed purchase"""
    try:
        buyer = await db.users.find_one({"farcaster_fid": buyer_fid})
        seller = await db.users.find_one({"farcaster_fid": seller_fid})
        if not buyer or not seller:
            logger.error(f"Could not find buyer or seller for purchase notification of product {product_id}")
            return

        await create_notification_helper(
            db,
            user_id=buyer["id"],
            message=f"You purchased {product_name}",
            notification_type="purchase",
        )
        await create_notification_helper(
            db,
            user_id=seller["id"],
            message=f"Woohh! You made a sale @{buyer['farcaster']['username']} bought {product_name}",
            notification_type="sale",
        )
    except Exception as e:
        logger.error(f"Error handling purchase event: {str(e)}")

async def notify_purchase_completed(db, purchase_items, buyer_fid: int):
    """Emit purchase notifications for every item of a completed purchase"""
    try:
        product_ids = [item.product_id for item in purchase_items]
        products = await db.products.find({"id": {"$in": product_ids}}).to_list(None)
        names = {p["id"]: p["name"] for p in products}
        for item in purchase_items:
            if item.product_id in names:
                await handle_purchase_event(
                    db,
                    product_id=item.product_id,
                    product_name=names[item.product_id],
                    buyer_fid=buyer_fid,
                    seller_fid=item.seller_fid,
                )
    except Exception as e:
        logger.error(f"Error creating purchase notifications: {str(e)}")

async def handle_rating_event(db, product_name: str, rating: int, rater_fid: int, creator_fid: int):
    """Notify the product creator about a new rating"""
    if rater_fid == creator_fid:
        return
    try:
        rater = await db.users.find_one({"farcaster_fid": rater_fid})
        creator = await db.users.find_one({"farcaster_fid": creator_fid})
        if not rater or not creator:
            logger.error("Could not find rater or creator for notification")
            return

        stars = "⭐" * rating
        plural = "s" if rating > 1 else ""
        await create_notification_helper(
            db,
            user_id=creator["id"],
            message=f"{stars} @{rater['farcaster']['username']} rated your product \"{product_name}\" {rating} star{plural}!",
            notification_type="rating",
        )
    except Exception as e:
        logger.error(f"Error handling rating event: {str(e)}")

async def handle_comment_event(db, product_name: str, commenter_fid: int, creator_fid: int):
    """Notify the product creator about a new comment"""
    if commenter_fid == creator_fid:
        return
    try:
        commenter = await db.users.find_one({"farcaster_fid": commenter_fid})
        creator = await db.users.find_one({"farcaster_fid": creator_fid})
        if not commenter or not creator:
            logger.error("Could not find commenter or creator for notification")
            return

        await create_notification_helper(
            db,
            user_id=creator["id"],
            message=f"💬 @{commenter['farcaster']['username']} commented on your product \"{product_name}\"",
            notification_type="comment",
        )
    except Exception as e:
        logger.error(f"Error handling comment event: {str(e)}")
