from fastapi import APIRouter, Depends, HTTPException, Query
from datetime import datetime

from farfield.models.notification import Notification, NotificationList, NotificationPublic
from farfield.models.user import User
from farfield.db.session import get_db
from farfield.core.responses import success_response
from farfield.services.auth import get_current_account

router = APIRouter()

@router.get("/notifications")
async def get_user_notifications(
    limit: int = Query(50, ge=1, le=100),
    unread_only: bool = False,
    current_user: User = Depends(get_current_account),
    db=Depends(get_db),
):
    """Get notifications for the current user"""
    query = {"user_id": current_user.id}
    if unread_only:
        query["read"] = False

    notifications = await db.notifications.find(query).sort("created_at", -1).limit(limit).to_list(limit)
    unread_count = await db.notifications.count_documents({"user_id": current_user.id, "read": False})
    return success_response(NotificationList(
        notifications=[NotificationPublic(**Notification(**n).model_dump()) for n in notifications],
        unread_count=unread_count,
    ))

@router.put("/notifications/read-all")
async def mark_all_notifications_as_read(current_user: User = Depends(get_current_account), db=Depends(get_db)):
    """Mark all notifications as read for the current user"""
    result = await db.notifications.update_many(
        {"user_id": current_user.id, "read": False},
        {"$set": {"read": True, "read_at": datetime.utcnow()}}
    )
    return success_response({"modifiedCount": result.modified_count}, f"Marked {result.modified_count} notifications as read")

@router.put("/notifications/{notification_id}/read")
async def mark_notification_as_read(
    notification_id: str,
    current_user: User = Depends(get_current_account),
    db=Depends(get_db),
):
    """Mark a notification as read"""
    notification = await db.notifications.find_one({"id": notification_id, "user_id": current_user.id})
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")

    if not notification.get("read", False):
        await db.notifications.update_one(
            {"id": notification_id, "user_id": current_user.id},
            {"$set": {"read": True, "read_at": datetime.utcnow()}}
        )
    return success_response(None, "Notification marked as read")
