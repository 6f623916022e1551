from pydantic import BaseModel, Field
from typing import List, Optional
import uuid
from datetime import datetime

from farfield.models.base import ApiModel

class Notification(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    type: str  # 'purchase', 'sale', 'rating', 'comment'
    message: str
    read: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    read_at: Optional[datetime] = None

class NotificationPublic(ApiModel):
    id: str
    type: str
    message: str
    read: bool
    created_at: datetime

class NotificationList(ApiModel):
    notifications: List[NotificationPublic]
    unread_count: int
