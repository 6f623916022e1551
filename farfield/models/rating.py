from pydantic import BaseModel, Field
from typing import Optional
import uuid
from datetime import datetime

from farfield.models.base import ApiModel

class Rating(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    product_id: str
    rater_fid: int
    rating: int = Field(..., ge=1, le=5)  # 1-5 stars
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

class RatingCreate(ApiModel):
    rating: int = Field(..., ge=1, le=5)

class Comment(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    product_id: str
    commentor_fid: int
    comment: str = Field(..., min_length=1, max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)

class CommentCreate(ApiModel):
    comment: str = Field(..., min_length=1, max_length=1000)

class RatingPublic(ApiModel):
    id: str
    product_id: str
    rater_fid: int
    rating: int
    created_at: datetime
    can_edit: bool = False

class CommentPublic(ApiModel):
    id: str
    product_id: str
    commentor_fid: int
    comment: str
    created_at: datetime
