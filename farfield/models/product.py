from pydantic import BaseModel, Field
from typing import Dict, List, Optional
import uuid
from datetime import datetime

from farfield.models.base import ApiModel

class DigitalFile(ApiModel):
    file_name: str
    file_url: str
    file_size: int = Field(..., ge=0)

class ExternalLink(ApiModel):
    name: str
    url: str
    type: str = "other"  # figma, notion, behance, github, other

def empty_ratings_breakdown() -> Dict[str, int]:
    return {str(stars): 0 for stars in range(1, 6)}

class Product(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str
    price: float = Field(..., ge=0)  # dollars
    creator_fid: int
    category: str = "other"
    tags: List[str] = []
    images: List[str] = []
    digital_files: List[DigitalFile] = []
    external_links: List[ExternalLink] = []
    is_free: bool = False
    total_sold: int = 0
    ratings_score: float = 0.0
    total_ratings: int = 0
    ratings_breakdown: Dict[str, int] = Field(default_factory=empty_ratings_breakdown)
    published_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def has_files(self) -> bool:
        return bool(self.digital_files) or bool(self.external_links)

class ProductCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    price: float = Field(..., ge=0)
    category: str = "other"
    tags: List[str] = []
    images: List[str] = []
    digital_files: List[DigitalFile] = []
    external_links: List[ExternalLink] = []

class ProductPublic(ApiModel):
    id: str
    name: str
    description: str
    price: float
    creator_fid: int
    category: str
    tags: List[str]
    images: List[str]
    is_free: bool
    total_sold: int
    ratings_score: float
    total_ratings: int
    ratings_breakdown: Dict[str, int]
    has_files: bool
    created_at: datetime

    @classmethod
    def from_product(cls, product: Product) -> "ProductPublic":
        return cls(
            id=product.id,
            name=product.name,
            description=product.description,
            price=product.price,
            creator_fid=product.creator_fid,
            category=product.category,
            tags=product.tags,
            images=product.images,
            is_free=product.is_free,
            total_sold=product.total_sold,
            ratings_score=product.ratings_score,
            total_ratings=product.total_ratings,
            ratings_breakdown=product.ratings_breakdown,
            has_files=product.has_files(),
            created_at=product.created_at,
        )

class ProductAccess(ApiModel):
    product_id: str
    has_access: bool
    is_creator: bool = False
    digital_files: List[DigitalFile] = []
    external_links: List[ExternalLink] = []
