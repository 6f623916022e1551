from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from datetime import datetime
import re

from farfield.models.product import Product, ProductAccess, ProductCreate, ProductPublic
from farfield.models.user import User
from farfield.db.session import get_db
from farfield.core.responses import paginated_response, success_response
from farfield.services.auth import get_current_account
from farfield.services.purchase import buyer_owns_product

router = APIRouter()

@router.post("/products")
async def create_product(
    product_data: ProductCreate,
    current_user: User = Depends(get_current_account),
    db=Depends(get_db),
):
    product_obj = Product(
        **product_data.model_dump(),
        creator_fid=current_user.farcaster_fid,
        is_free=product_data.price == 0,
        published_at=datetime.utcnow(),
    )
    await db.products.insert_one(product_obj.model_dump())
    return success_response(ProductPublic.from_product(product_obj), "Product created successfully", status_code=201)

@router.get("/products")
async def get_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None,
    db=Depends(get_db),
):
    query = {}
    if category:
        query["category"] = category
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}}
        ]

    products = await db.products.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit).to_list(limit)
    total = await db.products.count_documents(query)
    return paginated_response(
        [ProductPublic.from_product(Product(**product)) for product in products],
        page, limit, total,
    )

@router.get("/products/my")
async def get_my_products(current_user: User = Depends(get_current_account), db=Depends(get_db)):
    products = await db.products.find({"creator_fid": current_user.farcaster_fid}).sort("created_at", -1).to_list(100)
    return success_response([ProductPublic.from_product(Product(**product)) for product in products])

@router.get("/products/{product_id}")
async def get_product(product_id: str, db=Depends(get_db)):
    product = await db.products.find_one({"id": product_id})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return success_response(ProductPublic.from_product(Product(**product)))

@router.get("/products/{product_id}/access")
async def get_product_access(
    product_id: str,
    current_user: User = Depends(get_current_account),
    db=Depends(get_db),
):
    """Check whether the current user may open the product's files and links"""
    product_doc = await db.products.find_one({"id": product_id})
    if not product_doc:
        raise HTTPException(status_code=404, detail="Product not found")
    product = Product(**product_doc)

    is_creator = product.creator_fid == current_user.farcaster_fid
    has_access = is_creator or product.is_free or await buyer_owns_product(db, current_user.farcaster_fid, product_id)

    access = ProductAccess(product_id=product_id, has_access=has_access, is_creator=is_creator)
    if has_access:
        access.digital_files = product.digital_files
        access.external_links = product.external_links
    return success_response(access)
