from fastapi import APIRouter, BackgroundTasks, Depends, Query
from typing import Optional
import logging

from farfield.models.purchase import ConfirmPurchaseRequest, InitiatePurchaseRequest
from farfield.models.user import User
from farfield.db.session import get_db
from farfield.core.responses import paginated_response, success_response
from farfield.services.auth import get_current_account
from farfield.services.blockchain import MarketplaceContract, get_marketplace_contract
from farfield.services.notification import notify_purchase_completed
from farfield.services.purchase import confirm_purchase, get_purchase_history, initiate_purchase
from farfield.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)
router = APIRouter()

purchase_rate_limit = RateLimiter(scope="purchase")

@router.post("/purchase/initiate", dependencies=[Depends(purchase_rate_limit)])
async def initiate(
    body: InitiatePurchaseRequest,
    current_user: User = Depends(get_current_account),
    db=Depends(get_db),
    contract: MarketplaceContract = Depends(get_marketplace_contract),
):
    result = await initiate_purchase(db, contract, current_user, body)
    return success_response(
        result,
        "Purchase initiated successfully. Complete the transactions to finalize.",
    )

@router.post("/purchase/confirm", dependencies=[Depends(purchase_rate_limit)])
async def confirm(
    body: ConfirmPurchaseRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_account),
    db=Depends(get_db),
    contract: MarketplaceContract = Depends(get_marketplace_contract),
):
    result, completed = await confirm_purchase(db, contract, current_user, body)
    if completed is None:
        return success_response(result, "Purchase already completed")

    # Notifications are best-effort and run after the response is sent
    background_tasks.add_task(notify_purchase_completed, db, completed.items, completed.buyer_fid)
    return success_response(
        result,
        "Purchase confirmed successfully. You now have access to the purchased products.",
    )

@router.get("/purchase/history")
async def history(
    page: int = Query(1),
    limit: int = Query(20),
    status: Optional[str] = Query(None),
    current_user: User = Depends(get_current_account),
    db=Depends(get_db),
):
    """Get the current user's purchases, newest first"""
    result = await get_purchase_history(db, current_user.farcaster_fid, page, limit, status)
    return paginated_response(
        result.history, result.page, result.limit, result.total,
        "Purchase history retrieved successfully",
    )
