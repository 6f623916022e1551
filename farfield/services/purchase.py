"""
Purchase lifecycle: initiation, on-chain confirmation and history.

A purchase is created ``pending`` with a short expiry window, the buyer signs
and broadcasts the ``processPurchase`` transaction themselves, and
confirmation cross-checks the receipt and the contract's purchase record before
moving the record to ``completed``. Every status change is a conditional update
on ``status == "pending"`` so a record leaves ``pending`` exactly once.
"""

import logging
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional, Tuple

from pymongo import ReturnDocument

from farfield.core.config import settings
from farfield.core.errors import (
    Conflict,
    NotFound,
    PurchaseExpired,
    ValidationFailed,
    VerificationFailed,
)
from farfield.models.product import Product
from farfield.models.purchase import (
    BlockchainProof,
    BlockchainTarget,
    ConfirmedItem,
    ConfirmPurchaseRequest,
    ConfirmPurchaseResponse,
    HistoryItem,
    InitiatePurchaseRequest,
    InitiatePurchaseResponse,
    ProductSnapshot,
    Purchase,
    PurchaseHistory,
    PurchaseHistoryEntry,
    PurchaseHistorySummary,
    PurchaseItem,
    PurchaseStatus,
    PurchaseSummary,
    SummaryItem,
    TransactionPayload,
)
from farfield.models.user import User
from farfield.services.blockchain import (
    MarketplaceContract,
    ReceiptStatus,
    from_usdc_units,
    to_usdc_units,
)
from farfield.services.product import record_product_sales

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 100


class HistoryPage(NamedTuple):
    """One page of history plus the page and limit actually applied"""

    history: PurchaseHistory
    total: int
    page: int
    limit: int


async def find_owned_product_ids(db, buyer_fid: int, product_ids: List[str]) -> List[str]:
    """Return the subset of product_ids the buyer already holds a completed purchase for"""
    completed = await db.purchases.find({
        "buyer_fid": buyer_fid,
        "status": PurchaseStatus.COMPLETED.value,
        "items.product_id": {"$in": product_ids},
    }).to_list(None)

    requested = set(product_ids)
    owned: List[str] = []
    for purchase in completed:
        for item in purchase["items"]:
            if item["product_id"] in requested and item["product_id"] not in owned:
                owned.append(item["product_id"])
    return owned


async def buyer_owns_product(db, buyer_fid: int, product_id: str) -> bool:
    return bool(await find_owned_product_ids(db, buyer_fid, [product_id]))


async def _transition_from_pending(
    db,
    purchase_id: str,
    status: PurchaseStatus,
    fields: Optional[Dict] = None,
    unset: Optional[List[str]] = None,
) -> Optional[Purchase]:
    """Move a pending purchase to ``status``; returns None if it was no longer pending"""
    update: Dict = {"$set": {"status": status.value, "updated_at": datetime.utcnow(), **(fields or {})}}
    if unset:
        update["$unset"] = {field: "" for field in unset}

    document = await db.purchases.find_one_and_update(
        {"purchase_id": purchase_id, "status": PurchaseStatus.PENDING.value},
        update,
        return_document=ReturnDocument.AFTER,
    )
    if document is None:
        return None
    logger.info(f"Purchase {purchase_id} moved to {status.value}")
    return Purchase(**document)


def _completion_response(purchase: Purchase) -> ConfirmPurchaseResponse:
    return ConfirmPurchaseResponse(
        purchase_id=purchase.purchase_id,
        status=PurchaseStatus.COMPLETED,
        transaction_hash=purchase.transaction_hash,
        completed_at=purchase.completed_at,
        items=[
            ConfirmedItem(product_id=item.product_id, price=from_usdc_units(item.price))
            for item in purchase.items
        ],
        total_amount=purchase.total_amount,
        platform_fee=purchase.platform_fee,
        blockchain=BlockchainProof(timestamp=purchase.blockchain_timestamp, verified=True),
    )


async def _load_purchase(db, purchase_id: str, buyer_fid: int) -> Purchase:
    document = await db.purchases.find_one({"purchase_id": purchase_id, "buyer_fid": buyer_fid})
    if not document:
        raise NotFound("Purchase not found")
    return Purchase(**document)


async def initiate_purchase(
    db,
    contract: MarketplaceContract,
    buyer: User,
    request: InitiatePurchaseRequest,
) -> InitiatePurchaseResponse:
    product_ids = [item.product_id for item in request.items]
    if len(set(product_ids)) != len(product_ids):
        raise ValidationFailed("Duplicate products in purchase request")

    # All products must exist; partial purchases are not allowed
    documents = await db.products.find({"id": {"$in": product_ids}}).to_list(None)
    products_by_id = {doc["id"]: Product(**doc) for doc in documents}
    if len(products_by_id) != len(product_ids):
        missing = [pid for pid in product_ids if pid not in products_by_id]
        raise ValidationFailed("Some products not found or not available", details={"missing": missing})
    products = [products_by_id[pid] for pid in product_ids]

    owned = await find_owned_product_ids(db, buyer.farcaster_fid, product_ids)
    if owned:
        raise Conflict(f"You already own some of these products: {', '.join(owned)}", details={"owned": owned})

    # Resolve each seller and the wallet that receives the payout
    sellers: Dict[str, User] = {}
    for product in products:
        seller_doc = await db.users.find_one({"farcaster_fid": product.creator_fid})
        seller = User(**seller_doc) if seller_doc else None
        if seller is None or seller.payout_wallet() is None:
            raise ValidationFailed(f"Product {product.name} does not have a valid seller wallet")
        sellers[product.id] = seller

    items = [
        PurchaseItem(
            product_id=product.id,
            price=to_usdc_units(product.price),
            seller_fid=product.creator_fid,
            seller_wallet=sellers[product.id].payout_wallet(),
        )
        for product in products
    ]
    prices = [item.price for item in items]

    cost = await contract.calculate_purchase_cost(prices)

    purchase = Purchase.create_pending(
        expiry_minutes=settings.PURCHASE_EXPIRY_MINUTES,
        buyer_fid=buyer.farcaster_fid,
        buyer_wallet=request.buyer_wallet,
        items=items,
        total_amount=from_usdc_units(cost.total_user_pays),
        platform_fee=from_usdc_units(cost.platform_fee),
    )
    await db.purchases.insert_one(purchase.to_document())
    logger.info(
        f"Purchase {purchase.purchase_id} initiated by fid {buyer.farcaster_fid} "
        f"for {len(items)} item(s), total {purchase.total_amount}"
    )

    transaction = contract.build_purchase_transaction(
        purchase.purchase_id,
        prices,
        [item.seller_wallet for item in items],
    )

    return InitiatePurchaseResponse(
        purchase_id=purchase.purchase_id,
        transactions=[
            TransactionPayload(
                type="purchase",
                description="Process purchase",
                gas=settings.PURCHASE_GAS_LIMIT,
                **transaction,
            )
        ],
        summary=PurchaseSummary(
            items=[
                SummaryItem(
                    id=product.id,
                    name=product.name,
                    price=product.price,
                    seller=sellers[product.id].farcaster.username or f"User {product.creator_fid}",
                )
                for product in products
            ],
            total_amount=purchase.total_amount,
            platform_fee=purchase.platform_fee,
            expires_at=purchase.expires_at,
        ),
        blockchain=BlockchainTarget(
            network=settings.NETWORK_NAME,
            contract_address=contract.contract_address,
        ),
    )


async def confirm_purchase(
    db,
    contract: MarketplaceContract,
    buyer: User,
    request: ConfirmPurchaseRequest,
) -> Tuple[ConfirmPurchaseResponse, Optional[Purchase]]:
    """Verify the buyer's transaction and complete the purchase.

    Returns the confirmation payload and, when this call performed the
    completion, the completed purchase (None for an idempotent replay).
    The checks run in a fixed order: a reverted transaction never reaches
    contract storage, so the receipt is checked before the on-chain record.
    """
    purchase_id = request.purchase_id
    transaction_hash = request.transaction_hash
    purchase = await _load_purchase(db, purchase_id, buyer.farcaster_fid)

    if purchase.status == PurchaseStatus.COMPLETED:
        return _completion_response(purchase), None

    if purchase.status != PurchaseStatus.PENDING:
        raise VerificationFailed(f"Purchase is {purchase.status.value}. Please initiate a new purchase.")

    if purchase.is_expired():
        expired = await _transition_from_pending(db, purchase_id, PurchaseStatus.EXPIRED)
        if expired is None:
            return await _resolve_lost_race(db, purchase_id, buyer)
        raise PurchaseExpired("Purchase has expired. Please initiate a new purchase.")

    receipt_status = await contract.get_receipt_status(transaction_hash)
    if receipt_status == ReceiptStatus.NOT_FOUND:
        raise VerificationFailed("Transaction not found or not yet confirmed")
    if receipt_status == ReceiptStatus.WRONG_CONTRACT:
        logger.warning(f"Transaction {transaction_hash} for purchase {purchase_id} was not sent to the marketplace contract")
        raise VerificationFailed("Transaction was not sent to the marketplace contract")
    if receipt_status != ReceiptStatus.SUCCESS:
        logger.warning(f"Transaction {transaction_hash} for purchase {purchase_id} was reverted")
        failed = await _transition_from_pending(
            db, purchase_id, PurchaseStatus.FAILED, {"transaction_hash": transaction_hash}
        )
        if failed is None:
            return await _resolve_lost_race(db, purchase_id, buyer)
        raise VerificationFailed("Transaction failed or was reverted")

    on_chain = await contract.verify_purchase(purchase_id)
    if not on_chain.exists:
        raise VerificationFailed("Purchase not found on blockchain")

    if on_chain.buyer.lower() != purchase.buyer_wallet.lower():
        logger.warning(
            f"Buyer mismatch for purchase {purchase_id}: on-chain {on_chain.buyer}, stored {purchase.buyer_wallet}"
        )
        raise VerificationFailed("Buyer address mismatch")

    # Compared in USDC units so the tolerance boundary is exact
    difference = abs(on_chain.total_amount - to_usdc_units(purchase.total_amount))
    if difference > to_usdc_units(settings.AMOUNT_TOLERANCE):
        logger.warning(
            f"Amount mismatch for purchase {purchase_id}: on-chain {from_usdc_units(on_chain.total_amount)}, "
            f"stored {purchase.total_amount}"
        )
        raise VerificationFailed("Purchase amount mismatch")

    if on_chain.refunded:
        failed = await _transition_from_pending(
            db, purchase_id, PurchaseStatus.FAILED, {"transaction_hash": transaction_hash}
        )
        if failed is None:
            return await _resolve_lost_race(db, purchase_id, buyer)
        raise VerificationFailed("This purchase has been refunded")

    completed = await _transition_from_pending(
        db,
        purchase_id,
        PurchaseStatus.COMPLETED,
        {
            "transaction_hash": transaction_hash,
            "blockchain_verified": True,
            "blockchain_timestamp": on_chain.timestamp,
            "completed_at": datetime.utcnow(),
        },
        unset=["expires_at"],
    )
    if completed is None:
        return await _resolve_lost_race(db, purchase_id, buyer)

    # Not transactional with the status flip; total_sold is informational
    await record_product_sales(db, completed.product_ids())

    return _completion_response(completed), completed


async def _resolve_lost_race(db, purchase_id: str, buyer: User) -> Tuple[ConfirmPurchaseResponse, Optional[Purchase]]:
    """Another request moved the purchase out of pending first; report what it decided"""
    current = await _load_purchase(db, purchase_id, buyer.farcaster_fid)
    if current.status == PurchaseStatus.COMPLETED:
        return _completion_response(current), None
    if current.status == PurchaseStatus.EXPIRED:
        raise PurchaseExpired("Purchase has expired. Please initiate a new purchase.")
    raise VerificationFailed(f"Purchase is {current.status.value}. Please initiate a new purchase.")


async def expire_stale_purchases(db, buyer_fid: Optional[int] = None) -> int:
    """Flip pending purchases whose window has passed to expired"""
    query: Dict = {
        "status": PurchaseStatus.PENDING.value,
        "expires_at": {"$lt": datetime.utcnow()},
    }
    if buyer_fid is not None:
        query["buyer_fid"] = buyer_fid

    result = await db.purchases.update_many(
        query,
        {"$set": {"status": PurchaseStatus.EXPIRED.value, "updated_at": datetime.utcnow()}},
    )
    if result.modified_count:
        logger.info(f"Expired {result.modified_count} stale purchase(s)")
    return result.modified_count


async def get_purchase_history(
    db,
    buyer_fid: int,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
) -> HistoryPage:
    page = max(1, page)
    limit = min(max(1, limit), MAX_HISTORY_LIMIT)

    await expire_stale_purchases(db, buyer_fid)

    query: Dict = {"buyer_fid": buyer_fid}
    if status in {s.value for s in PurchaseStatus}:
        query["status"] = status

    documents = await db.purchases.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit).to_list(limit)
    total = await db.purchases.count_documents(query)
    purchases = [Purchase(**doc) for doc in documents]

    # Product snapshots are only shown for purchases the buyer has access to
    completed_ids = {
        item.product_id
        for purchase in purchases if purchase.status == PurchaseStatus.COMPLETED
        for item in purchase.items
    }
    products: Dict[str, Product] = {}
    if completed_ids:
        for doc in await db.products.find({"id": {"$in": list(completed_ids)}}).to_list(None):
            products[doc["id"]] = Product(**doc)

    entries = []
    for purchase in purchases:
        items = []
        for item in purchase.items:
            product = products.get(item.product_id) if purchase.status == PurchaseStatus.COMPLETED else None
            items.append(HistoryItem(
                product_id=item.product_id,
                price=from_usdc_units(item.price),
                product=ProductSnapshot(
                    name=product.name,
                    description=product.description,
                    thumbnail=product.images[0] if product.images else None,
                    has_files=product.has_files(),
                ) if product else None,
            ))
        entries.append(PurchaseHistoryEntry(
            purchase_id=purchase.purchase_id,
            status=purchase.status,
            total_amount=purchase.total_amount,
            platform_fee=purchase.platform_fee,
            created_at=purchase.created_at,
            completed_at=purchase.completed_at,
            expires_at=purchase.expires_at,
            transaction_hash=purchase.transaction_hash,
            items=items,
        ))

    completed_docs = await db.purchases.find(
        {"buyer_fid": buyer_fid, "status": PurchaseStatus.COMPLETED.value}
    ).to_list(None)
    pending_count = await db.purchases.count_documents(
        {"buyer_fid": buyer_fid, "status": PurchaseStatus.PENDING.value}
    )

    summary = PurchaseHistorySummary(
        total_purchases=total,
        completed_purchases=len(completed_docs),
        pending_purchases=pending_count,
        total_spent=round(sum(doc["total_amount"] for doc in completed_docs), 6),
    )
    return HistoryPage(PurchaseHistory(purchases=entries, summary=summary), total, page, limit)
