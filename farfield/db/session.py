from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
import logging

from farfield.core.config import settings

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(settings.MONGO_URL, maxPoolSize=10, minPoolSize=10)
db = client[settings.DB_NAME]

# Statuses whose documents may be reaped once expires_at has passed
REAPABLE_PURCHASE_STATUSES = ["pending", "failed", "expired"]

def get_db():
    return db

def close_mongo_connection():
    client.close()

async def ensure_indexes(database):
    """Create the indexes the marketplace relies on"""
    await database.purchases.create_index("purchase_id", unique=True)
    await database.purchases.create_index([("buyer_fid", ASCENDING), ("created_at", DESCENDING)])
    await database.purchases.create_index("buyer_wallet")
    await database.purchases.create_index("transaction_hash", sparse=True)
    # Completed purchases never match the filter (and have no expires_at), so they are never reaped
    await database.purchases.create_index(
        "expires_at",
        expireAfterSeconds=0,
        partialFilterExpression={"status": {"$in": REAPABLE_PURCHASE_STATUSES}},
        name="purchase_expiry_ttl",
    )

    await database.users.create_index("privy_id", unique=True)
    await database.users.create_index("farcaster_fid", unique=True)
    await database.users.create_index("wallets.address")

    await database.products.create_index("id", unique=True)
    await database.products.create_index([("creator_fid", ASCENDING), ("created_at", DESCENDING)])
    await database.products.create_index([("total_sold", DESCENDING)])

    await database.ratings.create_index([("product_id", ASCENDING), ("rater_fid", ASCENDING)], unique=True)
    await database.comments.create_index([("product_id", ASCENDING), ("created_at", DESCENDING)])
    await database.notifications.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    await database.rate_limits.create_index("expires_at", expireAfterSeconds=0)
    logger.info("MongoDB indexes ensured")
