import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from payout_ledger.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    await create_indexes()
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
        logger.info("Disconnected from MongoDB")

async def create_indexes():
    """Create database indexes."""
    # Orders are looked up by processor payment reference on disputes/refunds
    await mongodb.db["orders"].create_index("payment_id")

    # Ledger reporting by period and per order
    await mongodb.db["ledger_entries"].create_index("order_id")
    await mongodb.db["ledger_entries"].create_index([("year", 1), ("month", 1), ("timestamp", -1)])
    await mongodb.db["ledger_entries"].create_index([("seller_id", 1), ("timestamp", -1)])

    # Payout queue sweeps and seller history
    await mongodb.db["pending_payouts"].create_index([("seller_kind", 1), ("seller_id", 1), ("status", 1)])
    await mongodb.db["pending_payouts"].create_index([("order_id", 1), ("status", 1)])
    await mongodb.db["payouts"].create_index([("order_id", 1), ("status", 1)])
    await mongodb.db["payouts"].create_index("transfer_id")
    await mongodb.db["payouts"].create_index([("seller_kind", 1), ("seller_id", 1)])

    # Disputes and refunds are keyed by processor references
    await mongodb.db["disputes"].create_index("dispute_id", unique=True)
    await mongodb.db["refunds"].create_index("charge_id")

    # Sub-account lookup on account.updated
    for collection in ("artists", "suppliers", "users"):
        await mongodb.db[collection].create_index("connect_account_id")
