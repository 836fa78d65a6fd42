import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import IndexModel
from config import settings

logger = logging.getLogger(__name__)

client: AsyncIOMotorClient = None
_db_instance = None


class _DbProxy:
    """
    Proxy transparent vers l'instance Motor.
    Permet aux services de faire `from database import db` AVANT connect_db().
    db.collection → délégué à _db_instance.collection au moment de l'appel.
    """
    def __getattr__(self, name):
        if _db_instance is None:
            raise RuntimeError("Database not connected. Call connect_db() first.")
        return getattr(_db_instance, name)

    def __getitem__(self, name):
        if _db_instance is None:
            raise RuntimeError("Database not connected. Call connect_db() first.")
        return _db_instance[name]


db = _DbProxy()


async def connect_db():
    global client, _db_instance
    client = AsyncIOMotorClient(
        settings.MONGO_URL,
        tz_aware=True,   # dates relues en UTC "aware" (fenêtres de validité des promos)
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=10000,
    )
    _db_instance = client[settings.DB_NAME]
    logger.info(f"Connected to MongoDB: {settings.DB_NAME}")
    try:
        await create_indexes()
    except Exception as e:
        logger.warning(f"Could not create indexes (non-blocking): {e}")


async def close_db():
    global client
    if client:
        client.close()
        logger.info("MongoDB connection closed")


async def create_indexes():
    collections_to_index = {
        "users": [
            IndexModel([("user_id", 1)], unique=True),
            IndexModel([("tenant_id", 1)]),
        ],
        "promotions": [
            IndexModel([("promotion_id", 1)], unique=True),
            IndexModel([("tenant_id", 1), ("is_active", 1)]),
            IndexModel([("active_from", 1), ("active_until", 1)]),
            # Un code promo est unique par tenant
            IndexModel(
                [("tenant_id", 1), ("promo_code", 1)],
                unique=True,
                partialFilterExpression={"promo_code": {"$type": "string"}},
            ),
        ],
        "promotion_usage": [
            IndexModel([("usage_id", 1)], unique=True),
            IndexModel([("promotion_id", 1)]),
            IndexModel([("order_id", 1)]),
            IndexModel([("customer_identifier", 1)]),
        ],
        "customer_promotion_usage": [
            # Sert aussi de garde pour l'upsert conditionnel des limites par client
            IndexModel(
                [("customer_identifier", 1), ("promotion_id", 1), ("tenant_id", 1)],
                unique=True,
            ),
        ],
    }

    for collection_name, index_models in collections_to_index.items():
        try:
            await _db_instance[collection_name].create_indexes(index_models)
            logger.info(f"Indexes created for collection: {collection_name}")
        except Exception as e:
            logger.error(f"Failed to create indexes for collection {collection_name}: {e}")

    logger.info("All MongoDB indexes creation attempts completed.")
