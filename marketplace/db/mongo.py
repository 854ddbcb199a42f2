# marketplace/db/mongo.py
import logging

from pymongo import AsyncMongoClient, ASCENDING, DESCENDING
from pymongo.server_api import ServerApi

from marketplace.config import settings

logger = logging.getLogger(__name__)

client = None


def get_client() -> AsyncMongoClient:
    global client
    if client is None:
        if not settings.MONGO_URI:
            raise RuntimeError("MONGO_URI not configured. See .env")
        client = AsyncMongoClient(settings.MONGO_URI, server_api=ServerApi("1"), tz_aware=True)
    return client


def get_database():
    return get_client()[settings.MONGO_DB_NAME]


async def ensure_indexes(db) -> None:
    await db.users.create_index([("email", ASCENDING)], unique=True)
    await db.users.create_index([("role", ASCENDING)])
    await db.users.create_index([("orders.status", ASCENDING)])

    await db.categories.create_index([("name", ASCENDING)], unique=True)

    await db.products.create_index([("seller", ASCENDING)])
    await db.products.create_index([("category", ASCENDING)])

    await db.orders.create_index([("transactionId", ASCENDING)], unique=True)
    await db.orders.create_index([("userId", ASCENDING), ("status", ASCENDING)])
    await db.orders.create_index([("productId", ASCENDING)])
    await db.orders.create_index([("paymentId", ASCENDING)])
    await db.orders.create_index([("createdAt", DESCENDING)])

    await db.payments.create_index([("transactionId", ASCENDING)], unique=True)
    await db.payments.create_index([("orderId", ASCENDING)])
    await db.payments.create_index([("userId", ASCENDING)])

    await db.reviews.create_index([("productId", ASCENDING), ("userId", ASCENDING)], unique=True)

    await db.notifications.create_index([("userId", ASCENDING), ("notificationDate", DESCENDING)])
    logger.info("MongoDB indexes ensured")


async def close_client() -> None:
    global client
    if client is not None:
        await client.close()
        client = None
