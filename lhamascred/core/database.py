"""
MongoDB database connection and utilities.
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from lhamascred.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class Database:
    """MongoDB database connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

    @classmethod
    async def connect(cls):
        """Connect to MongoDB."""
        cls.client = AsyncIOMotorClient(settings.MONGO_URI)
        cls.db = cls.client[settings.MONGO_DB_NAME]

        # Create indexes
        await cls.create_indexes()

        logger.info(f"Connected to MongoDB: {settings.MONGO_DB_NAME}")

    @classmethod
    async def disconnect(cls):
        """Disconnect from MongoDB."""
        if cls.client:
            cls.client.close()
            logger.info("Disconnected from MongoDB")

    @classmethod
    async def create_indexes(cls):
        """Create database indexes for better query performance."""
        # Users collection
        await cls.db["users"].create_index("email", unique=True)
        await cls.db["users"].create_index("team_id")

        # Batches collection
        await cls.db["batches"].create_index("batch_id", unique=True)
        await cls.db["batches"].create_index([("user_id", 1), ("created_at", -1)])
        await cls.db["batches"].create_index([("status", 1), ("created_at", 1)])

        # Webhook responses (one per dispatched item, keyed by correlation id)
        await cls.db["webhook_responses"].create_index("response_id", unique=True)
        await cls.db["webhook_responses"].create_index("batch_id")

        # Activity log
        await cls.db["activity_logs"].create_index([("created_at", -1)])

    @classmethod
    def get_collection(cls, name: str):
        """Get a collection by name."""
        return cls.db[name]


def get_db() -> AsyncIOMotorDatabase:
    """Get the database instance."""
    return Database.db
