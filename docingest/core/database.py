"""Database connectivity layer for DocIngest."""

from __future__ import annotations

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient

from docingest.core.config import settings

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Lazily establishes the MongoDB connection used by the document store."""

    def __init__(self) -> None:
        self.mongodb: Optional[AsyncIOMotorClient] = None

    async def initialize(self) -> None:
        if self.mongodb is not None:
            return

        logger.info("Connecting to MongoDB database %s", settings.MONGODB_DATABASE)
        self.mongodb = AsyncIOMotorClient(str(settings.MONGODB_URL), tz_aware=True)

    async def close(self) -> None:
        if self.mongodb is not None:
            logger.info("Closing MongoDB connection")
            self.mongodb.close()
            self.mongodb = None


# Singleton instance shared by the store factory and the CLI
database_manager = DatabaseManager()
