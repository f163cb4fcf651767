#!/usr/bin/env python
"""
Create the MongoDB indexes used by the DocIngest document store.

Usage:
    python scripts/migrate.py
"""

from __future__ import annotations

import asyncio
import logging

from docingest.core.config import settings
from docingest.core.database import database_manager
from docingest.knowledge.ingestion.storage import MongoDocumentStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def main() -> None:
    await database_manager.initialize()
    try:
        store = MongoDocumentStore()
        await store.ensure_indexes()
        logger.info("Indexes ready in database %s", settings.MONGODB_DATABASE)
    finally:
        await database_manager.close()


if __name__ == "__main__":
    asyncio.run(main())
