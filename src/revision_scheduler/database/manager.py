"""
# Database Management Module

MongoDB infrastructure for the Revision Scheduler, built on the **Motor** async driver.

## Responsibilities

- **Connection lifecycle**: `connect()` with exponential backoff, `disconnect()` on shutdown.
- **Health**: `health_check()` pings the server; used by the readiness probe.
- **Collections**: `get_collection(name)` hands out Motor collections to the stores.
- **Indexes**: `create_indexes()` ensures the uniqueness constraints the scheduler relies on:

| Collection | Index | Purpose |
| --- | --- | --- |
| `revision_items` | `(user_id, question_key, bucket)` unique | one live record per question per bucket |
| `revision_items` | `(user_id, bucket, bucket_due_at)` | rollover scans |
| `revision_items` | `(user_id, question_key)` | cross-bucket duplicate lookups |
| `monthly_revision_archives` | `(user_id, month_key)` unique | one archive document per civil month |

The client is created with `tz_aware=True` so every datetime read back is an
aware UTC instant, which the boundary calculator requires.

## Usage

```python
from revision_scheduler.database import db_manager

await db_manager.connect()
items = db_manager.get_collection("revision_items")
```
"""

import asyncio
import time
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from revision_scheduler.config import settings
from revision_scheduler.managers.logging_manager import get_logger

db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")

REVISION_ITEMS_COLLECTION = "revision_items"
MONTHLY_ARCHIVES_COLLECTION = "monthly_revision_archives"

MAX_POOL_SIZE = 50
MIN_POOL_SIZE = 5


class DatabaseManager:
    """
    Manages the MongoDB client, collections and indexes.

    Used as a singleton through the module-level `db_manager`. Call `connect()`
    during application startup and `disconnect()` on shutdown.

    Attributes:
        client (`Optional[AsyncIOMotorClient]`): Motor client, `None` until connected.
        database (`Optional[AsyncIOMotorDatabase]`): Selected database, `None` until connected.
    """

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._connection_retries = 3

    def _connection_string(self) -> str:
        if settings.MONGODB_USERNAME and settings.MONGODB_PASSWORD:
            password = settings.MONGODB_PASSWORD.get_secret_value()
            db_logger.debug("Using authenticated connection to MongoDB")
            return (
                f"mongodb://{settings.MONGODB_USERNAME}:{password}@"
                f"{settings.MONGODB_URL.replace('mongodb://', '')}"
            )
        db_logger.debug("Using unauthenticated connection to MongoDB")
        return settings.MONGODB_URL

    async def connect(self):
        """
        Establish the MongoDB connection, retrying with exponential backoff (1s, 2s).

        Raises:
            `ServerSelectionTimeoutError`: MongoDB unreachable after all attempts.
            `ConnectionFailure`: Authentication failed or connection refused.
        """
        start_time = time.time()
        db_logger.info("Starting MongoDB connection process")

        for attempt in range(self._connection_retries):
            attempt_start = time.time()
            try:
                db_logger.info("Connection attempt %d/%d to MongoDB", attempt + 1, self._connection_retries)
                db_logger.info(
                    "MongoDB connection config - URL: %s, Database: %s, ServerTimeout: %dms, ConnTimeout: %dms",
                    settings.MONGODB_URL,
                    settings.MONGODB_DATABASE,
                    settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    settings.MONGODB_CONNECTION_TIMEOUT,
                )

                self.client = AsyncIOMotorClient(
                    self._connection_string(),
                    serverSelectionTimeoutMS=settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    connectTimeoutMS=settings.MONGODB_CONNECTION_TIMEOUT,
                    maxPoolSize=MAX_POOL_SIZE,
                    minPoolSize=MIN_POOL_SIZE,
                    tz_aware=True,
                )
                self.database = self.client[settings.MONGODB_DATABASE]

                ping_start = time.time()
                await self.client.admin.command("ping")
                ping_duration = time.time() - ping_start

                perf_logger.info(
                    "MongoDB connection established in %.3fs (ping: %.3fs)", time.time() - start_time, ping_duration
                )
                db_logger.info("Successfully connected to MongoDB database: %s", settings.MONGODB_DATABASE)
                return

            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                perf_logger.warning(
                    "Connection attempt %d failed after %.3fs", attempt + 1, time.time() - attempt_start
                )
                db_logger.warning(
                    "Failed to connect to MongoDB (attempt %d/%d): %s", attempt + 1, self._connection_retries, e
                )
                if attempt == self._connection_retries - 1:
                    db_logger.error("All connection attempts failed after %.3fs", time.time() - start_time)
                    raise

                backoff_time = 2**attempt
                db_logger.info("Waiting %.1fs before retry (exponential backoff)", backoff_time)
                await asyncio.sleep(backoff_time)

    async def disconnect(self):
        """Close the Motor client. Safe to call when not connected."""
        start_time = time.time()
        if self.client is None:
            db_logger.warning("Disconnect called but no active MongoDB connection found")
            return

        self.client.close()
        self.client = None
        self.database = None
        perf_logger.info("MongoDB disconnection completed in %.3fs", time.time() - start_time)
        db_logger.info("Successfully disconnected from MongoDB")

    async def health_check(self) -> bool:
        """
        Ping the server.

        Returns:
            `bool`: `True` when the database answers, `False` otherwise (never raises).
        """
        start_time = time.time()
        if self.client is None:
            health_logger.warning("Health check failed: No database client available")
            return False

        try:
            await self.client.admin.command("ping")
        except (PyMongoError, ConnectionError, TimeoutError) as e:
            perf_logger.warning("Database health check failed after %.3fs", time.time() - start_time)
            health_logger.error("Database health check failed: %s", e)
            return False

        perf_logger.debug("Database health check completed in %.3fs", time.time() - start_time)
        return True

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        """
        Return a Motor collection from the connected database.

        Raises:
            `ConnectionError`: If `connect()` has not been called.
        """
        if self.database is None:
            db_logger.error("Attempted to get collection '%s' without database connection", collection_name)
            raise ConnectionError("Database not connected. Call connect() first.")

        db_logger.debug("Retrieving collection: %s", collection_name)
        return self.database[collection_name]

    async def create_indexes(self):
        """Ensure the scheduler's indexes exist."""
        start_time = time.time()
        db_logger.info("Starting database index creation process")

        items = self.get_collection(REVISION_ITEMS_COLLECTION)
        db_logger.info("Creating indexes for '%s' collection", REVISION_ITEMS_COLLECTION)
        await self._create_index_if_not_exists(
            items,
            [("user_id", ASCENDING), ("question_key", ASCENDING), ("bucket", ASCENDING)],
            {"unique": True, "name": "user_question_bucket_unique"},
        )
        await self._create_index_if_not_exists(
            items, [("user_id", ASCENDING), ("bucket", ASCENDING), ("bucket_due_at", ASCENDING)], {}
        )
        await self._create_index_if_not_exists(items, [("user_id", ASCENDING), ("question_key", ASCENDING)], {})

        archives = self.get_collection(MONTHLY_ARCHIVES_COLLECTION)
        db_logger.info("Creating indexes for '%s' collection", MONTHLY_ARCHIVES_COLLECTION)
        await self._create_index_if_not_exists(
            archives,
            [("user_id", ASCENDING), ("month_key", ASCENDING)],
            {"unique": True, "name": "user_month_unique"},
        )

        perf_logger.info("Database index creation completed in %.3fs", time.time() - start_time)
        db_logger.info("Database indexes created successfully")

    async def _create_index_if_not_exists(
        self, collection: AsyncIOMotorCollection, field_spec: Any, options: Dict[str, Any]
    ):
        """Create an index if it doesn't already exist"""
        start_time = time.time()
        try:
            await collection.create_index(field_spec, **options)
            perf_logger.debug("Created/ensured index '%s' in %.3fs", field_spec, time.time() - start_time)
        except PyMongoError as e:
            perf_logger.warning(
                "Failed to create/ensure index '%s' after %.3fs", field_spec, time.time() - start_time
            )
            db_logger.warning("Could not create/ensure index '%s': %s", field_spec, e)


db_manager = DatabaseManager()
