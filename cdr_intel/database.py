import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConnectionFailure, PyMongoError

from cdr_intel import config

logger = logging.getLogger(__name__)

client = None
database = None


async def get_database():
    """Get MongoDB database instance"""
    global client, database

    if database is None:
        try:
            client = AsyncIOMotorClient(config.MONGODB_URL)
            database = client[config.DATABASE_NAME]

            # Create indexes for performance
            await create_indexes(database)

        except PyMongoError as e:
            raise ConnectionFailure(f"Failed to connect to MongoDB: {e}") from e

    return database


async def create_indexes(db):
    """Create database indexes for common query patterns"""
    try:
        # Single field indexes
        await db.cdr_records.create_index("upload_id")
        await db.cdr_records.create_index("caller_number")
        await db.cdr_records.create_index("called_number")
        await db.cdr_records.create_index("imei")
        await db.cdr_records.create_index("timestamp")

        # Compound indexes for common queries
        await db.cdr_records.create_index([("upload_id", 1), ("timestamp", 1)])
        await db.analysis_results.create_index([("upload_id", 1), ("analysis_type", 1)], unique=True)
        await db.file_uploads.create_index("id", unique=True)

        logger.info("Database indexes created successfully")
    except PyMongoError as e:
        logger.warning(f"Index creation failed: {e}")


async def test_connection():
    """Test MongoDB connection"""
    try:
        db = await get_database()
        await db.command("ping")
        return True
    except PyMongoError as e:
        logger.error(f"Connection test failed: {e}")
        return False


async def close_connection():
    """Close MongoDB connection"""
    global client, database
    if client:
        client.close()
    client = None
    database = None
