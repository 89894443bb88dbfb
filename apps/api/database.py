from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient
from typing import Optional
import logging
from config import settings
from models.doubt import DoubtDocument

logger = logging.getLogger(__name__)


class Database:
    client: Optional[AsyncIOMotorClient] = None
    database = None


db = Database()


async def connect_to_mongo():
    """Create database connection"""
    try:
        # Create Motor client
        db.client = AsyncIOMotorClient(
            settings.mongodb_url,
            serverSelectionTimeoutMS=5000,  # 5 second timeout
            connectTimeoutMS=5000,
            socketTimeoutMS=5000,
            tz_aware=True,
        )

        # Test connection
        await db.client.admin.command('ping')
        logger.info("Successfully connected to MongoDB")

        # Get database
        db.database = db.client[settings.database_name]

        await init_beanie(database=db.database, document_models=[DoubtDocument])
        logger.info("Beanie initialized successfully")
        return True

    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        db.client = None
        return False


async def close_mongo_connection():
    """Close database connection"""
    if db.client:
        db.client.close()
        logger.info("Disconnected from MongoDB")


async def ping_database() -> dict:
    """Health check for database"""
    try:
        if not db.client:
            return {"status": "disconnected", "error": "No client"}

        result = await db.client.admin.command('ping')
        return {
            "status": "connected",
            "ping": result,
            "database": settings.database_name
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
