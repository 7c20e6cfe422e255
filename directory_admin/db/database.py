# directory_admin/db/database.py
import motor.motor_asyncio
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timezone

from ..core.config import MONGODB_URL, DB_NAME, PROJECT_NAME
from ..models.enums import USERS_COLLECTION, ROLE_COLLECTIONS

logger = logging.getLogger(f"{PROJECT_NAME}.db")

_client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None
_db: Optional[motor.motor_asyncio.AsyncIOMotorDatabase] = None

EXPECTED_COLLECTIONS = [USERS_COLLECTION] + list(ROLE_COLLECTIONS.values())


async def connect_to_mongo() -> bool:
    """
    Establishes the MongoDB connection used by the document store.

    Returns:
        bool: True if connection successful, False otherwise.
    """
    global _client, _db

    if _db is not None:
        logger.info("Database connection already established.")
        return True

    if not MONGODB_URL:
        logger.error("FATAL ERROR: MONGODB_URL is not configured in core.config.")
        return False

    logger.info(f"Attempting to connect to MongoDB database: '{DB_NAME}'...")
    try:
        _client = motor.motor_asyncio.AsyncIOMotorClient(
            MONGODB_URL,
            serverSelectionTimeoutMS=10000,
            maxPoolSize=10,
            appname=PROJECT_NAME,
        )
        await _client.admin.command('ping')
        logger.info("MongoDB server ping successful.")

        _db = _client[DB_NAME]
        logger.info(f"Successfully connected to MongoDB database: '{DB_NAME}'")
        return True

    except Exception as e:
        logger.error(f"ERROR: Could not connect to MongoDB: {e}", exc_info=True)
        _client = None
        _db = None
        return False


async def close_mongo_connection():
    """Closes the MongoDB connection and resets state."""
    global _client, _db
    if _client:
        logger.info("Closing MongoDB connection...")
        _client.close()
        logger.info("MongoDB connection closed.")
        _client = None
        _db = None
    else:
        logger.info("No active MongoDB connection to close.")


def get_database() -> Optional[motor.motor_asyncio.AsyncIOMotorDatabase]:
    """
    Returns the database instance.
    Relies on connect_to_mongo() being called successfully at app startup.
    """
    if _db is None:
        logger.warning("Warning: Database instance is not initialized! Check connection.")
    return _db


async def check_database_health() -> Dict[str, Any]:
    """
    Pings the database and lists its collections.

    Returns:
        Dict containing status, connection details, collection info, errors, timestamp.
    """
    health_info = {
        "status": "OK",
        "connected": False,
        "collections": [],
        "expected_collections": EXPECTED_COLLECTIONS,
        "missing_collections": [],
        "error": None,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    try:
        db_instance = get_database()
        if db_instance is None:
            health_info.update({
                "status": "ERROR",
                "error": "Database instance not initialized (connection likely failed on startup)"
            })
            return health_info

        await db_instance.client.admin.command('ping')
        health_info["connected"] = True

        collections = await db_instance.list_collection_names()
        health_info["collections"] = collections

        # Role collections only appear after the first write, so this is a warning
        missing = [col for col in EXPECTED_COLLECTIONS if col not in collections]
        if missing:
            health_info["missing_collections"] = missing
            health_info["status"] = "WARNING"
            logger.warning(f"Database health check WARNING: Missing expected collections: {missing}")

        return health_info

    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        health_info.update({
            "status": "ERROR",
            "connected": False,
            "error": str(e)
        })
        return health_info
