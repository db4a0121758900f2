from document_compliance_service.app.config import settings
import logging
from typing import Optional

import pymongo
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

logger = logging.getLogger(__name__)

CATEGORIES_COLLECTION = "document_categories"
TEMPLATES_COLLECTION = "document_templates"
USER_DOCUMENTS_COLLECTION = "user_documents"
WEBHOOK_EVENTS_COLLECTION = "document_webhook_events"
USERS_COLLECTION = "users" # Owned by the identity side; read-only here

# Global client and db variables, managed by connect/close functions
client: Optional[AsyncIOMotorClient] = None
db: Optional[AsyncIOMotorDatabase] = None

def connect_to_mongo():
    global client, db
    if client is not None and db is not None:
        logger.info("MongoDB connection already established.")
        return

    try:
        logger.info(f"Attempting to connect to MongoDB at {settings.MONGO_DETAILS}...")
        client = AsyncIOMotorClient(settings.MONGO_DETAILS, tz_aware=True)
        db = client[settings.DB_NAME]
        logger.info(f"MongoDB client created and database '{settings.DB_NAME}' is set.")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}", exc_info=True)
        client = None
        db = None
        raise ConnectionError(f"Failed to connect to MongoDB: {e}")

def close_mongo_connection():
    global client, db
    if client:
        client.close()
        client = None
        db = None
        logger.info("MongoDB connection closed.")

async def get_db():
    global db
    if db is None:
        logger.warning("Database not initialized. Attempting to connect via get_db().")
        connect_to_mongo()

    if db is None:
        logger.error("Failed to get database instance in get_db.")
        raise ConnectionError("Database client is not available. Connection might have failed or was not established.")

    # Connection lifecycle belongs to application startup/shutdown, nothing to clean up per request.
    yield db

async def ensure_indexes(database: AsyncIOMotorDatabase):
    """Creates the indexes the stores rely on for uniqueness and lookups. Safe to call repeatedly."""
    await database[USER_DOCUMENTS_COLLECTION].create_index(
        [("employee_id", pymongo.ASCENDING), ("template_id", pymongo.ASCENDING)],
        unique=True,
        name="uniq_employee_template",
    )
    await database[USER_DOCUMENTS_COLLECTION].create_index([("updated_at", pymongo.DESCENDING)], name="updated_at_desc")
    await database[USER_DOCUMENTS_COLLECTION].create_index([("id", pymongo.ASCENDING)], unique=True, name="uniq_id")
    await database[WEBHOOK_EVENTS_COLLECTION].create_index(
        [("idempotency_key", pymongo.ASCENDING)], unique=True, name="uniq_idempotency_key"
    )
    await database[WEBHOOK_EVENTS_COLLECTION].create_index([("received_at", pymongo.DESCENDING)], name="received_at_desc")
    await database[TEMPLATES_COLLECTION].create_index(
        [("provider_template_id", pymongo.ASCENDING), ("active_state", pymongo.ASCENDING)],
        name="provider_template_lookup",
    )
    await database[CATEGORIES_COLLECTION].create_index(
        [("name", pymongo.ASCENDING)],
        unique=True,
        partialFilterExpression={"active_state": "ACTIVE"},
        name="uniq_active_category_name",
    )
    logger.info("MongoDB indexes ensured for document compliance collections.")
