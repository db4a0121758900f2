# Operations for the Document Categories Collection
import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from document_compliance_service.app.models import (
    ActiveState, DocumentCategoryDB, RetentionPolicy, retention_filter, utc_now
)
from document_compliance_service.app.service.exceptions import EntityNotFoundError
from .connection import CATEGORIES_COLLECTION

logger = logging.getLogger(__name__)

# Fields an update may never overwrite
IMMUTABLE_FIELDS = {"id", "created_at", "created_by"}


async def add_category(db: AsyncIOMotorDatabase, category: DocumentCategoryDB) -> DocumentCategoryDB:
    await db[CATEGORIES_COLLECTION].insert_one(category.model_dump())
    logger.info(f"Added document category ID: {category.id} ({category.name})")
    return category

async def get_category_by_id(db: AsyncIOMotorDatabase, category_id: str) -> Optional[DocumentCategoryDB]:
    doc = await db[CATEGORIES_COLLECTION].find_one({"id": category_id})
    return DocumentCategoryDB(**doc) if doc else None

async def find_category_by_name(
    db: AsyncIOMotorDatabase, name: str, retention: RetentionPolicy
) -> Optional[DocumentCategoryDB]:
    query_filter: Dict[str, Any] = {"name": name, **retention_filter(retention)}
    doc = await db[CATEGORIES_COLLECTION].find_one(query_filter)
    return DocumentCategoryDB(**doc) if doc else None

async def list_categories(db: AsyncIOMotorDatabase, retention: RetentionPolicy) -> List[DocumentCategoryDB]:
    """Lists categories in the given lifecycle states, ordered by name."""
    cursor = db[CATEGORIES_COLLECTION].find(retention_filter(retention)).sort("name", 1)
    docs = await cursor.to_list(length=None)
    return [DocumentCategoryDB(**doc) for doc in docs]

async def update_category(db: AsyncIOMotorDatabase, category_id: str, updates: Dict[str, Any]) -> DocumentCategoryDB:
    set_operations = {k: v for k, v in updates.items() if k not in IMMUTABLE_FIELDS}
    set_operations["updated_at"] = utc_now()

    updated = await db[CATEGORIES_COLLECTION].find_one_and_update(
        {"id": category_id},
        {"$set": set_operations},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        logger.warning(f"Document category ID: {category_id} not found for update.")
        raise EntityNotFoundError("DocumentCategory", category_id)
    logger.info(f"Updated document category ID: {category_id} fields: {sorted(set_operations)}")
    return DocumentCategoryDB(**updated)

async def soft_delete_category(db: AsyncIOMotorDatabase, category_id: str) -> DocumentCategoryDB:
    """Deactivates a category. Categories are never hard-deleted; templates keep referencing them."""
    return await update_category(db, category_id, {"active_state": ActiveState.INACTIVE.value})
