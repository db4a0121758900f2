# Operations for the User Document Status Collection
import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument, UpdateOne

from document_compliance_service.app.models import DocumentStatus, UserDocumentStatusDB, utc_now
from document_compliance_service.app.service.exceptions import EntityNotFoundError
from .connection import USER_DOCUMENTS_COLLECTION

logger = logging.getLogger(__name__)

# Managed by the store itself on every write
STORE_MANAGED_FIELDS = {"id", "employee_id", "template_id", "created_at", "updated_at", "version"}


def _pair_filter(employee_id: str, template_id: str) -> Dict[str, Any]:
    return {"employee_id": employee_id, "template_id": template_id}

def _clean_updates(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if k not in STORE_MANAGED_FIELDS}


async def get_for_employee(db: AsyncIOMotorDatabase, employee_id: str) -> List[UserDocumentStatusDB]:
    cursor = db[USER_DOCUMENTS_COLLECTION].find({"employee_id": employee_id}).sort("updated_at", -1)
    docs = await cursor.to_list(length=None)
    return [UserDocumentStatusDB(**doc) for doc in docs]

async def get_all(db: AsyncIOMotorDatabase) -> List[UserDocumentStatusDB]:
    cursor = db[USER_DOCUMENTS_COLLECTION].find({}).sort("updated_at", -1)
    docs = await cursor.to_list(length=None)
    return [UserDocumentStatusDB(**doc) for doc in docs]

async def get_one(db: AsyncIOMotorDatabase, employee_id: str, template_id: str) -> Optional[UserDocumentStatusDB]:
    doc = await db[USER_DOCUMENTS_COLLECTION].find_one(_pair_filter(employee_id, template_id))
    return UserDocumentStatusDB(**doc) if doc else None

async def get_by_id(db: AsyncIOMotorDatabase, user_document_id: str) -> Optional[UserDocumentStatusDB]:
    doc = await db[USER_DOCUMENTS_COLLECTION].find_one({"id": user_document_id})
    return UserDocumentStatusDB(**doc) if doc else None

async def create_user_document(
    db: AsyncIOMotorDatabase, row: UserDocumentStatusDB
) -> Tuple[UserDocumentStatusDB, bool]:
    """Creates the row for an (employee, template) pair unless one already exists.

    The existence check and the insert are one atomic upsert, so a second
    create for the same pair is a no-op that returns the stored row.
    """
    stored = await db[USER_DOCUMENTS_COLLECTION].find_one_and_update(
        _pair_filter(row.employee_id, row.template_id),
        {"$setOnInsert": row.model_dump()},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    stored_row = UserDocumentStatusDB(**stored)
    created = stored_row.id == row.id
    if created:
        logger.info(f"Created user document {row.id} for employee {row.employee_id} / template {row.template_id}")
    else:
        logger.warning(
            f"User document for employee {row.employee_id} / template {row.template_id} already exists "
            f"({stored_row.id}); create was a no-op."
        )
    return stored_row, created

async def bulk_create_missing(db: AsyncIOMotorDatabase, rows: Iterable[UserDocumentStatusDB]) -> int:
    """Upserts a chunk of rows in one unordered bulk write and returns how many were created.

    Pairs that already exist are left untouched. Raises pymongo's BulkWriteError
    when part of the chunk could not be written.
    """
    operations = [
        UpdateOne(_pair_filter(row.employee_id, row.template_id), {"$setOnInsert": row.model_dump()}, upsert=True)
        for row in rows
    ]
    if not operations:
        return 0
    result = await db[USER_DOCUMENTS_COLLECTION].bulk_write(operations, ordered=False)
    return result.upserted_count

async def existing_template_ids_for_employee(db: AsyncIOMotorDatabase, employee_id: str) -> Set[str]:
    cursor = db[USER_DOCUMENTS_COLLECTION].find({"employee_id": employee_id}, {"template_id": 1, "_id": 0})
    return {doc["template_id"] for doc in await cursor.to_list(length=None)}

async def existing_employee_ids_for_template(db: AsyncIOMotorDatabase, template_id: str) -> Set[str]:
    cursor = db[USER_DOCUMENTS_COLLECTION].find({"template_id": template_id}, {"employee_id": 1, "_id": 0})
    return {doc["employee_id"] for doc in await cursor.to_list(length=None)}

async def existing_pairs(db: AsyncIOMotorDatabase) -> Set[Tuple[str, str]]:
    cursor = db[USER_DOCUMENTS_COLLECTION].find({}, {"employee_id": 1, "template_id": 1, "_id": 0})
    return {(doc["employee_id"], doc["template_id"]) for doc in await cursor.to_list(length=None)}

async def update_status(db: AsyncIOMotorDatabase, user_document_id: str, fields: Dict[str, Any]) -> UserDocumentStatusDB:
    """Unconditionally merges fields into a row. Used by administrative overrides."""
    set_operations = _clean_updates(fields)
    set_operations["updated_at"] = utc_now()
    updated = await db[USER_DOCUMENTS_COLLECTION].find_one_and_update(
        {"id": user_document_id},
        {"$set": set_operations, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        logger.warning(f"User document ID: {user_document_id} not found for status update.")
        raise EntityNotFoundError("UserDocumentStatus", user_document_id)
    logger.info(f"Updated user document ID: {user_document_id} fields: {sorted(set_operations)}")
    return UserDocumentStatusDB(**updated)

async def compare_and_set(
    db: AsyncIOMotorDatabase, user_document_id: str, expected_version: int, fields: Dict[str, Any]
) -> Optional[UserDocumentStatusDB]:
    """Applies fields only if the stored version still equals expected_version.

    Returns the updated row, or None when another writer got there first.
    """
    set_operations = _clean_updates(fields)
    set_operations["updated_at"] = utc_now()
    updated = await db[USER_DOCUMENTS_COLLECTION].find_one_and_update(
        {"id": user_document_id, "version": expected_version},
        {"$set": set_operations, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        logger.info(f"Version guard {expected_version} lost for user document {user_document_id}.")
        return None
    return UserDocumentStatusDB(**updated)

async def list_completed_with_expiry(db: AsyncIOMotorDatabase, template_ids: List[str]) -> List[UserDocumentStatusDB]:
    if not template_ids:
        return []
    query_filter = {
        "status": DocumentStatus.COMPLETED.value,
        "expires_at": {"$ne": None},
        "template_id": {"$in": template_ids},
    }
    cursor = db[USER_DOCUMENTS_COLLECTION].find(query_filter).sort("expires_at", 1)
    docs = await cursor.to_list(length=None)
    return [UserDocumentStatusDB(**doc) for doc in docs]

async def mark_reminder_sent(db: AsyncIOMotorDatabase, user_document_id: str, sent_at: datetime.datetime) -> None:
    result = await db[USER_DOCUMENTS_COLLECTION].update_one(
        {"id": user_document_id},
        {"$set": {"last_reminder_sent": sent_at, "updated_at": utc_now()}},
    )
    if result.matched_count == 0:
        raise EntityNotFoundError("UserDocumentStatus", user_document_id)
