# Ledger of Inbound Signing-Provider Webhook Events
import datetime
import logging
from typing import List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from document_compliance_service.app.models import WebhookEventDB, utc_now
from .connection import WEBHOOK_EVENTS_COLLECTION

logger = logging.getLogger(__name__)

PURGE_BATCH_SIZE = 500


async def append_event(db: AsyncIOMotorDatabase, event: WebhookEventDB) -> Tuple[WebhookEventDB, bool]:
    """Appends an event to the ledger, keyed by its idempotency key.

    A redelivery of the same provider event reuses the existing ledger row instead
    of adding a duplicate. Besides the processed and failed marks, the attempts
    counter bumped here is the only field a ledger row ever has rewritten; the
    stored payload and idempotency key stay as first received.
    Returns the stored entry and whether it was newly created.
    """
    insert_doc = event.model_dump(exclude={"attempts"})
    stored = await db[WEBHOOK_EVENTS_COLLECTION].find_one_and_update(
        {"idempotency_key": event.idempotency_key},
        {"$setOnInsert": insert_doc, "$inc": {"attempts": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    stored_event = WebhookEventDB(**stored)
    created = stored_event.id == event.id
    if created:
        logger.info(f"Webhook event {stored_event.id} ({stored_event.event_type}) appended to ledger.")
    else:
        logger.info(
            f"Duplicate delivery of webhook event {stored_event.id} ({stored_event.event_type}); "
            f"attempt {stored_event.attempts}."
        )
    return stored_event, created

async def mark_processed(
    db: AsyncIOMotorDatabase, event_id: str, employee_id: Optional[str], template_id: Optional[str]
) -> None:
    await db[WEBHOOK_EVENTS_COLLECTION].update_one(
        {"id": event_id},
        {"$set": {
            "is_processed": True,
            "processed_at": utc_now(),
            "error_message": None,
            "employee_id": employee_id,
            "template_id": template_id,
        }},
    )
    logger.debug(f"Webhook event {event_id} marked processed.")

async def mark_failed(
    db: AsyncIOMotorDatabase,
    event_id: str,
    error_message: str,
    employee_id: Optional[str] = None,
    template_id: Optional[str] = None,
) -> None:
    set_operations = {
        "is_processed": False,
        "processed_at": utc_now(),
        "error_message": error_message,
    }
    if employee_id:
        set_operations["employee_id"] = employee_id
    if template_id:
        set_operations["template_id"] = template_id
    await db[WEBHOOK_EVENTS_COLLECTION].update_one({"id": event_id}, {"$set": set_operations})
    logger.debug(f"Webhook event {event_id} marked failed: {error_message}")

async def get_event_by_id(db: AsyncIOMotorDatabase, event_id: str) -> Optional[WebhookEventDB]:
    doc = await db[WEBHOOK_EVENTS_COLLECTION].find_one({"id": event_id})
    return WebhookEventDB(**doc) if doc else None

async def list_recent_events(
    db: AsyncIOMotorDatabase,
    limit: int = 20,
    skip: int = 0,
    is_processed: Optional[bool] = None,
) -> List[WebhookEventDB]:
    query_filter = {}
    if is_processed is not None:
        query_filter["is_processed"] = is_processed
    cursor = db[WEBHOOK_EVENTS_COLLECTION].find(query_filter).sort("received_at", -1).skip(skip).limit(limit)
    docs = await cursor.to_list(length=limit)
    return [WebhookEventDB(**doc) for doc in docs]

async def purge_events_older_than(db: AsyncIOMotorDatabase, cutoff: datetime.datetime) -> int:
    """Deletes ledger entries received before cutoff, PURGE_BATCH_SIZE at a time."""
    deleted_total = 0
    while True:
        cursor = db[WEBHOOK_EVENTS_COLLECTION].find(
            {"received_at": {"$lt": cutoff}}, {"id": 1, "_id": 0}
        ).limit(PURGE_BATCH_SIZE)
        batch = await cursor.to_list(length=PURGE_BATCH_SIZE)
        if not batch:
            break
        result = await db[WEBHOOK_EVENTS_COLLECTION].delete_many({"id": {"$in": [doc["id"] for doc in batch]}})
        deleted_total += result.deleted_count
        if result.deleted_count == 0:
            break
    logger.info(f"Purged {deleted_total} webhook events received before {cutoff.isoformat()}.")
    return deleted_total
