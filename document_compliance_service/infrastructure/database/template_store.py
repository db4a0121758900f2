# Operations for the Document Templates Collection
import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from document_compliance_service.app.models import (
    ActiveState, DocumentTemplateDB, RetentionPolicy, retention_filter, utc_now
)
from document_compliance_service.app.service.exceptions import EntityNotFoundError
from .connection import TEMPLATES_COLLECTION

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = {"id", "created_at", "created_by"}


async def add_template(db: AsyncIOMotorDatabase, template: DocumentTemplateDB) -> DocumentTemplateDB:
    await db[TEMPLATES_COLLECTION].insert_one(template.model_dump())
    logger.info(f"Added document template ID: {template.id} ({template.title}) in category {template.category_id}")
    return template

async def get_template_by_id(db: AsyncIOMotorDatabase, template_id: str) -> Optional[DocumentTemplateDB]:
    doc = await db[TEMPLATES_COLLECTION].find_one({"id": template_id})
    return DocumentTemplateDB(**doc) if doc else None

async def list_templates(db: AsyncIOMotorDatabase, retention: RetentionPolicy) -> List[DocumentTemplateDB]:
    """Lists templates in the given lifecycle states, ordered by title."""
    cursor = db[TEMPLATES_COLLECTION].find(retention_filter(retention)).sort("title", 1)
    docs = await cursor.to_list(length=None)
    return [DocumentTemplateDB(**doc) for doc in docs]

async def list_templates_by_category(
    db: AsyncIOMotorDatabase, category_id: str, retention: RetentionPolicy
) -> List[DocumentTemplateDB]:
    query_filter: Dict[str, Any] = {"category_id": category_id, **retention_filter(retention)}
    cursor = db[TEMPLATES_COLLECTION].find(query_filter).sort("title", 1)
    docs = await cursor.to_list(length=None)
    return [DocumentTemplateDB(**doc) for doc in docs]

async def find_active_template_for_provider(
    db: AsyncIOMotorDatabase,
    provider_template_id: Optional[str],
    provider_template_name: Optional[str] = None,
) -> Optional[DocumentTemplateDB]:
    """Maps a provider template to the internal template.

    Matches on the stored provider template id first; when that fails and the
    provider sent a template name, an active template with that exact title is used.
    """
    active = retention_filter(RetentionPolicy.ACTIVE_ONLY)
    if provider_template_id:
        doc = await db[TEMPLATES_COLLECTION].find_one({"provider_template_id": provider_template_id, **active})
        if doc:
            return DocumentTemplateDB(**doc)

    if provider_template_name:
        doc = await db[TEMPLATES_COLLECTION].find_one({"title": provider_template_name, **active})
        if doc:
            logger.info(
                f"Template resolved by title fallback for provider template '{provider_template_name}' "
                f"(provider id {provider_template_id})."
            )
            return DocumentTemplateDB(**doc)
    return None

async def update_template(db: AsyncIOMotorDatabase, template_id: str, updates: Dict[str, Any]) -> DocumentTemplateDB:
    set_operations = {k: v for k, v in updates.items() if k not in IMMUTABLE_FIELDS}
    set_operations["updated_at"] = utc_now()

    updated = await db[TEMPLATES_COLLECTION].find_one_and_update(
        {"id": template_id},
        {"$set": set_operations},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        logger.warning(f"Document template ID: {template_id} not found for update.")
        raise EntityNotFoundError("DocumentTemplate", template_id)
    logger.info(f"Updated document template ID: {template_id} fields: {sorted(set_operations)}")
    return DocumentTemplateDB(**updated)

async def soft_delete_template(db: AsyncIOMotorDatabase, template_id: str) -> DocumentTemplateDB:
    """Deactivates a template. Existing status rows stay; the template leaves future syncs."""
    return await update_template(db, template_id, {"active_state": ActiveState.INACTIVE.value})
