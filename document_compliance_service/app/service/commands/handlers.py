# Command Handler Implementation
import logging
from typing import Any, Dict, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from opentelemetry import trace
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from document_compliance_service.app.models import (
    ActiveState, DocumentCategoryDB, DocumentStatus, DocumentTemplateDB, EmployeeRecord,
    RetentionPolicy, STATUS_RANK, UserDocumentStatusDB, ensure_utc, utc_now
)
from document_compliance_service.app.observability import document_status_transitions_counter
from document_compliance_service.app.service.derived_state import compute_expires_at
from document_compliance_service.app.service.exceptions import (
    DataValidationError, EntityNotFoundError, KafkaProducerError
)
from document_compliance_service.app.service.interfaces.employee_directory import AbstractEmployeeDirectory
from document_compliance_service.app.service.synchronization import (
    SyncReport, initialize_for_employee, initialize_for_template
)
from document_compliance_service.infrastructure.database import category_store, template_store, user_document_store
from document_compliance_service.infrastructure.kafka.producer import KafkaProducerService
from document_compliance_service.infrastructure.kafka.schemas import DocumentStatusChangedMessage
from .models import (
    ApproveEmployeeCommand, CreateCategoryCommand, CreateTemplateCommand, DeactivateCategoryCommand,
    DeactivateTemplateCommand, ManuallyCompleteDocumentCommand, OverrideDocumentStatusCommand,
    UpdateCategoryCommand, UpdateTemplateCommand
)

logger = logging.getLogger(__name__)

# Milestones cleared when an override moves a row back below their rank
MILESTONE_RANKS = {"viewed_at": 1, "started_at": 2, "completed_at": 3, "declined_at": 3}
COMPLETION_FIELDS = ("expires_at", "is_manually_completed", "manually_completed_by", "manually_completed_at")


def _start_command_span(command_name: str, command_id: str):
    current_span = trace.get_current_span()
    current_span.set_attribute("command.name", command_name)
    current_span.set_attribute("command.id", command_id)
    current_span.add_event(f"{command_name}HandlerStarted")
    return current_span


async def _require_active_category(db: AsyncIOMotorDatabase, category_id: str) -> DocumentCategoryDB:
    category = await category_store.get_category_by_id(db, category_id)
    if category is None or not category.is_active:
        raise DataValidationError(f"Category '{category_id}' does not exist or is inactive.")
    return category


async def _ensure_category_name_free(db: AsyncIOMotorDatabase, name: str, exclude_id: Optional[str] = None):
    existing = await category_store.find_category_by_name(db, name.strip(), RetentionPolicy.ACTIVE_ONLY)
    if existing is not None and existing.id != exclude_id:
        raise DataValidationError(f"An active category named '{name.strip()}' already exists.")


def _publish_status_change(
    publisher: Optional[KafkaProducerService], before: UserDocumentStatusDB, after: UserDocumentStatusDB, source: str
):
    if publisher is None or before.status == after.status:
        return
    message = DocumentStatusChangedMessage(
        user_document_id=after.id,
        employee_id=after.employee_id,
        template_id=after.template_id,
        from_status=before.status,
        to_status=after.status,
        source=source,
        submission_id=after.provider_submission_id,
        expires_at=after.expires_at,
    )
    try:
        publisher.publish_document_event(message)
    except KafkaProducerError as e:
        logger.error(f"Status change for user document {after.id} not published: {e}", exc_info=True)

# --- Categories ---

async def handle_create_category_command(db: AsyncIOMotorDatabase, command: CreateCategoryCommand) -> DocumentCategoryDB:
    _start_command_span("CreateCategoryCommand", command.command_id)
    logger.info(f"Handling CreateCategoryCommand: {command.command_id} for name '{command.name}'")

    try:
        category = DocumentCategoryDB(
            name=command.name,
            description=command.description,
            color=command.color,
            created_by=command.created_by,
        )
    except ValidationError as e:
        raise DataValidationError(f"Invalid category: {e}") from e

    await _ensure_category_name_free(db, category.name)
    try:
        return await category_store.add_category(db, category)
    except DuplicateKeyError as e:
        raise DataValidationError(f"An active category named '{category.name}' already exists.") from e

async def handle_update_category_command(db: AsyncIOMotorDatabase, command: UpdateCategoryCommand) -> DocumentCategoryDB:
    _start_command_span("UpdateCategoryCommand", command.command_id)
    updates = command.model_dump(include={"name", "description", "color"}, exclude_unset=True)
    if "name" in updates:
        if not updates["name"] or not updates["name"].strip():
            raise DataValidationError("Category name must not be blank.")
        updates["name"] = updates["name"].strip()
        await _ensure_category_name_free(db, updates["name"], exclude_id=command.category_id)
    try:
        return await category_store.update_category(db, command.category_id, updates)
    except DuplicateKeyError as e:
        raise DataValidationError(f"An active category named '{updates.get('name')}' already exists.") from e

async def handle_deactivate_category_command(db: AsyncIOMotorDatabase, command: DeactivateCategoryCommand) -> DocumentCategoryDB:
    _start_command_span("DeactivateCategoryCommand", command.command_id)
    category = await category_store.soft_delete_category(db, command.category_id)
    logger.info(f"Category {category.id} deactivated by {command.deactivated_by or 'unknown'}.")
    return category

# --- Templates ---

async def handle_create_template_command(
    db: AsyncIOMotorDatabase,
    command: CreateTemplateCommand,
    directory: AbstractEmployeeDirectory,
) -> Tuple[DocumentTemplateDB, Optional[SyncReport]]:
    """Creates a template; an active one is immediately synchronized against approved employees."""
    current_span = _start_command_span("CreateTemplateCommand", command.command_id)
    logger.info(f"Handling CreateTemplateCommand: {command.command_id} for '{command.title}'")

    await _require_active_category(db, command.category_id)
    try:
        template = DocumentTemplateDB(
            **command.model_dump(exclude={"command_id", "is_active"}),
            active_state=ActiveState.ACTIVE if command.is_active else ActiveState.INACTIVE,
        )
    except ValidationError as e:
        raise DataValidationError(f"Invalid template: {e}") from e

    await template_store.add_template(db, template)
    current_span.add_event("TemplateCreated", {"template.id": template.id})

    sync_report = None
    if template.is_active:
        sync_report = await initialize_for_template(db, template.id, directory)
    return template, sync_report

async def handle_update_template_command(
    db: AsyncIOMotorDatabase,
    command: UpdateTemplateCommand,
    directory: AbstractEmployeeDirectory,
) -> Tuple[DocumentTemplateDB, Optional[SyncReport]]:
    """Merges the set fields into a template. Reactivation triggers a synchronization."""
    _start_command_span("UpdateTemplateCommand", command.command_id)

    existing = await template_store.get_template_by_id(db, command.template_id)
    if existing is None:
        raise EntityNotFoundError("DocumentTemplate", command.template_id)

    updates: Dict[str, Any] = command.model_dump(exclude={"command_id", "template_id"}, exclude_unset=True)
    is_active = updates.pop("is_active", None)
    if is_active is not None:
        updates["active_state"] = ActiveState.ACTIVE.value if is_active else ActiveState.INACTIVE.value
    if "category_id" in updates and updates["category_id"] != existing.category_id:
        await _require_active_category(db, updates["category_id"])

    # Policy fields are validated on the merged result, not the partial update
    try:
        merged = DocumentTemplateDB(**{**existing.model_dump(), **updates})
    except ValidationError as e:
        raise DataValidationError(f"Invalid template update: {e}") from e

    updated = await template_store.update_template(
        db, command.template_id, merged.model_dump(include=set(updates) | {"title", "category_id", "provider_template_id"})
    )

    sync_report = None
    if updated.is_active and not existing.is_active:
        logger.info(f"Template {updated.id} reactivated; synchronizing.")
        sync_report = await initialize_for_template(db, updated.id, directory)
    return updated, sync_report

async def handle_deactivate_template_command(db: AsyncIOMotorDatabase, command: DeactivateTemplateCommand) -> DocumentTemplateDB:
    _start_command_span("DeactivateTemplateCommand", command.command_id)
    template = await template_store.soft_delete_template(db, command.template_id)
    logger.info(f"Template {template.id} deactivated by {command.deactivated_by or 'unknown'}; status rows kept.")
    return template

# --- Employees ---

async def handle_approve_employee_command(db: AsyncIOMotorDatabase, command: ApproveEmployeeCommand) -> SyncReport:
    _start_command_span("ApproveEmployeeCommand", command.command_id)
    employee = EmployeeRecord(
        employee_id=command.employee_id,
        display_name=command.display_name,
        email=command.email,
        role=command.role,
        status="approved",
    )
    return await initialize_for_employee(db, employee)

# --- User document administration ---

async def _require_user_document(db: AsyncIOMotorDatabase, user_document_id: str) -> UserDocumentStatusDB:
    row = await user_document_store.get_by_id(db, user_document_id)
    if row is None:
        raise EntityNotFoundError("UserDocumentStatus", user_document_id)
    return row

async def handle_manually_complete_document_command(
    db: AsyncIOMotorDatabase,
    command: ManuallyCompleteDocumentCommand,
    publisher: Optional[KafkaProducerService] = None,
) -> UserDocumentStatusDB:
    """Administrator bypass: marks a row completed regardless of its current status."""
    current_span = _start_command_span("ManuallyCompleteDocumentCommand", command.command_id)
    row = await _require_user_document(db, command.user_document_id)
    template = await template_store.get_template_by_id(db, row.template_id)

    now = utc_now()
    completed_at = ensure_utc(row.completed_at)
    if completed_at is None:
        completed_at = ensure_utc(command.completed_at) or now
        earlier = [ensure_utc(value) for value in (row.viewed_at, row.started_at) if value is not None]
        if earlier and max(earlier) > completed_at:
            logger.warning(
                f"Completion time {completed_at.isoformat()} for user document {row.id} precedes an earlier "
                f"milestone; recording {max(earlier).isoformat()} instead."
            )
            completed_at = max(earlier)
    fields: Dict[str, Any] = {
        "status": DocumentStatus.COMPLETED.value,
        "completed_at": completed_at,
        "declined_at": None,
        "is_manually_completed": True,
        "manually_completed_by": command.completed_by,
        "manually_completed_at": now,
        "expires_at": compute_expires_at(completed_at, template.expiry_days if template else None),
    }
    updated = await user_document_store.update_status(db, row.id, fields)
    current_span.add_event("UserDocumentManuallyCompleted", {"user_document.id": row.id})
    logger.info(f"User document {row.id} manually completed by {command.completed_by} (was {row.status}).")
    if row.status != updated.status:
        document_status_transitions_counter.add(1, {"to_status": updated.status, "source": "manual_completion"})
    _publish_status_change(publisher, row, updated, source="manual_completion")
    return updated

async def handle_override_document_status_command(
    db: AsyncIOMotorDatabase,
    command: OverrideDocumentStatusCommand,
    publisher: Optional[KafkaProducerService] = None,
) -> UserDocumentStatusDB:
    """
    Administrative reset to any stored status, including backwards.

    Milestones ranked above the new status are cleared so the row stays consistent;
    completion bookkeeping is cleared unless the new status is completed.
    """
    _start_command_span("OverrideDocumentStatusCommand", command.command_id)
    new_status = DocumentStatus(command.new_status)
    if new_status == DocumentStatus.EXPIRED:
        raise DataValidationError("'expired' is computed at read time and cannot be stored.")

    row = await _require_user_document(db, command.user_document_id)
    new_rank = STATUS_RANK[new_status.value]
    fields: Dict[str, Any] = {"status": new_status.value}
    for milestone, rank in MILESTONE_RANKS.items():
        if rank > new_rank:
            fields[milestone] = None

    if new_status == DocumentStatus.COMPLETED:
        fields["declined_at"] = None
        if row.completed_at is None:
            template = await template_store.get_template_by_id(db, row.template_id)
            completed_at = utc_now()
            fields["completed_at"] = completed_at
            fields["expires_at"] = compute_expires_at(completed_at, template.expiry_days if template else None)
    else:
        fields["completed_at"] = None
        fields.update({name: None for name in COMPLETION_FIELDS})
        fields["is_manually_completed"] = False

    updated = await user_document_store.update_status(db, row.id, fields)
    logger.warning(
        f"User document {row.id} status overridden {row.status} -> {updated.status} by {command.overridden_by}"
        f"{f' ({command.reason})' if command.reason else ''}."
    )
    _publish_status_change(publisher, row, updated, source="override")
    return updated
