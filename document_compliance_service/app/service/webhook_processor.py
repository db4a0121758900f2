# Reconciles signing-provider webhooks against user document rows
import datetime
import hashlib
import logging
from typing import Any, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from opentelemetry import trace
from pydantic import BaseModel, ValidationError

from document_compliance_service.app.config import settings
from document_compliance_service.app.models import (
    DocumentTemplateDB, EmployeeRecord, UserDocumentStatusDB, WebhookEventDB, utc_now
)
from document_compliance_service.app.observability import (
    document_status_transitions_counter, tracer, webhook_events_received_counter
)
from document_compliance_service.app.service.exceptions import (
    BaseDocumentComplianceError, DataValidationError, EntityNotFoundError,
    KafkaProducerError, UnresolvedReferenceError, WriteConflictError
)
from document_compliance_service.app.service.interfaces.employee_directory import AbstractEmployeeDirectory
from document_compliance_service.app.service.strategies.webhook_event_strategies import (
    WebhookEventStrategy, get_webhook_event_strategy
)
from document_compliance_service.app.service.transitions import TransitionPlan, plan_webhook_transition
from document_compliance_service.infrastructure.database import template_store, user_document_store, webhook_event_store
from document_compliance_service.infrastructure.docuseal.schemas import DocuSealWebhookPayload
from document_compliance_service.infrastructure.kafka.producer import KafkaProducerService
from document_compliance_service.infrastructure.kafka.schemas import DocumentStatusChangedMessage

logger = logging.getLogger(__name__)


class WebhookProcessingResult(BaseModel):
    success: bool
    recorded: bool = True
    event_id: Optional[str] = None
    duplicate: bool = False
    status_changed: bool = False
    user_document_id: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    error: Optional[str] = None


def build_idempotency_key(raw_payload: Any) -> str:
    """Provider event id when present, otherwise a digest of event type, submission id and timestamp."""
    if isinstance(raw_payload, dict):
        event_id = raw_payload.get("event_id")
        if event_id:
            return f"docuseal:{event_id}"
        data = raw_payload.get("data") if isinstance(raw_payload.get("data"), dict) else {}
        material = f"{raw_payload.get('event_type')}:{data.get('id')}:{raw_payload.get('timestamp')}"
    else:
        material = repr(raw_payload)
    return "sha256:" + hashlib.sha256(material.encode("utf-8")).hexdigest()


def _ledger_entry_for(raw_payload: Any) -> WebhookEventDB:
    event_type = "unknown"
    submission_id = None
    if isinstance(raw_payload, dict):
        event_type = str(raw_payload.get("event_type") or "unknown")
        data = raw_payload.get("data")
        if isinstance(data, dict) and data.get("id") is not None:
            submission_id = str(data["id"])
    return WebhookEventDB(
        event_type=event_type,
        submission_id=submission_id,
        event_data=raw_payload,
        idempotency_key=build_idempotency_key(raw_payload),
    )


def _parse_payload(raw_payload: Any) -> DocuSealWebhookPayload:
    if not isinstance(raw_payload, dict):
        raise DataValidationError("Webhook body is not a JSON object.")
    try:
        return DocuSealWebhookPayload.model_validate(raw_payload)
    except ValidationError as e:
        raise DataValidationError(f"Malformed webhook payload: {e.error_count()} validation error(s): {e.errors()[0]['msg']}") from e


async def _resolve_employee(directory: AbstractEmployeeDirectory, payload: DocuSealWebhookPayload) -> EmployeeRecord:
    email = payload.data.email
    if not email or not email.strip():
        raise UnresolvedReferenceError("employee email", email, "Payload carries no email.")
    employee = await directory.find_by_email(email)
    if employee is None:
        raise UnresolvedReferenceError("employee email", email, "No employee matches this email.")
    return employee


async def _resolve_template(db: AsyncIOMotorDatabase, payload: DocuSealWebhookPayload) -> DocumentTemplateDB:
    template_ref = payload.data.template
    if template_ref is None:
        raise UnresolvedReferenceError("provider template", None, "Payload carries no template.")
    template = await template_store.find_active_template_for_provider(db, template_ref.id, template_ref.name)
    if template is None:
        raise UnresolvedReferenceError(
            "provider template", template_ref.id, f"No active template matches (name: {template_ref.name!r})."
        )
    return template


async def _apply_transition(
    db: AsyncIOMotorDatabase,
    employee_id: str,
    template: DocumentTemplateDB,
    strategy: WebhookEventStrategy,
    payload: DocuSealWebhookPayload,
    raw_payload: Any,
) -> Tuple[TransitionPlan, UserDocumentStatusDB]:
    """Read, plan and conditionally write one row, re-planning whenever another writer got in first."""
    row: Optional[UserDocumentStatusDB] = None
    for attempt in range(1, settings.WEBHOOK_MAX_CAS_RETRIES + 1):
        row = await user_document_store.get_one(db, employee_id, template.id)
        if row is None:
            raise UnresolvedReferenceError(
                "user document",
                f"{employee_id}/{template.id}",
                "No status row exists yet; synchronize and replay the event.",
            )
        plan = plan_webhook_transition(row, strategy, payload, template, raw_payload)
        updated = await user_document_store.compare_and_set(db, row.id, row.version, plan.fields)
        if updated is not None:
            return plan, updated
        logger.info(f"Concurrent write on user document {row.id}; re-planning (attempt {attempt}).")
    raise WriteConflictError(row.id, row.version, settings.WEBHOOK_MAX_CAS_RETRIES)


def _publish_status_change(
    publisher: Optional[KafkaProducerService],
    row: UserDocumentStatusDB,
    plan: TransitionPlan,
    source: str,
):
    if publisher is None or not plan.status_changed:
        return
    message = DocumentStatusChangedMessage(
        user_document_id=row.id,
        employee_id=row.employee_id,
        template_id=row.template_id,
        from_status=plan.from_status,
        to_status=plan.to_status,
        source=source,
        submission_id=row.provider_submission_id,
        expires_at=row.expires_at,
    )
    try:
        publisher.publish_document_event(message)
    except KafkaProducerError as e:
        logger.error(f"Status change for user document {row.id} not published: {e}", exc_info=True)


async def _record_failure(
    db: AsyncIOMotorDatabase,
    entry: WebhookEventDB,
    error_message: str,
    employee_id: Optional[str],
    template_id: Optional[str],
) -> WebhookProcessingResult:
    try:
        await webhook_event_store.mark_failed(db, entry.id, error_message, employee_id, template_id)
    except Exception as e:
        logger.error(f"Could not record failure on webhook event {entry.id}: {e}", exc_info=True)
    webhook_events_received_counter.add(1, {"event.type": entry.event_type, "outcome": "failed"})
    return WebhookProcessingResult(success=False, event_id=entry.id, error=error_message)


async def _reconcile_entry(
    db: AsyncIOMotorDatabase,
    entry: WebhookEventDB,
    directory: AbstractEmployeeDirectory,
    publisher: Optional[KafkaProducerService],
) -> WebhookProcessingResult:
    current_span = trace.get_current_span()
    employee_id: Optional[str] = None
    template_id: Optional[str] = None
    try:
        payload = _parse_payload(entry.event_data)
        strategy = get_webhook_event_strategy(payload.event_type)
        employee = await _resolve_employee(directory, payload)
        employee_id = employee.employee_id
        template = await _resolve_template(db, payload)
        template_id = template.id
        current_span.set_attribute("employee.id", employee_id)
        current_span.set_attribute("template.id", template_id)

        plan, row = await _apply_transition(db, employee_id, template, strategy, payload, entry.event_data)
    except WriteConflictError as e:
        # Every competing writer applied the same forward-only rule; losing is harmless
        logger.warning(f"Webhook event {entry.id}: {e} Treating as applied.")
        current_span.add_event("WebhookWriteConflictTolerated", {"record.id": e.record_id})
        await webhook_event_store.mark_processed(db, entry.id, employee_id, template_id)
        webhook_events_received_counter.add(1, {"event.type": entry.event_type, "outcome": "conflict"})
        return WebhookProcessingResult(success=True, event_id=entry.id, user_document_id=e.record_id)
    except BaseDocumentComplianceError as e:
        logger.warning(f"Webhook event {entry.id} ({entry.event_type}) not applied: {e}")
        current_span.add_event("WebhookEventUnresolved", {"error": str(e)})
        return await _record_failure(db, entry, str(e), employee_id, template_id)

    await webhook_event_store.mark_processed(db, entry.id, employee_id, template_id)
    webhook_events_received_counter.add(1, {"event.type": entry.event_type, "outcome": "processed"})
    if plan.status_changed:
        document_status_transitions_counter.add(1, {"to_status": plan.to_status, "source": "webhook"})
        logger.info(
            f"User document {row.id} moved {plan.from_status} -> {plan.to_status} by webhook event {entry.id}."
        )
    else:
        logger.info(f"Webhook event {entry.id} left user document {row.id} at {row.status}; details recorded.")
    _publish_status_change(publisher, row, plan, source="webhook")

    return WebhookProcessingResult(
        success=True,
        event_id=entry.id,
        status_changed=plan.status_changed,
        user_document_id=row.id,
        from_status=plan.from_status,
        to_status=plan.to_status,
    )


async def process_webhook(
    db: AsyncIOMotorDatabase,
    raw_payload: Any,
    directory: AbstractEmployeeDirectory,
    publisher: Optional[KafkaProducerService] = None,
) -> WebhookProcessingResult:
    """
    Records an inbound provider event on the ledger and applies it to the matching row.

    Never raises: every outcome, including storage failures, comes back as a
    WebhookProcessingResult. Once the event is on the ledger the HTTP layer acknowledges
    it; recorded=False means the ledger append itself failed and nothing was kept.
    A redelivery of an event that was already applied is acknowledged without
    reprocessing; a redelivery of one that failed is retried.
    """
    with tracer.start_as_current_span("process_webhook") as span:
        try:
            entry, created = await webhook_event_store.append_event(db, _ledger_entry_for(raw_payload))
        except Exception as e:
            logger.error(f"Webhook event could not be recorded on the ledger: {e}", exc_info=True)
            span.record_exception(e)
            return WebhookProcessingResult(success=False, recorded=False, error=f"Ledger append failed: {e}")

        span.set_attribute("webhook.event_id", entry.id)
        span.set_attribute("webhook.event_type", entry.event_type)
        if not created and entry.is_processed:
            logger.info(f"Webhook event {entry.id} already processed; acknowledging redelivery.")
            webhook_events_received_counter.add(1, {"event.type": entry.event_type, "outcome": "duplicate"})
            return WebhookProcessingResult(success=True, event_id=entry.id, duplicate=True)

        try:
            return await _reconcile_entry(db, entry, directory, publisher)
        except Exception as e:
            logger.error(f"Unexpected error processing webhook event {entry.id}: {e}", exc_info=True)
            span.record_exception(e)
            return await _record_failure(db, entry, f"Unexpected error: {e}", None, None)


async def replay_webhook_event(
    db: AsyncIOMotorDatabase,
    event_id: str,
    directory: AbstractEmployeeDirectory,
    publisher: Optional[KafkaProducerService] = None,
) -> WebhookProcessingResult:
    """Re-runs resolution and the transition for a stored ledger entry, e.g. after a sync created its row."""
    entry = await webhook_event_store.get_event_by_id(db, event_id)
    if entry is None:
        raise EntityNotFoundError("WebhookEvent", event_id)
    with tracer.start_as_current_span("replay_webhook_event") as span:
        span.set_attribute("webhook.event_id", entry.id)
        logger.info(f"Replaying webhook event {entry.id} ({entry.event_type}).")
        return await _reconcile_entry(db, entry, directory, publisher)


async def purge_webhook_events(
    db: AsyncIOMotorDatabase,
    older_than_days: Optional[int] = None,
    now: Optional[datetime.datetime] = None,
) -> int:
    if older_than_days is None:
        older_than_days = settings.WEBHOOK_EVENT_RETENTION_DAYS
    if older_than_days < 0:
        raise DataValidationError("older_than_days must not be negative.")
    cutoff = (now or utc_now()) - datetime.timedelta(days=older_than_days)
    return await webhook_event_store.purge_events_older_than(db, cutoff)
