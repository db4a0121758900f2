# Expiry reminders for completed documents
import datetime
import logging
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from document_compliance_service.app.models import RetentionPolicy, utc_now
from document_compliance_service.app.observability import tracer
from document_compliance_service.app.service.derived_state import is_reminder_due
from document_compliance_service.app.service.exceptions import KafkaProducerError
from document_compliance_service.infrastructure.database import template_store, user_document_store
from document_compliance_service.infrastructure.kafka.producer import KafkaProducerService
from document_compliance_service.infrastructure.kafka.schemas import DocumentReminderDueMessage

logger = logging.getLogger(__name__)


class ReminderRunReport(BaseModel):
    due: int = 0
    sent: int = 0
    failed: int = 0
    user_document_ids: List[str] = Field(default_factory=list)


async def send_due_reminders(
    db: AsyncIOMotorDatabase,
    publisher: KafkaProducerService,
    now: Optional[datetime.datetime] = None,
) -> ReminderRunReport:
    """
    Publishes a DocumentReminderDue message for every completed row whose template's
    reminder window has opened, then stamps last_reminder_sent. Only active templates
    with a reminder policy are considered.
    """
    now = now or utc_now()
    report = ReminderRunReport()
    with tracer.start_as_current_span("reminders.send_due") as span:
        templates = {
            template.id: template
            for template in await template_store.list_templates(db, RetentionPolicy.ACTIVE_ONLY)
            if template.reminder_days is not None and template.expiry_days is not None
        }
        rows = await user_document_store.list_completed_with_expiry(db, list(templates))
        for row in rows:
            template = templates[row.template_id]
            if not is_reminder_due(row, template, now):
                continue
            report.due += 1
            message = DocumentReminderDueMessage(
                user_document_id=row.id,
                employee_id=row.employee_id,
                employee_name=row.employee_name,
                template_id=template.id,
                template_title=template.title,
                expires_at=row.expires_at,
            )
            try:
                published = publisher.publish_document_event(message)
            except KafkaProducerError as e:
                report.failed += 1
                logger.error(f"Reminder for user document {row.id} not published: {e}")
                continue
            if not published:
                report.failed += 1
                logger.warning(f"Reminder for user document {row.id} dropped by a stopping producer; left unstamped.")
                continue
            await user_document_store.mark_reminder_sent(db, row.id, now)
            report.sent += 1
            report.user_document_ids.append(row.id)

        span.set_attribute("reminders.sent", report.sent)
        logger.info(f"Reminder run finished: {report.due} due, {report.sent} sent, {report.failed} failed.")
        return report
