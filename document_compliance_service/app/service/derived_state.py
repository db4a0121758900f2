# Read-time projections over user document rows. Nothing here writes to the store.
import datetime
from typing import Optional

from document_compliance_service.app.config import settings
from document_compliance_service.app.models import (
    DocumentStatus, DocumentTemplateDB, UserDocumentStatusDB, ensure_utc, utc_now
)


def _now_or_default(now: Optional[datetime.datetime]) -> datetime.datetime:
    return ensure_utc(now) if now is not None else utc_now()


def compute_expires_at(
    completed_at: Optional[datetime.datetime], expiry_days: Optional[int]
) -> Optional[datetime.datetime]:
    """Expiry instant for a completion. None when either side is unknown; 0 days expires at completion."""
    if completed_at is None or expiry_days is None:
        return None
    return ensure_utc(completed_at) + datetime.timedelta(days=expiry_days)


def is_expired(row: UserDocumentStatusDB, now: Optional[datetime.datetime] = None) -> bool:
    if row.expires_at is None:
        return False
    return _now_or_default(now) >= ensure_utc(row.expires_at)


def is_expiring_soon(
    row: UserDocumentStatusDB,
    now: Optional[datetime.datetime] = None,
    threshold_days: Optional[int] = None,
) -> bool:
    if row.expires_at is None:
        return False
    if threshold_days is None:
        threshold_days = settings.EXPIRING_SOON_THRESHOLD_DAYS
    current = _now_or_default(now)
    expires_at = ensure_utc(row.expires_at)
    return current < expires_at <= current + datetime.timedelta(days=threshold_days)


def display_status(row: UserDocumentStatusDB, now: Optional[datetime.datetime] = None) -> str:
    """The stored status, or "expired" once the validity window has passed."""
    if is_expired(row, now):
        return DocumentStatus.EXPIRED.value
    return row.status


def reminder_window_opens_at(
    row: UserDocumentStatusDB, template: DocumentTemplateDB
) -> Optional[datetime.datetime]:
    if row.expires_at is None or template.reminder_days is None:
        return None
    return ensure_utc(row.expires_at) - datetime.timedelta(days=template.reminder_days)


def is_reminder_due(
    row: UserDocumentStatusDB,
    template: DocumentTemplateDB,
    now: Optional[datetime.datetime] = None,
) -> bool:
    """
    True when a completed, still-valid document has entered its template's reminder
    window and no reminder has been sent since that window opened.

    Deactivated templates never produce reminders.
    """
    if not template.is_active or row.status != DocumentStatus.COMPLETED.value:
        return False
    window_opens_at = reminder_window_opens_at(row, template)
    if window_opens_at is None:
        return False

    current = _now_or_default(now)
    if is_expired(row, current) or current < window_opens_at:
        return False
    if row.last_reminder_sent is not None and ensure_utc(row.last_reminder_sent) >= window_opens_at:
        return False
    return True
