import datetime
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field

from .base_db import MongoDocumentModel, utc_now


class DocumentStatus(str, Enum):
    NOT_STARTED = "not_started"
    VIEWED = "viewed"
    STARTED = "started"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired" # Display-only projection, never stored


# Forward-only ordering. COMPLETED and DECLINED share the terminal rank.
STATUS_RANK: Dict[str, int] = {
    DocumentStatus.NOT_STARTED.value: 0,
    DocumentStatus.VIEWED.value: 1,
    DocumentStatus.STARTED.value: 2,
    DocumentStatus.COMPLETED.value: 3,
    DocumentStatus.DECLINED.value: 3,
}

STORED_STATUSES = frozenset(STATUS_RANK)


class UserDocumentStatusDB(MongoDocumentModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    employee_id: str
    employee_name: str # Denormalized display name
    template_id: str
    status: DocumentStatus = DocumentStatus.NOT_STARTED

    # Provider linkage and artifacts
    provider_submission_id: Optional[str] = None
    completed_document_url: Optional[str] = None
    completed_document_name: Optional[str] = None
    audit_log_url: Optional[str] = None
    submission_url: Optional[str] = None

    # Milestones (viewed <= started <= completed; completed/declined exclusive)
    viewed_at: Optional[datetime.datetime] = None
    started_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    declined_at: Optional[datetime.datetime] = None
    expires_at: Optional[datetime.datetime] = None
    last_reminder_sent: Optional[datetime.datetime] = None

    webhook_data: Optional[Dict[str, Any]] = None # Last raw provider payload, diagnostics only

    # Administrator bypass
    is_manually_completed: bool = False
    manually_completed_by: Optional[str] = None
    manually_completed_at: Optional[datetime.datetime] = None

    version: int = 1 # Optimistic concurrency guard for read-modify-write

    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    @property
    def rank(self) -> int:
        return STATUS_RANK.get(self.status, 0)
