# Pydantic models for Kafka message structures
import datetime
import uuid
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from document_compliance_service.app.models import utc_now

EMPLOYEE_APPROVED = "EMPLOYEE_APPROVED"


# Inbound: employee lifecycle events from the user management service
class EmployeeLifecycleMessage(BaseModel):
    event_type: str # e.g., EMPLOYEE_APPROVED, EMPLOYEE_DEACTIVATED
    employee_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    role: str = "user"
    occurred_at: Optional[datetime.datetime] = None

    @field_validator("employee_id")
    @classmethod
    def employee_id_must_not_be_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("employee_id must not be blank")
        return v.strip()

    @field_validator("event_type")
    @classmethod
    def event_type_upper(cls, v: str) -> str:
        return v.strip().upper()


# Outbound: notifications about user document rows
class DocumentStatusChangedMessage(BaseModel):
    message_type: Literal["DocumentStatusChanged"] = "DocumentStatusChanged"
    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_document_id: str
    employee_id: str
    template_id: str
    from_status: str
    to_status: str
    source: str # "webhook", "manual_completion" or "override"
    submission_id: Optional[str] = None
    expires_at: Optional[datetime.datetime] = None
    occurred_at: datetime.datetime = Field(default_factory=utc_now)


class DocumentReminderDueMessage(BaseModel):
    message_type: Literal["DocumentReminderDue"] = "DocumentReminderDue"
    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_document_id: str
    employee_id: str
    employee_name: str
    template_id: str
    template_title: str
    expires_at: datetime.datetime
    occurred_at: datetime.datetime = Field(default_factory=utc_now)
