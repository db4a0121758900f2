# Pydantic models for DocuSeal webhook payloads
import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Fields DocuSeal adds over time are accepted and ignored
_FORWARD_COMPATIBLE = ConfigDict(extra="ignore")


def _id_to_str(v: Union[str, int, None]) -> Optional[str]:
    if v is None:
        return None
    return str(v).strip()


class DocuSealTemplateRef(BaseModel):
    model_config = _FORWARD_COMPATIBLE

    id: str # DocuSeal sends numeric ids; stored as text
    name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def id_as_string(cls, v):
        return _id_to_str(v)


class DocuSealDocument(BaseModel):
    model_config = _FORWARD_COMPATIBLE

    name: Optional[str] = None
    url: Optional[str] = None


class DocuSealSubmissionData(BaseModel):
    model_config = _FORWARD_COMPATIBLE

    id: str # Provider submission id
    email: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
    opened_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    declined_at: Optional[datetime.datetime] = None
    documents: List[DocuSealDocument] = Field(default_factory=list)
    audit_log_url: Optional[str] = None
    submission_url: Optional[str] = None
    template: Optional[DocuSealTemplateRef] = None

    @field_validator("id", mode="before")
    @classmethod
    def id_as_string(cls, v):
        return _id_to_str(v)

    @field_validator("documents", mode="before")
    @classmethod
    def documents_default_to_empty(cls, v):
        return v or []


class DocuSealWebhookPayload(BaseModel):
    model_config = _FORWARD_COMPATIBLE

    event_type: str # e.g., "form.completed"
    event_id: Optional[str] = None # Present on newer DocuSeal deliveries
    timestamp: datetime.datetime
    data: DocuSealSubmissionData

    @field_validator("event_id", mode="before")
    @classmethod
    def event_id_as_string(cls, v):
        return _id_to_str(v)
