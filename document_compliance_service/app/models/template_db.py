import datetime
import uuid
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from .active_state import ActiveState
from .base_db import MongoDocumentModel, utc_now


class DocumentTemplateDB(MongoDocumentModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    title: str
    description: str = ""
    category_id: str # Must reference an existing category

    # Signing provider linkage
    provider_template_id: str # e.g., DocuSeal template ID "548893"
    provider_link: str # User-facing form URL

    # Policy
    is_required: bool = True
    expiry_days: Optional[int] = Field(default=None, ge=0) # Validity after completion; None never expires
    reminder_days: Optional[int] = Field(default=None, ge=0) # Lead time before expiry for a reminder
    tags: List[str] = Field(default_factory=list)

    active_state: ActiveState = ActiveState.ACTIVE
    created_by: str

    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    @field_validator("title", "category_id", "provider_template_id")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Field must not be blank")
        return v.strip()

    @model_validator(mode="after")
    def reminder_precedes_expiry(self):
        if self.reminder_days is not None and self.expiry_days is not None:
            if self.reminder_days >= self.expiry_days:
                raise ValueError("reminder_days must be less than expiry_days")
        return self

    @property
    def is_active(self) -> bool:
        return self.active_state == ActiveState.ACTIVE
