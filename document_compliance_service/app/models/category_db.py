import datetime
import uuid
from typing import Optional

from pydantic import Field, field_validator

from .active_state import ActiveState
from .base_db import MongoDocumentModel, utc_now


class DocumentCategoryDB(MongoDocumentModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    name: str # e.g., "Onboarding", "Safety"
    description: Optional[str] = None
    color: Optional[str] = None # UI differentiation only
    active_state: ActiveState = ActiveState.ACTIVE
    created_by: str # Administrator who created it

    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    @field_validator("name")
    @classmethod
    def name_must_not_be_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Category name must not be blank")
        return v.strip()

    @property
    def is_active(self) -> bool:
        return self.active_state == ActiveState.ACTIVE
