# Pydantic models for Commands
import datetime
import uuid
from typing import List, Optional

from pydantic import BaseModel, Field

from document_compliance_service.app.models import DocumentStatus


class BaseCommand(BaseModel):
    command_id: str = Field(default_factory=lambda: str(uuid.uuid4()))

# --- Category commands ---

class CreateCategoryCommand(BaseCommand):
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    created_by: str

class UpdateCategoryCommand(BaseCommand):
    category_id: str
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None

class DeactivateCategoryCommand(BaseCommand):
    category_id: str
    deactivated_by: Optional[str] = None

# --- Template commands ---

class CreateTemplateCommand(BaseCommand):
    title: str
    description: str = ""
    category_id: str
    provider_template_id: str
    provider_link: str
    is_required: bool = True
    expiry_days: Optional[int] = None
    reminder_days: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_by: str

class UpdateTemplateCommand(BaseCommand):
    # Only fields explicitly set are applied; an explicit None clears expiry_days/reminder_days
    template_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    provider_template_id: Optional[str] = None
    provider_link: Optional[str] = None
    is_required: Optional[bool] = None
    expiry_days: Optional[int] = None
    reminder_days: Optional[int] = None
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None

class DeactivateTemplateCommand(BaseCommand):
    template_id: str
    deactivated_by: Optional[str] = None

# --- Employee and user document commands ---

class ApproveEmployeeCommand(BaseCommand):
    employee_id: str
    display_name: str
    email: Optional[str] = None
    role: str = "user"

class ManuallyCompleteDocumentCommand(BaseCommand):
    user_document_id: str
    completed_by: str
    completed_at: Optional[datetime.datetime] = None # Defaults to now

class OverrideDocumentStatusCommand(BaseCommand):
    user_document_id: str
    new_status: DocumentStatus
    overridden_by: str
    reason: Optional[str] = None
