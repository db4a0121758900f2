# API Router for Document Templates
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from document_compliance_service.app.models import DocumentTemplateDB, RetentionPolicy
from document_compliance_service.app.service.commands import handlers as command_handlers
from document_compliance_service.app.service.commands import models as command_models
from document_compliance_service.app.service.exceptions import DataValidationError, EntityNotFoundError
from document_compliance_service.app.service.interfaces.employee_directory import AbstractEmployeeDirectory
from document_compliance_service.app.service.synchronization import SyncReport
from document_compliance_service.infrastructure.database import template_store
from document_compliance_service.infrastructure.database.connection import get_db
from document_compliance_service.infrastructure.employee_directory_client import get_employee_directory

logger = logging.getLogger(__name__)
router = APIRouter()


class CreateTemplateRequest(BaseModel):
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

class UpdateTemplateRequest(BaseModel):
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

class TemplateWriteResponse(BaseModel):
    template: DocumentTemplateDB
    sync_report: Optional[SyncReport] = None


@router.get("/templates", response_model=List[DocumentTemplateDB], tags=["Templates"])
async def list_templates_api(
    retention: RetentionPolicy = RetentionPolicy.ACTIVE_ONLY,
    category_id: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    try:
        if category_id:
            return await template_store.list_templates_by_category(db, category_id, retention)
        return await template_store.list_templates(db, retention)
    except Exception as e:
        logger.error(f"Error listing templates: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list templates.")

@router.get("/templates/{template_id}", response_model=DocumentTemplateDB, tags=["Templates"])
async def get_template_api(template_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    template = await template_store.get_template_by_id(db, template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Template ID {template_id} not found.")
    return template

@router.post("/templates", response_model=TemplateWriteResponse, status_code=201, tags=["Templates"])
async def create_template_api(
    request_data: CreateTemplateRequest = Body(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
    directory: AbstractEmployeeDirectory = Depends(get_employee_directory),
):
    try:
        cmd = command_models.CreateTemplateCommand(**request_data.model_dump())
        template, sync_report = await command_handlers.handle_create_template_command(db, cmd, directory)
        return TemplateWriteResponse(template=template, sync_report=sync_report)
    except DataValidationError as e:
        logger.warning(f"Validation error creating template: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error creating template: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create template.")

@router.patch("/templates/{template_id}", response_model=TemplateWriteResponse, tags=["Templates"])
async def update_template_api(
    template_id: str,
    request_data: UpdateTemplateRequest = Body(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
    directory: AbstractEmployeeDirectory = Depends(get_employee_directory),
):
    try:
        cmd = command_models.UpdateTemplateCommand(
            template_id=template_id, **request_data.model_dump(exclude_unset=True)
        )
        template, sync_report = await command_handlers.handle_update_template_command(db, cmd, directory)
        return TemplateWriteResponse(template=template, sync_report=sync_report)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DataValidationError as e:
        logger.warning(f"Validation error updating template {template_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error updating template {template_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update template.")

@router.delete("/templates/{template_id}", response_model=DocumentTemplateDB, tags=["Templates"])
async def deactivate_template_api(
    template_id: str,
    deactivated_by: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    try:
        cmd = command_models.DeactivateTemplateCommand(template_id=template_id, deactivated_by=deactivated_by)
        return await command_handlers.handle_deactivate_template_command(db, cmd)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error deactivating template {template_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to deactivate template.")
