# API Router for Synchronization runs
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from document_compliance_service.app.config import MAX_SYNC_BATCH_SIZE
from document_compliance_service.app.service import synchronization
from document_compliance_service.app.service.commands import handlers as command_handlers
from document_compliance_service.app.service.commands import models as command_models
from document_compliance_service.app.service.interfaces.employee_directory import AbstractEmployeeDirectory
from document_compliance_service.app.service.synchronization import SyncReport
from document_compliance_service.infrastructure.database.connection import get_db
from document_compliance_service.infrastructure.employee_directory_client import get_employee_directory

logger = logging.getLogger(__name__)
router = APIRouter()


class EmployeeApprovalRequest(BaseModel):
    employee_id: str
    display_name: str
    email: Optional[str] = None
    role: str = "user"


@router.post("/sync/templates/{template_id}", response_model=SyncReport, tags=["Synchronization"])
async def sync_template_api(
    template_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    directory: AbstractEmployeeDirectory = Depends(get_employee_directory),
):
    try:
        return await synchronization.initialize_for_template(db, template_id, directory)
    except Exception as e:
        logger.error(f"Synchronization for template {template_id} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to synchronize template {template_id}.")

@router.post("/sync/employees", response_model=SyncReport, tags=["Synchronization"])
async def sync_approved_employee_api(
    request_data: EmployeeApprovalRequest = Body(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    try:
        cmd = command_models.ApproveEmployeeCommand(**request_data.model_dump())
        return await command_handlers.handle_approve_employee_command(db, cmd)
    except Exception as e:
        logger.error(f"Synchronization for employee {request_data.employee_id} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to synchronize employee {request_data.employee_id}.")

@router.post("/sync/sweep", response_model=SyncReport, tags=["Synchronization"])
async def full_sweep_api(
    batch_size: Optional[int] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    directory: AbstractEmployeeDirectory = Depends(get_employee_directory),
):
    if batch_size is not None and not 1 <= batch_size <= MAX_SYNC_BATCH_SIZE:
        raise HTTPException(
            status_code=400, detail=f"batch_size must be between 1 and {MAX_SYNC_BATCH_SIZE}."
        )
    try:
        return await synchronization.run_full_sweep(db, directory, batch_size=batch_size)
    except Exception as e:
        logger.error(f"Full synchronization sweep failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Full synchronization sweep failed.")
