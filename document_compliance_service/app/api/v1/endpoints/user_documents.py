# API Router for User Document Status records
import datetime
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from document_compliance_service.app.models import DocumentStatus, UserDocumentStatusDB, utc_now
from document_compliance_service.app.service import derived_state
from document_compliance_service.app.service.commands import handlers as command_handlers
from document_compliance_service.app.service.commands import models as command_models
from document_compliance_service.app.service.exceptions import DataValidationError, EntityNotFoundError
from document_compliance_service.app.service.reminders import ReminderRunReport, send_due_reminders
from document_compliance_service.infrastructure.database import user_document_store
from document_compliance_service.infrastructure.database.connection import get_db
from document_compliance_service.infrastructure.kafka.producer import (
    KafkaProducerService, get_kafka_producer, get_optional_kafka_producer
)

logger = logging.getLogger(__name__)
router = APIRouter()


class UserDocumentView(UserDocumentStatusDB):
    display_status: str
    is_expired: bool
    is_expiring_soon: bool

    @classmethod
    def from_row(cls, row: UserDocumentStatusDB, now: datetime.datetime) -> "UserDocumentView":
        return cls(
            **row.model_dump(),
            display_status=derived_state.display_status(row, now),
            is_expired=derived_state.is_expired(row, now),
            is_expiring_soon=derived_state.is_expiring_soon(row, now),
        )

class ManualCompletionRequest(BaseModel):
    completed_by: str
    completed_at: Optional[datetime.datetime] = None

class StatusOverrideRequest(BaseModel):
    new_status: DocumentStatus
    overridden_by: str
    reason: Optional[str] = None


def _views(rows: List[UserDocumentStatusDB]) -> List[UserDocumentView]:
    now = utc_now()
    return [UserDocumentView.from_row(row, now) for row in rows]


@router.get("/user-documents", response_model=List[UserDocumentView], tags=["User Documents"])
async def list_all_user_documents_api(db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        return _views(await user_document_store.get_all(db))
    except Exception as e:
        logger.error(f"Error listing user documents: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list user documents.")

@router.get("/user-documents/employee/{employee_id}", response_model=List[UserDocumentView], tags=["User Documents"])
async def list_user_documents_for_employee_api(employee_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        return _views(await user_document_store.get_for_employee(db, employee_id))
    except Exception as e:
        logger.error(f"Error listing user documents for employee {employee_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list user documents for employee {employee_id}.")

@router.get(
    "/user-documents/employee/{employee_id}/template/{template_id}",
    response_model=UserDocumentView,
    tags=["User Documents"],
)
async def get_user_document_for_pair_api(employee_id: str, template_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    row = await user_document_store.get_one(db, employee_id, template_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"No user document for employee {employee_id} and template {template_id}.")
    return UserDocumentView.from_row(row, utc_now())

@router.post(
    "/user-documents/{user_document_id}/manual-completion",
    response_model=UserDocumentView,
    tags=["User Documents"],
)
async def manually_complete_user_document_api(
    user_document_id: str,
    request_data: ManualCompletionRequest = Body(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
    publisher: Optional[KafkaProducerService] = Depends(get_optional_kafka_producer),
):
    try:
        cmd = command_models.ManuallyCompleteDocumentCommand(
            user_document_id=user_document_id, **request_data.model_dump()
        )
        row = await command_handlers.handle_manually_complete_document_command(db, cmd, publisher)
        return UserDocumentView.from_row(row, utc_now())
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error completing user document {user_document_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to complete user document.")

@router.put("/user-documents/{user_document_id}/status", response_model=UserDocumentView, tags=["User Documents"])
async def override_user_document_status_api(
    user_document_id: str,
    request_data: StatusOverrideRequest = Body(...),
    db: AsyncIOMotorDatabase = Depends(get_db),
    publisher: Optional[KafkaProducerService] = Depends(get_optional_kafka_producer),
):
    try:
        cmd = command_models.OverrideDocumentStatusCommand(
            user_document_id=user_document_id, **request_data.model_dump()
        )
        row = await command_handlers.handle_override_document_status_command(db, cmd, publisher)
        return UserDocumentView.from_row(row, utc_now())
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DataValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error overriding status of user document {user_document_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to override user document status.")

@router.post("/user-documents/reminders", response_model=ReminderRunReport, tags=["User Documents"])
async def send_due_reminders_api(
    db: AsyncIOMotorDatabase = Depends(get_db),
    publisher: KafkaProducerService = Depends(get_kafka_producer),
):
    try:
        return await send_due_reminders(db, publisher)
    except Exception as e:
        logger.error(f"Unexpected error sending reminders: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to send reminders.")
