# API Router for signing-provider webhooks and the webhook event ledger
import hmac
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from document_compliance_service.app.config import settings
from document_compliance_service.app.models import WebhookEventDB
from document_compliance_service.app.service import webhook_processor
from document_compliance_service.app.service.exceptions import DataValidationError, EntityNotFoundError
from document_compliance_service.app.service.interfaces.employee_directory import AbstractEmployeeDirectory
from document_compliance_service.app.service.webhook_processor import WebhookProcessingResult
from document_compliance_service.infrastructure.database import webhook_event_store
from document_compliance_service.infrastructure.database.connection import get_db
from document_compliance_service.infrastructure.employee_directory_client import get_employee_directory
from document_compliance_service.infrastructure.kafka.producer import KafkaProducerService, get_optional_kafka_producer

logger = logging.getLogger(__name__)
router = APIRouter()


def _verify_shared_secret(request: Request):
    if not settings.WEBHOOK_SECRET:
        return
    provided = request.headers.get(settings.WEBHOOK_SECRET_HEADER, "")
    if not hmac.compare_digest(provided.encode("utf-8"), settings.WEBHOOK_SECRET.encode("utf-8")):
        logger.warning(f"Rejected webhook delivery with missing or wrong {settings.WEBHOOK_SECRET_HEADER} header.")
        raise HTTPException(status_code=401, detail="Invalid webhook signature.")


@router.post("/webhooks/docuseal", response_model=WebhookProcessingResult, tags=["Webhooks"])
async def docuseal_webhook_api(
    request: Request,
    db: AsyncIOMotorDatabase = Depends(get_db),
    directory: AbstractEmployeeDirectory = Depends(get_employee_directory),
    publisher: Optional[KafkaProducerService] = Depends(get_optional_kafka_producer),
):
    """
    Receives DocuSeal notifications. Acknowledges with 200 once the event is on the
    ledger; processing failures are reported in the body and on the ledger entry.
    Answers 503 when the ledger itself is unavailable so the provider redelivers.
    """
    _verify_shared_secret(request)
    body = await request.body()
    try:
        raw_payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Webhook body is not valid JSON; recording it as-is.")
        raw_payload = {"unparseable_body": body.decode("utf-8", errors="replace")}
    result = await webhook_processor.process_webhook(db, raw_payload, directory, publisher)
    if not result.recorded:
        raise HTTPException(status_code=503, detail="Webhook event could not be recorded; retry later.")
    return result

@router.get("/webhooks/events", response_model=List[WebhookEventDB], tags=["Webhooks"])
async def list_webhook_events_api(
    limit: int = Query(default=20, ge=1, le=500),
    skip: int = Query(default=0, ge=0),
    is_processed: Optional[bool] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    try:
        return await webhook_event_store.list_recent_events(db, limit=limit, skip=skip, is_processed=is_processed)
    except Exception as e:
        logger.error(f"Error listing webhook events: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list webhook events.")

@router.get("/webhooks/events/{event_id}", response_model=WebhookEventDB, tags=["Webhooks"])
async def get_webhook_event_api(event_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    event = await webhook_event_store.get_event_by_id(db, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Webhook event ID {event_id} not found.")
    return event

@router.post("/webhooks/events/{event_id}/replay", response_model=WebhookProcessingResult, tags=["Webhooks"])
async def replay_webhook_event_api(
    event_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    directory: AbstractEmployeeDirectory = Depends(get_employee_directory),
    publisher: Optional[KafkaProducerService] = Depends(get_optional_kafka_producer),
):
    try:
        return await webhook_processor.replay_webhook_event(db, event_id, directory, publisher)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error replaying webhook event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to replay webhook event {event_id}.")

@router.delete("/webhooks/events", tags=["Webhooks"])
async def purge_webhook_events_api(
    older_than_days: Optional[int] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    try:
        deleted = await webhook_processor.purge_webhook_events(db, older_than_days)
        return {"deleted": deleted}
    except DataValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error purging webhook events: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to purge webhook events.")
