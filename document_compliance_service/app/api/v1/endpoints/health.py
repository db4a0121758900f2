# API Router for Health Checks
import logging

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from document_compliance_service.app.config import settings
from document_compliance_service.infrastructure.database.connection import get_db

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/health", tags=["Monitoring"])
async def health_check(db: AsyncIOMotorDatabase = Depends(get_db)):
    mongodb_status = "connected"
    try:
        await db.command('ping')
    except Exception as e:
        logger.error(f"MongoDB health check ping failed: {e}")
        mongodb_status = "disconnected"
    directory = "http" if settings.EMPLOYEE_DIRECTORY_URL else "mongodb"
    return {
        "status": "ok",
        "components": {"mongodb": mongodb_status, "employee_directory": directory},
        "service_name": settings.SERVICE_NAME_API,
    }
