# Client for an external Employee Directory microservice
import logging
from typing import List, Optional

import httpx
from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from document_compliance_service.app.config import settings
from document_compliance_service.app.dependencies.http_client import get_http_client
from document_compliance_service.app.models import EmployeeRecord
from document_compliance_service.app.service.interfaces.employee_directory import (
    AbstractEmployeeDirectory, canonicalize_email
)
from document_compliance_service.infrastructure.database.connection import get_db
from document_compliance_service.infrastructure.database.employee_directory_store import MongoEmployeeDirectory

logger = logging.getLogger(__name__)


class EmployeeDirectoryServiceClient(AbstractEmployeeDirectory):
    def __init__(self, http_client: httpx.AsyncClient, base_url: str):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

    async def list_approved_employees(self) -> List[EmployeeRecord]:
        request_url = f"{self.base_url}/employees"
        response = await self.http_client.get(request_url, params={"status": "approved"})
        response.raise_for_status()

        employees = []
        for item in response.json():
            if not isinstance(item, dict):
                continue
            record = EmployeeRecord(**item)
            if record.is_eligible:
                employees.append(record)
        logger.info(f"Employee directory service returned {len(employees)} eligible employees.")
        return employees

    async def find_by_email(self, email: str) -> Optional[EmployeeRecord]:
        canonical = canonicalize_email(email)
        if not canonical:
            return None

        request_url = f"{self.base_url}/employees/lookup"
        try:
            response = await self.http_client.get(request_url, params={"email": canonical})
            if response.status_code == 404:
                logger.info(f"Employee directory has no employee for email {canonical}.")
                return None
            response.raise_for_status()
            return EmployeeRecord(**response.json())
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error calling employee directory: {e.response.status_code} - {e.response.text}", exc_info=True)
            raise
        except httpx.RequestError as e:
            logger.error(f"Request error calling employee directory: {e}", exc_info=True)
            raise


# DI provider: HTTP directory when configured, local users collection otherwise
def get_employee_directory(
    http_client: httpx.AsyncClient = Depends(get_http_client),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> AbstractEmployeeDirectory:
    if settings.EMPLOYEE_DIRECTORY_URL:
        return EmployeeDirectoryServiceClient(http_client=http_client, base_url=settings.EMPLOYEE_DIRECTORY_URL)
    return MongoEmployeeDirectory(db)
