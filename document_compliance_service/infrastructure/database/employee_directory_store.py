# Employee directory backed by the shared users collection
import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from document_compliance_service.app.models import EmployeeRecord
from document_compliance_service.app.service.interfaces.employee_directory import (
    AbstractEmployeeDirectory, canonicalize_email
)
from .connection import USERS_COLLECTION

logger = logging.getLogger(__name__)


def _to_employee_record(doc: Dict[str, Any]) -> EmployeeRecord:
    employee_id = doc.get("id") or str(doc.get("_id"))
    return EmployeeRecord(
        employee_id=employee_id,
        display_name=doc.get("name") or doc.get("email") or employee_id,
        email=doc.get("email"),
        role=doc.get("role", "user"),
        status=doc.get("status", "pending"),
    )


class MongoEmployeeDirectory(AbstractEmployeeDirectory):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def list_approved_employees(self) -> List[EmployeeRecord]:
        cursor = self.db[USERS_COLLECTION].find({"status": "approved", "role": {"$ne": "admin"}}).sort("name", 1)
        docs = await cursor.to_list(length=None)
        employees = [_to_employee_record(doc) for doc in docs]
        logger.debug(f"Directory returned {len(employees)} approved employees.")
        return employees

    async def find_by_email(self, email: str) -> Optional[EmployeeRecord]:
        canonical = canonicalize_email(email)
        if not canonical:
            return None

        doc = await self.db[USERS_COLLECTION].find_one({"email": canonical})
        if doc is None and email.strip() != canonical:
            # Records written before addresses were canonicalized keep their original casing
            doc = await self.db[USERS_COLLECTION].find_one({"email": email.strip()})
        if doc is None:
            logger.info(f"No employee found for email {canonical}.")
            return None
        return _to_employee_record(doc)
