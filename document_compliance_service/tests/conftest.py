from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import mongomock
import pytest
from fastapi.testclient import TestClient

from document_compliance_service.app.main import app
from document_compliance_service.app.models import EmployeeRecord
from document_compliance_service.app.service.interfaces.employee_directory import (
    AbstractEmployeeDirectory, canonicalize_email
)
from document_compliance_service.infrastructure.database.connection import get_db
from document_compliance_service.infrastructure.employee_directory_client import get_employee_directory
from document_compliance_service.infrastructure.kafka.producer import get_kafka_producer, get_optional_kafka_producer

ASYNC_COLLECTION_METHODS = (
    "find_one", "find_one_and_update", "insert_one", "update_one", "update_many", "delete_many", "count_documents",
)


def _async_cursor(sync_cursor):
    cursor = MagicMock()
    cursor.sort.side_effect = lambda *args, **kwargs: _async_cursor(sync_cursor.sort(*args, **kwargs))
    cursor.skip.side_effect = lambda n: _async_cursor(sync_cursor.skip(n))
    cursor.limit.side_effect = lambda n: _async_cursor(sync_cursor.limit(n))
    cursor.to_list = AsyncMock(side_effect=lambda length=None: list(sync_cursor))
    return cursor


def _async_collection(sync_collection):
    collection = MagicMock()
    for name in ASYNC_COLLECTION_METHODS:
        setattr(collection, name, AsyncMock(side_effect=getattr(sync_collection, name)))
    collection.find.side_effect = lambda *args, **kwargs: _async_cursor(sync_collection.find(*args, **kwargs))
    return collection


@pytest.fixture
def mongo_db():
    """An async-looking database whose collections are backed by mongomock."""
    sync_db = mongomock.MongoClient()["document_compliance_test_db"]
    collections: Dict[str, MagicMock] = {}

    def get_collection(name):
        if name not in collections:
            collections[name] = _async_collection(sync_db[name])
        return collections[name]

    db = MagicMock()
    db.__getitem__.side_effect = get_collection
    db.sync_db = sync_db
    return db


class InMemoryEmployeeDirectory(AbstractEmployeeDirectory):
    def __init__(self, employees: Optional[List[EmployeeRecord]] = None):
        self.employees = list(employees or [])

    async def list_approved_employees(self) -> List[EmployeeRecord]:
        return [employee for employee in self.employees if employee.is_eligible]

    async def find_by_email(self, email: str) -> Optional[EmployeeRecord]:
        canonical = canonicalize_email(email)
        for employee in self.employees:
            if canonicalize_email(employee.email) == canonical:
                return employee
        return None


@pytest.fixture
def directory():
    return InMemoryEmployeeDirectory([
        EmployeeRecord(employee_id="emp-1", display_name="Ada Lovelace", email="ada@example.com"),
        EmployeeRecord(employee_id="emp-2", display_name="Alan Turing", email="alan@example.com"),
        EmployeeRecord(employee_id="admin-1", display_name="Root", email="root@example.com", role="admin"),
    ])


@pytest.fixture
def publisher():
    return MagicMock()


@pytest.fixture
def api_client(mongo_db, directory, publisher):
    """TestClient with storage, directory and Kafka swapped for test doubles. Startup hooks do not run."""
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_employee_directory] = lambda: directory
    app.dependency_overrides[get_optional_kafka_producer] = lambda: publisher
    app.dependency_overrides[get_kafka_producer] = lambda: publisher
    yield TestClient(app)
    app.dependency_overrides.clear()
