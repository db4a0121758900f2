# Unit Tests for the Employee Directory Service Client
import pytest
from unittest.mock import MagicMock
import httpx

from document_compliance_service.infrastructure import employee_directory_client
from document_compliance_service.infrastructure.employee_directory_client import EmployeeDirectoryServiceClient
from document_compliance_service.infrastructure.database.employee_directory_store import MongoEmployeeDirectory
from document_compliance_service.app import config as app_config

BASE_URL = "http://fake-directory.com/api/v1/"


@pytest.fixture(autouse=True)
def manage_directory_url():
    original_directory_url = app_config.settings.EMPLOYEE_DIRECTORY_URL
    yield
    app_config.settings.EMPLOYEE_DIRECTORY_URL = original_directory_url

def client_for(handler) -> EmployeeDirectoryServiceClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EmployeeDirectoryServiceClient(http_client=http_client, base_url=BASE_URL)


@pytest.mark.asyncio
async def test_list_approved_employees_keeps_only_eligible():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[
            {"employee_id": "emp-1", "display_name": "Ada", "email": "ada@example.com"},
            {"employee_id": "admin-1", "display_name": "Root", "role": "admin"},
            {"employee_id": "emp-2", "display_name": "New", "status": "pending"},
            "garbage",
        ])

    employees = await client_for(handler).list_approved_employees()

    assert [e.employee_id for e in employees] == ["emp-1"]
    assert str(seen[0].url) == "http://fake-directory.com/api/v1/employees?status=approved"

@pytest.mark.asyncio
async def test_find_by_email_sends_canonical_address():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"employee_id": "emp-1", "display_name": "Ada", "email": "ada@example.com"})

    employee = await client_for(handler).find_by_email("  ADA@Example.com ")

    assert employee.employee_id == "emp-1"
    assert seen[0].url.params["email"] == "ada@example.com"
    assert seen[0].url.path == "/api/v1/employees/lookup"

@pytest.mark.asyncio
async def test_find_by_email_not_found():
    client = client_for(lambda request: httpx.Response(404, json={"detail": "not found"}))
    assert await client.find_by_email("ghost@example.com") is None

@pytest.mark.asyncio
async def test_find_by_email_blank_skips_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert await client_for(handler).find_by_email("   ") is None

@pytest.mark.asyncio
async def test_find_by_email_server_error_propagates():
    client = client_for(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(httpx.HTTPStatusError):
        await client.find_by_email("ada@example.com")

@pytest.mark.asyncio
async def test_find_by_email_request_error_propagates():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(httpx.RequestError):
        await client_for(handler).find_by_email("ada@example.com")

def test_provider_prefers_http_directory_when_configured():
    app_config.settings.EMPLOYEE_DIRECTORY_URL = "http://directory:8080/api/v1"
    directory = employee_directory_client.get_employee_directory(http_client=MagicMock(), db=MagicMock())
    assert isinstance(directory, EmployeeDirectoryServiceClient)

def test_provider_falls_back_to_users_collection():
    app_config.settings.EMPLOYEE_DIRECTORY_URL = None
    directory = employee_directory_client.get_employee_directory(http_client=MagicMock(), db=MagicMock())
    assert isinstance(directory, MongoEmployeeDirectory)
