import datetime

import pytest
from pydantic import ValidationError

from document_compliance_service.app.models import (
    ActiveState, DocumentCategoryDB, DocumentStatus, DocumentTemplateDB, EmployeeRecord, RetentionPolicy,
    STATUS_RANK, STORED_STATUSES, UserDocumentStatusDB, retention_filter
)


def template(**overrides):
    data = dict(
        title="Safety Briefing", category_id="cat-1", provider_template_id="548893",
        provider_link="https://docuseal.example/d/abc", created_by="admin",
    )
    data.update(overrides)
    return DocumentTemplateDB(**data)


def test_status_rank_is_forward_only_with_shared_terminal_rank():
    assert STATUS_RANK["not_started"] < STATUS_RANK["viewed"] < STATUS_RANK["started"] < STATUS_RANK["completed"]
    assert STATUS_RANK["completed"] == STATUS_RANK["declined"]
    assert DocumentStatus.EXPIRED.value not in STORED_STATUSES

def test_retention_filters():
    assert retention_filter(RetentionPolicy.ACTIVE_ONLY) == {"active_state": "ACTIVE"}
    assert retention_filter(RetentionPolicy.INACTIVE_ONLY) == {"active_state": "INACTIVE"}
    assert retention_filter(RetentionPolicy.ALL) == {}

def test_category_name_is_trimmed_and_required():
    assert DocumentCategoryDB(name="  Safety ", created_by="admin").name == "Safety"
    with pytest.raises(ValidationError):
        DocumentCategoryDB(name="   ", created_by="admin")

def test_template_defaults():
    t = template()
    assert t.is_active
    assert t.is_required
    assert t.expiry_days is None
    assert t.tags == []

@pytest.mark.parametrize("expiry_days,reminder_days", [(30, 30), (30, 45), (-1, None), (None, -2)])
def test_template_rejects_inconsistent_policy(expiry_days, reminder_days):
    with pytest.raises(ValidationError):
        template(expiry_days=expiry_days, reminder_days=reminder_days)

def test_template_allows_reminder_without_expiry_and_zero_expiry():
    assert template(expiry_days=None, reminder_days=7).reminder_days == 7
    assert template(expiry_days=0).expiry_days == 0

def test_template_stores_enum_values():
    dumped = template(active_state=ActiveState.INACTIVE).model_dump()
    assert dumped["active_state"] == "INACTIVE"

def test_user_document_defaults_and_naive_datetimes():
    row = UserDocumentStatusDB(
        employee_id="emp-1", employee_name="Ada", template_id="tpl-1",
        completed_at=datetime.datetime(2024, 1, 1),
    )
    assert row.status == "not_started"
    assert row.version == 1
    assert row.rank == 0
    assert row.completed_at.tzinfo == datetime.UTC
    assert row.model_dump()["status"] == "not_started"

@pytest.mark.parametrize("record,eligible", [
    (EmployeeRecord(employee_id="e", display_name="E"), True),
    (EmployeeRecord(employee_id="e", display_name="E", role="admin"), False),
    (EmployeeRecord(employee_id="e", display_name="E", status="pending"), False),
])
def test_employee_eligibility(record, eligible):
    assert record.is_eligible is eligible
