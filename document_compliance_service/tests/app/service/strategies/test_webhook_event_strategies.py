import datetime

import pytest

from document_compliance_service.app.models import DocumentStatus
from document_compliance_service.app.service.exceptions import DataValidationError
from document_compliance_service.app.service.strategies.webhook_event_strategies import (
    CompletedEventStrategy, DeclinedEventStrategy, StartedEventStrategy, SubmissionCreatedEventStrategy,
    SUPPORTED_EVENT_TYPES, ViewedEventStrategy, get_webhook_event_strategy
)
from document_compliance_service.infrastructure.docuseal.schemas import DocuSealWebhookPayload

T0 = datetime.datetime(2024, 5, 1, 9, 0, tzinfo=datetime.UTC)


def payload(event_type: str, **data) -> DocuSealWebhookPayload:
    body = {"id": 1001, "email": "ada@example.com", "template": {"id": 548893, "name": "Safety Briefing"}}
    body.update(data)
    return DocuSealWebhookPayload(event_type=event_type, timestamp="2024-05-01T12:00:00Z", data=body)


@pytest.mark.parametrize("event_type,expected", [
    ("form.viewed", ViewedEventStrategy),
    ("form.opened", ViewedEventStrategy),
    ("form.started", StartedEventStrategy),
    ("submission.created", SubmissionCreatedEventStrategy),
    ("form.completed", CompletedEventStrategy),
    ("submission.completed", CompletedEventStrategy),
    ("form.declined", DeclinedEventStrategy),
])
def test_get_webhook_event_strategy(event_type, expected):
    strategy = get_webhook_event_strategy(event_type)
    assert isinstance(strategy, expected)
    assert event_type in SUPPORTED_EVENT_TYPES

def test_unsupported_event_type_rejected():
    with pytest.raises(DataValidationError, match="Unsupported event type 'form.archived'"):
        get_webhook_event_strategy("form.archived")

def test_submission_created_targets_started():
    assert get_webhook_event_strategy("submission.created").target_status == DocumentStatus.STARTED

def test_viewed_prefers_opened_at():
    event = payload("form.viewed", opened_at="2024-05-01T09:00:00Z")
    assert ViewedEventStrategy().event_milestones(event) == {"viewed_at": T0}

def test_viewed_falls_back_to_timestamp():
    event = payload("form.viewed")
    assert ViewedEventStrategy().event_milestones(event)["viewed_at"] == datetime.datetime(2024, 5, 1, 12, tzinfo=datetime.UTC)

def test_started_backfills_viewed_from_opened_at():
    event = payload("form.started", opened_at="2024-05-01T09:00:00Z")
    milestones = StartedEventStrategy().event_milestones(event)
    assert milestones["viewed_at"] == T0
    assert milestones["started_at"] == datetime.datetime(2024, 5, 1, 12, tzinfo=datetime.UTC)

def test_submission_created_uses_created_at():
    event = payload("submission.created", created_at="2024-05-01T09:00:00Z")
    assert SubmissionCreatedEventStrategy().event_milestones(event) == {"started_at": T0}

def test_completed_milestones_and_artifacts():
    event = payload(
        "form.completed",
        opened_at="2024-05-01T08:00:00Z",
        created_at="2024-05-01T08:30:00Z",
        completed_at="2024-05-01T09:00:00Z",
        documents=[{"name": "briefing.pdf", "url": "https://files.example/briefing.pdf"}, {"name": "other.pdf"}],
        audit_log_url="https://files.example/audit.pdf",
        submission_url="https://docuseal.example/s/1001",
    )
    strategy = CompletedEventStrategy()

    milestones = strategy.event_milestones(event)
    assert milestones["completed_at"] == T0
    assert milestones["viewed_at"] == datetime.datetime(2024, 5, 1, 8, tzinfo=datetime.UTC)
    assert milestones["started_at"] == datetime.datetime(2024, 5, 1, 8, 30, tzinfo=datetime.UTC)

    assert strategy.completion_artifacts(event) == {
        "completed_document_url": "https://files.example/briefing.pdf",
        "completed_document_name": "briefing.pdf",
        "audit_log_url": "https://files.example/audit.pdf",
        "submission_url": "https://docuseal.example/s/1001",
    }

def test_completed_without_documents_has_no_artifacts():
    assert CompletedEventStrategy().completion_artifacts(payload("form.completed", documents=None)) == {}

def test_declined_uses_declined_at():
    event = payload("form.declined", declined_at="2024-05-01T09:00:00Z")
    assert DeclinedEventStrategy().event_milestones(event) == {"declined_at": T0}
    assert DeclinedEventStrategy().completion_artifacts(event) == {}
