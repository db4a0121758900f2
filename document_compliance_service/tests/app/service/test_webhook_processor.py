import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from document_compliance_service.app.models import (
    ActiveState, DocumentTemplateDB, UserDocumentStatusDB, WebhookEventDB
)
from document_compliance_service.app.service import webhook_processor
from document_compliance_service.app.service.exceptions import DataValidationError, EntityNotFoundError
from document_compliance_service.infrastructure.database import user_document_store
from document_compliance_service.infrastructure.database.connection import (
    TEMPLATES_COLLECTION, USER_DOCUMENTS_COLLECTION, WEBHOOK_EVENTS_COLLECTION
)
from document_compliance_service.infrastructure.kafka.schemas import DocumentStatusChangedMessage


def make_template(**overrides) -> DocumentTemplateDB:
    data = dict(
        id="tpl-1", title="Safety Briefing", category_id="cat-1", provider_template_id="548893",
        provider_link="https://docuseal.example/d/abc", created_by="admin", expiry_days=90,
    )
    data.update(overrides)
    return DocumentTemplateDB(**data)


def webhook(event_type="form.completed", event_id="evt-1", email="ada@example.com", timestamp="2024-01-01T00:00:00Z", **data):
    body = {
        "id": 1001,
        "email": email,
        "template": {"id": 548893, "name": "Safety Briefing"},
        "documents": [{"name": "briefing.pdf", "url": "https://files.example/briefing.pdf"}],
    }
    body.update(data)
    raw = {"event_type": event_type, "timestamp": timestamp, "data": body}
    if event_id is not None:
        raw["event_id"] = event_id
    return raw


@pytest.fixture
def seeded_db(mongo_db):
    mongo_db.sync_db[TEMPLATES_COLLECTION].insert_one(make_template().model_dump())
    mongo_db.sync_db[USER_DOCUMENTS_COLLECTION].insert_one(
        UserDocumentStatusDB(id="row-1", employee_id="emp-1", employee_name="Ada Lovelace", template_id="tpl-1").model_dump()
    )
    return mongo_db


def stored_row(db) -> UserDocumentStatusDB:
    return UserDocumentStatusDB(**db.sync_db[USER_DOCUMENTS_COLLECTION].find_one({"id": "row-1"}))


def ledger(db):
    return [WebhookEventDB(**doc) for doc in db.sync_db[WEBHOOK_EVENTS_COLLECTION].find({})]


def test_idempotency_key_prefers_provider_event_id():
    assert webhook_processor.build_idempotency_key(webhook(event_id="abc")) == "docuseal:abc"

def test_idempotency_key_digest_is_stable_for_same_delivery():
    first = webhook_processor.build_idempotency_key(webhook(event_id=None))
    second = webhook_processor.build_idempotency_key(webhook(event_id=None))
    other = webhook_processor.build_idempotency_key(webhook(event_id=None, timestamp="2024-01-02T00:00:00Z"))
    assert first.startswith("sha256:")
    assert first == second
    assert first != other

@pytest.mark.asyncio
async def test_completed_webhook_updates_row_and_ledger(seeded_db, directory):
    result = await webhook_processor.process_webhook(seeded_db, webhook(), directory)

    assert result.success
    assert result.status_changed
    assert (result.from_status, result.to_status) == ("not_started", "completed")
    assert result.user_document_id == "row-1"

    row = stored_row(seeded_db)
    assert row.status == "completed"
    assert row.completed_at == datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC)
    assert row.expires_at == datetime.datetime(2024, 3, 31, tzinfo=datetime.UTC)
    assert row.completed_document_url == "https://files.example/briefing.pdf"
    assert row.provider_submission_id == "1001"
    assert row.version == 2

    [entry] = ledger(seeded_db)
    assert entry.is_processed
    assert entry.employee_id == "emp-1"
    assert entry.template_id == "tpl-1"
    assert entry.idempotency_key == "docuseal:evt-1"
    assert entry.attempts == 1

@pytest.mark.asyncio
async def test_duplicate_delivery_is_acknowledged_once(seeded_db, directory):
    first = await webhook_processor.process_webhook(seeded_db, webhook(), directory)
    second = await webhook_processor.process_webhook(seeded_db, webhook(), directory)

    assert first.success and not first.duplicate
    assert second.success and second.duplicate
    assert second.event_id == first.event_id
    [entry] = ledger(seeded_db)
    assert entry.attempts == 2
    assert stored_row(seeded_db).version == 2

@pytest.mark.asyncio
async def test_viewed_after_completed_does_not_regress(seeded_db, directory):
    await webhook_processor.process_webhook(seeded_db, webhook(), directory)
    result = await webhook_processor.process_webhook(
        seeded_db,
        webhook(event_type="form.viewed", event_id="evt-2", timestamp="2024-01-02T00:00:00Z"),
        directory,
    )

    assert result.success
    assert not result.status_changed
    row = stored_row(seeded_db)
    assert row.status == "completed"
    assert row.viewed_at is None # Viewed after completion would break milestone order
    assert row.webhook_data["event_type"] == "form.viewed"
    assert all(entry.is_processed for entry in ledger(seeded_db))

@pytest.mark.asyncio
async def test_email_matching_is_case_insensitive(seeded_db, directory):
    result = await webhook_processor.process_webhook(seeded_db, webhook(email="  ADA@Example.COM "), directory)
    assert result.success
    assert stored_row(seeded_db).status == "completed"

@pytest.mark.asyncio
async def test_unknown_email_is_recorded_without_touching_rows(seeded_db, directory):
    result = await webhook_processor.process_webhook(seeded_db, webhook(email="ghost@example.com"), directory)

    assert not result.success
    assert "ghost@example.com" in result.error
    [entry] = ledger(seeded_db)
    assert not entry.is_processed
    assert "ghost@example.com" in entry.error_message
    assert entry.processed_at is not None
    row = stored_row(seeded_db)
    assert row.status == "not_started"
    assert row.version == 1

@pytest.mark.asyncio
async def test_unknown_template_is_recorded(seeded_db, directory):
    raw = webhook(template={"id": 1, "name": "Unknown Form"})
    result = await webhook_processor.process_webhook(seeded_db, raw, directory)

    assert not result.success
    [entry] = ledger(seeded_db)
    assert entry.employee_id == "emp-1"
    assert entry.template_id is None
    assert "provider template" in entry.error_message

@pytest.mark.asyncio
async def test_template_resolved_by_title_when_provider_id_differs(seeded_db, directory):
    raw = webhook(template={"id": 999, "name": "Safety Briefing"})
    result = await webhook_processor.process_webhook(seeded_db, raw, directory)
    assert result.success
    assert stored_row(seeded_db).status == "completed"

@pytest.mark.asyncio
async def test_inactive_template_is_not_resolved(mongo_db, directory):
    mongo_db.sync_db[TEMPLATES_COLLECTION].insert_one(make_template(active_state=ActiveState.INACTIVE).model_dump())
    result = await webhook_processor.process_webhook(mongo_db, webhook(), directory)
    assert not result.success

@pytest.mark.asyncio
async def test_missing_status_row_is_not_created(mongo_db, directory):
    mongo_db.sync_db[TEMPLATES_COLLECTION].insert_one(make_template().model_dump())

    result = await webhook_processor.process_webhook(mongo_db, webhook(), directory)

    assert not result.success
    assert "No status row exists" in result.error
    assert mongo_db.sync_db[USER_DOCUMENTS_COLLECTION].count_documents({}) == 0
    [entry] = ledger(mongo_db)
    assert entry.employee_id == "emp-1"
    assert entry.template_id == "tpl-1"

@pytest.mark.asyncio
async def test_unsupported_event_type_is_recorded(seeded_db, directory):
    result = await webhook_processor.process_webhook(seeded_db, webhook(event_type="form.archived"), directory)

    assert not result.success
    assert "Unsupported event type" in result.error
    [entry] = ledger(seeded_db)
    assert entry.event_type == "form.archived"
    assert not entry.is_processed

@pytest.mark.asyncio
async def test_malformed_payload_is_recorded(seeded_db, directory):
    result = await webhook_processor.process_webhook(seeded_db, {"event_type": "form.completed"}, directory)

    assert not result.success
    assert "Malformed webhook payload" in result.error
    assert len(ledger(seeded_db)) == 1

@pytest.mark.asyncio
async def test_non_object_body_is_recorded(seeded_db, directory):
    result = await webhook_processor.process_webhook(seeded_db, ["not", "an", "object"], directory)

    assert not result.success
    [entry] = ledger(seeded_db)
    assert entry.event_type == "unknown"

@pytest.mark.asyncio
async def test_redelivery_of_failed_event_is_retried(mongo_db, directory):
    mongo_db.sync_db[TEMPLATES_COLLECTION].insert_one(make_template().model_dump())
    first = await webhook_processor.process_webhook(mongo_db, webhook(), directory)
    assert not first.success

    mongo_db.sync_db[USER_DOCUMENTS_COLLECTION].insert_one(
        UserDocumentStatusDB(id="row-1", employee_id="emp-1", employee_name="Ada Lovelace", template_id="tpl-1").model_dump()
    )
    second = await webhook_processor.process_webhook(mongo_db, webhook(), directory)

    assert second.success
    assert not second.duplicate
    assert second.event_id == first.event_id
    [entry] = ledger(mongo_db)
    assert entry.is_processed
    assert entry.error_message is None
    assert entry.attempts == 2

@pytest.mark.asyncio
async def test_replay_applies_stored_event(mongo_db, directory):
    mongo_db.sync_db[TEMPLATES_COLLECTION].insert_one(make_template().model_dump())
    failed = await webhook_processor.process_webhook(mongo_db, webhook(), directory)
    mongo_db.sync_db[USER_DOCUMENTS_COLLECTION].insert_one(
        UserDocumentStatusDB(id="row-1", employee_id="emp-1", employee_name="Ada Lovelace", template_id="tpl-1").model_dump()
    )

    result = await webhook_processor.replay_webhook_event(mongo_db, failed.event_id, directory)

    assert result.success
    assert stored_row(mongo_db).status == "completed"
    assert ledger(mongo_db)[0].is_processed

@pytest.mark.asyncio
async def test_replay_unknown_event_raises(mongo_db, directory):
    with pytest.raises(EntityNotFoundError):
        await webhook_processor.replay_webhook_event(mongo_db, "missing", directory)

@pytest.mark.asyncio
async def test_status_change_is_published(seeded_db, directory):
    publisher = MagicMock()

    await webhook_processor.process_webhook(seeded_db, webhook(), directory, publisher)

    publisher.publish_document_event.assert_called_once()
    message = publisher.publish_document_event.call_args[0][0]
    assert isinstance(message, DocumentStatusChangedMessage)
    assert message.employee_id == "emp-1"
    assert (message.from_status, message.to_status) == ("not_started", "completed")
    assert message.source == "webhook"
    assert message.expires_at == datetime.datetime(2024, 3, 31, tzinfo=datetime.UTC)

@pytest.mark.asyncio
async def test_no_publish_without_status_change(seeded_db, directory):
    publisher = MagicMock()
    await webhook_processor.process_webhook(seeded_db, webhook(), directory)

    await webhook_processor.process_webhook(seeded_db, webhook(event_type="form.viewed", event_id="evt-2"), directory, publisher)

    publisher.publish_document_event.assert_not_called()

@pytest.mark.asyncio
async def test_lost_version_race_is_replanned(seeded_db, directory, mocker):
    real_compare_and_set = user_document_store.compare_and_set
    calls = []

    async def flaky_compare_and_set(db, row_id, expected_version, fields):
        calls.append(expected_version)
        if len(calls) == 1:
            return None
        return await real_compare_and_set(db, row_id, expected_version, fields)

    mocker.patch.object(user_document_store, "compare_and_set", side_effect=flaky_compare_and_set)

    result = await webhook_processor.process_webhook(seeded_db, webhook(), directory)

    assert result.success
    assert len(calls) == 2
    assert stored_row(seeded_db).status == "completed"

@pytest.mark.asyncio
async def test_exhausted_version_races_are_tolerated(seeded_db, directory, mocker):
    mocker.patch.object(webhook_processor.settings, "WEBHOOK_MAX_CAS_RETRIES", 3)
    compare_and_set = mocker.patch.object(user_document_store, "compare_and_set", new=AsyncMock(return_value=None))

    result = await webhook_processor.process_webhook(seeded_db, webhook(), directory)

    assert result.success
    assert result.user_document_id == "row-1"
    assert compare_and_set.await_count == 3
    [entry] = ledger(seeded_db)
    assert entry.is_processed

@pytest.mark.asyncio
async def test_ledger_failure_is_reported_not_raised(directory):
    db = MagicMock()
    db.__getitem__.return_value.find_one_and_update = AsyncMock(side_effect=RuntimeError("mongo down"))

    result = await webhook_processor.process_webhook(db, webhook(), directory)

    assert not result.success
    assert not result.recorded
    assert result.event_id is None
    assert "Ledger append failed" in result.error

@pytest.mark.asyncio
async def test_purge_uses_retention_cutoff(mocker):
    purge = mocker.patch(
        "document_compliance_service.app.service.webhook_processor.webhook_event_store.purge_events_older_than",
        new=AsyncMock(return_value=4),
    )
    now = datetime.datetime(2024, 2, 1, tzinfo=datetime.UTC)

    deleted = await webhook_processor.purge_webhook_events(AsyncMock(), older_than_days=10, now=now)

    assert deleted == 4
    purge.assert_awaited_once()
    assert purge.call_args[0][1] == datetime.datetime(2024, 1, 22, tzinfo=datetime.UTC)

@pytest.mark.asyncio
async def test_purge_defaults_to_configured_retention(mocker):
    purge = mocker.patch(
        "document_compliance_service.app.service.webhook_processor.webhook_event_store.purge_events_older_than",
        new=AsyncMock(return_value=0),
    )
    mocker.patch.object(webhook_processor.settings, "WEBHOOK_EVENT_RETENTION_DAYS", 30)
    now = datetime.datetime(2024, 2, 1, tzinfo=datetime.UTC)

    await webhook_processor.purge_webhook_events(AsyncMock(), now=now)

    assert purge.call_args[0][1] == datetime.datetime(2024, 1, 2, tzinfo=datetime.UTC)

@pytest.mark.asyncio
async def test_purge_rejects_negative_window():
    with pytest.raises(DataValidationError):
        await webhook_processor.purge_webhook_events(AsyncMock(), older_than_days=-1)
