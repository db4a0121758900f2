# Unit Tests for the employee events Kafka consumer
import json
import pytest
from unittest.mock import patch, AsyncMock, MagicMock
from confluent_kafka import Message
from pydantic import ValidationError

from document_compliance_service.infrastructure.kafka import consumer as kafka_consumer_module
from document_compliance_service.app.service.commands.models import ApproveEmployeeCommand
from document_compliance_service.app.service.synchronization import SyncReport

FAKE_DB = MagicMock(name="db")


async def fake_get_db():
    yield FAKE_DB

def kafka_message(value: bytes, offset: int = 100) -> MagicMock:
    msg = MagicMock(spec=Message)
    msg.value.return_value = value
    msg.error.return_value = None
    msg.topic.return_value = "employee_events"
    msg.partition.return_value = 0
    msg.offset.return_value = offset
    msg.headers.return_value = []
    msg.key.return_value = b"emp-1"
    return msg

APPROVAL = {"event_type": "employee_approved", "employee_id": "emp-1", "display_name": "Ada Lovelace", "email": "ada@example.com"}


# --- dispatch_employee_event ---

@pytest.mark.asyncio
@patch('document_compliance_service.infrastructure.kafka.consumer.handle_approve_employee_command', new_callable=AsyncMock)
async def test_dispatch_approval_runs_employee_sync(mock_handler):
    mock_handler.return_value = SyncReport(created=4)

    report = await kafka_consumer_module.dispatch_employee_event(APPROVAL, FAKE_DB)

    assert report.created == 4
    db_arg, command = mock_handler.call_args.args
    assert db_arg is FAKE_DB
    assert isinstance(command, ApproveEmployeeCommand)
    assert command.employee_id == "emp-1"
    assert command.display_name == "Ada Lovelace"

@pytest.mark.asyncio
@patch('document_compliance_service.infrastructure.kafka.consumer.handle_approve_employee_command', new_callable=AsyncMock)
async def test_dispatch_falls_back_to_email_for_display_name(mock_handler):
    mock_handler.return_value = SyncReport()
    await kafka_consumer_module.dispatch_employee_event(
        {"event_type": "EMPLOYEE_APPROVED", "employee_id": "emp-1", "email": "ada@example.com"}, FAKE_DB
    )
    assert mock_handler.call_args.args[1].display_name == "ada@example.com"

@pytest.mark.asyncio
@patch('document_compliance_service.infrastructure.kafka.consumer.handle_approve_employee_command', new_callable=AsyncMock)
async def test_dispatch_ignores_other_event_types(mock_handler):
    result = await kafka_consumer_module.dispatch_employee_event(
        {"event_type": "EMPLOYEE_DEACTIVATED", "employee_id": "emp-1"}, FAKE_DB
    )
    assert result is None
    mock_handler.assert_not_called()

@pytest.mark.asyncio
async def test_dispatch_rejects_invalid_message():
    with pytest.raises(ValidationError):
        await kafka_consumer_module.dispatch_employee_event({"event_type": "EMPLOYEE_APPROVED", "employee_id": "  "}, FAKE_DB)

# --- consume_kafka_events ---

@pytest.mark.asyncio
@patch('document_compliance_service.infrastructure.kafka.consumer.Consumer')
@patch('document_compliance_service.infrastructure.kafka.consumer.connect_to_mongo', MagicMock())
@patch('document_compliance_service.infrastructure.kafka.consumer.close_mongo_connection', MagicMock())
@patch('document_compliance_service.infrastructure.kafka.consumer.get_db', fake_get_db)
@patch('document_compliance_service.infrastructure.kafka.consumer.dispatch_employee_event', new_callable=AsyncMock)
@patch('document_compliance_service.infrastructure.kafka.consumer.kafka_messages_consumed_counter')
async def test_consume_kafka_events_success_path(mock_metrics_counter, mock_dispatch, mock_consumer_cls):
    mock_consumer_instance = MagicMock()
    mock_consumer_cls.return_value = mock_consumer_instance
    msg = kafka_message(json.dumps(APPROVAL).encode('utf-8'))
    mock_consumer_instance.poll.side_effect = [None, msg, KeyboardInterrupt("Stop test loop")]

    await kafka_consumer_module.consume_kafka_events()

    mock_consumer_instance.subscribe.assert_called_once_with(["employee_events"])
    mock_dispatch.assert_awaited_once_with(APPROVAL, FAKE_DB)
    mock_metrics_counter.add.assert_called_once_with(1, {"topic": "employee_events", "kafka_partition": "0"})
    mock_consumer_instance.commit.assert_called_once_with(message=msg, asynchronous=False)
    mock_consumer_instance.close.assert_called_once()
    kafka_consumer_module.close_mongo_connection.assert_called_once()

@pytest.mark.asyncio
@patch('document_compliance_service.infrastructure.kafka.consumer.Consumer')
@patch('document_compliance_service.infrastructure.kafka.consumer.connect_to_mongo', MagicMock())
@patch('document_compliance_service.infrastructure.kafka.consumer.close_mongo_connection', MagicMock())
@patch('document_compliance_service.infrastructure.kafka.consumer.get_db', fake_get_db)
@patch('document_compliance_service.infrastructure.kafka.consumer.dispatch_employee_event', new_callable=AsyncMock)
async def test_consume_kafka_events_skips_poison_message(mock_dispatch, mock_consumer_cls):
    mock_consumer_instance = MagicMock()
    mock_consumer_cls.return_value = mock_consumer_instance
    bad = kafka_message(b"this is not json", offset=101)
    good = kafka_message(json.dumps(APPROVAL).encode('utf-8'), offset=102)
    mock_consumer_instance.poll.side_effect = [bad, good, KeyboardInterrupt("Stop test")]

    await kafka_consumer_module.consume_kafka_events()

    mock_dispatch.assert_awaited_once_with(APPROVAL, FAKE_DB)
    committed = [c.kwargs["message"] for c in mock_consumer_instance.commit.call_args_list]
    assert committed == [bad, good]

@pytest.mark.asyncio
@patch('document_compliance_service.infrastructure.kafka.consumer.Consumer')
@patch('document_compliance_service.infrastructure.kafka.consumer.connect_to_mongo', MagicMock())
@patch('document_compliance_service.infrastructure.kafka.consumer.close_mongo_connection', MagicMock())
@patch('document_compliance_service.infrastructure.kafka.consumer.get_db', fake_get_db)
@patch('document_compliance_service.infrastructure.kafka.consumer.dispatch_employee_event', new_callable=AsyncMock)
async def test_consume_kafka_events_commits_after_processing_error(mock_dispatch, mock_consumer_cls):
    mock_consumer_instance = MagicMock()
    mock_consumer_cls.return_value = mock_consumer_instance
    msg = kafka_message(json.dumps(APPROVAL).encode('utf-8'))
    mock_dispatch.side_effect = RuntimeError("mongo unavailable")
    mock_consumer_instance.poll.side_effect = [msg, KeyboardInterrupt("Stop test")]

    await kafka_consumer_module.consume_kafka_events()

    mock_consumer_instance.commit.assert_called_once_with(message=msg, asynchronous=False)
    mock_consumer_instance.close.assert_called_once()
