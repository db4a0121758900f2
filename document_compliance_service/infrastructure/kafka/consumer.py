# Kafka Consumer for employee lifecycle events
import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

from confluent_kafka import Consumer, KafkaError, KafkaException
from motor.motor_asyncio import AsyncIOMotorDatabase
from opentelemetry.trace import SpanKind
from opentelemetry.trace.status import Status, StatusCode
from pydantic import ValidationError

from document_compliance_service.app.config import settings
from document_compliance_service.app.observability import (
    extract_trace_context_from_kafka_headers,
    kafka_messages_consumed_counter,
    setup_opentelemetry,
    tracer,
)
from document_compliance_service.app.service.commands.handlers import handle_approve_employee_command
from document_compliance_service.app.service.commands.models import ApproveEmployeeCommand
from document_compliance_service.app.service.synchronization import SyncReport
from document_compliance_service.infrastructure.database.connection import (
    close_mongo_connection, connect_to_mongo, get_db
)
from .schemas import EMPLOYEE_APPROVED, EmployeeLifecycleMessage

logger = logging.getLogger(__name__)


async def dispatch_employee_event(message_data: Dict[str, Any], db: AsyncIOMotorDatabase) -> Optional[SyncReport]:
    """
    Validates one decoded employee event and runs the matching command.

    Returns the synchronization report for approvals, None for event types this service ignores.
    Raises pydantic.ValidationError for messages that do not match the schema.
    """
    start_time = time.monotonic()
    validated_message = EmployeeLifecycleMessage(**message_data)
    with tracer.start_as_current_span("dispatch_employee_event", kind=SpanKind.INTERNAL) as cmd_span:
        cmd_span.set_attribute("employee.id", validated_message.employee_id)
        cmd_span.set_attribute("employee.event_type", validated_message.event_type)

        if validated_message.event_type != EMPLOYEE_APPROVED:
            logger.info(
                f"Ignoring employee event {validated_message.event_type} for {validated_message.employee_id}."
            )
            return None

        command = ApproveEmployeeCommand(
            employee_id=validated_message.employee_id,
            display_name=validated_message.display_name or validated_message.email or validated_message.employee_id,
            email=validated_message.email,
            role=validated_message.role,
        )
        report = await handle_approve_employee_command(db, command)
        latency = time.monotonic() - start_time
        cmd_span.add_event("EmployeeSynchronized", {"sync.created": report.created, "latency_seconds": latency})
        logger.info(
            f"Employee {validated_message.employee_id} approved via Kafka; {report.created} rows created. "
            f"Latency: {latency:.4f}s"
        )
        return report


def _annotate_span(span, msg):
    span.set_attribute("messaging.system", "kafka")
    span.set_attribute("messaging.destination.name", msg.topic())
    span.set_attribute("messaging.kafka.partition", msg.partition())
    span.set_attribute("messaging.kafka.message.offset", msg.offset())
    if msg.key():
        span.set_attribute("messaging.kafka.message.key", msg.key().decode(errors='ignore'))


async def process_message(consumer: Consumer, msg, db: AsyncIOMotorDatabase):
    """
    Handles one polled message and commits its offset.

    The offset is committed on every outcome: malformed messages would otherwise block the
    partition, and approvals lost to a processing error are recovered by the full sweep.
    """
    position = f"{msg.topic()}/{msg.partition()}/{msg.offset()}"
    parent_context = extract_trace_context_from_kafka_headers(msg.headers())
    with tracer.start_as_current_span("employee_event_received", kind=SpanKind.CONSUMER, context=parent_context) as span:
        _annotate_span(span, msg)
        try:
            kafka_messages_consumed_counter.add(1, {"topic": msg.topic(), "kafka_partition": str(msg.partition())})
            logger.info(f"Consumed employee event from {position}")
            message_data = json.loads(msg.value().decode('utf-8'))
            await dispatch_employee_event(message_data, db)
            span.set_status(Status(StatusCode.OK))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            logger.error(f"Undecodable employee event at {position}: {e}", exc_info=True)
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, description=f"Invalid message: {type(e).__name__}"))
        except Exception as e:
            logger.error(f"Error processing employee event at {position}: {e}", exc_info=True)
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, description=f"Processing Error: {type(e).__name__}"))
        consumer.commit(message=msg, asynchronous=False)
        span.add_event("OffsetCommitted")


async def consume_kafka_events():
    """Runs the employee event loop until interrupted. Each approval synchronizes that employee's rows."""
    consumer = Consumer({
        'bootstrap.servers': settings.KAFKA_BOOTSTRAP_SERVERS,
        'group.id': settings.KAFKA_CONSUMER_GROUP_ID,
        'auto.offset.reset': 'earliest',
        'enable.auto.commit': False,
    })

    try:
        connect_to_mongo()
        db: Optional[AsyncIOMotorDatabase] = None
        async for session in get_db():
            db = session
            break
        if db is None:
            logger.error("Failed to obtain database session for consumer. Exiting.")
            return

        consumer.subscribe([settings.EMPLOYEE_EVENTS_KAFKA_TOPIC])
        logger.info(
            f"Subscribed to {settings.EMPLOYEE_EVENTS_KAFKA_TOPIC} as {settings.KAFKA_CONSUMER_GROUP_ID}. Waiting for messages..."
        )

        while True:
            msg = consumer.poll(timeout=1.0)
            if msg is None:
                await asyncio.sleep(0)
                continue
            if msg.error():
                if msg.error().code() == KafkaError._PARTITION_EOF:
                    continue
                logger.error(f"Kafka error at {msg.topic()}/{msg.partition()}/{msg.offset()}: {msg.error()}. Skipping.")
                consumer.commit(message=msg, asynchronous=False)
                continue
            await process_message(consumer, msg, db)
    except KeyboardInterrupt:
        logger.info("Employee event consumer interrupted.")
    except KafkaException as ke:
        logger.critical(f"Critical KafkaException in consumer: {ke}", exc_info=True)
    finally:
        consumer.close()
        close_mongo_connection()
        logger.info("Employee event consumer closed. MongoDB connection closed.")

if __name__ == '__main__':
    setup_opentelemetry(service_name=settings.SERVICE_NAME_CONSUMER)
    logger.info("Starting employee events consumer...")
    asyncio.run(consume_kafka_events())
