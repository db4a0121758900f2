# Publishes document notifications (status changes, expiry reminders) to Kafka
import asyncio
import logging
from typing import Optional, Union

from confluent_kafka import KafkaException, Producer

from document_compliance_service.app.config import settings
from document_compliance_service.app.observability import inject_trace_context_into_kafka_headers
from document_compliance_service.app.service.exceptions import ConfigurationError, KafkaProducerError
from .schemas import DocumentReminderDueMessage, DocumentStatusChangedMessage

logger = logging.getLogger(__name__)

DocumentEventMessage = Union[DocumentStatusChangedMessage, DocumentReminderDueMessage]

POLL_INTERVAL_SECONDS = 0.1
STOP_TIMEOUT_SECONDS = 5.0


class KafkaProducerService:
    """
    Thin wrapper over a confluent_kafka Producer.

    Messages are keyed by employee id so one employee's notifications land on one
    partition in order. Delivery reports are served by a background poll task that the
    FastAPI startup hook starts and the shutdown hook stops after a flush.
    """

    def __init__(self, bootstrap_servers: str, client_id: Optional[str] = None):
        self.producer_config = {
            'bootstrap.servers': bootstrap_servers,
            'client.id': client_id or settings.SERVICE_NAME_API,
            'enable.idempotence': True,
        }
        self.producer = Producer(self.producer_config)
        self.topic = settings.DOCUMENT_EVENTS_KAFKA_TOPIC
        self._cancelled = False
        self._poll_loop_task: Optional[asyncio.Task] = None
        logger.info(f"Document event producer created for {bootstrap_servers}, topic '{self.topic}'.")

    def _delivery_report(self, err, msg):
        if err is not None:
            logger.error(f'Document event delivery failed: Topic {msg.topic()} Key {msg.key()}: {err}')
        else:
            logger.debug(
                f'Document event delivered: Topic {msg.topic()} Key {msg.key()} '
                f'Partition [{msg.partition()}] @ Offset {msg.offset()}'
            )

    async def _poll_loop(self):
        while not self._cancelled:
            self.producer.poll(0)
            await asyncio.sleep(POLL_INTERVAL_SECONDS)
        logger.info("Document event producer poll loop stopped.")

    def publish_document_event(self, message: DocumentEventMessage) -> bool:
        """
        Enqueues one notification. Returns False when the producer is shutting down.

        Raises:
            KafkaProducerError: the local queue is full or the client rejected the message.
        """
        if self._cancelled:
            logger.warning(f"Producer is stopping; {message.message_type} for {message.user_document_id} dropped.")
            return False

        payload = message.model_dump_json()
        try:
            self.producer.produce(
                self.topic,
                value=payload.encode('utf-8'),
                key=message.employee_id.encode('utf-8'),
                headers=inject_trace_context_into_kafka_headers(),
                callback=self._delivery_report,
            )
        except (BufferError, KafkaException) as e:
            logger.error(f"Could not enqueue {message.message_type} on {self.topic}: {e}")
            raise KafkaProducerError(
                f"Could not publish {message.message_type} for {message.user_document_id}: {e}"
            ) from e
        logger.debug(f"{message.message_type} enqueued for user document {message.user_document_id}: {payload}")
        return True

    async def start_polling(self):
        if self._poll_loop_task is None or self._poll_loop_task.done():
            self._cancelled = False
            self._poll_loop_task = asyncio.create_task(self._poll_loop())
            logger.info("Document event producer polling started.")

    async def stop_polling(self):
        if self._poll_loop_task is None or self._cancelled:
            return
        self._cancelled = True
        try:
            await asyncio.wait_for(self._poll_loop_task, timeout=STOP_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Document event producer poll loop did not stop in time.")
        self._poll_loop_task = None

    def flush(self, timeout: float = 10.0) -> int:
        """Blocks until queued notifications are delivered or the timeout passes. Returns how many remain."""
        remaining = self.producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} document events still queued after flush timeout.")
        else:
            logger.info("All document events flushed.")
        return remaining


_kafka_producer_instance: Optional[KafkaProducerService] = None

def get_kafka_producer() -> KafkaProducerService:
    global _kafka_producer_instance
    if _kafka_producer_instance is None:
        if not settings.KAFKA_BOOTSTRAP_SERVERS:
            logger.error("KAFKA_BOOTSTRAP_SERVERS not configured in settings. KafkaProducer cannot be initialized.")
            raise ConfigurationError("KAFKA_BOOTSTRAP_SERVERS not configured.")
        _kafka_producer_instance = KafkaProducerService(bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS)
    return _kafka_producer_instance

def get_optional_kafka_producer() -> Optional[KafkaProducerService]:
    """For paths where publishing is best effort and must not fail the request."""
    try:
        return get_kafka_producer()
    except (ConfigurationError, KafkaException) as e:
        logger.warning(f"Kafka producer unavailable; notifications will not be published: {e}")
        return None

async def startup_kafka_producer():
    await get_kafka_producer().start_polling()

async def shutdown_kafka_producer():
    if _kafka_producer_instance is None:
        logger.info("Kafka producer was not initialized, skipping shutdown steps.")
        return
    logger.info("Flushing document events before shutdown...")
    _kafka_producer_instance.flush()
    await _kafka_producer_instance.stop_polling()
