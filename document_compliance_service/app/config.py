# Application Configuration using Pydantic BaseSettings
import logging
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Hard ceiling on writes per bulk commit during synchronization sweeps
MAX_SYNC_BATCH_SIZE = 500


class AppSettings(BaseSettings):
    # MongoDB
    MONGO_DETAILS: str = "mongodb://mongo:27017"
    DB_NAME: str = "document_compliance_db"

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:29092"
    KAFKA_CONSUMER_GROUP_ID: str = "document_compliance_group"
    EMPLOYEE_EVENTS_KAFKA_TOPIC: str = "employee_events" # Inbound: employee approvals
    DOCUMENT_EVENTS_KAFKA_TOPIC: str = "document_events" # Outbound: status changes, reminders

    # Observability
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: Optional[str] = None
    OTEL_EXPORTER_OTLP_METRICS_ENDPOINT: Optional[str] = None
    SERVICE_NAME_API: str = "document-compliance-api"
    SERVICE_NAME_CONSUMER: str = "document-compliance-consumer"

    # Employee directory service; falls back to the local users collection when unset
    EMPLOYEE_DIRECTORY_URL: Optional[str] = None # e.g., http://directory:8080/api/v1
    DEFAULT_HTTP_TIMEOUT: float = 10.0

    # Synchronization
    SYNC_BATCH_SIZE: int = MAX_SYNC_BATCH_SIZE

    # Derived state / ledger retention
    EXPIRING_SOON_THRESHOLD_DAYS: int = 30
    WEBHOOK_EVENT_RETENTION_DAYS: int = 30

    # Webhook ingress
    WEBHOOK_SECRET_HEADER: str = "X-Docuseal-Signature"
    WEBHOOK_SECRET: Optional[str] = None
    WEBHOOK_MAX_CAS_RETRIES: int = 5

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("SYNC_BATCH_SIZE")
    @classmethod
    def batch_size_within_store_limit(cls, v: int) -> int:
        if v < 1 or v > MAX_SYNC_BATCH_SIZE:
            raise ValueError(f"SYNC_BATCH_SIZE must be between 1 and {MAX_SYNC_BATCH_SIZE}")
        return v


# Instantiate settings to be imported by other modules
settings = AppSettings()

logger = logging.getLogger(__name__)
logger.info("Application settings module initialized.")
