import datetime
import uuid
from typing import Any, Dict, Optional

from pydantic import Field

from .base_db import MongoDocumentModel, utc_now


class WebhookEventDB(MongoDocumentModel): # Append-only ledger of inbound provider notifications
    id: str = Field(default_factory=lambda: str(uuid.uuid4().hex))
    event_type: str # e.g., "form.completed"
    submission_id: Optional[str] = None
    employee_id: Optional[str] = None # Filled once resolution succeeds
    template_id: Optional[str] = None
    event_data: Any = None # Raw payload as received
    idempotency_key: str

    received_at: datetime.datetime = Field(default_factory=utc_now)
    processed_at: Optional[datetime.datetime] = None
    is_processed: bool = False
    error_message: Optional[str] = None
    attempts: int = 1 # Deliveries seen for this idempotency key
