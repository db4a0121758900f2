from .active_state import ActiveState, RetentionPolicy, retention_filter
from .base_db import MongoDocumentModel, ensure_utc, utc_now
from .category_db import DocumentCategoryDB
from .template_db import DocumentTemplateDB
from .user_document_status_db import DocumentStatus, STATUS_RANK, STORED_STATUSES, UserDocumentStatusDB
from .webhook_event_db import WebhookEventDB
from .employee_record import EmployeeRecord

__all__ = [
    "ActiveState",
    "RetentionPolicy",
    "retention_filter",
    "MongoDocumentModel",
    "ensure_utc",
    "utc_now",
    "DocumentCategoryDB",
    "DocumentTemplateDB",
    "DocumentStatus",
    "STATUS_RANK",
    "STORED_STATUSES",
    "UserDocumentStatusDB",
    "WebhookEventDB",
    "EmployeeRecord",
]
