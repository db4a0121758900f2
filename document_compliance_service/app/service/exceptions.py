"""
Custom exceptions for the Document Compliance service.
"""
from typing import Optional


class BaseDocumentComplianceError(Exception):
    """Base class for exceptions in this module."""
    pass

class EntityNotFoundError(BaseDocumentComplianceError):
    """Raised when a referenced category, template or user document record is absent."""
    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} with ID '{entity_id}' not found.")

class DataValidationError(BaseDocumentComplianceError):
    """Raised when create/update input is malformed. Nothing has been written."""
    pass

class UnresolvedReferenceError(BaseDocumentComplianceError):
    """Raised when a webhook cannot be matched to an employee, template or status record."""
    def __init__(self, reference_type: str, reference_value: Optional[str], detail: Optional[str] = None):
        self.reference_type = reference_type
        self.reference_value = reference_value
        message = f"Unresolved {reference_type} reference '{reference_value}'."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)

class WriteConflictError(BaseDocumentComplianceError):
    """Raised when a conditional update keeps losing to concurrent writers."""
    def __init__(self, record_id: str, expected_version: int, attempts: int):
        self.record_id = record_id
        self.expected_version = expected_version
        self.attempts = attempts
        super().__init__(
            f"Write conflict on record '{record_id}': version guard {expected_version} "
            f"lost the race after {attempts} attempt(s)."
        )

class BatchPartialFailureError(BaseDocumentComplianceError):
    """Raised (and logged) when one chunk of a synchronization run fails to commit."""
    def __init__(self, chunk_index: int, chunk_size: int, created: int, cause: Exception):
        self.chunk_index = chunk_index
        self.chunk_size = chunk_size
        self.created = created
        self.cause = cause
        super().__init__(
            f"Synchronization chunk {chunk_index} ({chunk_size} rows) partially failed; "
            f"{created} created before failure: {cause}"
        )

class ConfigurationError(BaseDocumentComplianceError):
    """Raised when a configuration issue is detected."""
    pass

class KafkaProducerError(BaseDocumentComplianceError):
    """Raised when there's an issue with Kafka message production."""
    pass
