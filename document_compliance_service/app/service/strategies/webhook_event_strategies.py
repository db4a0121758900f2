import datetime
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from document_compliance_service.app.models import DocumentStatus, ensure_utc
from document_compliance_service.app.service.exceptions import DataValidationError
from document_compliance_service.infrastructure.docuseal.schemas import DocuSealWebhookPayload


def _first_known(*values: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    for value in values:
        if value is not None:
            return ensure_utc(value)
    return None


class WebhookEventStrategy(ABC):
    target_status: DocumentStatus
    milestone_field: str

    @abstractmethod
    def event_milestones(self, payload: DocuSealWebhookPayload) -> Dict[str, datetime.datetime]:
        """
        Collects the milestone timestamps this event carries.

        Args:
            payload: The validated provider payload.

        Returns:
            A mapping of milestone field name to its provider-side timestamp. The entry for
            `milestone_field` is always present; earlier milestones the provider echoes back
            (e.g. `opened_at`) are included when available so unset fields can be back-filled.
        """
        pass

    def completion_artifacts(self, payload: DocuSealWebhookPayload) -> Dict[str, Any]:
        return {}


class ViewedEventStrategy(WebhookEventStrategy):
    target_status = DocumentStatus.VIEWED
    milestone_field = "viewed_at"

    def event_milestones(self, payload: DocuSealWebhookPayload) -> Dict[str, datetime.datetime]:
        return {"viewed_at": _first_known(payload.data.opened_at, payload.timestamp)}


class StartedEventStrategy(WebhookEventStrategy):
    target_status = DocumentStatus.STARTED
    milestone_field = "started_at"

    def event_milestones(self, payload: DocuSealWebhookPayload) -> Dict[str, datetime.datetime]:
        milestones = {"started_at": ensure_utc(payload.timestamp)}
        if payload.data.opened_at:
            milestones["viewed_at"] = ensure_utc(payload.data.opened_at)
        return milestones


class SubmissionCreatedEventStrategy(StartedEventStrategy):
    """submission.created carries the start instant in data.created_at."""

    def event_milestones(self, payload: DocuSealWebhookPayload) -> Dict[str, datetime.datetime]:
        return {"started_at": _first_known(payload.data.created_at, payload.timestamp)}


class CompletedEventStrategy(WebhookEventStrategy):
    target_status = DocumentStatus.COMPLETED
    milestone_field = "completed_at"

    def event_milestones(self, payload: DocuSealWebhookPayload) -> Dict[str, datetime.datetime]:
        milestones = {"completed_at": _first_known(payload.data.completed_at, payload.timestamp)}
        if payload.data.opened_at:
            milestones["viewed_at"] = ensure_utc(payload.data.opened_at)
        if payload.data.created_at:
            milestones["started_at"] = ensure_utc(payload.data.created_at)
        return milestones

    def completion_artifacts(self, payload: DocuSealWebhookPayload) -> Dict[str, Any]:
        artifacts: Dict[str, Any] = {}
        if payload.data.documents:
            first_document = payload.data.documents[0]
            if first_document.url:
                artifacts["completed_document_url"] = first_document.url
            if first_document.name:
                artifacts["completed_document_name"] = first_document.name
        if payload.data.audit_log_url:
            artifacts["audit_log_url"] = payload.data.audit_log_url
        if payload.data.submission_url:
            artifacts["submission_url"] = payload.data.submission_url
        return artifacts


class DeclinedEventStrategy(WebhookEventStrategy):
    target_status = DocumentStatus.DECLINED
    milestone_field = "declined_at"

    def event_milestones(self, payload: DocuSealWebhookPayload) -> Dict[str, datetime.datetime]:
        milestones = {"declined_at": _first_known(payload.data.declined_at, payload.timestamp)}
        if payload.data.opened_at:
            milestones["viewed_at"] = ensure_utc(payload.data.opened_at)
        return milestones


_STRATEGIES: Dict[str, WebhookEventStrategy] = {
    "form.viewed": ViewedEventStrategy(),
    "form.opened": ViewedEventStrategy(),
    "form.started": StartedEventStrategy(),
    "submission.created": SubmissionCreatedEventStrategy(),
    "submission.completed": CompletedEventStrategy(),
    "form.completed": CompletedEventStrategy(),
    "form.declined": DeclinedEventStrategy(),
}

SUPPORTED_EVENT_TYPES = frozenset(_STRATEGIES)


def get_webhook_event_strategy(event_type: str) -> WebhookEventStrategy:
    strategy = _STRATEGIES.get(event_type)
    if strategy is None:
        raise DataValidationError(f"Unsupported event type '{event_type}'.")
    return strategy
