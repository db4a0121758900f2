# Forward-only transition planning for user document rows
import datetime
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from document_compliance_service.app.models import (
    DocumentStatus, DocumentTemplateDB, STATUS_RANK, UserDocumentStatusDB, ensure_utc
)
from document_compliance_service.app.service.derived_state import compute_expires_at
from document_compliance_service.app.service.strategies.webhook_event_strategies import WebhookEventStrategy
from document_compliance_service.infrastructure.docuseal.schemas import DocuSealWebhookPayload

logger = logging.getLogger(__name__)

# Milestones that must be non-decreasing in this order
ORDERED_MILESTONES = ("viewed_at", "started_at", "completed_at")
TERMINAL_MILESTONES = ("completed_at", "declined_at")
ALL_MILESTONES = ORDERED_MILESTONES + ("declined_at",)


class TransitionPlan(BaseModel):
    fields: Dict[str, Any] = Field(default_factory=dict)
    from_status: str
    to_status: str

    @property
    def status_changed(self) -> bool:
        return self.from_status != self.to_status


def is_forward(current_status: str, target_status: str) -> bool:
    return STATUS_RANK[target_status] > STATUS_RANK.get(current_status, 0)


def _milestone_fits(milestones: Dict[str, Optional[datetime.datetime]], field: str, value: datetime.datetime) -> bool:
    if field in TERMINAL_MILESTONES:
        other = TERMINAL_MILESTONES[1 - TERMINAL_MILESTONES.index(field)]
        if milestones.get(other) is not None:
            return False
    if field not in ORDERED_MILESTONES:
        return True
    position = ORDERED_MILESTONES.index(field)
    for earlier in ORDERED_MILESTONES[:position]:
        if milestones.get(earlier) is not None and milestones[earlier] > value:
            return False
    for later in ORDERED_MILESTONES[position + 1:]:
        if milestones.get(later) is not None and milestones[later] < value:
            return False
    return True


def _latest_earlier_milestone(milestones: Dict[str, Optional[datetime.datetime]], field: str) -> Optional[datetime.datetime]:
    if field not in ORDERED_MILESTONES:
        return None
    earlier = [milestones[f] for f in ORDERED_MILESTONES[:ORDERED_MILESTONES.index(field)] if milestones.get(f)]
    return max(earlier) if earlier else None


def plan_webhook_transition(
    row: UserDocumentStatusDB,
    strategy: WebhookEventStrategy,
    payload: DocuSealWebhookPayload,
    template: DocumentTemplateDB,
    raw_payload: Any,
) -> TransitionPlan:
    """
    Works out the field changes one webhook event makes to one row.

    The status only moves when the event's status ranks strictly higher than the stored one.
    Milestones are written only into unset fields and only when they keep
    viewed <= started <= completed with completed/declined mutually exclusive. When the
    status does move, its own milestone is clamped forward onto the latest earlier milestone
    rather than dropped. The raw payload and submission id are always refreshed.
    """
    target_status = strategy.target_status.value
    moves = is_forward(row.status, target_status)

    fields: Dict[str, Any] = {
        "webhook_data": raw_payload,
        "provider_submission_id": payload.data.id,
    }
    if moves:
        fields["status"] = target_status

    milestones: Dict[str, Optional[datetime.datetime]] = {
        name: ensure_utc(getattr(row, name)) for name in ALL_MILESTONES
    }
    candidates = strategy.event_milestones(payload)
    for name in ALL_MILESTONES:
        value = candidates.get(name)
        if value is None or milestones[name] is not None:
            continue
        if moves and name == strategy.milestone_field:
            floor = _latest_earlier_milestone(milestones, name)
            if floor is not None and floor > value:
                logger.warning(
                    f"Event {payload.event_type} for row {row.id} carries {name}={value.isoformat()} "
                    f"before an earlier milestone; recording {floor.isoformat()} instead."
                )
                value = floor
        if _milestone_fits(milestones, name, value):
            milestones[name] = value
            fields[name] = value
        else:
            logger.info(f"Skipping {name} from {payload.event_type} for row {row.id}; it would break milestone order.")

    resulting_status = target_status if moves else row.status
    if resulting_status == DocumentStatus.COMPLETED.value and strategy.target_status == DocumentStatus.COMPLETED:
        for name, value in strategy.completion_artifacts(payload).items():
            if moves or getattr(row, name) is None:
                fields[name] = value
        if row.expires_at is None or moves:
            expires_at = compute_expires_at(milestones["completed_at"], template.expiry_days)
            if expires_at is not None:
                fields["expires_at"] = expires_at

    return TransitionPlan(fields=fields, from_status=row.status, to_status=resulting_status)
