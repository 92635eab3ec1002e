import json
from typing import Any, Dict, List

from pydantic import ValidationError as PydanticValidationError

from campaignflow.specs.common.errors import NotFoundError
from campaignflow.specs.models.activities import EventEntry, WorkflowCompletionEvent
from campaignflow.shared.logging_utils import info as log_info, warning as log_warning
from .events import WORKFLOW_COMPLETED
from .service import CampaignService


def parse_event_message(body: str) -> List[EventEntry]:
    """Decode one events-queue message: ``{"entries": [...]}`` or a bare entry."""
    data: Any = json.loads(body)
    raw: List[Dict[str, Any]] = data.get("entries", [data]) if isinstance(data, dict) else list(data)
    return [EventEntry.model_validate(item) for item in raw]


def process_event_message(body: str, service: CampaignService) -> int:
    """Apply every workflow completion entry in the message; returns how many were applied.

    Conflicts propagate so the queue redelivers the message; a completion
    for a campaign that no longer exists is dropped.
    """
    applied = 0
    for entry in parse_event_message(body):
        if entry.detailType != WORKFLOW_COMPLETED:
            continue
        try:
            event = WorkflowCompletionEvent.model_validate(entry.detail)
        except PydanticValidationError as exc:
            log_warning(entry.detail.get("campaignId"), "events:invalid_completion", error=str(exc))
            continue
        try:
            service.handle_workflow_completion(event)
        except NotFoundError:
            log_warning(event.campaignId, "events:completion_for_missing_campaign", tenantId=event.tenantId)
            continue
        applied += 1
    if applied:
        log_info(None, "events:completions_applied", count=applied)
    return applied
