from __future__ import annotations

from typing import Iterable, List, Optional

from campaignflow.specs.common.datetime_utils import format_iso_datetime, utc_now
from campaignflow.specs.common.enums import CampaignStatus, WorkflowType
from campaignflow.specs.common.event_publisher_spec import EVENT_SOURCE_CAMPAIGN, EVENT_SOURCE_WORKFLOW
from campaignflow.specs.models.activities import EventEntry, PostResultSummary, WorkflowCompletionEvent
from campaignflow.specs.models.domain import ErrorInfo, SocialPost

STATUS_CHANGED = "Campaign Status Changed"
POST_CREATED = "Social Post Created"
WORKFLOW_COMPLETED = "Workflow Completed"
PLANNING_FAILED = "Campaign Planning Failed"
APPROVAL_REQUESTED = "Campaign Approval Requested"


def status_transition_event(
    campaign_id: str,
    tenant_id: str,
    from_status: CampaignStatus,
    to_status: CampaignStatus,
    reason: Optional[str] = None,
    error: Optional[ErrorInfo] = None,
) -> EventEntry:
    return EventEntry(
        source=EVENT_SOURCE_CAMPAIGN,
        detailType=STATUS_CHANGED,
        detail={
            "campaignId": campaign_id,
            "tenantId": tenant_id,
            "fromStatus": CampaignStatus(from_status).value,
            "toStatus": CampaignStatus(to_status).value,
            "reason": reason,
            "error": error.model_dump() if error else None,
            "timestamp": format_iso_datetime(utc_now()),
        },
    )


def post_created_events(posts: Iterable[SocialPost]) -> List[EventEntry]:
    return [
        EventEntry(
            source=EVENT_SOURCE_WORKFLOW,
            detailType=POST_CREATED,
            detail={
                "postId": p.id,
                "campaignId": p.campaignId,
                "tenantId": p.tenantId,
                "personaId": p.personaId,
                "platform": p.platform.value,
                "scheduledAt": format_iso_datetime(p.scheduledAt),
            },
        )
        for p in posts
    ]


def workflow_completed_event(
    campaign_id: str,
    tenant_id: str,
    workflow_type: WorkflowType,
    success: bool,
    error: Optional[str] = None,
    post_results: Optional[List[PostResultSummary]] = None,
) -> EventEntry:
    notification = WorkflowCompletionEvent(
        campaignId=campaign_id,
        tenantId=tenant_id,
        workflowType=workflow_type,
        success=success,
        error=error,
        postResults=post_results,
    )
    return EventEntry(
        source=EVENT_SOURCE_WORKFLOW,
        detailType=WORKFLOW_COMPLETED,
        detail=notification.model_dump(mode="json", exclude_none=True),
    )


def planning_failed_event(campaign_id: str, tenant_id: str, error: ErrorInfo) -> EventEntry:
    return EventEntry(
        source=EVENT_SOURCE_WORKFLOW,
        detailType=PLANNING_FAILED,
        detail={"campaignId": campaign_id, "tenantId": tenant_id, "error": error.model_dump()},
    )


def approval_requested_event(campaign_id: str, tenant_id: str, token: str, expires_at: str) -> EventEntry:
    # Consumed by the reviewer notification channel, which builds the resume link
    return EventEntry(
        source=EVENT_SOURCE_WORKFLOW,
        detailType=APPROVAL_REQUESTED,
        detail={
            "campaignId": campaign_id,
            "tenantId": tenant_id,
            "callbackToken": token,
            "expiresAt": expires_at,
        },
    )
