from __future__ import annotations

import hmac
import json
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from campaignflow.planning.plan_generator import PLAN_AFFECTING_FIELDS, compute_plan_version
from campaignflow.specs.common.datetime_utils import format_iso_datetime, parse_iso_datetime, utc_now
from campaignflow.specs.common.enums import ApprovalState, CampaignStatus, PostStatus, WorkflowType
from campaignflow.specs.common.errors import ConflictError, NotFoundError, ValidationError
from campaignflow.specs.common.event_publisher_spec import EventPublisher
from campaignflow.specs.common.ids import new_campaign_id
from campaignflow.specs.models.activities import PostResultSummary, WorkflowCompletionEvent
from campaignflow.specs.models.domain import Campaign, ErrorInfo, PlanSummary, PostReview, SocialPost
from campaignflow.specs.models.http import CreateCampaignRequest, PostReviewRequest, UpdatePostStatusRequest
from campaignflow.shared.logging_utils import info as log_info, warning as log_warning
from .events import status_transition_event
from .repository import CampaignRepository
from .status import (
    create_error_info,
    derive_status_from_posts,
    filter_update,
    validate_post_transition,
    validate_transition,
)


def _validation_error(message: str, exc: PydanticValidationError) -> ValidationError:
    return ValidationError(message, details={"errors": json.loads(exc.json(include_url=False))})


def plan_summary_from_results(results: List[PostResultSummary]) -> PlanSummary:
    return PlanSummary(
        totalPosts=len(results),
        postsPerPlatform=dict(Counter(r.platform.value for r in results if r.platform)),
        postsPerPersona=dict(Counter(r.personaId for r in results if r.personaId)),
    )


class CampaignService:
    """Campaign lifecycle operations shared by the HTTP surface and the workflow."""

    def __init__(
        self,
        repository: CampaignRepository,
        publisher: EventPublisher,
        clock: Callable = utc_now,
    ) -> None:
        self.repository = repository
        self.publisher = publisher
        self.clock = clock

    def _now(self) -> str:
        return format_iso_datetime(self.clock())

    def build_campaign(self, tenant_id: str, request: CreateCampaignRequest) -> Campaign:
        now = self._now()
        body = request.model_dump(mode="json", exclude_none=True, exclude={"campaignId"})
        campaign = Campaign(
            **body,
            id=request.campaignId or new_campaign_id(),
            tenantId=tenant_id,
            status=CampaignStatus.PLANNING,
            version=1,
            createdAt=now,
            updatedAt=now,
        )
        campaign.planVersion = compute_plan_version(campaign)
        return campaign

    def get_campaign(self, tenant_id: str, campaign_id: str) -> Campaign:
        return self.repository.require_campaign(tenant_id, campaign_id)

    def list_campaigns(self, tenant_id: str) -> List[Campaign]:
        return self.repository.list_campaigns(tenant_id)

    def list_posts(self, tenant_id: str, campaign_id: str) -> List[SocialPost]:
        self.repository.require_campaign(tenant_id, campaign_id)
        return self.repository.list_posts(tenant_id, campaign_id)

    def transition(
        self,
        campaign: Campaign,
        target: CampaignStatus,
        *,
        changes: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        error: Optional[ErrorInfo] = None,
        system: bool = False,
    ) -> Campaign:
        """Move a campaign to ``target`` under a version check and announce it."""
        validate_transition(campaign.status, target, campaign, system=system)
        write = dict(changes or {})
        if target == campaign.status and not write:
            return campaign
        write["status"] = CampaignStatus(target).value
        if target == CampaignStatus.COMPLETED and campaign.status != CampaignStatus.COMPLETED:
            write.setdefault("completedAt", self._now())
        if error is not None:
            write["lastError"] = error.model_dump()
        updated = self.repository.update_campaign(campaign.tenantId, campaign.id, write, campaign.version)
        if target != campaign.status:
            log_info(
                campaign.id,
                "campaign:status_changed",
                fromStatus=campaign.status.value,
                toStatus=CampaignStatus(target).value,
                version=updated.version,
            )
            self.publisher.publish(
                [status_transition_event(campaign.id, campaign.tenantId, campaign.status, target, reason, error)]
            )
        return updated

    def update_campaign(
        self,
        tenant_id: str,
        campaign_id: str,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Campaign:
        current = self.repository.require_campaign(tenant_id, campaign_id)
        if expected_version is not None and expected_version != current.version:
            raise ConflictError(
                "Campaign was modified by another process",
                code="VERSION_CONFLICT",
                details={"expectedVersion": expected_version, "currentVersion": current.version},
            )

        filtered = filter_update(changes, current.status)
        try:
            target = CampaignStatus(filtered.get("status", current.status))
        except ValueError:
            raise ValidationError(f"Unknown campaign status '{filtered.get('status')}'")
        validate_transition(current.status, target, current, manual=True)

        body = current.model_dump(mode="json", exclude_none=True)
        for field, value in filtered.items():
            if isinstance(value, dict) and isinstance(body.get(field), dict):
                body[field] = {**body[field], **value}
            else:
                body[field] = value
        try:
            candidate = Campaign.model_validate(body)
        except PydanticValidationError as exc:
            raise _validation_error("Invalid campaign update", exc)

        candidate_body = candidate.model_dump(mode="json", exclude_none=True)
        write = {field: candidate_body.get(field) for field in filtered}
        if current.status == CampaignStatus.PLANNING and any(f in filtered for f in PLAN_AFFECTING_FIELDS):
            plan_version = compute_plan_version(candidate)
            if plan_version != current.planVersion:
                write["planVersion"] = plan_version
        if target == CampaignStatus.COMPLETED and current.status != CampaignStatus.COMPLETED:
            write["completedAt"] = self._now()

        updated = self.repository.update_campaign(tenant_id, campaign_id, write, current.version)
        log_info(campaign_id, "campaign:updated", fields=sorted(write), version=updated.version)
        if target != current.status:
            self.publisher.publish(
                [status_transition_event(campaign_id, tenant_id, current.status, target, "Manual update")]
            )
        return updated

    def handle_workflow_completion(self, event: WorkflowCompletionEvent) -> Campaign:
        """Apply a workflow completion notification; only generating campaigns move."""
        campaign = self.repository.require_campaign(event.tenantId, event.campaignId)
        if campaign.status != CampaignStatus.GENERATING:
            log_info(campaign.id, "workflow_completion:skipped", status=campaign.status.value)
            return campaign

        error: Optional[ErrorInfo] = None
        if event.workflowType == WorkflowType.CONTENT_GENERATION:
            if event.success:
                posts = self.repository.list_posts(event.tenantId, event.campaignId)
                target = derive_status_from_posts([p.status for p in posts], campaign.status)
            else:
                target = CampaignStatus.FAILED
                error = create_error_info(
                    "CONTENT_GENERATION_FAILED", event.error or "Content generation workflow failed"
                )
        elif event.success:
            target = CampaignStatus.GENERATING
        else:
            target = CampaignStatus.FAILED
            error = create_error_info("CAMPAIGN_PLANNING_FAILED", event.error or "Campaign planning workflow failed")

        if target == campaign.status:
            log_info(campaign.id, "workflow_completion:no_change", workflowType=event.workflowType.value)
            return campaign

        changes: Dict[str, Any] = {}
        if error is None:
            changes["lastError"] = None
        if event.postResults:
            changes["planSummary"] = plan_summary_from_results(event.postResults).model_dump()
        return self.transition(
            campaign,
            target,
            changes=changes,
            reason=f"Workflow completion: {event.workflowType.value}",
            error=error,
        )

    def update_post_status(
        self,
        tenant_id: str,
        campaign_id: str,
        post_id: str,
        request: UpdatePostStatusRequest,
    ) -> SocialPost:
        post = self.repository.require_post(tenant_id, campaign_id, post_id)
        if request.expectedVersion is not None and request.expectedVersion != post.version:
            raise ConflictError(
                "Post was modified by another process",
                code="VERSION_CONFLICT",
                details={"expectedVersion": request.expectedVersion, "currentVersion": post.version},
            )
        validate_post_transition(post.status, request.status)

        now = self._now()
        write: Dict[str, Any] = {"status": request.status.value}
        if request.error is not None:
            write["lastError"] = request.error.model_copy(update={"at": now}).model_dump()
        elif request.status != PostStatus.FAILED:
            write["lastError"] = None
        if request.content is not None:
            write["content"] = request.content.model_copy(update={"generatedAt": now}).model_dump(mode="json")
        return self.repository.update_post(tenant_id, campaign_id, post_id, write, post.version)

    def review_post(
        self,
        tenant_id: str,
        campaign_id: str,
        post_id: str,
        request: PostReviewRequest,
    ) -> SocialPost:
        post = self.repository.require_post(tenant_id, campaign_id, post_id)
        if post.status != PostStatus.NEEDS_REVIEW:
            raise ConflictError(
                "Post is not in review status",
                code="POST_NOT_IN_REVIEW",
                details={"currentStatus": post.status.value},
            )
        if request.expectedVersion is not None and request.expectedVersion != post.version:
            raise ConflictError(
                "Post was modified by another process",
                code="VERSION_CONFLICT",
                details={"expectedVersion": request.expectedVersion, "currentVersion": post.version},
            )

        now = self._now()
        target = PostStatus.COMPLETED if request.approved else PostStatus.FAILED
        review = PostReview(
            approved=request.approved,
            reviewedAt=now,
            feedback=request.feedback,
            requestChanges=request.requestChanges,
        )
        write: Dict[str, Any] = {"status": target.value, "approval": review.model_dump()}
        if not request.approved and request.requestChanges:
            write["lastError"] = ErrorInfo(
                code="APPROVAL_REJECTED",
                message=f"Post rejected: {', '.join(request.requestChanges)}",
                at=now,
                retryable=True,
            ).model_dump()
        return self.repository.update_post(tenant_id, campaign_id, post_id, write, post.version)

    def submit_approval(
        self,
        tenant_id: str,
        campaign_id: str,
        token: Optional[str],
        decision: str,
        comments: Optional[str] = None,
    ) -> Campaign:
        """Record a reviewer decision against the pending suspension record.

        Any mismatch (unknown campaign, wrong token, nothing pending, expired)
        reads as not found so callers cannot probe for valid tokens. The
        version check lets exactly one submission win.
        """
        campaign = self.repository.get_campaign(tenant_id, campaign_id)
        approval = campaign.approval if campaign else None
        if (
            campaign is None
            or approval is None
            or campaign.status != CampaignStatus.AWAITING_REVIEW
            or approval.state != ApprovalState.PENDING
            or not approval.token
            or not hmac.compare_digest(approval.token.encode("utf-8"), (token or "").encode("utf-8"))
        ):
            raise NotFoundError("Approval", campaign_id)

        expires_at = parse_iso_datetime(approval.expiresAt) if approval.expiresAt else None
        if expires_at is not None and self.clock() >= expires_at:
            log_warning(campaign_id, "approval:expired", expiresAt=approval.expiresAt)
            raise NotFoundError("Approval", campaign_id)

        resolved = approval.model_copy(
            update={
                "state": ApprovalState.DECIDED,
                "decision": decision,
                "comments": comments,
                "resolvedAt": self._now(),
            }
        )
        updated = self.repository.update_campaign(
            tenant_id, campaign_id, {"approval": resolved.model_dump(mode="json")}, campaign.version
        )
        log_info(campaign_id, "approval:submitted", decision=decision, instanceId=approval.instanceId)
        return updated

    def release_approval(self, campaign: Campaign) -> Campaign:
        """Reopen a decision recorded by ``submit_approval`` that never reached the workflow.

        ``campaign`` is the record ``submit_approval`` returned; the version
        check fails if anything has written since.
        """
        approval = campaign.approval
        if approval is None or approval.state != ApprovalState.DECIDED:
            return campaign
        reopened = approval.model_copy(
            update={"state": ApprovalState.PENDING, "decision": None, "comments": None, "resolvedAt": None}
        )
        updated = self.repository.update_campaign(
            campaign.tenantId, campaign.id, {"approval": reopened.model_dump(mode="json")}, campaign.version
        )
        log_warning(campaign.id, "approval:released", instanceId=approval.instanceId)
        return updated

    @staticmethod
    def pending_approval_instance(campaign: Campaign) -> Optional[str]:
        if campaign.approval and campaign.approval.state == ApprovalState.PENDING:
            return campaign.approval.instanceId
        return None
