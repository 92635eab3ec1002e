"""Workflow step implementations.

Every durable activity of the campaign workflow delegates to one method of
``CampaignActivities``. Methods take and return the pydantic models from
``campaignflow.specs.models.activities`` so the orchestrator only ever sees
explicit results; exceptions are reserved for faults the workflow cannot
continue from.
"""
from __future__ import annotations

from collections import Counter
from typing import Callable, Dict, List, Optional

from campaignflow.campaigns.events import (
    approval_requested_event,
    planning_failed_event,
    post_created_events,
    workflow_completed_event,
)
from campaignflow.campaigns.service import CampaignService
from campaignflow.campaigns.status import (
    TERMINAL_CAMPAIGN_STATUSES,
    TERMINAL_POST_STATUSES,
    create_error_info,
)
from campaignflow.planning.config_merger import merge_configuration
from campaignflow.planning.plan_generator import generate_post_plan
from campaignflow.specs.agents.content import ContentGenerator, ContentRequest
from campaignflow.specs.common.datetime_utils import format_iso_datetime, utc_now
from campaignflow.specs.common.enums import (
    ApprovalMode,
    ApprovalState,
    CampaignStatus,
    PostStatus,
    WorkflowOutcome,
    WorkflowType,
)
from campaignflow.specs.common.errors import CampaignFlowError
from campaignflow.specs.models.activities import (
    BeginApprovalInput,
    CampaignKey,
    CampaignStatusProbe,
    FinalizeInput,
    FinalizeResult,
    MarkFailedInput,
    PlanStepResult,
    PostFailureInput,
    PostResult,
    PostResultSummary,
    PostTaskInput,
    SaveCampaignResult,
    WorkflowInput,
)
from campaignflow.specs.models.domain import (
    ApprovalPolicy,
    ApprovalRecord,
    Campaign,
    ContentSummary,
    ErrorInfo,
    MergedConfig,
    PostContent,
    SocialPost,
)
from campaignflow.shared.logging_utils import error as log_error, info as log_info, warning as log_warning

# Outcome reported for a post that is already past generation
_STORED_OUTCOMES = {
    PostStatus.COMPLETED: "completed",
    PostStatus.NEEDS_REVIEW: "needs_review",
    PostStatus.FAILED: "failed",
    PostStatus.SKIPPED: "skipped",
}


def requires_review(policy: ApprovalPolicy, content: PostContent) -> bool:
    if policy.mode == ApprovalMode.ALWAYS_REVIEW:
        return True
    if policy.mode == ApprovalMode.REQUIRE_REVIEW_BELOW_THRESHOLD:
        return content.confidence is None or content.confidence < policy.threshold
    return False


def content_summary(results: List[PostResult]) -> ContentSummary:
    counts = Counter(r.outcome for r in results)
    return ContentSummary(
        succeeded=counts["completed"] + counts["needs_review"],
        failed=counts["failed"],
        needsReview=counts["needs_review"],
        skipped=counts["skipped"],
    )


class CampaignActivities:
    def __init__(
        self,
        service: CampaignService,
        content_generator_factory: Callable[[], ContentGenerator],
        clock: Callable = utc_now,
    ) -> None:
        self.service = service
        self.repository = service.repository
        self.publisher = service.publisher
        self._content_generator_factory = content_generator_factory
        self._content_generator: Optional[ContentGenerator] = None
        self.clock = clock

    @property
    def content_generator(self) -> ContentGenerator:
        if self._content_generator is None:
            self._content_generator = self._content_generator_factory()
        return self._content_generator

    def _merged_config(self, campaign: Campaign) -> MergedConfig:
        brand, personas = self.repository.load_planning_inputs(campaign)
        return merge_configuration(brand, campaign, personas)

    # step 1

    def save_campaign(self, data: WorkflowInput) -> SaveCampaignResult:
        """Conditionally create the campaign record.

        A record left behind by an earlier attempt of the same workflow
        instance still counts as new, so a retried save does not turn the
        workflow into a duplicate.
        """
        campaign = Campaign.model_validate(
            {**data.campaign, "id": data.campaignId, "tenantId": data.tenantId, "workflowInstanceId": data.instanceId}
        )
        if self.repository.save_if_absent(campaign):
            return SaveCampaignResult(campaignId=campaign.id, isNew=True, version=campaign.version)

        existing = self.repository.require_campaign(data.tenantId, data.campaignId)
        own_record = (
            data.instanceId is not None
            and getattr(existing, "workflowInstanceId", None) == data.instanceId
            and existing.status == CampaignStatus.PLANNING
        )
        if not own_record:
            log_info(campaign.id, "campaign:duplicate", status=existing.status.value)
        return SaveCampaignResult(campaignId=campaign.id, isNew=own_record, version=existing.version)

    # step 2

    def generate_plan(self, key: CampaignKey) -> PlanStepResult:
        campaign = self.repository.require_campaign(key.tenantId, key.campaignId)
        try:
            if campaign.status != CampaignStatus.PLANNING:
                raise CampaignFlowError(
                    f"Campaign is {campaign.status.value}, expected planning",
                    code="INVALID_STATUS_TRANSITION",
                )
            merged = self._merged_config(campaign)
            plan = generate_post_plan(campaign, merged)
            if not plan.posts:
                raise CampaignFlowError(
                    "Schedule leaves no eligible posting days",
                    code="EMPTY_PLAN",
                    details={"planVersion": plan.planVersion},
                )
            posts = self.repository.create_posts(campaign.tenantId, campaign.id, plan.posts)
            self.service.transition(
                campaign,
                CampaignStatus.GENERATING,
                changes={
                    "planSummary": plan.planSummary.model_dump(),
                    "planVersion": plan.planVersion,
                    "lastError": None,
                },
                reason="Plan generated",
            )
        except CampaignFlowError as exc:
            error = create_error_info(exc.code, str(exc), retryable=exc.retryable)
            log_error(campaign.id, "plan:failed", code=exc.code, error=str(exc))
            self.publisher.publish([planning_failed_event(campaign.id, campaign.tenantId, error)])
            return PlanStepResult(success=False, error=error)

        summaries = [
            PostResultSummary(postId=p.id, success=True, platform=p.platform, personaId=p.personaId) for p in posts
        ]
        self.publisher.publish(
            [
                *post_created_events(posts),
                workflow_completed_event(
                    campaign.id, campaign.tenantId, WorkflowType.CAMPAIGN_PLANNING, True, post_results=summaries
                ),
            ]
        )
        log_info(campaign.id, "plan:generated", totalPosts=len(posts), planVersion=plan.planVersion)
        return PlanStepResult(
            success=True,
            posts=[
                PostTaskInput(
                    tenantId=p.tenantId,
                    campaignId=p.campaignId,
                    postId=p.id,
                    platform=p.platform,
                    personaId=p.personaId,
                )
                for p in posts
            ],
            planSummary=plan.planSummary,
            planVersion=plan.planVersion,
        )

    def get_campaign_status(self, key: CampaignKey) -> CampaignStatusProbe:
        campaign = self.repository.get_campaign(key.tenantId, key.campaignId)
        if campaign is None:
            return CampaignStatusProbe(exists=False)
        return CampaignStatusProbe(exists=True, status=campaign.status, version=campaign.version)

    # step 3

    def generate_post_content(self, task: PostTaskInput) -> PostResult:
        post = self.repository.require_post(task.tenantId, task.campaignId, task.postId)
        if post.status in _STORED_OUTCOMES:
            # Redelivered task; report what is stored
            return PostResult(
                postId=post.id, outcome=_STORED_OUTCOMES[post.status], attempts=task.attempt, error=post.lastError
            )

        campaign = self.repository.require_campaign(task.tenantId, task.campaignId)
        if campaign.status == CampaignStatus.CANCELLED:
            if post.status == PostStatus.PLANNED:
                self.repository.update_post(
                    task.tenantId, task.campaignId, post.id, {"status": PostStatus.SKIPPED.value}, post.version
                )
                return PostResult(postId=post.id, outcome="skipped", attempts=task.attempt)
            # Already generating; planned -> skipped is the only skip edge
            error = create_error_info("CAMPAIGN_CANCELLED", "Campaign was cancelled during generation")
            self.repository.update_post(
                task.tenantId,
                task.campaignId,
                post.id,
                {"status": PostStatus.FAILED.value, "lastError": error.model_dump()},
                post.version,
            )
            return PostResult(postId=post.id, outcome="failed", attempts=task.attempt, error=error)

        if post.status == PostStatus.PLANNED:
            post = self.repository.update_post(
                task.tenantId, task.campaignId, post.id, {"status": PostStatus.GENERATING.value}, post.version
            )

        try:
            merged = self._merged_config(campaign)
        except CampaignFlowError as exc:
            error = create_error_info(exc.code, str(exc), retryable=exc.retryable)
            return PostResult(postId=post.id, outcome="failed", attempts=task.attempt, error=error)

        result = self.content_generator.run(self._content_request(campaign, post, merged))
        if not result.success or result.content is None:
            error = result.error or create_error_info(
                "CONTENT_GENERATION_ERROR", "Content generator returned no content", retryable=True
            )
            log_warning(campaign.id, "post:generation_failed", postId=post.id, attempt=task.attempt, code=error.code)
            return PostResult(postId=post.id, outcome="failed", attempts=task.attempt, error=error)

        target = PostStatus.NEEDS_REVIEW if requires_review(merged.approvalPolicy, result.content) else PostStatus.COMPLETED
        self.repository.update_post(
            task.tenantId,
            task.campaignId,
            post.id,
            {"status": target.value, "content": result.content.model_dump(mode="json"), "lastError": None},
            post.version,
        )
        log_info(campaign.id, "post:generated", postId=post.id, status=target.value, attempt=task.attempt)
        return PostResult(postId=post.id, outcome=_STORED_OUTCOMES[target], attempts=task.attempt)

    @staticmethod
    def _content_request(campaign: Campaign, post: SocialPost, merged: MergedConfig) -> ContentRequest:
        restrictions = merged.personaRestrictions.get(post.personaId)
        cta = campaign.brief.primaryCTA
        return ContentRequest(
            tenantId=campaign.tenantId,
            campaignId=campaign.id,
            postId=post.id,
            personaId=post.personaId,
            platform=post.platform,
            intent=post.intent,
            topic=post.topic,
            campaignName=campaign.name,
            briefDescription=campaign.brief.description,
            objective=campaign.brief.objective.value,
            messagingPillar=post.messagingPillar,
            callToAction=cta.text if cta else None,
            callToActionUrl=cta.url if cta else None,
            requiredInclusions=merged.requiredInclusions,
            avoidTopics=restrictions.avoidTopics if restrictions else merged.avoidTopics,
            avoidPhrases=restrictions.avoidPhrases if restrictions else [],
            ctaLimited=restrictions.ctaLimited if restrictions else False,
            assetRequirements=post.assetRequirements,
        )

    def record_post_failure(self, data: PostFailureInput) -> PostResult:
        task = data.task
        post = self.repository.require_post(task.tenantId, task.campaignId, task.postId)
        if post.status in TERMINAL_POST_STATUSES:
            return PostResult(
                postId=post.id, outcome=_STORED_OUTCOMES[post.status], attempts=task.attempt, error=post.lastError
            )
        if post.status == PostStatus.PLANNED:
            post = self.repository.update_post(
                task.tenantId, task.campaignId, post.id, {"status": PostStatus.GENERATING.value}, post.version
            )
        error = data.error.model_copy(update={"at": format_iso_datetime(self.clock())})
        self.repository.update_post(
            task.tenantId,
            task.campaignId,
            post.id,
            {"status": PostStatus.FAILED.value, "lastError": error.model_dump()},
            post.version,
        )
        log_warning(task.campaignId, "post:failed", postId=post.id, attempts=task.attempt, code=error.code)
        return PostResult(postId=post.id, outcome="failed", attempts=task.attempt, error=error)

    def skip_pending_posts(self, key: CampaignKey) -> int:
        skipped = 0
        for post in self.repository.list_posts(key.tenantId, key.campaignId):
            if post.status == PostStatus.PLANNED:
                self.repository.update_post(
                    key.tenantId, key.campaignId, post.id, {"status": PostStatus.SKIPPED.value}, post.version
                )
                skipped += 1
        if skipped:
            log_info(key.campaignId, "posts:skipped", count=skipped)
        return skipped

    # step 5

    def begin_approval(self, data: BeginApprovalInput) -> CampaignStatusProbe:
        """Persist the suspension record and move the campaign to awaiting_review."""
        campaign = self.repository.require_campaign(data.tenantId, data.campaignId)
        if campaign.approval and campaign.approval.token == data.token:
            return CampaignStatusProbe(exists=True, status=campaign.status, version=campaign.version)
        if campaign.status in TERMINAL_CAMPAIGN_STATUSES:
            log_info(campaign.id, "approval:skipped", status=campaign.status.value)
            return CampaignStatusProbe(exists=True, status=campaign.status, version=campaign.version)

        record = ApprovalRecord(
            state=ApprovalState.PENDING,
            token=data.token,
            expiresAt=data.expiresAt,
            instanceId=data.instanceId,
            requestedAt=format_iso_datetime(self.clock()),
        )
        updated = self.service.transition(
            campaign,
            CampaignStatus.AWAITING_REVIEW,
            changes={"approval": record.model_dump(mode="json")},
            reason="Awaiting approval",
        )
        self.publisher.publish(
            [approval_requested_event(campaign.id, campaign.tenantId, data.token, data.expiresAt)]
        )
        log_info(campaign.id, "approval:requested", instanceId=data.instanceId, expiresAt=data.expiresAt)
        return CampaignStatusProbe(exists=True, status=updated.status, version=updated.version)

    # step 6

    def finalize_campaign(self, data: FinalizeInput) -> FinalizeResult:
        campaign = self.repository.require_campaign(data.tenantId, data.campaignId)
        summary = content_summary(data.postResults)
        now = format_iso_datetime(self.clock())

        changes: Dict[str, object] = {
            "contentSummary": summary.model_dump(),
            "workflowOutcome": data.outcome.value,
        }
        if campaign.approval is not None:
            state = ApprovalState.EXPIRED if data.outcome == WorkflowOutcome.APPROVAL_TIMEOUT else ApprovalState.DECIDED
            changes["approval"] = campaign.approval.model_copy(
                update={
                    "state": state,
                    "token": None,
                    "decision": campaign.approval.decision or data.outcome.value,
                    "comments": campaign.approval.comments or data.comments,
                    "resolvedAt": campaign.approval.resolvedAt or now,
                }
            ).model_dump(mode="json")

        error: Optional[ErrorInfo] = None
        if campaign.status in TERMINAL_CAMPAIGN_STATUSES:
            target = campaign.status
        elif data.outcome == WorkflowOutcome.APPROVED:
            target = CampaignStatus.COMPLETED
        elif data.outcome in (WorkflowOutcome.REJECTED, WorkflowOutcome.CANCELLED):
            target = CampaignStatus.CANCELLED
        elif data.outcome == WorkflowOutcome.APPROVAL_TIMEOUT:
            target = CampaignStatus.CANCELLED
            error = create_error_info("APPROVAL_TIMEOUT", "No approval decision before the deadline", retryable=True)
        elif summary.succeeded > 0:
            target = CampaignStatus.AWAITING_REVIEW
        else:
            target = CampaignStatus.FAILED
            error = create_error_info(
                "CONTENT_GENERATION_FAILED", "Content generation failed for every post", retryable=True
            )

        if target == CampaignStatus.COMPLETED and campaign.status != CampaignStatus.COMPLETED:
            self._promote_reviewed_posts(campaign)

        updated = self.service.transition(
            campaign,
            target,
            changes=changes,
            reason=f"Workflow outcome: {data.outcome.value}",
            error=error,
        )
        self._publish_completion(updated, data.postResults, error)
        log_info(
            campaign.id,
            "campaign:finalized",
            outcome=data.outcome.value,
            status=updated.status.value,
            succeeded=summary.succeeded,
            failed=summary.failed,
        )
        return FinalizeResult(campaignId=campaign.id, status=updated.status, version=updated.version)

    def _promote_reviewed_posts(self, campaign: Campaign) -> None:
        for post in self.repository.list_posts(campaign.tenantId, campaign.id):
            if post.status == PostStatus.NEEDS_REVIEW:
                self.repository.update_post(
                    campaign.tenantId, campaign.id, post.id, {"status": PostStatus.COMPLETED.value}, post.version
                )

    def _publish_completion(self, campaign: Campaign, results: List[PostResult], error: Optional[ErrorInfo]) -> None:
        posts = {p.id: p for p in self.repository.list_posts(campaign.tenantId, campaign.id)}
        summaries = []
        for r in results:
            post = posts.get(r.postId)
            summaries.append(
                PostResultSummary(
                    postId=r.postId,
                    success=r.succeeded,
                    platform=post.platform if post else None,
                    personaId=post.personaId if post else None,
                    error=r.error.message if r.error else None,
                )
            )
        self.publisher.publish(
            [
                workflow_completed_event(
                    campaign.id,
                    campaign.tenantId,
                    WorkflowType.CONTENT_GENERATION,
                    any(r.succeeded for r in results),
                    error.message if error else None,
                    summaries,
                )
            ]
        )

    def mark_campaign_failed(self, data: MarkFailedInput) -> FinalizeResult:
        """Record an unrecoverable workflow error on the campaign.

        Planning and awaiting_review reach failed through the workflow-only
        failure edges; terminal campaigns are left untouched.
        """
        campaign = self.repository.require_campaign(data.tenantId, data.campaignId)
        if campaign.status in TERMINAL_CAMPAIGN_STATUSES:
            return FinalizeResult(campaignId=campaign.id, status=campaign.status, version=campaign.version, written=False)

        error = data.error.model_copy(update={"retryable": False, "at": data.error.at or format_iso_datetime(self.clock())})
        changes: Dict[str, object] = {}
        if campaign.approval is not None and campaign.approval.token:
            changes["approval"] = campaign.approval.model_copy(
                update={"state": ApprovalState.EXPIRED, "token": None}
            ).model_dump(mode="json")
        updated = self.service.transition(
            campaign, CampaignStatus.FAILED, changes=changes, reason="Workflow failed", error=error, system=True
        )
        log_error(campaign.id, "campaign:marked_failed", status=updated.status.value, code=error.code)
        return FinalizeResult(campaignId=campaign.id, status=updated.status, version=updated.version)


__all__ = ["CampaignActivities", "requires_review", "content_summary"]
