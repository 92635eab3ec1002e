"""Durable orchestrators for the campaign workflow.

The functions here are plain generators over a
``DurableOrchestrationContext``; they are registered by
``campaignflow.function_blueprints.durable_campaign``. All I/O happens in
activities, so the bodies must stay deterministic across replays: time
comes from ``context.current_utc_datetime`` and ids from
``context.new_uuid()``.
"""
import json
from typing import Any, Dict, Generator, List

from campaignflow.specs.common.datetime_utils import format_iso_datetime
from campaignflow.specs.common.enums import CampaignStatus, WorkflowOutcome
from campaignflow.specs.common.errors import WorkflowFatalError
from campaignflow.specs.models.activities import (
    ApprovalDecisionEvent,
    BeginApprovalInput,
    CampaignKey,
    CampaignStatusProbe,
    FinalizeInput,
    FinalizeResult,
    MarkFailedInput,
    PlanStepResult,
    PostFailureInput,
    PostResult,
    PostTaskInput,
    SaveCampaignResult,
    WorkflowInput,
    WorkflowResult,
)
from campaignflow.specs.models.domain import ErrorInfo
from campaignflow.shared.logging_utils import error as log_error, info as log_info, warning as log_warning
from .policies import (
    APPROVAL_EVENT,
    APPROVAL_TIMEOUT,
    CANCEL_EVENT,
    PLAN_POLICY,
    POST_CONTENT_POLICY,
    SAVE_POLICY,
    RetryPolicy,
    resolve_approval,
)

CAMPAIGN_ORCHESTRATOR = "campaign_orchestrator"
POST_CONTENT_ORCHESTRATOR = "post_content_orchestrator"

SAVE_CAMPAIGN = "save_campaign"
GENERATE_PLAN = "generate_plan"
GET_CAMPAIGN_STATUS = "get_campaign_status"
GENERATE_POST_CONTENT = "generate_post_content"
RECORD_POST_FAILURE = "record_post_failure"
SKIP_PENDING_POSTS = "skip_pending_posts"
BEGIN_APPROVAL = "begin_approval"
FINALIZE_CAMPAIGN = "finalize_campaign"
MARK_CAMPAIGN_FAILED = "mark_campaign_failed"


def _log(context, level, campaign_id: str, message: str, **dims: Any) -> None:
    if not context.is_replaying:
        level(campaign_id, message, instanceId=context.instance_id, **dims)


def _now(context) -> str:
    return format_iso_datetime(context.current_utc_datetime)


def call_activity_with_backoff(context, name: str, payload: Any, policy: RetryPolicy) -> Generator:
    """Call an activity, retrying failures on durable timers.

    Use with ``yield from``. The last failure propagates once the policy's
    attempts are spent.
    """
    attempt = 1
    while True:
        try:
            result = yield context.call_activity(name, payload)
            return result
        except Exception as exc:  # pylint: disable=broad-except
            if attempt >= policy.max_attempts:
                raise
            if not context.is_replaying:
                log_warning(None, "workflow:activity_retry", activity=name, attempt=attempt, error=str(exc))
            yield context.create_timer(context.current_utc_datetime + policy.delay_for(attempt))
            attempt += 1


def _decision_payload(raw: Any) -> ApprovalDecisionEvent:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raw = {"decision": raw}
    return ApprovalDecisionEvent.model_validate(raw or {"decision": ""})


def campaign_orchestrator(context):
    data = WorkflowInput.model_validate(context.get_input() or {})
    try:
        result = yield from _run_campaign(context, data)
        return result
    except Exception as exc:  # pylint: disable=broad-except
        _log(context, log_error, data.campaignId, "workflow:failed", error=str(exc))
        failure = MarkFailedInput(
            tenantId=data.tenantId,
            campaignId=data.campaignId,
            error=ErrorInfo(
                code=getattr(exc, "code", None) or "WORKFLOW_FATAL",
                message=str(exc) or type(exc).__name__,
                at=_now(context),
                retryable=False,
            ),
        )
        try:
            yield context.call_activity(MARK_CAMPAIGN_FAILED, failure.model_dump(mode="json"))
        except Exception as secondary:  # pylint: disable=broad-except
            _log(context, log_error, data.campaignId, "workflow:mark_failed_error", error=str(secondary))
        raise


def _run_campaign(context, data: WorkflowInput) -> Generator:
    key = CampaignKey(tenantId=data.tenantId, campaignId=data.campaignId).model_dump()

    # 1. save
    context.set_custom_status({"step": "save"})
    save_input = data.model_copy(update={"instanceId": context.instance_id}).model_dump(mode="json")
    saved = SaveCampaignResult.model_validate(
        (yield from call_activity_with_backoff(context, SAVE_CAMPAIGN, save_input, SAVE_POLICY))
    )
    if not saved.isNew:
        _log(context, log_info, data.campaignId, "workflow:duplicate")
        return WorkflowResult(campaignId=data.campaignId, outcome=WorkflowOutcome.DUPLICATE).model_dump(mode="json")

    # 2. plan
    context.set_custom_status({"step": "plan"})
    plan = PlanStepResult.model_validate(
        (yield from call_activity_with_backoff(context, GENERATE_PLAN, key, PLAN_POLICY))
    )
    if not plan.success:
        err = plan.error
        raise WorkflowFatalError(
            err.message if err else "Campaign planning failed",
            code=err.code if err else "CAMPAIGN_PLANNING_FAILED",
        )
    if not plan.posts:
        raise WorkflowFatalError("Campaign plan contains no posts", code="EMPTY_PLAN")
    _log(context, log_info, data.campaignId, "workflow:planned", totalPosts=len(plan.posts))

    # 3. fan-out, one sub-orchestration per post, in batches
    results: List[PostResult] = []
    batch_size = data.maxConcurrency
    for start in range(0, len(plan.posts), batch_size):
        if (yield from _is_cancelled(context, key)):
            results.extend((yield from _skip_remaining(context, key, plan.posts[len(results):])))
            return (yield from _finalize(context, data, WorkflowOutcome.CANCELLED, results))

        batch = plan.posts[start:start + batch_size]
        context.set_custom_status(
            {"step": "content", "completed": len(results), "total": len(plan.posts)}
        )
        tasks = [
            context.call_sub_orchestrator(
                POST_CONTENT_ORCHESTRATOR,
                task.model_dump(mode="json"),
                f"{context.instance_id}:{task.postId}",
            )
            for task in batch
        ]
        outputs = yield context.task_all(tasks)
        results.extend(PostResult.model_validate(o) for o in outputs)

    # 4. aggregate
    succeeded = [r for r in results if r.succeeded]
    failed = [r for r in results if r.outcome == "failed"]
    _log(context, log_info, data.campaignId, "workflow:aggregated", succeeded=len(succeeded), failed=len(failed))

    if not succeeded:
        return (yield from _finalize(context, data, WorkflowOutcome.NEEDS_REVISION, results))

    # 5. approval
    if (yield from _is_cancelled(context, key)):
        return (yield from _finalize(context, data, WorkflowOutcome.CANCELLED, results))

    outcome, comments = yield from _await_approval(context, data)
    return (yield from _finalize(context, data, outcome, results, comments))


def _is_cancelled(context, key: Dict[str, str]) -> Generator:
    probe = CampaignStatusProbe.model_validate((yield context.call_activity(GET_CAMPAIGN_STATUS, key)))
    if not probe.exists:
        raise WorkflowFatalError(f"Campaign {key['campaignId']} disappeared mid-workflow", code="RESOURCE_NOT_FOUND")
    return probe.status == CampaignStatus.CANCELLED


def _skip_remaining(context, key: Dict[str, str], remaining: List[PostTaskInput]) -> Generator:
    yield context.call_activity(SKIP_PENDING_POSTS, key)
    _log(context, log_info, key["campaignId"], "workflow:cancelled", skipped=len(remaining))
    return [PostResult(postId=t.postId, outcome="skipped") for t in remaining]


def _await_approval(context, data: WorkflowInput) -> Generator:
    token = str(context.new_uuid())
    expires_at = context.current_utc_datetime + APPROVAL_TIMEOUT
    begin = BeginApprovalInput(
        tenantId=data.tenantId,
        campaignId=data.campaignId,
        instanceId=context.instance_id,
        token=token,
        expiresAt=format_iso_datetime(expires_at),
    )
    context.set_custom_status({"step": "approval", "expiresAt": begin.expiresAt})
    probe = CampaignStatusProbe.model_validate(
        (yield context.call_activity(BEGIN_APPROVAL, begin.model_dump(mode="json")))
    )
    if probe.status != CampaignStatus.AWAITING_REVIEW:
        return WorkflowOutcome.CANCELLED, None

    timer = context.create_timer(expires_at)
    decision_task = context.wait_for_external_event(APPROVAL_EVENT)
    cancel_task = context.wait_for_external_event(CANCEL_EVENT)
    winner = yield context.task_any([decision_task, cancel_task, timer])
    if winner is timer:
        _log(context, log_warning, data.campaignId, "workflow:approval_timeout")
        return WorkflowOutcome.APPROVAL_TIMEOUT, None

    if not timer.is_completed:
        timer.cancel()
    if winner is cancel_task:
        _log(context, log_info, data.campaignId, "workflow:approval_cancelled")
        return WorkflowOutcome.CANCELLED, None
    decision = _decision_payload(decision_task.result)
    outcome = resolve_approval(decision.decision)
    _log(context, log_info, data.campaignId, "workflow:approval_received", outcome=outcome.value)
    return outcome, decision.comments


def _finalize(context, data: WorkflowInput, outcome: WorkflowOutcome, results: List[PostResult], comments=None) -> Generator:
    context.set_custom_status({"step": "finalize", "outcome": outcome.value})
    finalize_input = FinalizeInput(
        tenantId=data.tenantId,
        campaignId=data.campaignId,
        outcome=outcome,
        postResults=results,
        comments=comments,
    )
    final = FinalizeResult.model_validate(
        (yield from call_activity_with_backoff(
            context, FINALIZE_CAMPAIGN, finalize_input.model_dump(mode="json"), SAVE_POLICY
        ))
    )
    succeeded = sum(1 for r in results if r.succeeded)
    _log(context, log_info, data.campaignId, "workflow:completed", outcome=outcome.value, status=final.status.value)
    return WorkflowResult(
        campaignId=data.campaignId,
        outcome=outcome,
        status=final.status,
        succeeded=succeeded,
        failed=sum(1 for r in results if r.outcome == "failed"),
        totalPosts=len(results),
    ).model_dump(mode="json")


def post_content_orchestrator(context):
    """Generate one post, retrying on durable timers; always returns a PostResult."""
    task = PostTaskInput.model_validate(context.get_input())
    policy = POST_CONTENT_POLICY
    last_error = None
    attempt = 1
    while True:
        payload = task.model_copy(update={"attempt": attempt}).model_dump(mode="json")
        try:
            result = PostResult.model_validate((yield context.call_activity(GENERATE_POST_CONTENT, payload)))
        except Exception as exc:  # pylint: disable=broad-except
            last_error = ErrorInfo(code="CONTENT_GENERATION_ERROR", message=str(exc), retryable=True)
        else:
            if result.outcome != "failed":
                return result.model_dump(mode="json")
            last_error = result.error or ErrorInfo(code="CONTENT_GENERATION_ERROR", message="Generation failed")
        if attempt >= policy.max_attempts or not last_error.retryable:
            break
        yield context.create_timer(context.current_utc_datetime + policy.delay_for(attempt))
        attempt += 1

    _log(context, log_warning, task.campaignId, "post:retries_exhausted", postId=task.postId, attempts=attempt)
    failure = PostFailureInput(task=task.model_copy(update={"attempt": attempt}), error=last_error)
    try:
        recorded = yield context.call_activity(RECORD_POST_FAILURE, failure.model_dump(mode="json"))
    except Exception as exc:  # pylint: disable=broad-except
        _log(context, log_error, task.campaignId, "post:record_failure_error", postId=task.postId, error=str(exc))
        return PostResult(postId=task.postId, outcome="failed", attempts=attempt, error=last_error).model_dump(mode="json")
    return recorded


__all__ = [
    "CAMPAIGN_ORCHESTRATOR",
    "POST_CONTENT_ORCHESTRATOR",
    "call_activity_with_backoff",
    "campaign_orchestrator",
    "post_content_orchestrator",
]
