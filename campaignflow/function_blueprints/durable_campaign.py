import azure.durable_functions as df

from campaignflow.specs.models.activities import (
    BeginApprovalInput,
    CampaignKey,
    FinalizeInput,
    MarkFailedInput,
    PostFailureInput,
    PostTaskInput,
    WorkflowInput,
)
from campaignflow.workflow import orchestrator
from .dependencies import get_campaign_activities

bp = df.Blueprint()


@bp.function_name(name=orchestrator.CAMPAIGN_ORCHESTRATOR)
@bp.orchestration_trigger(context_name="context")
def campaign_orchestrator(context: df.DurableOrchestrationContext):
    result = yield from orchestrator.campaign_orchestrator(context)
    return result


@bp.function_name(name=orchestrator.POST_CONTENT_ORCHESTRATOR)
@bp.orchestration_trigger(context_name="context")
def post_content_orchestrator(context: df.DurableOrchestrationContext):
    result = yield from orchestrator.post_content_orchestrator(context)
    return result


@bp.function_name(name=orchestrator.SAVE_CAMPAIGN)
@bp.activity_trigger(input_name="data")
def save_campaign(data: dict) -> dict:
    return get_campaign_activities().save_campaign(WorkflowInput.model_validate(data)).model_dump(mode="json")


@bp.function_name(name=orchestrator.GENERATE_PLAN)
@bp.activity_trigger(input_name="data")
def generate_plan(data: dict) -> dict:
    return get_campaign_activities().generate_plan(CampaignKey.model_validate(data)).model_dump(mode="json")


@bp.function_name(name=orchestrator.GET_CAMPAIGN_STATUS)
@bp.activity_trigger(input_name="data")
def get_campaign_status(data: dict) -> dict:
    return get_campaign_activities().get_campaign_status(CampaignKey.model_validate(data)).model_dump(mode="json")


@bp.function_name(name=orchestrator.GENERATE_POST_CONTENT)
@bp.activity_trigger(input_name="data")
def generate_post_content(data: dict) -> dict:
    return get_campaign_activities().generate_post_content(PostTaskInput.model_validate(data)).model_dump(mode="json")


@bp.function_name(name=orchestrator.RECORD_POST_FAILURE)
@bp.activity_trigger(input_name="data")
def record_post_failure(data: dict) -> dict:
    return get_campaign_activities().record_post_failure(PostFailureInput.model_validate(data)).model_dump(mode="json")


@bp.function_name(name=orchestrator.SKIP_PENDING_POSTS)
@bp.activity_trigger(input_name="data")
def skip_pending_posts(data: dict) -> int:
    return get_campaign_activities().skip_pending_posts(CampaignKey.model_validate(data))


@bp.function_name(name=orchestrator.BEGIN_APPROVAL)
@bp.activity_trigger(input_name="data")
def begin_approval(data: dict) -> dict:
    return get_campaign_activities().begin_approval(BeginApprovalInput.model_validate(data)).model_dump(mode="json")


@bp.function_name(name=orchestrator.FINALIZE_CAMPAIGN)
@bp.activity_trigger(input_name="data")
def finalize_campaign(data: dict) -> dict:
    return get_campaign_activities().finalize_campaign(FinalizeInput.model_validate(data)).model_dump(mode="json")


@bp.function_name(name=orchestrator.MARK_CAMPAIGN_FAILED)
@bp.activity_trigger(input_name="data")
def mark_campaign_failed(data: dict) -> dict:
    return get_campaign_activities().mark_campaign_failed(MarkFailedInput.model_validate(data)).model_dump(mode="json")
