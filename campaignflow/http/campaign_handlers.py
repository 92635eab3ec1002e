"""HTTP handlers for the campaign API.

Handlers take the request, the durable client and a ``CampaignService`` so
they can be exercised without the Functions host; the blueprint in
``campaignflow.function_blueprints.http_campaigns`` binds them to routes.
"""
import functools
import json
from typing import Any, Dict, Optional

import azure.functions as func
from pydantic import BaseModel, ValidationError as PydanticValidationError

from campaignflow.campaigns.service import CampaignService
from campaignflow.specs.common.enums import CampaignStatus
from campaignflow.specs.common.errors import (
    AuthenticationError,
    CampaignFlowError,
    ValidationError,
)
from campaignflow.specs.common.ids import orchestration_instance_id
from campaignflow.specs.models.activities import ApprovalDecisionEvent, WorkflowInput
from campaignflow.specs.models.http import (
    ApprovalRequest,
    ApprovalResponse,
    CampaignListResponse,
    CampaignResponse,
    CreateCampaignRequest,
    CreateCampaignResponse,
    ErrorResponse,
    PostListResponse,
    PostReviewRequest,
    UpdateCampaignRequest,
    UpdatePostStatusRequest,
)
from campaignflow.shared.logging_utils import error as log_error, info as log_info, warning as log_warning
from campaignflow.workflow.orchestrator import CAMPAIGN_ORCHESTRATOR
from campaignflow.workflow.policies import APPROVAL_EVENT, CANCEL_EVENT, fanout_concurrency

TENANT_HEADER = "x-tenant-id"


def _json_response(model: BaseModel, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> func.HttpResponse:
    return func.HttpResponse(
        body=model.model_dump_json(exclude_none=True),
        mimetype="application/json",
        status_code=status_code,
        headers=headers,
    )


def _error_response(exc: CampaignFlowError) -> func.HttpResponse:
    err = ErrorResponse(message=str(exc), errorCode=exc.code, details=exc.details or None)
    return func.HttpResponse(err.model_dump_json(), mimetype="application/json", status_code=exc.status_code)


def _tenant_id(req: func.HttpRequest) -> str:
    tenant_id = (req.headers.get(TENANT_HEADER) or "").strip()
    if not tenant_id:
        raise AuthenticationError()
    return tenant_id


def _json_body(req: func.HttpRequest) -> Dict[str, Any]:
    try:
        data = req.get_json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _parse(model, data: Dict[str, Any]):
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid request: {exc.error_count()} validation error(s)",
            details={"errors": json.loads(exc.json(include_url=False))},
        )


def handles_errors(handler):
    """Render CampaignFlowError as ErrorResponse; anything else is a 500."""

    @functools.wraps(handler)
    async def wrapper(req: func.HttpRequest, *args, **kwargs) -> func.HttpResponse:
        try:
            return await handler(req, *args, **kwargs)
        except CampaignFlowError as exc:
            if exc.status_code >= 500:
                log_error(req.route_params.get("campaign_id"), "http:error", code=exc.code, error=str(exc))
            else:
                log_info(req.route_params.get("campaign_id"), "http:rejected", code=exc.code, status=exc.status_code)
            return _error_response(exc)
        except Exception as exc:  # pylint: disable=broad-except
            log_error(req.route_params.get("campaign_id"), "http:unhandled", handler=handler.__name__, error=str(exc))
            err = ErrorResponse(message="Internal server error", errorCode="INTERNAL_ERROR")
            return func.HttpResponse(err.model_dump_json(), mimetype="application/json", status_code=500)

    return wrapper


@handles_errors
async def create_campaign(req: func.HttpRequest, client, service: CampaignService) -> func.HttpResponse:
    tenant_id = _tenant_id(req)
    request = _parse(CreateCampaignRequest, _json_body(req))
    campaign = service.build_campaign(tenant_id, request)
    instance_id = orchestration_instance_id(tenant_id, campaign.id)

    existing = service.repository.get_campaign(tenant_id, campaign.id) if request.campaignId else None
    if existing is None:
        payload = WorkflowInput(
            tenantId=tenant_id,
            campaignId=campaign.id,
            campaign=campaign.model_dump(mode="json", exclude_none=True),
            instanceId=instance_id,
            maxConcurrency=fanout_concurrency(),
        )
        await client.start_new(CAMPAIGN_ORCHESTRATOR, instance_id, payload.model_dump(mode="json"))
        log_info(campaign.id, "campaign:accepted", tenantId=tenant_id, instanceId=instance_id)
    else:
        log_info(campaign.id, "campaign:create_duplicate", tenantId=tenant_id, status=existing.status.value)

    check_status = client.create_check_status_response(req, instance_id)
    headers = dict(check_status.headers or {})
    resp = CreateCampaignResponse(
        campaignId=campaign.id,
        instanceId=instance_id,
        statusQueryGetUri=headers.get("Location"),
    )
    return _json_response(resp, status_code=202, headers=headers)


@handles_errors
async def get_campaign(req: func.HttpRequest, client, service: CampaignService) -> func.HttpResponse:
    tenant_id = _tenant_id(req)
    campaign = service.get_campaign(tenant_id, req.route_params["campaign_id"])
    return _json_response(CampaignResponse(campaign=campaign))


@handles_errors
async def list_campaigns(req: func.HttpRequest, client, service: CampaignService) -> func.HttpResponse:
    campaigns = service.list_campaigns(_tenant_id(req))
    return _json_response(CampaignListResponse(campaigns=campaigns, count=len(campaigns)))


@handles_errors
async def update_campaign(req: func.HttpRequest, client, service: CampaignService) -> func.HttpResponse:
    tenant_id = _tenant_id(req)
    campaign_id = req.route_params["campaign_id"]
    body = _json_body(req)
    if "changes" not in body:
        # Bare field updates are accepted alongside the wrapped form
        body = {
            "expectedVersion": body.get("expectedVersion"),
            "changes": {k: v for k, v in body.items() if k != "expectedVersion"},
        }
    request = _parse(UpdateCampaignRequest, body)
    if not request.changes:
        raise ValidationError("No changes supplied")

    updated = service.update_campaign(tenant_id, campaign_id, request.changes, request.expectedVersion)

    instance_id = service.pending_approval_instance(updated)
    if updated.status == CampaignStatus.CANCELLED and instance_id:
        try:
            await client.raise_event(instance_id, CANCEL_EVENT, {"campaignId": campaign_id})
        except Exception as exc:  # pylint: disable=broad-except
            # The approval timer still ends the wait
            log_warning(campaign_id, "campaign:cancel_signal_failed", instanceId=instance_id, error=str(exc))
    return _json_response(CampaignResponse(campaign=updated))


@handles_errors
async def list_posts(req: func.HttpRequest, client, service: CampaignService) -> func.HttpResponse:
    posts = service.list_posts(_tenant_id(req), req.route_params["campaign_id"])
    return _json_response(PostListResponse(posts=posts, count=len(posts)))


@handles_errors
async def update_post_status(req: func.HttpRequest, client, service: CampaignService) -> func.HttpResponse:
    tenant_id = _tenant_id(req)
    request = _parse(UpdatePostStatusRequest, _json_body(req))
    post = service.update_post_status(
        tenant_id, req.route_params["campaign_id"], req.route_params["post_id"], request
    )
    return _json_response(post)


@handles_errors
async def review_post(req: func.HttpRequest, client, service: CampaignService) -> func.HttpResponse:
    tenant_id = _tenant_id(req)
    request = _parse(PostReviewRequest, _json_body(req))
    post = service.review_post(tenant_id, req.route_params["campaign_id"], req.route_params["post_id"], request)
    log_info(post.campaignId, "post:reviewed", postId=post.id, approved=request.approved)
    return _json_response(post)


@handles_errors
async def submit_approval(req: func.HttpRequest, client, service: CampaignService) -> func.HttpResponse:
    """Resume a workflow waiting on a reviewer decision."""
    tenant_id = _tenant_id(req)
    campaign_id = req.route_params["campaign_id"]
    request = _parse(ApprovalRequest, _json_body(req))
    token = req.params.get("token") or request.token
    if not token:
        raise ValidationError("Missing approval token")

    campaign = service.submit_approval(tenant_id, campaign_id, token, request.decision, request.comments)
    event = ApprovalDecisionEvent(decision=request.decision, comments=request.comments)
    try:
        await client.raise_event(campaign.approval.instanceId, APPROVAL_EVENT, event.model_dump())
    except Exception as exc:  # pylint: disable=broad-except
        # The workflow never saw the decision, so the token must stay usable
        log_error(campaign_id, "approval:signal_failed", instanceId=campaign.approval.instanceId, error=str(exc))
        try:
            service.release_approval(campaign)
        except CampaignFlowError as secondary:
            log_error(campaign_id, "approval:release_failed", error=str(secondary))
        raise
    log_info(campaign_id, "approval:resumed", instanceId=campaign.approval.instanceId, decision=request.decision)
    resp = ApprovalResponse(campaignId=campaign_id, decision=request.decision, status=campaign.status)
    return _json_response(resp, status_code=202)


__all__ = [
    "TENANT_HEADER",
    "create_campaign",
    "get_campaign",
    "list_campaigns",
    "update_campaign",
    "list_posts",
    "update_post_status",
    "review_post",
    "submit_approval",
]
