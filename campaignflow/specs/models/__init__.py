from __future__ import annotations

from typing import Dict, Type

from pydantic import BaseModel

from .http import (
    CreateCampaignRequest,
    CreateCampaignResponse,
    UpdateCampaignRequest,
    UpdatePostStatusRequest,
    PostReviewRequest,
    ApprovalRequest,
    ApprovalResponse,
    ErrorResponse,
)
from .activities import (
    WorkflowInput,
    PostTaskInput,
    PostResult,
    PlanStepResult,
    WorkflowResult,
    WorkflowCompletionEvent,
    EventEntry,
)
from .domain import (
    Campaign,
    SocialPost,
    BrandConfig,
    PersonaConfig,
    MergedConfig,
    PostPlan,
    ErrorInfo,
)


# Registry mapping output schema filenames to models for generation
SCHEMA_MODELS: Dict[str, Type[BaseModel]] = {
    "campaign.create.request.schema.json": CreateCampaignRequest,
    "campaign.create.response.schema.json": CreateCampaignResponse,
    "campaign.update.request.schema.json": UpdateCampaignRequest,
    "post.status.request.schema.json": UpdatePostStatusRequest,
    "post.review.request.schema.json": PostReviewRequest,
    "approval.request.schema.json": ApprovalRequest,
    "approval.response.schema.json": ApprovalResponse,
    "error.response.schema.json": ErrorResponse,
    "error.info.schema.json": ErrorInfo,
    "campaign.document.schema.json": Campaign,
    "post.document.schema.json": SocialPost,
    "brand.config.schema.json": BrandConfig,
    "persona.config.schema.json": PersonaConfig,
    "merged.config.schema.json": MergedConfig,
    "post.plan.schema.json": PostPlan,
    "workflow.input.schema.json": WorkflowInput,
    "workflow.result.schema.json": WorkflowResult,
    "post.task.schema.json": PostTaskInput,
    "post.result.schema.json": PostResult,
    "plan.step.result.schema.json": PlanStepResult,
    "workflow.completion.event.schema.json": WorkflowCompletionEvent,
    "event.entry.schema.json": EventEntry,
}

__all__ = [
    "CreateCampaignRequest",
    "CreateCampaignResponse",
    "UpdateCampaignRequest",
    "UpdatePostStatusRequest",
    "PostReviewRequest",
    "ApprovalRequest",
    "ApprovalResponse",
    "ErrorResponse",
    "WorkflowInput",
    "PostTaskInput",
    "PostResult",
    "PlanStepResult",
    "WorkflowResult",
    "WorkflowCompletionEvent",
    "EventEntry",
    "Campaign",
    "SocialPost",
    "BrandConfig",
    "PersonaConfig",
    "MergedConfig",
    "PostPlan",
    "ErrorInfo",
    "SCHEMA_MODELS",
]
