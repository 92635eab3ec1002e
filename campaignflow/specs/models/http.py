from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from campaignflow.specs.common.enums import CampaignStatus, PostStatus
from .domain import Campaign, CampaignDefinition, ErrorInfo, PostContent, SocialPost


class CreateCampaignRequest(CampaignDefinition):
    """Request body for creating a campaign.

    A client-supplied campaignId makes the create idempotent: submitting the
    same id twice resolves to the same record and workflow instance.
    """

    campaignId: Optional[str] = Field(default=None, min_length=1, max_length=120, pattern=r"^[A-Za-z0-9_-]+$")


class CreateCampaignResponse(BaseModel):
    accepted: bool = True
    campaignId: str
    instanceId: str
    statusQueryGetUri: Optional[str] = None


class CampaignResponse(BaseModel):
    campaign: Campaign


class CampaignListResponse(BaseModel):
    campaigns: List[Campaign]
    count: int


class PostListResponse(BaseModel):
    posts: List[SocialPost]
    count: int


class UpdateCampaignRequest(BaseModel):
    """Partial campaign update; unknown keys are filtered by status rules."""

    expectedVersion: Optional[int] = Field(default=None, ge=1)
    changes: Dict[str, Any] = Field(default_factory=dict)


class UpdatePostStatusRequest(BaseModel):
    status: PostStatus
    expectedVersion: Optional[int] = Field(default=None, ge=1)
    error: Optional[ErrorInfo] = None
    content: Optional[PostContent] = None


class PostReviewRequest(BaseModel):
    approved: bool
    feedback: Optional[str] = Field(default=None, max_length=2000)
    requestChanges: List[str] = Field(default_factory=list)
    expectedVersion: Optional[int] = Field(default=None, ge=1)


class ApprovalRequest(BaseModel):
    decision: Literal["approved", "rejected", "needs_revision"]
    comments: Optional[str] = Field(default=None, max_length=2000)
    token: Optional[str] = None


class ApprovalResponse(BaseModel):
    accepted: bool = True
    campaignId: str
    decision: str
    status: CampaignStatus


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    errorCode: Optional[str] = None
    details: Optional[Dict] = None


__all__ = [
    "CreateCampaignRequest",
    "CreateCampaignResponse",
    "CampaignResponse",
    "CampaignListResponse",
    "PostListResponse",
    "UpdateCampaignRequest",
    "UpdatePostStatusRequest",
    "PostReviewRequest",
    "ApprovalRequest",
    "ApprovalResponse",
    "ErrorResponse",
]
