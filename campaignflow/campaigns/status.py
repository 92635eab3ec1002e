"""Campaign and post status rules.

Transition tables, the per-status field update permissions, status
derivation from post outcomes, and lastError bookkeeping.
"""
from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

from campaignflow.specs.common.datetime_utils import format_iso_datetime, utc_now
from campaignflow.specs.common.enums import CampaignStatus, PostStatus
from campaignflow.specs.common.errors import CampaignFlowError, ConflictError
from campaignflow.specs.models.domain import Campaign, ErrorInfo

CAMPAIGN_TRANSITIONS: Dict[CampaignStatus, FrozenSet[CampaignStatus]] = {
    CampaignStatus.PLANNING: frozenset({CampaignStatus.GENERATING, CampaignStatus.CANCELLED}),
    CampaignStatus.GENERATING: frozenset(
        {
            CampaignStatus.COMPLETED,
            CampaignStatus.AWAITING_REVIEW,
            CampaignStatus.FAILED,
            CampaignStatus.CANCELLED,
        }
    ),
    CampaignStatus.AWAITING_REVIEW: frozenset({CampaignStatus.COMPLETED, CampaignStatus.CANCELLED}),
    CampaignStatus.COMPLETED: frozenset(),
    CampaignStatus.FAILED: frozenset(),
    CampaignStatus.CANCELLED: frozenset(),
}

POST_TRANSITIONS: Dict[PostStatus, FrozenSet[PostStatus]] = {
    PostStatus.PLANNED: frozenset({PostStatus.GENERATING, PostStatus.SKIPPED}),
    PostStatus.GENERATING: frozenset({PostStatus.COMPLETED, PostStatus.FAILED, PostStatus.NEEDS_REVIEW}),
    PostStatus.NEEDS_REVIEW: frozenset({PostStatus.COMPLETED, PostStatus.FAILED}),
    PostStatus.COMPLETED: frozenset(),
    PostStatus.FAILED: frozenset(),
    PostStatus.SKIPPED: frozenset(),
}

# Only the workflow's fatal error path may take these; API updates never can
WORKFLOW_FAILURE_TRANSITIONS: Dict[CampaignStatus, FrozenSet[CampaignStatus]] = {
    CampaignStatus.PLANNING: frozenset({CampaignStatus.FAILED}),
    CampaignStatus.AWAITING_REVIEW: frozenset({CampaignStatus.FAILED}),
}

TERMINAL_CAMPAIGN_STATUSES = frozenset(s for s, nxt in CAMPAIGN_TRANSITIONS.items() if not nxt)
TERMINAL_POST_STATUSES = frozenset(s for s, nxt in POST_TRANSITIONS.items() if not nxt)

_PLAN_FIELDS = frozenset(
    {"brief", "participants", "schedule", "cadenceOverrides", "messaging", "assetOverrides"}
)

# `status` is writable everywhere but still gated by CAMPAIGN_TRANSITIONS
UPDATE_PERMISSIONS: Dict[CampaignStatus, FrozenSet[str]] = {
    CampaignStatus.PLANNING: _PLAN_FIELDS | {"name", "metadata", "status"},
    CampaignStatus.GENERATING: frozenset({"name", "brief.description", "metadata", "status"}),
    CampaignStatus.AWAITING_REVIEW: frozenset({"name", "metadata", "status"}),
    CampaignStatus.COMPLETED: frozenset({"name", "metadata", "status"}),
    CampaignStatus.FAILED: frozenset({"name", "metadata", "status"}),
    CampaignStatus.CANCELLED: frozenset({"name", "metadata", "status"}),
}

RETRYABLE_ERROR_NAMES = frozenset(
    {
        "ThrottlingException",
        "ServiceUnavailableException",
        "InternalServerError",
        "TimeoutException",
        "RetryableCosmosError",
    }
)
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 503})

StatusLike = Union[CampaignStatus, str]


def is_valid_transition(current: StatusLike, target: StatusLike, *, system: bool = False) -> bool:
    current, target = CampaignStatus(current), CampaignStatus(target)
    if current == target or target in CAMPAIGN_TRANSITIONS[current]:
        return True
    return system and target in WORKFLOW_FAILURE_TRANSITIONS.get(current, frozenset())


def is_valid_post_transition(current: Union[PostStatus, str], target: Union[PostStatus, str]) -> bool:
    current, target = PostStatus(current), PostStatus(target)
    if current == target:
        return True
    return target in POST_TRANSITIONS[current]


def validate_transition(
    current: StatusLike,
    target: StatusLike,
    campaign: Optional[Campaign] = None,
    *,
    manual: bool = False,
    system: bool = False,
) -> None:
    """Raise ConflictError unless current -> target is permitted.

    Manual (API driven) updates are held to two extra rules: a campaign
    cannot enter generating without a plan, and generating cannot jump to
    completed outside workflow completion. ``system`` additionally opens
    the workflow failure edges and is never combined with ``manual``.
    """
    current, target = CampaignStatus(current), CampaignStatus(target)
    if not is_valid_transition(current, target, system=system and not manual):
        raise ConflictError(
            f"Invalid status transition from {current.value} to {target.value}",
            code="INVALID_STATUS_TRANSITION",
            details={"fromStatus": current.value, "toStatus": target.value},
        )
    if not manual or current == target:
        return
    if target == CampaignStatus.GENERATING and (campaign is None or campaign.planSummary is None):
        raise ConflictError(
            "Cannot transition to generating status without a plan summary",
            code="INVALID_STATUS_TRANSITION",
            details={"fromStatus": current.value, "toStatus": target.value},
        )
    if current == CampaignStatus.GENERATING and target == CampaignStatus.COMPLETED:
        raise ConflictError(
            "Cannot move from generating to completed directly; completion is driven by the workflow",
            code="INVALID_STATUS_TRANSITION",
            details={"fromStatus": current.value, "toStatus": target.value},
        )


def validate_post_transition(current: Union[PostStatus, str], target: Union[PostStatus, str]) -> None:
    if not is_valid_post_transition(current, target):
        raise ConflictError(
            f"Invalid post status transition from {PostStatus(current).value} to {PostStatus(target).value}",
            code="INVALID_STATUS_TRANSITION",
            details={"fromStatus": PostStatus(current).value, "toStatus": PostStatus(target).value},
        )


def get_update_permissions(status: StatusLike) -> FrozenSet[str]:
    return UPDATE_PERMISSIONS.get(CampaignStatus(status), frozenset())


def filter_update(changes: Dict[str, Any], status: StatusLike) -> Dict[str, Any]:
    """Keep only the fields writable in ``status``.

    Dotted permissions (``brief.description``) allow a single nested key:
    either ``{"brief": {"description": ...}}`` or ``{"brief.description": ...}``
    is accepted and returned in the nested form.

    Raises:
        ConflictError: If nothing survives the filter
    """
    allowed = get_update_permissions(status)
    nested: Dict[str, set] = {}
    for permission in allowed:
        top, _, sub = permission.partition(".")
        if sub:
            nested.setdefault(top, set()).add(sub)

    filtered: Dict[str, Any] = {}
    rejected: List[str] = []
    for field, value in changes.items():
        if field in allowed and "." not in field:
            filtered[field] = value
        elif field in allowed:
            top, _, sub = field.partition(".")
            filtered.setdefault(top, {})[sub] = value
        elif field in nested and isinstance(value, dict):
            kept = {k: v for k, v in value.items() if k in nested[field]}
            rejected.extend(f"{field}.{k}" for k in value if k not in nested[field])
            if kept:
                filtered.setdefault(field, {}).update(kept)
        else:
            rejected.append(field)

    if not filtered:
        raise ConflictError(
            f"No updatable fields for a campaign in {CampaignStatus(status).value} status",
            code="UPDATE_NOT_ALLOWED",
            details={"status": CampaignStatus(status).value, "rejectedFields": sorted(rejected)},
        )
    return filtered


def derive_status_from_posts(
    post_statuses: Iterable[Union[PostStatus, str]],
    current: StatusLike,
) -> CampaignStatus:
    """Campaign status implied by its posts.

    needs_review anywhere wins; all completed or skipped completes the
    campaign; failures with nothing succeeded fail it. Anything else keeps
    the current status, as does a derived status the transition table forbids.
    """
    current = CampaignStatus(current)
    statuses = [PostStatus(s) for s in post_statuses]
    if not statuses:
        return current

    if PostStatus.NEEDS_REVIEW in statuses:
        derived = CampaignStatus.AWAITING_REVIEW
    elif all(s in (PostStatus.COMPLETED, PostStatus.SKIPPED) for s in statuses):
        derived = CampaignStatus.COMPLETED
    elif PostStatus.FAILED in statuses and PostStatus.COMPLETED not in statuses:
        derived = CampaignStatus.FAILED
    else:
        return current
    return derived if is_valid_transition(current, derived) else current


def create_error_info(code: str, message: str, retryable: bool = False) -> ErrorInfo:
    return ErrorInfo(code=code, message=message, at=format_iso_datetime(utc_now()), retryable=retryable)


def should_retry_on_error(exc: BaseException) -> bool:
    if isinstance(exc, CampaignFlowError):
        return exc.retryable
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    if type(exc).__name__ in RETRYABLE_ERROR_NAMES or getattr(exc, "code", None) in RETRYABLE_ERROR_NAMES:
        return True
    return getattr(exc, "status_code", None) in RETRYABLE_STATUS_CODES


__all__ = [
    "CAMPAIGN_TRANSITIONS",
    "POST_TRANSITIONS",
    "WORKFLOW_FAILURE_TRANSITIONS",
    "TERMINAL_CAMPAIGN_STATUSES",
    "TERMINAL_POST_STATUSES",
    "UPDATE_PERMISSIONS",
    "is_valid_transition",
    "is_valid_post_transition",
    "validate_transition",
    "validate_post_transition",
    "get_update_permissions",
    "filter_update",
    "derive_status_from_posts",
    "create_error_info",
    "should_retry_on_error",
]
