import os
from dataclasses import dataclass
from datetime import timedelta

from campaignflow.specs.common.enums import WorkflowOutcome


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limit and exponential backoff for one workflow step."""

    max_attempts: int
    first_interval: timedelta = timedelta(seconds=1)
    backoff_coefficient: float = 1.0
    max_interval: timedelta = timedelta(seconds=30)

    def delay_for(self, attempt: int) -> timedelta:
        """Delay to wait after the given (1-based) failed attempt."""
        seconds = self.first_interval.total_seconds() * (self.backoff_coefficient ** max(attempt - 1, 0))
        return timedelta(seconds=min(seconds, self.max_interval.total_seconds()))


SAVE_POLICY = RetryPolicy(max_attempts=3, backoff_coefficient=2.0, max_interval=timedelta(seconds=30))
# Planning creates posts as a side effect and is never retried
PLAN_POLICY = RetryPolicy(max_attempts=1)
POST_CONTENT_POLICY = RetryPolicy(max_attempts=3, backoff_coefficient=1.5, max_interval=timedelta(seconds=10))

APPROVAL_TIMEOUT = timedelta(hours=24)
APPROVAL_EVENT = "ApprovalDecision"
# Raised by API cancellation; reviewers cannot send it
CANCEL_EVENT = "CampaignCancelled"

_DECISIONS = {
    "approved": WorkflowOutcome.APPROVED,
    "rejected": WorkflowOutcome.REJECTED,
}


def fanout_concurrency() -> int:
    try:
        value = int(os.getenv("CONTENT_FANOUT_MAX_CONCURRENCY", "1"))
    except ValueError:
        value = 1
    return max(1, value)


def resolve_approval(decision: str) -> WorkflowOutcome:
    """Map a reviewer decision to a workflow outcome; unknown values ask for revision."""
    return _DECISIONS.get((decision or "").strip().lower(), WorkflowOutcome.NEEDS_REVISION)
