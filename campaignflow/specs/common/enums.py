from enum import Enum


class CampaignStatus(str, Enum):
    PLANNING = "planning"
    GENERATING = "generating"
    AWAITING_REVIEW = "awaiting_review"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PostStatus(str, Enum):
    PLANNED = "planned"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    NEEDS_REVIEW = "needs_review"


class Platform(str, Enum):
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"


class Objective(str, Enum):
    AWARENESS = "awareness"
    EDUCATION = "education"
    CONVERSION = "conversion"
    EVENT = "event"
    LAUNCH = "launch"


class PostIntent(str, Enum):
    ANNOUNCE = "announce"
    EDUCATE = "educate"
    OPINION = "opinion"
    INVITE_DISCUSSION = "invite_discussion"
    SOCIAL_PROOF = "social_proof"
    REMINDER = "reminder"


class DayOfWeek(str, Enum):
    MON = "mon"
    TUE = "tue"
    WED = "wed"
    THU = "thu"
    FRI = "fri"
    SAT = "sat"
    SUN = "sun"


class DistributionMode(str, Enum):
    BALANCED = "balanced"
    WEIGHTED = "weighted"
    CUSTOM = "custom"


class ApprovalMode(str, Enum):
    AUTO_APPROVE = "auto_approve"
    REQUIRE_REVIEW_BELOW_THRESHOLD = "require_review_below_threshold"
    ALWAYS_REVIEW = "always_review"


class ApprovalState(str, Enum):
    PENDING = "pending"
    DECIDED = "decided"
    EXPIRED = "expired"


class WorkflowOutcome(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    APPROVAL_TIMEOUT = "approval_timeout"
    NEEDS_REVISION = "needs_revision"
    CANCELLED = "cancelled"
    DUPLICATE = "duplicate"


class WorkflowType(str, Enum):
    CAMPAIGN_PLANNING = "campaign-planning"
    CONTENT_GENERATION = "content-generation"


# Intents are assigned to posts round-robin in this order
INTENT_ROTATION = [
    PostIntent.ANNOUNCE,
    PostIntent.EDUCATE,
    PostIntent.OPINION,
    PostIntent.INVITE_DISCUSSION,
    PostIntent.SOCIAL_PROOF,
    PostIntent.REMINDER,
]

# Matches datetime.weekday()
WEEKDAY_INDEX = {
    DayOfWeek.MON: 0,
    DayOfWeek.TUE: 1,
    DayOfWeek.WED: 2,
    DayOfWeek.THU: 3,
    DayOfWeek.FRI: 4,
    DayOfWeek.SAT: 5,
    DayOfWeek.SUN: 6,
}
