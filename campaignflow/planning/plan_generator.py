"""Deterministic post schedule generation.

The same campaign and merged config always produce the same posts in the
same order, and the same planVersion. Callers compare planVersion values to
decide whether previously generated content is still valid, so nothing in
here may read the clock or draw random numbers.
"""
from __future__ import annotations

import hashlib
import json
from collections import Counter
from datetime import datetime, time, timedelta, timezone
from typing import List
from zoneinfo import ZoneInfo

from campaignflow.specs.common.enums import INTENT_ROTATION, WEEKDAY_INDEX, PostIntent
from campaignflow.specs.models.domain import (
    AssetRequirements,
    CampaignDefinition,
    MergedConfig,
    PlannedPost,
    PlanSummary,
    PostPlan,
    PostReference,
)

# Fields whose change invalidates a generated plan
PLAN_AFFECTING_FIELDS = (
    "brief",
    "participants",
    "schedule",
    "cadenceOverrides",
    "messaging",
    "assetOverrides",
)
PLAN_VERSION_LENGTH = 16
TOPIC_MAX_LENGTH = 500

_INTENT_ANGLES = {
    PostIntent.ANNOUNCE: "Announce",
    PostIntent.EDUCATE: "Explain",
    PostIntent.OPINION: "Share a point of view on",
    PostIntent.INVITE_DISCUSSION: "Start a conversation about",
    PostIntent.SOCIAL_PROOF: "Show real-world results for",
    PostIntent.REMINDER: "Remind the audience about",
}


def compute_plan_version(campaign: CampaignDefinition) -> str:
    """Fingerprint of the plan-affecting fields as 16 hex chars of SHA-256."""
    subset = campaign.model_dump(mode="json", include=set(PLAN_AFFECTING_FIELDS), exclude_none=True)
    canonical = json.dumps(subset, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:PLAN_VERSION_LENGTH]


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def duration_in_days(start: datetime, end: datetime) -> int:
    days, remainder = divmod(end - start, timedelta(days=1))
    return days + (1 if remainder else 0)


def target_posts_per_week(platform_count: int, merged: MergedConfig) -> int:
    wanted = platform_count * 2
    return min(max(wanted, merged.cadence.minPostsPerWeek), merged.cadence.maxPostsPerWeek)


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def _topic(campaign: CampaignDefinition, pillar: str, intent: PostIntent) -> str:
    topic = f"{_INTENT_ANGLES[intent]} {campaign.name} through the lens of {pillar}"
    return topic[:TOPIC_MAX_LENGTH]


def _asset_requirements(platform, pillar: str, merged: MergedConfig) -> AssetRequirements:
    assets = merged.assets.get(platform)
    if assets is None:
        return AssetRequirements()
    return AssetRequirements(
        imageRequired=assets.forceVisuals,
        imageDescription=f"Visual for {platform.value} supporting {pillar}" if assets.forceVisuals else None,
        videoRequired=assets.videoRequired,
        videoDescription=f"Short video for {platform.value} supporting {pillar}" if assets.videoRequired else None,
    )


def summarize(posts: List[PlannedPost]) -> PlanSummary:
    return PlanSummary(
        totalPosts=len(posts),
        postsPerPlatform=dict(sorted(Counter(p.platform.value for p in posts).items())),
        postsPerPersona=dict(sorted(Counter(p.personaId for p in posts).items())),
    )


def generate_post_plan(campaign: CampaignDefinition, merged: MergedConfig) -> PostPlan:
    schedule = campaign.schedule
    tz = ZoneInfo(schedule.timezone)
    personas = campaign.participants.personaIds
    platforms = campaign.participants.platforms
    pillars = [p.name for p in merged.pillars]
    windows = schedule.postingWindows

    duration_days = duration_in_days(schedule.startDate, schedule.endDate)
    weeks = _ceil_div(duration_days, 7)
    total_posts = max(1, weeks * target_posts_per_week(len(platforms), merged))

    allowed = {WEEKDAY_INDEX[d] for d in schedule.allowedDaysOfWeek}
    blackout = set(schedule.blackoutDates)
    local_start = schedule.startDate.astimezone(tz)

    references: List[PostReference] = []
    cta = campaign.brief.primaryCTA
    if cta and cta.url:
        references.append(PostReference(type="url", value=cta.url))

    posts: List[PlannedPost] = []
    for i in range(total_posts):
        day_offset = i * duration_days // total_posts
        local_date = local_start.date() + timedelta(days=day_offset)
        if local_date in blackout or local_date.weekday() not in allowed:
            continue

        slot = _parse_hhmm(windows[i % len(windows)].start) if windows else local_start.time()
        scheduled_at = datetime.combine(local_date, slot, tzinfo=tz).astimezone(timezone.utc)

        platform = platforms[i % len(platforms)]
        pillar = pillars[i % len(pillars)]
        intent = INTENT_ROTATION[i % len(INTENT_ROTATION)]
        posts.append(
            PlannedPost(
                sequence=i,
                personaId=personas[i % len(personas)],
                platform=platform,
                scheduledAt=scheduled_at,
                topic=_topic(campaign, pillar, intent),
                intent=intent,
                messagingPillar=pillar,
                assetRequirements=_asset_requirements(platform, pillar, merged),
                references=list(references),
            )
        )

    return PostPlan(posts=posts, planSummary=summarize(posts), planVersion=compute_plan_version(campaign))


__all__ = [
    "PLAN_AFFECTING_FIELDS",
    "compute_plan_version",
    "duration_in_days",
    "target_posts_per_week",
    "summarize",
    "generate_post_plan",
]
