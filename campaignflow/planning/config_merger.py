"""Merge brand, campaign and persona settings into effective planning constraints.

Precedence is always campaign > brand > built-in default, resolved per field.
Everything here is pure: no I/O, and equal inputs give equal output.
"""
from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional, Sequence

from campaignflow.specs.common.enums import Platform
from campaignflow.specs.models.domain import (
    ApprovalPolicy,
    BrandConfig,
    CadenceConfig,
    CampaignDefinition,
    MergedConfig,
    MessagingPillar,
    PersonaConfig,
    PersonaRestrictions,
    PlatformAssetConfig,
)

DEFAULT_PILLARS = (
    ("Brand Awareness", 0.4),
    ("Education", 0.3),
    ("Engagement", 0.3),
)
DEFAULT_CADENCE_PER_WEEK = 3.0
DEFAULT_MAX_POSTS_PER_DAY = 2


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for value in values:
        key = value.strip()
        if key and key.lower() not in seen:
            seen.add(key.lower())
            out.append(key)
    return out


def _normalize(pillars: Sequence[MessagingPillar]) -> List[MessagingPillar]:
    total = sum(p.weight for p in pillars)
    if total <= 0:
        share = 1.0 / len(pillars)
        return [MessagingPillar(name=p.name, weight=share) for p in pillars]
    return [MessagingPillar(name=p.name, weight=p.weight / total) for p in pillars]


def derive_brand_cadence(brand: Optional[BrandConfig]) -> CadenceConfig:
    """Cadence bounds implied by the brand's typical per-platform posting rate."""
    defaults = brand.platformGuidelines.defaults if brand and brand.platformGuidelines else {}
    rates = [
        d.typicalCadencePerWeek if d.typicalCadencePerWeek else DEFAULT_CADENCE_PER_WEEK
        for d in defaults.values()
    ]
    average = sum(rates) / len(rates) if rates else DEFAULT_CADENCE_PER_WEEK
    return CadenceConfig(
        minPostsPerWeek=max(1, math.floor(average * 0.7)),
        maxPostsPerWeek=max(1, math.ceil(average * 1.3)),
        maxPostsPerDay=DEFAULT_MAX_POSTS_PER_DAY,
    )


def resolve_cadence(brand: Optional[BrandConfig], campaign: CampaignDefinition) -> CadenceConfig:
    base = derive_brand_cadence(brand)
    overrides = campaign.cadenceOverrides
    minimum = overrides.minPostsPerWeek if overrides and overrides.minPostsPerWeek else base.minPostsPerWeek
    maximum = overrides.maxPostsPerWeek if overrides and overrides.maxPostsPerWeek else base.maxPostsPerWeek
    per_day = overrides.maxPostsPerDay if overrides and overrides.maxPostsPerDay else base.maxPostsPerDay
    # A lone min override may exceed the derived max; the explicit value wins
    if minimum > maximum:
        maximum = minimum
    return CadenceConfig(minPostsPerWeek=minimum, maxPostsPerWeek=maximum, maxPostsPerDay=per_day)


def resolve_pillars(brand: Optional[BrandConfig], campaign: CampaignDefinition) -> List[MessagingPillar]:
    if campaign.messaging and campaign.messaging.pillars:
        return _normalize(campaign.messaging.pillars)
    if brand and brand.pillars:
        weights = [p.weight for p in brand.pillars]
        if any(w is None for w in weights):
            share = 1.0 / len(brand.pillars)
            return [MessagingPillar(name=p.name, weight=share) for p in brand.pillars]
        return _normalize([MessagingPillar(name=p.name, weight=p.weight) for p in brand.pillars])
    return [MessagingPillar(name=name, weight=weight) for name, weight in DEFAULT_PILLARS]


def brand_visual_defaults(brand: Optional[BrandConfig]) -> Dict[Platform, PlatformAssetConfig]:
    """Per-platform asset flags from the brand's default asset type.

    Instagram needs a visual unless the brand explicitly opts out; other
    platforms only when the brand's default asset is an image.
    """
    defaults = brand.platformGuidelines.defaults if brand and brand.platformGuidelines else {}
    result: Dict[Platform, PlatformAssetConfig] = {}
    for platform in Platform:
        asset = defaults[platform].defaultAsset if platform in defaults else None
        if platform is Platform.INSTAGRAM:
            force = asset != "none"
        else:
            force = asset == "image"
        result[platform] = PlatformAssetConfig(forceVisuals=force, videoRequired=asset == "video")
    return result


def resolve_assets(brand: Optional[BrandConfig], campaign: CampaignDefinition) -> Dict[Platform, PlatformAssetConfig]:
    assets = brand_visual_defaults(brand) if brand else {p: PlatformAssetConfig() for p in Platform}
    overrides = campaign.assetOverrides.forceVisuals if campaign.assetOverrides else {}
    for platform, force in overrides.items():
        assets[platform] = assets[platform].model_copy(update={"forceVisuals": force})
    return assets


def persona_restrictions(
    persona: PersonaConfig,
    campaign_avoid: Sequence[str],
    brand: Optional[BrandConfig],
) -> PersonaRestrictions:
    standards = brand.contentStandards if brand else None
    return PersonaRestrictions(
        avoidTopics=_dedupe(
            [*persona.opinions.avoidsTopics, *campaign_avoid, *(standards.avoidTopics if standards else [])]
        ),
        avoidPhrases=_dedupe([*persona.language.avoid, *(standards.avoidPhrases if standards else [])]),
        ctaLimited=persona.ctaStyle.aggressiveness == "low",
    )


def merge_configuration(
    brand: Optional[BrandConfig],
    campaign: CampaignDefinition,
    personas: Sequence[PersonaConfig],
) -> MergedConfig:
    campaign_avoid = campaign.messaging.avoidTopics if campaign.messaging else []
    brand_avoid = brand.contentStandards.avoidTopics if brand and brand.contentStandards else []
    persona_avoid = [topic for p in personas for topic in p.opinions.avoidsTopics]

    return MergedConfig(
        cadence=resolve_cadence(brand, campaign),
        pillars=resolve_pillars(brand, campaign),
        requiredInclusions=list(campaign.messaging.requiredInclusions) if campaign.messaging else [],
        assets=resolve_assets(brand, campaign),
        avoidTopics=_dedupe([*persona_avoid, *brand_avoid, *campaign_avoid]),
        personaRestrictions={
            p.personaId: persona_restrictions(p, campaign_avoid, brand) for p in personas
        },
        approvalPolicy=(brand.approvalPolicy if brand and brand.approvalPolicy else ApprovalPolicy()),
    )


__all__ = [
    "DEFAULT_PILLARS",
    "derive_brand_cadence",
    "resolve_cadence",
    "resolve_pillars",
    "brand_visual_defaults",
    "resolve_assets",
    "persona_restrictions",
    "merge_configuration",
]
