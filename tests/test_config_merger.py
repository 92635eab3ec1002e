from __future__ import annotations

import pytest

from conftest import campaign_body
from campaignflow.planning.config_merger import (
    DEFAULT_PILLARS,
    derive_brand_cadence,
    merge_configuration,
    resolve_assets,
    resolve_cadence,
    resolve_pillars,
)
from campaignflow.specs.common.enums import ApprovalMode, Platform
from campaignflow.specs.models.domain import BrandConfig, CampaignDefinition, PersonaConfig


def _definition(**overrides) -> CampaignDefinition:
    return CampaignDefinition.model_validate(campaign_body(**overrides))


def _brand(**fields) -> BrandConfig:
    return BrandConfig.model_validate({"brandId": "brand-1", **fields})


def test_defaults_without_brand_or_overrides():
    merged = merge_configuration(None, _definition(cadenceOverrides=None), [])

    assert merged.cadence.model_dump() == {"minPostsPerWeek": 2, "maxPostsPerWeek": 4, "maxPostsPerDay": 2}
    assert [(p.name, p.weight) for p in merged.pillars] == list(DEFAULT_PILLARS)
    assert merged.approvalPolicy.mode == ApprovalMode.AUTO_APPROVE
    assert not any(a.forceVisuals for a in merged.assets.values())


def test_brand_cadence_is_average_of_platform_rates():
    brand = _brand(
        platformGuidelines={
            "defaults": {
                "twitter": {"typicalCadencePerWeek": 10},
                "linkedin": {"typicalCadencePerWeek": 5},
            }
        }
    )

    cadence = derive_brand_cadence(brand)

    assert (cadence.minPostsPerWeek, cadence.maxPostsPerWeek) == (5, 10)


def test_campaign_cadence_overrides_win_per_field():
    cadence = resolve_cadence(None, _definition(cadenceOverrides={"maxPostsPerWeek": 6, "maxPostsPerDay": 1}))
    assert cadence.model_dump() == {"minPostsPerWeek": 2, "maxPostsPerWeek": 6, "maxPostsPerDay": 1}


def test_lone_minimum_override_lifts_maximum():
    cadence = resolve_cadence(None, _definition(cadenceOverrides={"minPostsPerWeek": 12}))
    assert (cadence.minPostsPerWeek, cadence.maxPostsPerWeek) == (12, 12)


def test_campaign_pillars_take_precedence_over_brand():
    definition = _definition(
        messaging={"pillars": [{"name": "Quality", "weight": 0.25}, {"name": "Price", "weight": 0.75}]}
    )
    brand = _brand(pillars=[{"name": "Heritage", "weight": 1}])

    assert [p.name for p in resolve_pillars(brand, definition)] == ["Quality", "Price"]


def test_brand_pillar_weights_are_normalized():
    brand = _brand(pillars=[{"name": "Heritage", "weight": 2}, {"name": "Craft", "weight": 6}])

    pillars = resolve_pillars(brand, _definition())

    assert [p.weight for p in pillars] == [0.25, 0.75]


def test_brand_pillars_without_weights_share_equally():
    brand = _brand(pillars=[{"name": "Heritage"}, {"name": "Craft", "weight": 3}])

    assert [p.weight for p in resolve_pillars(brand, _definition())] == [0.5, 0.5]


def test_unbalanced_campaign_pillars_are_rejected():
    with pytest.raises(ValueError):
        _definition(messaging={"pillars": [{"name": "A", "weight": 0.5}, {"name": "B", "weight": 0.4}]})


def test_instagram_needs_visuals_unless_brand_opts_out():
    assets = resolve_assets(_brand(), _definition())
    assert assets[Platform.INSTAGRAM].forceVisuals
    assert not assets[Platform.TWITTER].forceVisuals

    opted_out = _brand(platformGuidelines={"defaults": {"instagram": {"defaultAsset": "none"}}})
    assert not resolve_assets(opted_out, _definition())[Platform.INSTAGRAM].forceVisuals


def test_campaign_asset_override_wins():
    brand = _brand(platformGuidelines={"defaults": {"linkedin": {"defaultAsset": "video"}}})
    definition = _definition(assetOverrides={"forceVisuals": {"instagram": False, "twitter": True}})

    assets = resolve_assets(brand, definition)

    assert not assets[Platform.INSTAGRAM].forceVisuals
    assert assets[Platform.TWITTER].forceVisuals
    assert assets[Platform.LINKEDIN].videoRequired


def test_avoid_topics_are_unioned_and_deduplicated():
    persona = PersonaConfig.model_validate(
        {
            "personaId": "persona_a",
            "opinions": {"avoidsTopics": ["Politics"]},
            "language": {"avoid": ["synergy"]},
            "ctaStyle": {"aggressiveness": "low"},
        }
    )
    brand = _brand(contentStandards={"avoidTopics": ["politics", "Competitors"], "avoidPhrases": ["Synergy", "game changer"]})
    definition = _definition(messaging={"campaignAvoidTopics": ["Pricing"]})

    merged = merge_configuration(brand, definition, [persona])

    assert merged.avoidTopics == ["Politics", "Competitors", "Pricing"]
    restrictions = merged.personaRestrictions["persona_a"]
    assert restrictions.avoidTopics == ["Politics", "Pricing", "Competitors"]
    assert restrictions.avoidPhrases == ["synergy", "game changer"]
    assert restrictions.ctaLimited


def test_merge_is_deterministic():
    brand = _brand(pillars=[{"name": "Heritage", "weight": 1}], approvalPolicy={"mode": "always_review"})
    definition = _definition()

    first = merge_configuration(brand, definition, [])
    second = merge_configuration(brand, definition, [])

    assert first == second
    assert first.approvalPolicy.mode == ApprovalMode.ALWAYS_REVIEW


@pytest.mark.parametrize(
    "brand_pillars",
    [
        None,
        [{"name": "A", "weight": 1}, {"name": "B", "weight": 2}, {"name": "C", "weight": 4}],
        [{"name": "A", "weight": 0}, {"name": "B", "weight": 0}],
        [{"name": "A"}, {"name": "B"}, {"name": "C"}],
    ],
)
def test_pillar_weights_sum_to_one(brand_pillars):
    brand = _brand(pillars=brand_pillars) if brand_pillars else None

    pillars = resolve_pillars(brand, _definition())

    assert abs(sum(p.weight for p in pillars) - 1.0) <= 1e-3
