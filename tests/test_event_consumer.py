from __future__ import annotations

import json

import pytest

from conftest import TENANT
from campaignflow.campaigns.event_consumer import parse_event_message, process_event_message
from campaignflow.planning.config_merger import merge_configuration
from campaignflow.planning.plan_generator import generate_post_plan
from campaignflow.specs.common.enums import CampaignStatus
from campaignflow.specs.common.errors import ConflictError


def _completion(campaign_id, success=True, workflow_type="content-generation", **extra):
    return {
        "source": "campaign-workflow",
        "detailType": "Workflow Completed",
        "detail": {
            "campaignId": campaign_id,
            "tenantId": TENANT,
            "workflowType": workflow_type,
            "success": success,
            **extra,
        },
    }


def _generating(service, repository, campaign):
    repository.save_if_absent(campaign)
    plan = generate_post_plan(campaign, merge_configuration(None, campaign, []))
    repository.create_posts(TENANT, campaign.id, plan.posts)
    return service.transition(campaign, CampaignStatus.GENERATING, changes={"planSummary": plan.planSummary.model_dump()})


def test_parse_accepts_batches_and_bare_entries():
    bare = _completion("c1")

    assert len(parse_event_message(json.dumps({"entries": [bare, bare]}))) == 2
    assert parse_event_message(json.dumps(bare))[0].detail["campaignId"] == "c1"


def test_failed_completion_is_applied(service, repository, make_campaign):
    campaign = _generating(service, repository, make_campaign())
    other = {"source": "campaign-api", "detailType": "Campaign Status Changed", "detail": {"campaignId": campaign.id}}
    body = json.dumps({"entries": [other, _completion(campaign.id, success=False, error="boom")]})

    assert process_event_message(body, service) == 1
    stored = repository.require_campaign(TENANT, campaign.id)
    assert stored.status == CampaignStatus.FAILED
    assert stored.lastError.message == "boom"


def test_invalid_and_orphaned_completions_are_dropped(service):
    invalid = {"source": "campaign-workflow", "detailType": "Workflow Completed", "detail": {"campaignId": "c1"}}
    orphan = _completion("campaign_missing")

    assert process_event_message(json.dumps({"entries": [invalid, orphan]}), service) == 0


def test_conflicts_propagate_for_redelivery(service, repository, make_campaign, monkeypatch):
    campaign = _generating(service, repository, make_campaign())

    def conflict(_event):
        raise ConflictError("stale", code="VERSION_CONFLICT")

    monkeypatch.setattr(service, "handle_workflow_completion", conflict)

    with pytest.raises(ConflictError):
        process_event_message(json.dumps(_completion(campaign.id)), service)
