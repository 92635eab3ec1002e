"""
Factory functions wiring the campaign service and workflow activities to
the configured record store, event publisher and content generator.
"""

from functools import lru_cache

from campaignflow.agents.content_agent_foundry import FoundryContentAgent
from campaignflow.campaigns.repository import CampaignRepository
from campaignflow.campaigns.service import CampaignService
from campaignflow.shared.event_publisher import get_event_publisher
from campaignflow.shared.record_store import get_record_store
from campaignflow.workflow.activities import CampaignActivities


@lru_cache(maxsize=1)
def get_campaign_service() -> CampaignService:
    return CampaignService(CampaignRepository(get_record_store()), get_event_publisher())


@lru_cache(maxsize=1)
def get_campaign_activities() -> CampaignActivities:
    # The agent is built on first use so HTTP-only hosts need no model config
    return CampaignActivities(get_campaign_service(), FoundryContentAgent)
