from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from campaignflow.specs.common.datetime_utils import format_iso_datetime, utc_now
from campaignflow.specs.common.errors import NotFoundError
from campaignflow.specs.common.ids import campaign_partition, new_post_id, post_sort_key
from campaignflow.specs.common.record_store_spec import RecordStore
from campaignflow.specs.models.domain import (
    BrandConfig,
    Campaign,
    PersonaConfig,
    PlannedPost,
    SocialPost,
)
from campaignflow.shared.logging_utils import info as log_info

CAMPAIGN_SK = "campaign"
POST_SK_PREFIX = "POST#"
BRAND_SK = "brand"
PERSONA_SK = "persona"


def campaign_key(tenant_id: str, campaign_id: str) -> Tuple[str, str]:
    return campaign_partition(tenant_id, campaign_id), CAMPAIGN_SK


def post_key(tenant_id: str, campaign_id: str, post_id: str) -> Tuple[str, str]:
    return campaign_partition(tenant_id, campaign_id), post_sort_key(post_id)


def _now() -> str:
    return format_iso_datetime(utc_now())


class CampaignRepository:
    """Campaign, post, brand and persona persistence over a RecordStore.

    All mutations of versioned records go through ``update_if_version`` so
    concurrent writers are linearized per record.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    # campaigns

    @staticmethod
    def to_record(campaign: Campaign) -> Dict[str, Any]:
        pk, sk = campaign_key(campaign.tenantId, campaign.id)
        body = campaign.model_dump(mode="json", exclude_none=True)
        body.update({"pk": pk, "sk": sk, "type": "campaign"})
        return body

    def save_if_absent(self, campaign: Campaign) -> bool:
        created = self.store.put_if_absent(self.to_record(campaign))
        log_info(campaign.id, "campaign:save", tenantId=campaign.tenantId, isNew=created)
        return created

    def get_campaign(self, tenant_id: str, campaign_id: str) -> Optional[Campaign]:
        record = self.store.get(*campaign_key(tenant_id, campaign_id))
        return Campaign.model_validate(record) if record else None

    def require_campaign(self, tenant_id: str, campaign_id: str) -> Campaign:
        campaign = self.get_campaign(tenant_id, campaign_id)
        if campaign is None:
            raise NotFoundError("Campaign", campaign_id)
        return campaign

    def list_campaigns(self, tenant_id: str) -> List[Campaign]:
        records = self.store.query_by_tenant(tenant_id, CAMPAIGN_SK)
        campaigns = [Campaign.model_validate(r) for r in records if r.get("sk") == CAMPAIGN_SK]
        return sorted(campaigns, key=lambda c: c.createdAt or "", reverse=True)

    def update_campaign(
        self,
        tenant_id: str,
        campaign_id: str,
        changes: Dict[str, Any],
        expected_version: int,
    ) -> Campaign:
        pk, sk = campaign_key(tenant_id, campaign_id)
        record = self.store.update_if_version(pk, sk, {**changes, "updatedAt": _now()}, expected_version)
        return Campaign.model_validate(record)

    # posts

    def create_posts(self, tenant_id: str, campaign_id: str, planned: Sequence[PlannedPost]) -> List[SocialPost]:
        now = _now()
        posts: List[SocialPost] = []
        records: List[Dict[str, Any]] = []
        for item in planned:
            post = SocialPost(
                **item.model_dump(),
                id=new_post_id(),
                campaignId=campaign_id,
                tenantId=tenant_id,
                createdAt=now,
                updatedAt=now,
            )
            pk, sk = post_key(tenant_id, campaign_id, post.id)
            body = post.model_dump(mode="json", exclude_none=True)
            body.update({"pk": pk, "sk": sk, "type": "post"})
            posts.append(post)
            records.append(body)
        written = self.store.batch_write(records)
        log_info(campaign_id, "posts:created", tenantId=tenant_id, count=written)
        return posts

    def list_posts(self, tenant_id: str, campaign_id: str) -> List[SocialPost]:
        records = self.store.query(campaign_partition(tenant_id, campaign_id), POST_SK_PREFIX)
        return sorted((SocialPost.model_validate(r) for r in records), key=lambda p: p.sequence)

    def get_post(self, tenant_id: str, campaign_id: str, post_id: str) -> Optional[SocialPost]:
        record = self.store.get(*post_key(tenant_id, campaign_id, post_id))
        return SocialPost.model_validate(record) if record else None

    def require_post(self, tenant_id: str, campaign_id: str, post_id: str) -> SocialPost:
        post = self.get_post(tenant_id, campaign_id, post_id)
        if post is None:
            raise NotFoundError("Post", post_id)
        return post

    def update_post(
        self,
        tenant_id: str,
        campaign_id: str,
        post_id: str,
        changes: Dict[str, Any],
        expected_version: int,
    ) -> SocialPost:
        pk, sk = post_key(tenant_id, campaign_id, post_id)
        record = self.store.update_if_version(pk, sk, {**changes, "updatedAt": _now()}, expected_version)
        return SocialPost.model_validate(record)

    # planning inputs, maintained by other services

    def save_brand(self, tenant_id: str, brand: BrandConfig) -> None:
        body = brand.model_dump(mode="json", exclude_none=True)
        body.update({"pk": campaign_partition(tenant_id, brand.brandId), "sk": BRAND_SK, "tenantId": tenant_id})
        self.store.put(body)

    def save_persona(self, tenant_id: str, persona: PersonaConfig) -> None:
        body = persona.model_dump(mode="json", exclude_none=True)
        body.update({"pk": campaign_partition(tenant_id, persona.personaId), "sk": PERSONA_SK, "tenantId": tenant_id})
        self.store.put(body)

    def get_brand(self, tenant_id: str, brand_id: str) -> BrandConfig:
        record = self.store.get(campaign_partition(tenant_id, brand_id), BRAND_SK)
        if record is None:
            raise NotFoundError("Brand", brand_id)
        return BrandConfig.model_validate(record)

    def get_personas(self, tenant_id: str, persona_ids: Sequence[str]) -> List[PersonaConfig]:
        personas: List[PersonaConfig] = []
        for persona_id in persona_ids:
            record = self.store.get(campaign_partition(tenant_id, persona_id), PERSONA_SK)
            if record is None:
                raise NotFoundError("Persona", persona_id)
            personas.append(PersonaConfig.model_validate(record))
        return personas

    def load_planning_inputs(self, campaign: Campaign) -> Tuple[Optional[BrandConfig], List[PersonaConfig]]:
        brand = self.get_brand(campaign.tenantId, campaign.brandId) if campaign.brandId else None
        personas = self.get_personas(campaign.tenantId, campaign.participants.personaIds)
        return brand, personas
