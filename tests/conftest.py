from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

from campaignflow.campaigns.repository import CampaignRepository
from campaignflow.campaigns.service import CampaignService
from campaignflow.shared.event_publisher import InMemoryEventPublisher
from campaignflow.shared.record_store import InMemoryRecordStore
from campaignflow.specs.agents.content import ContentGenerationResult, ContentRequest
from campaignflow.specs.models.activities import (
    BeginApprovalInput,
    CampaignKey,
    FinalizeInput,
    MarkFailedInput,
    PostFailureInput,
    PostTaskInput,
    WorkflowInput,
)
from campaignflow.specs.models.domain import ErrorInfo, PersonaConfig, PostContent
from campaignflow.specs.models.http import CreateCampaignRequest
from campaignflow.workflow import orchestrator
from campaignflow.workflow.activities import CampaignActivities

TENANT = "tenant-1"
FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def campaign_body(**overrides: Any) -> Dict[str, Any]:
    """Valid create-campaign body: one week, Monday start, two personas on twitter."""
    body: Dict[str, Any] = {
        "name": "Spring launch",
        "brief": {"description": "Launch the spring collection to existing customers", "objective": "awareness"},
        "participants": {"personaIds": ["persona_a", "persona_b"], "platforms": ["twitter"]},
        "schedule": {
            "timezone": "UTC",
            "startDate": "2025-03-03T09:00:00Z",
            "endDate": "2025-03-10T09:00:00Z",
            "allowedDaysOfWeek": ["mon", "tue", "wed", "thu", "fri", "sat", "sun"],
        },
        "cadenceOverrides": {"minPostsPerWeek": 3, "maxPostsPerWeek": 3},
    }
    body.update(overrides)
    return body


class FakeContentGenerator:
    """Succeeds unless ``fail_when(request)`` is true; records every request."""

    def __init__(
        self,
        fail_when: Optional[Callable[[ContentRequest], bool]] = None,
        retryable: bool = True,
        confidence: float = 0.9,
    ) -> None:
        self.fail_when = fail_when or (lambda _req: False)
        self.retryable = retryable
        self.confidence = confidence
        self.requests: List[ContentRequest] = []

    def run(self, request: ContentRequest) -> ContentGenerationResult:
        self.requests.append(request)
        if self.fail_when(request):
            return ContentGenerationResult(
                success=False,
                error=ErrorInfo(code="CONTENT_GENERATION_ERROR", message="model unavailable", retryable=self.retryable),
            )
        return ContentGenerationResult(
            success=True,
            content=PostContent(
                text=f"{request.topic} #spring",
                hashtags=["#spring"],
                confidence=self.confidence,
            ),
        )


class FakeTask:
    def __init__(self, kind: str, name: Optional[str] = None, payload: Any = None) -> None:
        self.kind = kind
        self.name = name
        self.payload = payload
        self.result: Any = None
        self.is_completed = False
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeDurableContext:
    """Drives orchestrator generators in-process.

    Activities are plain callables keyed by name; timers fire immediately
    and advance ``current_utc_datetime``; external events are delivered
    when present in ``events``, otherwise the competing timer wins.
    """

    def __init__(
        self,
        input_: Any,
        activities: Dict[str, Callable[[Any], Any]],
        events: Optional[Dict[str, Any]] = None,
        instance_id: str = "campaign-instance",
        now: datetime = FIXED_NOW,
    ) -> None:
        self._input = json.loads(json.dumps(input_))
        self.activities = activities
        self.events = events or {}
        self.instance_id = instance_id
        self.current_utc_datetime = now
        self.is_replaying = False
        self.custom_status: Any = None
        self.calls: List[tuple] = []
        self.timers: List[FakeTask] = []
        self._uuid = 0

    def get_input(self) -> Any:
        return self._input

    def set_custom_status(self, status: Any) -> None:
        self.custom_status = status

    def new_uuid(self) -> uuid.UUID:
        self._uuid += 1
        return uuid.UUID(int=self._uuid)

    def call_activity(self, name: str, payload: Any = None) -> FakeTask:
        return FakeTask("activity", name, payload)

    def call_sub_orchestrator(self, name: str, payload: Any = None, instance_id: Optional[str] = None) -> FakeTask:
        return FakeTask("sub", name, {"input": payload, "instanceId": instance_id})

    def create_timer(self, fire_at: datetime) -> FakeTask:
        task = FakeTask("timer", payload=fire_at)
        self.timers.append(task)
        return task

    def wait_for_external_event(self, name: str) -> FakeTask:
        return FakeTask("event", name)

    def task_all(self, tasks: List[FakeTask]) -> FakeTask:
        return FakeTask("all", payload=tasks)

    def task_any(self, tasks: List[FakeTask]) -> FakeTask:
        return FakeTask("any", payload=tasks)

    def activity_names(self) -> List[str]:
        return [name for kind, name, _ in self.calls if kind == "activity"]

    def resolve(self, task: FakeTask) -> Any:
        if task.kind == "activity":
            payload = json.loads(json.dumps(task.payload))
            self.calls.append(("activity", task.name, payload))
            result = self.activities[task.name](payload)
        elif task.kind == "sub":
            self.calls.append(("sub", task.name, task.payload["input"]))
            child = FakeDurableContext(
                task.payload["input"],
                self.activities,
                instance_id=task.payload["instanceId"] or f"{self.instance_id}:sub",
                now=self.current_utc_datetime,
            )
            result = run_orchestrator(SUB_ORCHESTRATORS[task.name], child)
            self.calls.extend(child.calls)
            self.timers.extend(child.timers)
        elif task.kind == "timer":
            self.current_utc_datetime = max(self.current_utc_datetime, task.payload)
            result = None
        elif task.kind == "all":
            result = [self.resolve(t) for t in task.payload]
        elif task.kind == "any":
            for t in task.payload:
                if t.kind == "event" and t.name in self.events:
                    t.result = self.events[t.name]
                    t.is_completed = True
                    return t
            timer = next(t for t in task.payload if t.kind == "timer")
            self.resolve(timer)
            timer.is_completed = True
            return timer
        else:
            raise AssertionError(f"unexpected task kind {task.kind}")
        task.result = result
        task.is_completed = True
        return result


def run_orchestrator(fn: Callable, context: FakeDurableContext) -> Any:
    gen = fn(context)
    value: Any = None
    error: Optional[BaseException] = None
    while True:
        try:
            task = gen.throw(error) if error is not None else gen.send(value)
        except StopIteration as stop:
            return stop.value
        value, error = None, None
        try:
            value = context.resolve(task)
        except Exception as exc:  # surfaced into the generator like a failed durable task
            error = exc


SUB_ORCHESTRATORS = {orchestrator.POST_CONTENT_ORCHESTRATOR: orchestrator.post_content_orchestrator}


def activity_table(activities: CampaignActivities) -> Dict[str, Callable[[Any], Any]]:
    """Same name -> method mapping the durable blueprint registers."""
    return {
        orchestrator.SAVE_CAMPAIGN: lambda d: activities.save_campaign(WorkflowInput.model_validate(d)).model_dump(mode="json"),
        orchestrator.GENERATE_PLAN: lambda d: activities.generate_plan(CampaignKey.model_validate(d)).model_dump(mode="json"),
        orchestrator.GET_CAMPAIGN_STATUS: lambda d: activities.get_campaign_status(CampaignKey.model_validate(d)).model_dump(mode="json"),
        orchestrator.GENERATE_POST_CONTENT: lambda d: activities.generate_post_content(PostTaskInput.model_validate(d)).model_dump(mode="json"),
        orchestrator.RECORD_POST_FAILURE: lambda d: activities.record_post_failure(PostFailureInput.model_validate(d)).model_dump(mode="json"),
        orchestrator.SKIP_PENDING_POSTS: lambda d: activities.skip_pending_posts(CampaignKey.model_validate(d)),
        orchestrator.BEGIN_APPROVAL: lambda d: activities.begin_approval(BeginApprovalInput.model_validate(d)).model_dump(mode="json"),
        orchestrator.FINALIZE_CAMPAIGN: lambda d: activities.finalize_campaign(FinalizeInput.model_validate(d)).model_dump(mode="json"),
        orchestrator.MARK_CAMPAIGN_FAILED: lambda d: activities.mark_campaign_failed(MarkFailedInput.model_validate(d)).model_dump(mode="json"),
    }


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def repository(store: InMemoryRecordStore) -> CampaignRepository:
    repo = CampaignRepository(store)
    for persona_id in ("persona_a", "persona_b"):
        repo.save_persona(TENANT, PersonaConfig(personaId=persona_id, tenantId=TENANT, name=persona_id))
    return repo


@pytest.fixture
def service(repository: CampaignRepository, publisher: InMemoryEventPublisher) -> CampaignService:
    return CampaignService(repository, publisher)


@pytest.fixture
def generator() -> FakeContentGenerator:
    return FakeContentGenerator()


@pytest.fixture
def activities(service: CampaignService, generator: FakeContentGenerator) -> CampaignActivities:
    return CampaignActivities(service, lambda: generator)


@pytest.fixture
def make_campaign(service: CampaignService):
    def _make(**overrides: Any):
        return service.build_campaign(TENANT, CreateCampaignRequest.model_validate(campaign_body(**overrides)))

    return _make


@pytest.fixture
def saved_campaign(make_campaign, repository: CampaignRepository):
    campaign = make_campaign()
    assert repository.save_if_absent(campaign)
    return campaign


def workflow_input(campaign, instance_id: str = "campaign-instance") -> Dict[str, Any]:
    return WorkflowInput(
        tenantId=campaign.tenantId,
        campaignId=campaign.id,
        campaign=campaign.model_dump(mode="json", exclude_none=True),
        instanceId=instance_id,
    ).model_dump(mode="json")
