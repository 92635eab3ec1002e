import json
import os
import time
from typing import Any, List, Optional, Tuple

from azure.ai.agents.models import ListSortOrder, MessageRole
from azure.ai.projects import AIProjectClient
from azure.identity import DefaultAzureCredential

from campaignflow.campaigns.status import create_error_info, should_retry_on_error
from campaignflow.specs.agents.content import ContentGenerationResult, ContentRequest
from campaignflow.specs.common.datetime_utils import format_iso_datetime, utc_now
from campaignflow.specs.common.errors import ConfigurationError, ExternalCapabilityError
from campaignflow.specs.models.domain import PostContent
from campaignflow.shared.logging_utils import error as log_error, info as log_info
from campaignflow.shared.retry_utils import retry_with_backoff
from .base import Agent


PLATFORM_LIMITS = {
    "twitter": 280,
    "linkedin": 3000,
    "instagram": 2200,
    "facebook": 63206,
}


class FoundryContentAgent(Agent):
    """Post content generator backed by Azure AI Foundry Agents (AIProjectClient).

    Creates a short-lived agent per call, sends the post brief as a single
    user message, polls the run and parses the final assistant message.
    Failures come back as ``success=False`` results rather than exceptions.
    """

    def __init__(
        self,
        *,
        model: Optional[str] = None,
        client: Optional[AIProjectClient] = None,
        poll_interval: float = 0.75,
        max_wait_seconds: float = 120.0,
    ) -> None:
        super().__init__()
        self.model = model or os.getenv("MODEL_DEPLOYMENT_NAME")
        if not self.model:
            raise ConfigurationError("MODEL_DEPLOYMENT_NAME is required for AI agent model")
        if client is None:
            endpoint = os.getenv("PROJECT_ENDPOINT")
            if not endpoint:
                raise ConfigurationError("PROJECT_ENDPOINT is required for AIProjectClient")
            disable_mi = (os.getenv("AZURE_IDENTITY_DISABLE_MANAGED_IDENTITY", "").lower() in ("1", "true", "yes"))
            cred = DefaultAzureCredential(exclude_managed_identity_credential=disable_mi)
            client = AIProjectClient(endpoint=endpoint, credential=cred)
        self._client = client
        self._poll_interval = poll_interval
        self._max_wait = max_wait_seconds

    def _build_instructions(self) -> str:
        return (
            "You write social media posts for a marketing campaign, in the voice of the assigned persona. "
            "Respect the platform's length limit, include every required inclusion, and never touch an avoided "
            "topic or phrase. Respond with a single JSON object with keys "
            '"text", "hashtags" (list), "mentions" (list) and "confidence" (0..1, your confidence the post '
            "meets every constraint)."
        )

    @staticmethod
    def _build_prompt(req: ContentRequest) -> str:
        lines = [
            f"Campaign: {req.campaignName} ({req.objective})",
            f"Brief: {req.briefDescription}",
            f"Platform: {req.platform.value} (max {PLATFORM_LIMITS.get(req.platform.value, 2200)} characters)",
            f"Persona: {req.personaId}",
            f"Intent: {req.intent.value}",
            f"Topic: {req.topic}",
        ]
        if req.messagingPillar:
            lines.append(f"Messaging pillar: {req.messagingPillar}")
        if req.callToAction and not req.ctaLimited:
            cta = req.callToAction + (f" ({req.callToActionUrl})" if req.callToActionUrl else "")
            lines.append(f"Call to action: {cta}")
        elif req.ctaLimited:
            lines.append("Keep any call to action soft and optional.")
        if req.requiredInclusions:
            lines.append("Must include: " + "; ".join(req.requiredInclusions))
        if req.avoidTopics:
            lines.append("Avoid topics: " + "; ".join(req.avoidTopics))
        if req.avoidPhrases:
            lines.append("Avoid phrases: " + "; ".join(req.avoidPhrases))
        if req.assetRequirements.imageRequired:
            lines.append("The post will carry an image; refer to it naturally.")
        return "\n".join(lines)

    @staticmethod
    def _content_to_text(content: Any) -> str:
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            chunks: List[str] = []
            for part in content:
                if isinstance(part, dict):
                    val = part.get("text") or part.get("content") or part.get("value")
                    if isinstance(val, dict):
                        val = val.get("value")
                else:
                    text = getattr(part, "text", None)
                    val = getattr(text, "value", text)
                if isinstance(val, str):
                    chunks.append(val)
            return "\n".join(chunks)
        return ""

    @staticmethod
    def _parse_output_text(text: str) -> Tuple[str, List[str], List[str], Optional[float]]:
        raw = text.strip()
        if raw.startswith("```"):
            raw = raw.strip("`")
            raw = raw[raw.find("{"):] if "{" in raw else raw
        try:
            data = json.loads(raw)
        except ValueError:
            data = None
        if isinstance(data, dict) and isinstance(data.get("text"), str):
            confidence = data.get("confidence")
            return (
                data["text"].strip(),
                [str(h) for h in data.get("hashtags") or []],
                [str(m) for m in data.get("mentions") or []],
                float(confidence) if isinstance(confidence, (int, float)) else None,
            )

        caption = raw
        hashtags: List[str] = []
        if "\n#" in caption or caption.startswith("#"):
            lines = [ln.strip() for ln in caption.splitlines() if ln.strip()]
            if lines:
                caption = lines[0]
                hashtags = [t for t in " ".join(lines[1:]).split() if t.startswith("#")]
        mentions = [t for t in caption.split() if t.startswith("@")]
        return caption, hashtags, mentions, None

    def _process_run(self, *, thread_id: str, agent_id: str) -> str:
        run = retry_with_backoff(
            lambda: self._client.agents.runs.create(thread_id=thread_id, agent_id=agent_id),
            attempts=3,
            retry_if=should_retry_on_error,
            label="agent_run_create",
            campaign_id=self._campaign_id,
        )
        deadline = time.monotonic() + self._max_wait
        while True:
            run = retry_with_backoff(
                lambda: self._client.agents.runs.get(thread_id=thread_id, run_id=run.id),
                attempts=3,
                delay=self._poll_interval,
                max_delay=3.0,
                retry_if=should_retry_on_error,
                label="agent_run_poll",
                campaign_id=self._campaign_id,
            )
            status = (getattr(run, "status", None) or "").lower()
            if status in {"succeeded", "completed"}:
                break
            if status in {"failed", "cancelled", "canceled", "expired", "requires_action"}:
                raise ExternalCapabilityError(
                    f"Agent run {status}: {getattr(run, 'last_error', None)}",
                    retryable=status != "requires_action",
                )
            if time.monotonic() > deadline:
                raise ExternalCapabilityError("Agent run timed out", code="CONTENT_GENERATION_TIMEOUT")
            time.sleep(self._poll_interval)

        msgs = list(self._client.agents.messages.list(thread_id=thread_id, order=ListSortOrder.DESCENDING))
        assistant_msgs = [m for m in msgs if getattr(m, "role", None) == MessageRole.AGENT]
        if not assistant_msgs:
            raise ExternalCapabilityError("Agent run finished without an assistant message")
        return self._content_to_text(getattr(assistant_msgs[0], "content", ""))

    def run(self, req: ContentRequest) -> ContentGenerationResult:
        self._campaign_id = req.campaignId
        log_info(req.campaignId, "content_agent:start", postId=req.postId, platform=req.platform.value)
        agent = None
        try:
            agent = self._client.agents.create_agent(
                model=self.model,
                name="campaign-content-agent",
                instructions=self._build_instructions(),
            )
            thread = self._client.agents.threads.create()
            self._client.agents.messages.create(
                thread_id=thread.id,
                role=MessageRole.USER,
                content=self._build_prompt(req),
            )
            text = self._process_run(thread_id=thread.id, agent_id=agent.id)
            caption, hashtags, mentions, confidence = self._parse_output_text(text)
            if not caption:
                raise ExternalCapabilityError("Agent returned empty content")
            content = PostContent(
                text=caption,
                hashtags=hashtags,
                mentions=mentions,
                generatedAt=format_iso_datetime(utc_now()),
                confidence=min(max(confidence, 0.0), 1.0) if confidence is not None else None,
            )
            log_info(req.campaignId, "content_agent:completed", postId=req.postId, textLen=len(caption))
            return ContentGenerationResult(success=True, content=content)
        except Exception as exc:  # pylint: disable=broad-except
            code = getattr(exc, "code", None) if isinstance(exc, ExternalCapabilityError) else None
            log_error(req.campaignId, "content_agent:error", postId=req.postId, error=str(exc))
            return ContentGenerationResult(
                success=False,
                error=create_error_info(
                    code or "CONTENT_GENERATION_ERROR",
                    str(exc),
                    retryable=should_retry_on_error(exc),
                ),
            )
        finally:
            if agent is not None:
                try:
                    self._client.agents.delete_agent(agent.id)
                except Exception as exc:  # pylint: disable=broad-except
                    log_error(req.campaignId, "content_agent:cleanup_failed", error=str(exc))
