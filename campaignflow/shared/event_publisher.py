import json
import os
from functools import lru_cache
from typing import Callable, List, Sequence

from campaignflow.specs.common.datetime_utils import format_iso_datetime, utc_now
from campaignflow.specs.common.event_publisher_spec import PUBLISH_BATCH_LIMIT, EventPublisher
from campaignflow.specs.models.activities import EventEntry
from campaignflow.shared.logging_utils import error as log_error, info as log_info
from campaignflow.shared.queue_client import get_queue_client

CAMPAIGN_EVENTS_QUEUE = os.getenv("CAMPAIGN_EVENTS_QUEUE", "campaign-events")


def _stamp(entries: Sequence[EventEntry]) -> List[EventEntry]:
    now = format_iso_datetime(utc_now())
    return [e if e.time else e.model_copy(update={"time": now}) for e in entries]


def _chunks(entries: Sequence[EventEntry]) -> List[List[EventEntry]]:
    return [list(entries[i:i + PUBLISH_BATCH_LIMIT]) for i in range(0, len(entries), PUBLISH_BATCH_LIMIT)]


class QueueEventPublisher:
    """Publishes event batches as storage queue messages, one message per batch."""

    def __init__(
        self,
        queue_name: str = CAMPAIGN_EVENTS_QUEUE,
        queue_factory: Callable = get_queue_client,
    ) -> None:
        self.queue_name = queue_name
        self._queue_factory = queue_factory
        self._queue = None

    def _queue_client(self):
        if self._queue is None:
            self._queue = self._queue_factory(self.queue_name)
        return self._queue

    def publish(self, entries: Sequence[EventEntry]) -> int:
        if not entries:
            return 0
        sent = 0
        for batch in _chunks(_stamp(entries)):
            body = json.dumps({"entries": [e.model_dump(mode="json") for e in batch]})
            try:
                self._queue_client().send_message(body)
                sent += len(batch)
            except Exception as exc:  # pylint: disable=broad-except
                # Events are best-effort; the state change they describe is already committed
                log_error(
                    batch[0].detail.get("campaignId"),
                    "events:publish_failed",
                    queue=self.queue_name,
                    count=len(batch),
                    detailTypes=sorted({e.detailType for e in batch}),
                    error=str(exc),
                )
        if sent:
            log_info(None, "events:published", queue=self.queue_name, count=sent)
        return sent


class InMemoryEventPublisher:
    """Collects published entries; used for local runs and tests."""

    def __init__(self) -> None:
        self.batches: List[List[EventEntry]] = []

    @property
    def entries(self) -> List[EventEntry]:
        return [e for batch in self.batches for e in batch]

    def publish(self, entries: Sequence[EventEntry]) -> int:
        if not entries:
            return 0
        for batch in _chunks(_stamp(entries)):
            self.batches.append(batch)
        return len(entries)


@lru_cache(maxsize=1)
def get_event_publisher() -> EventPublisher:
    backend = os.getenv("EVENT_PUBLISHER_BACKEND", "auto").lower()
    if backend == "memory":
        return InMemoryEventPublisher()
    if backend == "queue" or os.getenv("AzureWebJobsStorage"):
        return QueueEventPublisher()
    return InMemoryEventPublisher()
