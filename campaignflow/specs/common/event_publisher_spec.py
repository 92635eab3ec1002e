"""
Specification for the best-effort event publisher.
"""

from typing import Protocol, Sequence

from campaignflow.specs.models.activities import EventEntry

# Maximum number of entries sent in one publish call
PUBLISH_BATCH_LIMIT = 10

EVENT_SOURCE_CAMPAIGN = "campaign-api"
EVENT_SOURCE_WORKFLOW = "campaign-workflow"


class EventPublisher(Protocol):
    """
    Protocol for fire-and-forget event publishing.

    Implementations must never raise: failures are logged and dropped.
    """

    def publish(self, entries: Sequence[EventEntry]) -> int:
        """
        Publish entries in batches of at most PUBLISH_BATCH_LIMIT.

        Returns:
            Number of entries accepted by the transport
        """
        ...
