from __future__ import annotations

import json

from campaignflow.shared.event_publisher import InMemoryEventPublisher, QueueEventPublisher
from campaignflow.specs.models.activities import EventEntry


class FakeQueue:
    def __init__(self, fail_on=()):
        self.messages = []
        self.fail_on = set(fail_on)
        self.calls = 0

    def send_message(self, body):
        self.calls += 1
        if self.calls in self.fail_on:
            raise ConnectionError("queue unavailable")
        self.messages.append(json.loads(body))


def _entries(n):
    return [
        EventEntry(source="campaign-api", detailType="Social Post Created", detail={"campaignId": "c1", "postId": str(i)})
        for i in range(n)
    ]


def test_queue_publisher_sends_one_message_per_batch():
    queue = FakeQueue()
    publisher = QueueEventPublisher(queue_name="events", queue_factory=lambda _name: queue)

    assert publisher.publish(_entries(23)) == 23

    assert [len(m["entries"]) for m in queue.messages] == [10, 10, 3]
    first = queue.messages[0]["entries"][0]
    assert first["detailType"] == "Social Post Created"
    assert first["time"]


def test_failed_batch_is_dropped_not_raised():
    queue = FakeQueue(fail_on={2})
    publisher = QueueEventPublisher(queue_name="events", queue_factory=lambda _name: queue)

    assert publisher.publish(_entries(15)) == 10
    assert len(queue.messages) == 1


def test_queue_factory_failure_is_swallowed():
    def broken_factory(_name):
        raise ConnectionError("no storage account")

    publisher = QueueEventPublisher(queue_name="events", queue_factory=broken_factory)

    assert publisher.publish(_entries(2)) == 0


def test_empty_publish_is_a_no_op():
    publisher = InMemoryEventPublisher()
    assert publisher.publish([]) == 0
    assert publisher.entries == []


def test_in_memory_publisher_keeps_existing_timestamps():
    publisher = InMemoryEventPublisher()
    stamped = EventEntry(source="campaign-api", detailType="x", detail={}, time="2025-03-01T00:00:00.000000Z")

    publisher.publish([stamped] + _entries(10))

    assert [len(b) for b in publisher.batches] == [10, 1]
    assert publisher.entries[0].time == "2025-03-01T00:00:00.000000Z"
